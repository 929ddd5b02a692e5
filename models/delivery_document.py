from datetime import date
from typing import ClassVar, List, Literal, Optional

from pydantic import Field

from .base import Entity
from .line_item import LineItem

DocumentType = Literal["commercial_invoice", "delivery_order", "both"]
DeliveryStatus = Literal["draft", "generated", "sent"]

DOCUMENT_TYPES: tuple[str, ...] = ("commercial_invoice", "delivery_order", "both")


class DeliveryDocument(Entity):
    """Commercial invoice and/or delivery order issued on shipment."""
    kind: ClassVar[str] = "delivery_document"
    number_field: ClassVar[str] = "document_number"

    document_number: str
    document_type: DocumentType = "both"
    document_date: date
    customer_name: str
    customer_address: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_trn: Optional[str] = None      # Tax Registration Number
    items: List[LineItem] = Field(default_factory=list)
    subtotal: float = 0.0
    vat_amount: Optional[float] = None
    total_amount: float = 0.0
    currency: Optional[str] = None
    terms: Optional[str] = None
    notes: Optional[str] = None
    pdf_path: Optional[str] = None
    status: DeliveryStatus = "draft"

    # Links
    po_id: Optional[str] = None
    supplier_order_id: Optional[str] = None
