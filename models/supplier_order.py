from datetime import date
from typing import ClassVar, List, Literal, Optional

from pydantic import Field

from .base import Entity
from .line_item import LineItem

SupplierOrderStatus = Literal["pending", "confirmed", "in_transit", "delivered", "cancelled"]


class SupplierOrder(Entity):
    """Our own order to an upstream supplier, placed to fulfil a customer PO."""
    kind: ClassVar[str] = "supplier_order"
    number_field: ClassVar[str] = "order_number"
    party_field: ClassVar[str] = "supplier_name"

    order_number: str
    order_date: date
    expected_delivery_date: Optional[date] = None
    supplier_name: str
    supplier_address: Optional[str] = None
    supplier_email: Optional[str] = None
    supplier_phone: Optional[str] = None
    items: List[LineItem] = Field(default_factory=list)
    total_amount: float = 0.0
    currency: Optional[str] = None
    terms: Optional[str] = None
    notes: Optional[str] = None
    pdf_path: Optional[str] = None
    status: SupplierOrderStatus = "pending"

    # Links
    po_id: Optional[str] = None
    delivery_document_id: Optional[str] = None
