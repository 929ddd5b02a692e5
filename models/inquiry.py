from datetime import date
from typing import ClassVar, List, Literal, Optional

from pydantic import Field

from .base import Entity
from .line_item import InquiryItem

InquiryStatus = Literal["pending", "reviewed", "quoted", "converted_to_po"]


class CustomerInquiry(Entity):
    """
    A customer's request for pricing (RFQ or purchase requisition).

    quotation_id / po_id are written only by the conversion that creates the
    downstream document, never by extraction.  Item-level statuses are
    independent of the inquiry status.
    """
    kind: ClassVar[str] = "inquiry"
    number_field: ClassVar[str] = "inquiry_number"

    inquiry_number: str
    inquiry_date: date
    customer_name: str
    customer_address: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    sender_email: Optional[str] = None
    items: List[InquiryItem] = Field(default_factory=list)
    notes: Optional[str] = None
    pdf_path: Optional[str] = None
    status: InquiryStatus = "pending"

    # Links
    quotation_id: Optional[str] = None
    po_id: Optional[str] = None
