from datetime import date
from typing import ClassVar, List, Literal, Optional

from pydantic import Field

from .base import Entity
from .line_item import LineItem
from .purchase_order import expiry_status

QuotationStatus = Literal["draft", "sent", "accepted", "rejected", "expired"]

# Statuses that lapse to "expired" once the validity date has passed
_OPEN_STATUSES = ("draft", "sent")


class Quotation(Entity):
    """Our priced response to an inquiry."""
    kind: ClassVar[str] = "quotation"
    number_field: ClassVar[str] = "quotation_number"

    quotation_number: str
    quotation_date: date
    validity_date: date
    customer_name: str
    customer_address: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    items: List[LineItem] = Field(default_factory=list)
    subtotal: float = 0.0
    vat_amount: float = 0.0
    total_amount: float = 0.0
    currency: Optional[str] = None
    terms: Optional[str] = None
    notes: Optional[str] = None
    pdf_path: Optional[str] = None
    status: QuotationStatus = "draft"

    # Links
    inquiry_id: Optional[str] = None
    po_id: Optional[str] = None

    def effective_status(self, today: Optional[date] = None) -> QuotationStatus:
        """Stored status, except open quotations past validity read as expired."""
        if self.status in _OPEN_STATUSES and self.is_expired_on(today):
            return "expired"
        return self.status

    def is_expired_on(self, today: Optional[date] = None) -> bool:
        return expiry_status(self.validity_date, today) == "expired"

    @property
    def is_expired(self) -> bool:
        return self.is_expired_on()

    @property
    def is_expiring_soon(self) -> bool:
        return expiry_status(self.validity_date) == "expiring_soon"
