from datetime import date
from typing import ClassVar, List, Literal, Optional

from pydantic import Field, computed_field

from .base import Entity
from .line_item import LineItem

POStatus = Literal["active", "expiring_soon", "expired"]

EXPIRING_SOON_DAYS = 7


def expiry_status(expiry: date, today: Optional[date] = None) -> POStatus:
    """Classify an expiry / validity date relative to *today*."""
    today = today or date.today()
    days_left = (expiry - today).days
    if days_left < 0:
        return "expired"
    if days_left <= EXPIRING_SOON_DAYS:
        return "expiring_soon"
    return "active"


class PurchaseOrder(Entity):
    """
    A customer-issued purchase order.

    status is never stored: it is recomputed from expiry_date on every read,
    so a PO saved months ago still reports "expired" today.
    """
    kind: ClassVar[str] = "purchase_order"
    number_field: ClassVar[str] = "po_number"

    po_number: str
    po_date: date
    expiry_date: date
    customer_name: str
    customer_address: Optional[str] = None
    customer_email: Optional[str] = None
    line_items: List[LineItem] = Field(default_factory=list)
    total_amount: float = 0.0
    currency: Optional[str] = None          # AED, INR, USD, ...
    terms: Optional[str] = None
    notes: Optional[str] = None
    quotation_reference: Optional[str] = None   # as printed on the customer's PO
    pdf_path: Optional[str] = None

    # Links
    inquiry_id: Optional[str] = None
    quotation_id: Optional[str] = None
    supplier_order_ids: List[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> POStatus:
        return expiry_status(self.expiry_date)

    def status_on(self, today: date) -> POStatus:
        return expiry_status(self.expiry_date, today)

    @property
    def stored_status(self) -> Optional[str]:
        return None

    @property
    def is_expired(self) -> bool:
        return self.status == "expired"

    @property
    def is_expiring_soon(self) -> bool:
        return self.status == "expiring_soon"
