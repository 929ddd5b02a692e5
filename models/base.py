from datetime import datetime, timezone
from typing import ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Entity(BaseModel):
    """
    Base for every persisted business document.

    Records are immutable: workflow operations return a new copy via
    model_copy(update=...) rather than mutating in place.  The gateway
    assigns `id` on create when it is None.

    Subclasses declare:
      kind          storage discriminator, e.g. "purchase_order"
      number_field  attribute holding the business document number
      party_field   attribute holding the customer / supplier name
    """
    model_config = ConfigDict(frozen=True)

    kind: ClassVar[str] = ""
    number_field: ClassVar[str] = ""
    party_field: ClassVar[str] = "customer_name"

    id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    @property
    def number(self) -> str:
        return getattr(self, self.number_field)

    @property
    def party(self) -> str:
        return getattr(self, self.party_field)

    @property
    def stored_status(self) -> Optional[str]:
        """Status value persisted with the row (None where status is derived)."""
        return getattr(self, "status", None)
