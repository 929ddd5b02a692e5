from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Recommendation = Literal["Stock", "Do Not Stock"]


class PurchaseEvent(BaseModel):
    """One purchase of a material, taken from a PO line item."""
    model_config = ConfigDict(frozen=True)

    purchase_date: date
    quantity: float
    unit: str = "EA"
    po_number: str


class MaterialForecast(BaseModel):
    """
    Reorder forecast for one material code.  Derived on demand from purchase
    history; never persisted.
    """
    model_config = ConfigDict(frozen=True)

    material_code: str
    material_name: str
    average_lead_time_days: float           # mean days between consecutive purchases
    consumption_rate_per_month: float       # trailing 12-month quantity / 12
    predicted_next_order_date: Optional[date] = None
    recommendation: Recommendation
    recommendation_reason: str
    purchase_history: List[PurchaseEvent] = Field(default_factory=list)
    total_quantity_last_12_months: float
    purchase_count_last_12_months: int
    purchase_frequency_consistency: float   # 0-1, 1 = perfectly regular
