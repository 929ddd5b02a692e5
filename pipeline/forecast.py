"""
Material reorder forecasting from purchase order history.

For one material code the engine looks at the dates it was bought on and
derives:

  - average lead time   mean days between consecutive purchases
  - consistency         1 - (population stdev / mean) of those gaps, in [0, 1]
  - consumption rate    quantity bought in the trailing 12 months / 12
  - next order date     last purchase + mean gap

and recommends stocking the material when it is bought often enough and
regularly enough.  Nothing here touches the database; the processor feeds in
events collected from stored POs.
"""
import logging
import statistics
from datetime import date, timedelta
from typing import Iterable, Optional

from dateutil.relativedelta import relativedelta

from models import MaterialForecast, PurchaseEvent, PurchaseOrder
from .errors import InsufficientData

logger = logging.getLogger(__name__)

TRAILING_MONTHS = 12


class ForecastEngine:

    def __init__(self, min_purchases: int = 3, min_consistency: float = 0.5):
        self.min_purchases = min_purchases
        self.min_consistency = min_consistency

    def forecast(
        self,
        material_code: str,
        events: Iterable[PurchaseEvent],
        material_name: Optional[str] = None,
        today: Optional[date] = None,
    ) -> MaterialForecast:
        """
        Forecast one material from its purchase events.

        Raises InsufficientData when there are fewer than two events or all of
        them fall on the same day.
        """
        today = today or date.today()
        history = sorted(events, key=lambda e: e.purchase_date)
        if len(history) < 2:
            raise InsufficientData(material_code, len(history))

        # Same-day repeats carry no interval information
        gaps = [
            (later.purchase_date - earlier.purchase_date).days
            for earlier, later in zip(history, history[1:])
        ]
        gaps = [g for g in gaps if g > 0]
        if not gaps:
            raise InsufficientData(material_code, len(history))

        mean_gap = statistics.fmean(gaps)
        consistency = 1.0 - statistics.pstdev(gaps) / mean_gap
        consistency = min(1.0, max(0.0, consistency))

        window_start = today - relativedelta(months=TRAILING_MONTHS)
        trailing = [e for e in history if window_start < e.purchase_date <= today]
        trailing_quantity = sum(e.quantity for e in trailing)

        next_order = history[-1].purchase_date + timedelta(days=round(mean_gap))
        recommendation, reason = self._recommend(len(trailing), consistency)

        logger.debug(
            "Forecast %s: %d events, mean gap %.1f days, consistency %.2f -> %s",
            material_code, len(history), mean_gap, consistency, recommendation,
        )
        return MaterialForecast(
            material_code=material_code,
            material_name=material_name or material_code,
            average_lead_time_days=mean_gap,
            consumption_rate_per_month=trailing_quantity / TRAILING_MONTHS,
            predicted_next_order_date=next_order,
            recommendation=recommendation,
            recommendation_reason=reason,
            purchase_history=history,
            total_quantity_last_12_months=trailing_quantity,
            purchase_count_last_12_months=len(trailing),
            purchase_frequency_consistency=consistency,
        )

    def _recommend(self, trailing_count: int, consistency: float) -> tuple[str, str]:
        if trailing_count < self.min_purchases:
            return "Do Not Stock", (
                f"Only {trailing_count} purchase(s) in the last 12 months "
                f"(need at least {self.min_purchases})"
            )
        if consistency < self.min_consistency:
            return "Do Not Stock", (
                f"Irregular purchase pattern: consistency {consistency:.2f} "
                f"is below {self.min_consistency:.2f}"
            )
        return "Stock", (
            f"{trailing_count} purchases in the last 12 months with "
            f"consistency {consistency:.2f}"
        )


# ---------------------------------------------------------------------------
# Purchase history from stored POs
# ---------------------------------------------------------------------------

def collect_purchase_events(
    orders: Iterable[PurchaseOrder],
    material_code: str,
) -> tuple[list[PurchaseEvent], Optional[str]]:
    """
    Purchase events for *material_code* across *orders*, plus the first item
    name seen for it.

    Codes match case-insensitively; when nothing matches exactly, any line
    whose code contains *material_code* is used instead.
    """
    orders = list(orders)
    wanted = material_code.strip().lower()

    def matches(code: Optional[str], exact: bool) -> bool:
        if not code:
            return False
        code = code.strip().lower()
        return code == wanted if exact else wanted in code

    for exact in (True, False):
        events: list[PurchaseEvent] = []
        name: Optional[str] = None
        for po in orders:
            for item in po.line_items:
                if matches(item.item_code, exact):
                    events.append(PurchaseEvent(
                        purchase_date=po.po_date,
                        quantity=item.quantity,
                        unit=item.unit,
                        po_number=po.po_number,
                    ))
                    name = name or item.item_name
        if events:
            if not exact:
                logger.info("No exact match for %s; using %d partial match(es)", material_code, len(events))
            return events, name
    return [], None


def material_codes(orders: Iterable[PurchaseOrder]) -> list[str]:
    """Distinct material codes across all PO lines, sorted."""
    codes = {
        item.item_code.strip()
        for po in orders
        for item in po.line_items
        if item.item_code and item.item_code.strip()
    }
    return sorted(codes)
