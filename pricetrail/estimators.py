"""
Best-Effort Monthly Sales Estimate
==================================
NOT part of the reconciliation engine and NOT ground truth. Downstream
calculators want a units/month figure; this gives them one with its source
labelled so it can be discounted accordingly.

Precedence:
1. Amazon's own "bought in past month" badge (product["monthlySold"]) when > 0
2. BSR power law on the last known sales rank (calibrated for grocery velocity)
3. Unavailable
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from pricetrail.models import MergedRecord

BSR_SCALE = 145000.0
BSR_EXPONENT = -0.9


@dataclass
class SalesEstimate:
    units: Optional[float]
    source: str          # "amazon_monthly_sold" | "bsr_formula" | "unavailable"
    sales_rank: Optional[float] = None


def bsr_to_monthly_units(sales_rank: float) -> float:
    return BSR_SCALE * (max(float(sales_rank), 1.0) ** BSR_EXPONENT)


def last_known_rank(records: Sequence[MergedRecord]) -> Optional[float]:
    for record in reversed(records):
        if record.sales_rank is not None:
            return record.sales_rank
    return None


def estimate_monthly_sales(product: Optional[Dict[str, Any]],
                           records: Optional[Sequence[MergedRecord]] = None) -> SalesEstimate:
    monthly_sold = (product or {}).get("monthlySold")
    if isinstance(monthly_sold, (int, float)) and not isinstance(monthly_sold, bool) and monthly_sold > 0:
        return SalesEstimate(units=float(monthly_sold), source="amazon_monthly_sold")

    rank = last_known_rank(records or [])
    if rank is not None and rank > 0:
        return SalesEstimate(units=bsr_to_monthly_units(rank), source="bsr_formula", sales_rank=rank)

    return SalesEstimate(units=None, source="unavailable")
