"""Trailing time-window filter ("last N days" or "all")."""

from __future__ import annotations

from typing import List, Optional, Sequence, TypeVar, Union

from pricetrail.config import DAY_MS, resolve_window_days
from pricetrail.time_utils import to_epoch_ms

Record = TypeVar("Record")


def window_cutoff_ms(window: Union[str, int], now=None) -> Optional[int]:
    """Earliest epoch ms kept by `window`, or None for 'all'."""
    days = resolve_window_days(window)
    if days is None:
        return None
    return to_epoch_ms(now) - days * DAY_MS


def filter_range(records: Sequence[Record], window: Union[str, int] = "all", now=None) -> List[Record]:
    """
    Keep records with timestamp_ms >= now - days.

    `now` may be a datetime, pandas Timestamp or epoch ms; None uses the
    wall clock. An empty result is valid: whether the product has data at all
    is answered by the QualityReport, not here.

    Raises:
        ValueError: unknown window token or non-positive day count
    """
    cutoff = window_cutoff_ms(window, now)
    if cutoff is None:
        return list(records)
    return [r for r in records if r.timestamp_ms >= cutoff]
