"""
PriceTrail Reconciliation Pipeline
==================================
Runs one Keepa product payload through every stage:

    csv[idx] --decode--> series --+--------------------------------+
    buyBoxSellerIdHistory --+     |                                |
    offers -----------------+--> Buy Box reconstruction --> merge --> aggregate --> range filter

The payload is the raw Keepa /product JSON for one ASIN (`csv` as a list or a
dict keyed by index, `buyBoxSellerIdHistory`, `offers`). Which csv index holds
which series comes from the configured layout, never from code here.

Usage:
    from pricetrail.pipeline import reconcile_product
    result = reconcile_product(product, granularity="daily", window="3m")
    result.records          # filtered, aggregated records
    result.quality.buy_box  # why the Buy Box looks the way it does
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

import pandas as pd

from pricetrail.aggregator import aggregate
from pricetrail.buybox import BuyBoxReconstructor
from pricetrail.config import (
    ReconcileSettings,
    SeriesKind,
    resolve_window_days,
    validate_granularity,
)
from pricetrail.decoder import decode_series
from pricetrail.merger import merge_series, records_to_frame
from pricetrail.models import (
    BuyBoxReconstruction,
    DecodedSeries,
    DecodeStats,
    MergedRecord,
    QualityReport,
)
from pricetrail.range_filter import filter_range
from pricetrail.sellers import extract_seller_history, extract_seller_offers

logger = logging.getLogger(__name__)

AVAILABILITY_OK = "ok"
AVAILABILITY_NO_DATA = "no_data"
AVAILABILITY_NO_DATA_IN_RANGE = "no_data_in_range"


@dataclass
class ReconciliationResult:
    asin: Optional[str]
    granularity: str
    window: Union[str, int]
    series: Dict[SeriesKind, DecodedSeries] = field(default_factory=dict)
    decode_stats: Dict[SeriesKind, DecodeStats] = field(default_factory=dict)
    buy_box: Optional[BuyBoxReconstruction] = None
    merged: List[MergedRecord] = field(default_factory=list)
    aggregated: list = field(default_factory=list)
    records: list = field(default_factory=list)
    quality: QualityReport = field(default_factory=QualityReport)

    @property
    def availability(self) -> str:
        """
        "no_data"          nothing decoded at any stage
        "no_data_in_range" data exists, the selected window is empty
        "ok"               records to show
        """
        if not self.merged:
            return AVAILABILITY_NO_DATA
        if not self.records:
            return AVAILABILITY_NO_DATA_IN_RANGE
        return AVAILABILITY_OK

    def to_frame(self) -> pd.DataFrame:
        frame = records_to_frame(self.records)
        if self.asin is not None:
            frame.insert(0, "asin", self.asin)
        return frame

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asin": self.asin,
            "granularity": self.granularity,
            "window": self.window,
            "availability": self.availability,
            "records": [r.to_dict() for r in self.records],
            "buy_box_points": [p.to_dict() for p in self.buy_box.points] if self.buy_box else [],
            "quality": self.quality.to_dict(),
        }


def get_raw_series(csv_data, index: int):
    """
    Fetch csv[index] from a Keepa payload that may be a list or a dict keyed
    by int or str. Missing indices return None.
    """
    if csv_data is None:
        return None
    try:
        if isinstance(csv_data, (list, tuple)):
            return csv_data[index]
        if isinstance(csv_data, dict):
            raw = csv_data.get(index)
            return raw if raw is not None else csv_data.get(str(index))
    except (IndexError, KeyError, TypeError):
        return None
    return None


def extract_raw_series(product: Dict[str, Any], settings: ReconcileSettings) -> Dict[SeriesKind, Any]:
    """{kind: raw flat array or None} via the configured layout."""
    csv_data = (product or {}).get("csv")
    return {kind: get_raw_series(csv_data, index) for kind, index in settings.series_indices.items()}


def reconcile_product(
    product: Optional[Dict[str, Any]],
    settings: Optional[ReconcileSettings] = None,
    granularity: str = "raw",
    window: Union[str, int] = "all",
    now=None,
) -> ReconciliationResult:
    """
    Reconcile one product's Keepa history.

    Args:
        product: Keepa product JSON (None or {} is treated as "no data")
        settings: Tolerances, layout, sentinels (defaults if None)
        granularity: raw | daily | weekly | monthly
        window: 1d | 1w | 1m | 3m | 1y | all, or a positive day count
        now: Clock for the range filter (datetime or epoch ms); None = wall clock

    Raises:
        ValueError: invalid granularity / window (checked before any data work)
    """
    validate_granularity(granularity)
    resolve_window_days(window)
    settings = settings or ReconcileSettings()
    product = product or {}

    raw = extract_raw_series(product, settings)
    series: Dict[SeriesKind, DecodedSeries] = {}
    stats: Dict[SeriesKind, DecodeStats] = {}
    for kind, raw_series in raw.items():
        series[kind], stats[kind] = decode_series(
            raw_series, kind,
            sentinels=settings.sentinels,
            spike_ratio=settings.spike_ratio,
            stride=settings.series_strides[kind],
        )

    seller_events = extract_seller_history(product.get("buyBoxSellerIdHistory"))
    offers = extract_seller_offers(product.get("offers"))

    reconstruction = BuyBoxReconstructor.from_settings(settings).reconstruct(
        series.get(SeriesKind.AMAZON),
        series.get(SeriesKind.FBA),
        series.get(SeriesKind.FBM),
        seller_events,
        offers,
        reported=series.get(SeriesKind.BUY_BOX),
    )

    named = {kind: s for kind, s in series.items() if kind != SeriesKind.BUY_BOX}
    merged, quality = merge_series(
        named,
        buy_box=reconstruction.series,
        buy_box_stats=reconstruction.stats,
        decode_stats=stats,
    )
    aggregated = aggregate(merged, granularity)
    records = filter_range(aggregated, window, now=now)

    result = ReconciliationResult(
        asin=product.get("asin"),
        granularity=granularity,
        window=window,
        series=series,
        decode_stats=stats,
        buy_box=reconstruction,
        merged=merged,
        aggregated=aggregated,
        records=records,
        quality=quality,
    )
    logger.info(
        f"{result.asin or 'product'}: {len(merged)} timestamps, "
        f"{reconstruction.stats.final_valid_points} Buy Box points, "
        f"{len(records)} records ({granularity}/{window}) -> {result.availability}"
    )
    return result


def reconcile_products(
    products: Iterable[Optional[Dict[str, Any]]],
    settings: Optional[ReconcileSettings] = None,
    granularity: str = "raw",
    window: Union[str, int] = "all",
    now=None,
) -> pd.DataFrame:
    """
    Reconcile a batch of products into one long DataFrame (asin + record columns).

    Products without data contribute no rows.
    """
    validate_granularity(granularity)
    resolve_window_days(window)
    frames = []
    for product in products:
        if not product:
            continue
        result = reconcile_product(product, settings, granularity, window, now)
        if result.records:
            frame = result.to_frame()
            if "asin" not in frame.columns:
                frame.insert(0, "asin", None)
            frames.append(frame)
    if not frames:
        return pd.DataFrame()
    df = pd.concat(frames, ignore_index=True)
    return df.drop_duplicates(subset=["asin", "timestamp_ms"])
