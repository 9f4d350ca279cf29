"""
PriceTrail Data Models
======================
Typed containers passed between the reconciliation stages.

Every statistics object here is a first-class output: callers and tests read
the decode funnel, the Buy Box funnel and the quality report directly instead
of scraping log lines.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Iterator, List, Optional

import numpy as np

from pricetrail.config import SeriesKind
from pricetrail.time_utils import keepa_minutes_to_ms, ms_to_iso


# =============================================================================
# DECODED SERIES
# =============================================================================

class DecodedSeries(Mapping):
    """
    Read-only mapping of Keepa minute -> scaled value for one series.

    Keys are unique ints; values already passed the series' validity rules.
    """

    __slots__ = ("_points", "_keys", "kind")

    def __init__(self, points: Optional[Dict[int, float]] = None, kind: Optional[SeriesKind] = None):
        self._points = dict(points or {})
        self._keys = None
        self.kind = kind

    def __getitem__(self, timestamp: int) -> float:
        return self._points[timestamp]

    def __iter__(self) -> Iterator[int]:
        return iter(self._points)

    def __len__(self) -> int:
        return len(self._points)

    def __repr__(self) -> str:
        label = self.kind.value if self.kind else "series"
        return f"DecodedSeries({label}, {len(self)} points)"

    def sorted_timestamps(self) -> np.ndarray:
        """Ascending int64 array of keys (cached)."""
        if self._keys is None:
            self._keys = np.array(sorted(self._points), dtype="int64")
        return self._keys

    def nearest(self, timestamp: int, tolerance_minutes: int) -> Optional[int]:
        """
        Key at `timestamp` if present, else the closest key within
        ±tolerance_minutes (ties go to the earlier key). None if nothing qualifies.
        """
        if timestamp in self._points:
            return timestamp
        keys = self.sorted_timestamps()
        if keys.size == 0:
            return None
        pos = int(np.searchsorted(keys, timestamp))
        best = None
        best_gap = None
        for idx in (pos - 1, pos):
            if 0 <= idx < keys.size:
                gap = abs(int(keys[idx]) - timestamp)
                if gap <= tolerance_minutes and (best_gap is None or gap < best_gap):
                    best, best_gap = int(keys[idx]), gap
        return best

    def to_dict(self) -> Dict[int, float]:
        return dict(self._points)


@dataclass
class DecodeStats:
    """Per-series decode funnel."""
    kind: str
    raw_count: int = 0
    valid_count: int = 0
    filtered_count: int = 0
    filter_reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# SELLERS & OFFERS
# =============================================================================

@dataclass(frozen=True)
class SellerIdentityEvent:
    """Seller `seller_id` holds the Buy Box starting at `timestamp` (Keepa minutes)."""
    timestamp: int
    seller_id: str


@dataclass
class SellerOffer:
    seller_id: str
    seller_name: Optional[str]
    price_history: DecodedSeries
    condition: Optional[Any] = None
    is_prime: bool = False

    @property
    def display_name(self) -> str:
        return self.seller_name or self.seller_id


# =============================================================================
# BUY BOX RECONSTRUCTION
# =============================================================================

@dataclass(frozen=True)
class ReconstructedPoint:
    """A Buy Box price with explicit provenance."""
    timestamp: int
    price: float
    seller_id: str
    seller_name: Optional[str] = None
    offer_timestamp: Optional[int] = None   # observation in the seller's own history

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BuyBoxValidationStats:
    """
    Reconstruction funnel. Invariant:
    total_candidate_timestamps >= seller_resolved >= seller_offers_found
    >= price_matches == final_valid_points
    """
    total_candidate_timestamps: int = 0
    seller_resolved: int = 0
    seller_offers_found: int = 0
    price_matches: int = 0
    final_valid_points: int = 0
    seller_contributions: Dict[str, int] = field(default_factory=dict)
    accepted_examples: List[Dict[str, Any]] = field(default_factory=list)
    rejected_examples: List[Dict[str, Any]] = field(default_factory=list)
    # Informational only: agreement with the vendor-reported Buy Box series
    reported_compared: int = 0
    reported_agreements: int = 0

    @property
    def success_rate(self) -> float:
        if not self.total_candidate_timestamps:
            return 0.0
        return self.final_valid_points / self.total_candidate_timestamps

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["success_rate"] = round(self.success_rate, 4)
        return out


@dataclass
class BuyBoxReconstruction:
    series: DecodedSeries
    points: List[ReconstructedPoint]
    stats: BuyBoxValidationStats


# =============================================================================
# MERGED / AGGREGATED RECORDS
# =============================================================================

RECORD_FIELDS = (
    "amazon_price",
    "fba_price",
    "fbm_price",
    "buy_box_price",
    "sales_rank",
    "offer_count",
    "rating",
    "review_count",
)


@dataclass
class MergedRecord:
    """One row per distinct Keepa minute. None means no observation, never zero."""
    timestamp_units: int
    amazon_price: Optional[float] = None
    fba_price: Optional[float] = None
    fbm_price: Optional[float] = None
    buy_box_price: Optional[float] = None
    sales_rank: Optional[float] = None
    offer_count: Optional[float] = None
    rating: Optional[float] = None
    review_count: Optional[float] = None

    @property
    def timestamp_ms(self) -> int:
        return keepa_minutes_to_ms(self.timestamp_units)

    @property
    def timestamp(self) -> str:
        return ms_to_iso(self.timestamp_ms)

    def values(self) -> Dict[str, Optional[float]]:
        return {name: getattr(self, name) for name in RECORD_FIELDS}

    def to_dict(self) -> Dict[str, Any]:
        out = {"timestamp": self.timestamp, "timestamp_ms": self.timestamp_ms}
        out.update(self.values())
        return out


@dataclass
class AggregatedRecord:
    """Reduction of every MergedRecord in [bucket_start_ms, bucket_start_ms + width)."""
    bucket_start_ms: int
    record_count: int = 0
    amazon_price: Optional[float] = None
    fba_price: Optional[float] = None
    fbm_price: Optional[float] = None
    buy_box_price: Optional[float] = None
    sales_rank: Optional[float] = None
    offer_count: Optional[float] = None
    rating: Optional[float] = None
    review_count: Optional[float] = None

    @property
    def timestamp_ms(self) -> int:
        return self.bucket_start_ms

    @property
    def timestamp(self) -> str:
        return ms_to_iso(self.bucket_start_ms)

    def values(self) -> Dict[str, Optional[float]]:
        return {name: getattr(self, name) for name in RECORD_FIELDS}

    def to_dict(self) -> Dict[str, Any]:
        out = {"timestamp": self.timestamp, "timestamp_ms": self.timestamp_ms,
               "record_count": self.record_count}
        out.update(self.values())
        return out


# =============================================================================
# QUALITY REPORT
# =============================================================================

@dataclass
class SeriesQuality:
    raw_count: int = 0        # raw pairs in the feed (from decode stats)
    valid_count: int = 0      # decoded points contributed to the merge
    filtered_count: int = 0   # rejected at decode time
    merged_count: int = 0     # merged records carrying this field


@dataclass
class QualityReport:
    """Observational summary; never feeds back into computation."""
    total_timestamps: int = 0
    series: Dict[str, SeriesQuality] = field(default_factory=dict)
    buy_box: BuyBoxValidationStats = field(default_factory=BuyBoxValidationStats)

    @property
    def total_valid_points(self) -> int:
        return sum(s.valid_count for s in self.series.values())

    @property
    def total_filtered_points(self) -> int:
        return sum(s.filtered_count for s in self.series.values())

    @property
    def has_data(self) -> bool:
        return self.total_timestamps > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_timestamps": self.total_timestamps,
            "total_valid_points": self.total_valid_points,
            "total_filtered_points": self.total_filtered_points,
            "series": {name: asdict(stats) for name, stats in self.series.items()},
            "buy_box": self.buy_box.to_dict(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)
