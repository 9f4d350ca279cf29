"""
PriceTrail Configuration
========================
Series kinds, Keepa CSV layouts, matching tolerances and the caller-facing
granularity / range tokens.

The kind -> CSV index mapping is configuration, not logic. Keepa has moved
series between indices over time (FBA lived at 16 in the old chart layout and
at 10 in the current API), so every decode path takes a layout table instead
of hard-coding indices. The same table says how many values make up one
observation: the current API stores its *_SHIPPING series as
[t, price, shipping] triples.

Environment overrides (loaded from .env if present):
    PRICETRAIL_IDENTITY_TOLERANCE_MINUTES
    PRICETRAIL_PRICE_TOLERANCE_MINUTES
    PRICETRAIL_SERIES_LAYOUT
    PRICETRAIL_SPIKE_RATIO
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple, Union

from dotenv import load_dotenv


# =============================================================================
# SERIES KINDS
# =============================================================================

class SeriesKind(str, Enum):
    """Logical series tracked by the engine."""
    AMAZON = "amazon"
    FBA = "fba"
    FBM = "fbm"
    BUY_BOX = "buy_box"
    SALES_RANK = "sales_rank"
    OFFER_COUNT = "offer_count"
    RATING = "rating"
    REVIEW_COUNT = "review_count"


PRICE_KINDS = frozenset({SeriesKind.AMAZON, SeriesKind.FBA, SeriesKind.FBM, SeriesKind.BUY_BOX})


# Record field name for each kind
FIELD_NAMES: Dict[SeriesKind, str] = {
    SeriesKind.AMAZON: "amazon_price",
    SeriesKind.FBA: "fba_price",
    SeriesKind.FBM: "fbm_price",
    SeriesKind.BUY_BOX: "buy_box_price",
    SeriesKind.SALES_RANK: "sales_rank",
    SeriesKind.OFFER_COUNT: "offer_count",
    SeriesKind.RATING: "rating",
    SeriesKind.REVIEW_COUNT: "review_count",
}


def parse_kind(kind: Union[str, SeriesKind]) -> SeriesKind:
    """Accepts a SeriesKind or its string value ('buyBox' style also works)."""
    if isinstance(kind, SeriesKind):
        return kind
    key = str(kind).strip()
    aliases = {
        "buyBox": "buy_box",
        "salesRank": "sales_rank",
        "offerCount": "offer_count",
        "reviewCount": "review_count",
    }
    key = aliases.get(key, key)
    try:
        return SeriesKind(key)
    except ValueError:
        raise ValueError(f"Unknown series kind: {kind!r}") from None


# =============================================================================
# KEEPA CONSTANTS
# =============================================================================

SENTINEL_VALUES: Tuple[int, ...] = (-1,)

PRICE_SCALE = 100.0     # cents -> dollars
RATING_SCALE = 10.0     # 45 -> 4.5 stars
MIN_PRICE = 0.01        # exclusive
MAX_PRICE = 50000.0     # exclusive

MAX_FILTER_REASONS = 20
MAX_EXAMPLES = 5

# Informational comparison against the vendor-reported Buy Box series
REPORTED_DOLLAR_TOLERANCE = 0.50
REPORTED_PERCENT_TOLERANCE = 0.10


# =============================================================================
# CSV LAYOUTS (kind -> index into product["csv"])
# =============================================================================

KEEPA_LAYOUT: Dict[SeriesKind, int] = {
    SeriesKind.AMAZON: 0,
    SeriesKind.SALES_RANK: 3,
    SeriesKind.FBM: 7,
    SeriesKind.FBA: 10,
    SeriesKind.OFFER_COUNT: 11,
    SeriesKind.RATING: 16,          # stored as rating*10
    SeriesKind.REVIEW_COUNT: 17,
    SeriesKind.BUY_BOX: 18,
}

LEGACY_CHART_LAYOUT: Dict[SeriesKind, int] = {
    SeriesKind.AMAZON: 0,
    SeriesKind.BUY_BOX: 3,
    SeriesKind.SALES_RANK: 4,
    SeriesKind.OFFER_COUNT: 5,
    SeriesKind.FBA: 16,
    SeriesKind.FBM: 18,
    SeriesKind.RATING: 44,
    SeriesKind.REVIEW_COUNT: 45,
}

SERIES_LAYOUTS: Dict[str, Dict[SeriesKind, int]] = {
    "keepa": KEEPA_LAYOUT,
    "legacy_chart": LEGACY_CHART_LAYOUT,
}

DEFAULT_LAYOUT = "keepa"

# Values per observation in a csv series. Most are [t, value] pairs; the
# *_SHIPPING series in the current API are [t, price, shipping] triples.
PAIR_STRIDE = 2
SHIPPING_STRIDE = 3

KEEPA_STRIDES: Dict[SeriesKind, int] = {
    SeriesKind.FBM: SHIPPING_STRIDE,        # NEW_FBM_SHIPPING
    SeriesKind.BUY_BOX: SHIPPING_STRIDE,    # BUY_BOX_SHIPPING
}

SERIES_STRIDES: Dict[str, Dict[SeriesKind, int]] = {
    "keepa": KEEPA_STRIDES,
    "legacy_chart": {},
}


def _layout_entries(layout: Union[str, Mapping, None]) -> Dict[SeriesKind, Tuple[int, int]]:
    """{SeriesKind: (csv index, stride)} for a layout name or mapping."""
    if layout is None:
        layout = DEFAULT_LAYOUT
    if isinstance(layout, str):
        if layout not in SERIES_LAYOUTS:
            raise ValueError(
                f"Unknown series layout {layout!r}; expected one of {sorted(SERIES_LAYOUTS)}"
            )
        strides = SERIES_STRIDES[layout]
        return {
            kind: (index, strides.get(kind, PAIR_STRIDE))
            for kind, index in SERIES_LAYOUTS[layout].items()
        }

    resolved = {}
    for kind, entry in layout.items():
        if isinstance(entry, (tuple, list)) and len(entry) == 2:
            index, stride = entry
        else:
            index, stride = entry, PAIR_STRIDE
        if isinstance(index, bool) or not isinstance(index, int) or index < 0:
            raise ValueError(f"Layout index for {kind!r} must be a non-negative int, got {index!r}")
        if isinstance(stride, bool) or not isinstance(stride, int) or stride < PAIR_STRIDE:
            raise ValueError(f"Layout stride for {kind!r} must be an int >= 2, got {stride!r}")
        resolved[parse_kind(kind)] = (index, stride)
    return resolved


def resolve_layout(layout: Union[str, Mapping, None]) -> Dict[SeriesKind, int]:
    """
    Turn a layout name or a caller-supplied mapping into {SeriesKind: index}.

    Mapping keys may be SeriesKind members or their string values. Values are
    a csv index, or an (index, stride) pair for series stored as triples.
    """
    return {kind: index for kind, (index, _) in _layout_entries(layout).items()}


def resolve_strides(layout: Union[str, Mapping, None]) -> Dict[SeriesKind, int]:
    """{SeriesKind: values per observation} for every kind in the layout."""
    return {kind: stride for kind, (_, stride) in _layout_entries(layout).items()}


# =============================================================================
# GRANULARITY & RANGE TOKENS
# =============================================================================

DAY_MS = 24 * 60 * 60 * 1000

GRANULARITY_DAYS: Dict[str, Optional[int]] = {
    "raw": None,
    "daily": 1,
    "weekly": 7,
    "monthly": 30,   # fixed width, not calendar months
}

RANGE_WINDOWS: Dict[str, Optional[int]] = {
    "1d": 1,
    "1w": 7,
    "1m": 30,
    "3m": 90,
    "1y": 365,
    "all": None,
}


def validate_granularity(granularity: str) -> str:
    if granularity not in GRANULARITY_DAYS:
        raise ValueError(
            f"Unknown granularity {granularity!r}; expected one of {list(GRANULARITY_DAYS)}"
        )
    return granularity


def resolve_window_days(window: Union[str, int, None]) -> Optional[int]:
    """
    Returns the trailing window length in days, or None for 'all'.

    Accepts a range token ('1d', '1w', '1m', '3m', '1y', 'all') or a positive
    integer day count.
    """
    if window is None:
        return None
    if isinstance(window, bool):
        raise ValueError(f"Invalid range window: {window!r}")
    if isinstance(window, int):
        if window <= 0:
            raise ValueError(f"Range window must be a positive number of days, got {window}")
        return window
    if isinstance(window, str) and window in RANGE_WINDOWS:
        return RANGE_WINDOWS[window]
    raise ValueError(
        f"Unknown range window {window!r}; expected one of {list(RANGE_WINDOWS)} or a day count"
    )


# =============================================================================
# SETTINGS
# =============================================================================

DEFAULT_IDENTITY_TOLERANCE_MINUTES = 5
DEFAULT_PRICE_TOLERANCE_MINUTES = 60


@dataclass
class ReconcileSettings:
    """Tunable knobs for one reconciliation run."""
    identity_tolerance_minutes: int = DEFAULT_IDENTITY_TOLERANCE_MINUTES
    price_tolerance_minutes: int = DEFAULT_PRICE_TOLERANCE_MINUTES
    layout: Union[str, Mapping] = DEFAULT_LAYOUT   # name or {kind: index | (index, stride)}
    sentinels: Tuple[int, ...] = SENTINEL_VALUES
    spike_ratio: Optional[float] = None   # None disables spike rejection

    # resolved from `layout`
    series_indices: Dict[SeriesKind, int] = field(init=False, repr=False)
    series_strides: Dict[SeriesKind, int] = field(init=False, repr=False)

    def __post_init__(self):
        if self.identity_tolerance_minutes < 0:
            raise ValueError(f"identity_tolerance_minutes must be >= 0, got {self.identity_tolerance_minutes}")
        if self.price_tolerance_minutes < 0:
            raise ValueError(f"price_tolerance_minutes must be >= 0, got {self.price_tolerance_minutes}")
        if self.spike_ratio is not None and self.spike_ratio <= 1:
            raise ValueError(f"spike_ratio must be > 1, got {self.spike_ratio}")
        self.series_indices = resolve_layout(self.layout)
        self.series_strides = resolve_strides(self.layout)

    @classmethod
    def from_env(cls, env_file: Optional[Union[str, Path]] = None) -> "ReconcileSettings":
        """Build settings from PRICETRAIL_* environment variables (and .env)."""
        load_dotenv(env_file)

        def _int(name: str, default: int) -> int:
            raw = os.getenv(name)
            if raw is None or raw.strip() == "":
                return default
            try:
                return int(raw)
            except ValueError:
                raise ValueError(f"{name} must be an integer, got {raw!r}") from None

        spike_raw = os.getenv("PRICETRAIL_SPIKE_RATIO")
        spike_ratio = None
        if spike_raw:
            try:
                spike_ratio = float(spike_raw)
            except ValueError:
                raise ValueError(f"PRICETRAIL_SPIKE_RATIO must be a number, got {spike_raw!r}") from None

        return cls(
            identity_tolerance_minutes=_int(
                "PRICETRAIL_IDENTITY_TOLERANCE_MINUTES", DEFAULT_IDENTITY_TOLERANCE_MINUTES
            ),
            price_tolerance_minutes=_int(
                "PRICETRAIL_PRICE_TOLERANCE_MINUTES", DEFAULT_PRICE_TOLERANCE_MINUTES
            ),
            layout=os.getenv("PRICETRAIL_SERIES_LAYOUT") or DEFAULT_LAYOUT,
            spike_ratio=spike_ratio,
        )
