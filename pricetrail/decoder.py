"""
PriceTrail Series Decoder
=========================
Decodes one Keepa CSV series (flat alternating [keepa_minutes, raw_value, ...])
into a DecodedSeries. Series stored with extra values per observation (the
*_SHIPPING triples [t, price, shipping]) are read with a stride; only the
first two values of each observation are used.

Rules, applied per pair in order:
1. Both elements must be finite numbers (bools are not numbers)
2. Timestamps must be in [0, MAX_KEEPA_MINUTES] (representable as a datetime)
3. Sentinel values (-1 = no observation) are dropped BEFORE scaling,
   otherwise -1 cents becomes -0.01 dollars
4. Scale: prices / 100, rating / 10, everything else unscaled
5. Validate: prices must be in (0.01, 50000), everything else >= 0
6. Later duplicate timestamps overwrite earlier ones (last observation wins)

Malformed or absent input is a normal condition for this feed and degrades to
an empty series. Nothing in here raises for bad data.
"""

from __future__ import annotations

import logging
import numbers
from typing import Iterable, Optional, Sequence, Tuple, Union

import numpy as np

from pricetrail.config import (
    MAX_FILTER_REASONS,
    MAX_PRICE,
    MIN_PRICE,
    PAIR_STRIDE,
    PRICE_KINDS,
    PRICE_SCALE,
    RATING_SCALE,
    SENTINEL_VALUES,
    SeriesKind,
    parse_kind,
)
from pricetrail.models import DecodedSeries, DecodeStats
from pricetrail.time_utils import MAX_KEEPA_MINUTES

logger = logging.getLogger(__name__)


def _as_float(x) -> float:
    """Numeric element -> float; anything else -> NaN."""
    if isinstance(x, bool) or not isinstance(x, numbers.Real):
        return np.nan
    return float(x)


def raw_pairs(raw_series, stride: int = PAIR_STRIDE) -> Optional[np.ndarray]:
    """
    Reshape a flat Keepa array into an (n, 2) float array of [t, value].

    `stride` is the number of values per observation; anything after the
    first two (e.g. shipping cost) is dropped. Returns None when the input is
    absent, not a sequence, not a whole number of observations or shorter
    than one. Non-numeric elements become NaN.
    """
    if raw_series is None or isinstance(raw_series, (str, bytes, dict)):
        return None
    try:
        values = [_as_float(x) for x in raw_series]
    except TypeError:
        return None
    if len(values) < stride or len(values) % stride != 0:
        return None
    return np.array(values, dtype=float).reshape(-1, stride)[:, :2]


def scale_value(kind: SeriesKind, raw_value: float) -> float:
    if kind in PRICE_KINDS:
        return raw_value / PRICE_SCALE
    if kind == SeriesKind.RATING:
        return raw_value / RATING_SCALE
    return raw_value


def _add_reasons(stats: DecodeStats, reason: str, count: int) -> None:
    for _ in range(count):
        if len(stats.filter_reasons) >= MAX_FILTER_REASONS:
            return
        stats.filter_reasons.append(reason)


def decode_series(
    raw_series: Optional[Sequence],
    kind: Union[str, SeriesKind],
    sentinels: Iterable[int] = SENTINEL_VALUES,
    spike_ratio: Optional[float] = None,
    stride: int = PAIR_STRIDE,
) -> Tuple[DecodedSeries, DecodeStats]:
    """
    Decode one raw Keepa series.

    Args:
        raw_series: Flat [t0, v0, t1, v1, ...] array (may be None/malformed)
        kind: Series kind, drives scaling and validation
        sentinels: Raw values meaning "no observation"
        spike_ratio: If set (> 1), price points further than this ratio from
            the series median are rejected as spikes
        stride: Values per observation (3 for [t, price, shipping] series)

    Returns:
        (DecodedSeries, DecodeStats)
    """
    kind = parse_kind(kind)
    stats = DecodeStats(kind=kind.value)

    arr = raw_pairs(raw_series, stride)
    if arr is None:
        if raw_series is not None:
            logger.debug(f"{kind.value}: malformed raw series, treating as no data")
        return DecodedSeries({}, kind), stats

    stats.raw_count = int(arr.shape[0])
    times, raw_vals = arr[:, 0], arr[:, 1]

    keep = np.ones(stats.raw_count, dtype=bool)

    non_finite = ~(np.isfinite(times) & np.isfinite(raw_vals))
    _add_reasons(stats, "Invalid timestamp or value type", int(non_finite.sum()))
    keep &= ~non_finite

    with np.errstate(invalid="ignore"):
        negative_ts = keep & (times < 0)
    _add_reasons(stats, "Negative timestamp", int(negative_ts.sum()))
    keep &= ~negative_ts

    with np.errstate(invalid="ignore"):
        late_ts = keep & (times > MAX_KEEPA_MINUTES)
    _add_reasons(stats, "Timestamp out of range", int(late_ts.sum()))
    keep &= ~late_ts

    sentinel = keep & np.isin(raw_vals, list(sentinels))
    _add_reasons(stats, "Keepa placeholder (no data)", int(sentinel.sum()))
    keep &= ~sentinel

    scaled = scale_value(kind, raw_vals)
    with np.errstate(invalid="ignore"):
        if kind in PRICE_KINDS:
            in_range = (scaled > MIN_PRICE) & (scaled < MAX_PRICE)
        else:
            in_range = scaled >= 0
    out_of_range = keep & ~in_range
    for value in scaled[out_of_range]:
        _add_reasons(stats, f"Invalid {kind.value} value: {value:g}", 1)
    keep &= ~out_of_range

    if spike_ratio is not None and kind in PRICE_KINDS and keep.any():
        median = float(np.median(scaled[keep]))
        with np.errstate(invalid="ignore"):
            spike = keep & ((scaled > median * spike_ratio) | (scaled < median / spike_ratio))
        for value in scaled[spike]:
            _add_reasons(stats, f"Price spike: {value:g} vs median {median:g}", 1)
        keep &= ~spike

    points = {}
    for t, v in zip(times[keep].astype("int64"), scaled[keep]):
        points[int(t)] = float(v)

    stats.valid_count = int(keep.sum())
    stats.filtered_count = stats.raw_count - stats.valid_count

    if stats.filtered_count:
        logger.debug(
            f"{kind.value}: kept {stats.valid_count}/{stats.raw_count} points "
            f"({stats.filtered_count} filtered)"
        )
    return DecodedSeries(points, kind), stats


def decode_price_history(raw_series, sentinels: Iterable[int] = SENTINEL_VALUES) -> DecodedSeries:
    """Price-rule decode for offer histories (stats discarded)."""
    series, _ = decode_series(raw_series, SeriesKind.FBM, sentinels=sentinels)
    return series


def decode_many(raw_by_kind, sentinels: Iterable[int] = SENTINEL_VALUES,
                spike_ratio: Optional[float] = None):
    """Decode a {kind: raw_array} mapping. Returns ({kind: series}, {kind: stats})."""
    series, stats = {}, {}
    for kind, raw in raw_by_kind.items():
        kind = parse_kind(kind)
        series[kind], stats[kind] = decode_series(raw, kind, sentinels=sentinels, spike_ratio=spike_ratio)
    return series, stats

