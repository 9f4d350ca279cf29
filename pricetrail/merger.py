"""
PriceTrail Series Merger
========================
Unions every decoded series (plus the reconstructed Buy Box) onto one sorted
timeline. One MergedRecord per distinct Keepa minute; each field is filled
only from an observation at exactly that minute.

No interpolation happens here. Gaps stay gaps (None); connecting them is a
rendering choice for the presentation layer, not manufactured data.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from pricetrail.config import FIELD_NAMES, SeriesKind, parse_kind
from pricetrail.models import (
    RECORD_FIELDS,
    AggregatedRecord,
    BuyBoxValidationStats,
    DecodeStats,
    MergedRecord,
    QualityReport,
    SeriesQuality,
)

logger = logging.getLogger(__name__)


def _none_if_nan(value) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)


def _series_frame(columns: Dict[str, Mapping[int, float]]) -> pd.DataFrame:
    """Outer-union of {field: {keepa_minute: value}} on a sorted int index."""
    parts = {
        name: pd.Series(dict(series), dtype=float)
        for name, series in columns.items()
        if series
    }
    if not parts:
        return pd.DataFrame(columns=list(RECORD_FIELDS), index=pd.Index([], dtype="int64"))
    frame = pd.concat(parts, axis=1, sort=True)
    frame.index = frame.index.astype("int64")
    return frame.reindex(columns=list(RECORD_FIELDS)).sort_index()


def merge_series(
    named_series: Mapping[Union[str, SeriesKind], Mapping[int, float]],
    buy_box: Optional[Mapping[int, float]] = None,
    buy_box_stats: Optional[BuyBoxValidationStats] = None,
    decode_stats: Optional[Mapping[Union[str, SeriesKind], DecodeStats]] = None,
) -> Tuple[List[MergedRecord], QualityReport]:
    """
    Merge decoded series onto the union of their timestamps.

    Args:
        named_series: {kind: DecodedSeries}. A BUY_BOX entry here is ignored
            when `buy_box` is given (the reconstructed series wins)
        buy_box: Reconstructed Buy Box series
        buy_box_stats: Passed through verbatim into the QualityReport
        decode_stats: {kind: DecodeStats}, used for raw/filtered counts

    Returns:
        (records sorted by strictly increasing timestamp, QualityReport)
    """
    columns: Dict[str, Mapping[int, float]] = {}
    for kind, series in named_series.items():
        kind = parse_kind(kind)
        if kind == SeriesKind.BUY_BOX and buy_box is not None:
            continue
        columns[FIELD_NAMES[kind]] = series or {}
    if buy_box is not None:
        columns[FIELD_NAMES[SeriesKind.BUY_BOX]] = buy_box

    frame = _series_frame(columns)

    records = [
        MergedRecord(
            timestamp_units=int(ts),
            **{name: _none_if_nan(row[name]) for name in RECORD_FIELDS},
        )
        for ts, row in zip(frame.index, frame.to_dict("records"))
    ]

    report = QualityReport(
        total_timestamps=len(records),
        buy_box=buy_box_stats if buy_box_stats is not None else BuyBoxValidationStats(),
    )
    stats_by_field = {
        FIELD_NAMES[parse_kind(kind)]: stats for kind, stats in (decode_stats or {}).items()
    }
    if buy_box is not None:
        # reported-series decode stats do not describe the reconstructed column
        stats_by_field.pop(FIELD_NAMES[SeriesKind.BUY_BOX], None)
    for name, series in columns.items():
        stats = stats_by_field.get(name)
        report.series[name] = SeriesQuality(
            raw_count=stats.raw_count if stats else len(series),
            valid_count=len(series),
            filtered_count=stats.filtered_count if stats else 0,
            merged_count=int(frame[name].notna().sum()) if name in frame else 0,
        )

    logger.debug(f"Merged {len(columns)} series into {len(records)} timestamps")
    return records, report


def records_to_frame(records: Sequence[Union[MergedRecord, AggregatedRecord]]) -> pd.DataFrame:
    """
    Tabular view for callers that work in pandas.

    Columns: timestamp (tz-aware UTC), timestamp_ms, then every record field;
    absent values are NaN.
    """
    if not records:
        return pd.DataFrame(columns=["timestamp", "timestamp_ms", *RECORD_FIELDS])
    ms = np.array([r.timestamp_ms for r in records], dtype="int64")
    frame = pd.DataFrame([r.values() for r in records], columns=list(RECORD_FIELDS), dtype=float)
    frame.insert(0, "timestamp_ms", ms)
    frame.insert(0, "timestamp", pd.to_datetime(ms, unit="ms", utc=True))
    if isinstance(records[0], AggregatedRecord):
        frame["record_count"] = [r.record_count for r in records]
    return frame
