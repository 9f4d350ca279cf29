"""
PriceTrail Aggregator
=====================
Downsamples the merged timeline into fixed-width buckets.

    raw      -> identity
    daily    -> 1 day
    weekly   -> 7 days
    monthly  -> 30 days

Buckets are fixed-width from the Unix epoch (bucket = floor(ms / width) * width),
NOT calendar aligned. "monthly" therefore drifts against calendar months over
long ranges, and "weekly" buckets start on Thursdays (1970-01-01 was one).

Reducers:
    mean -> prices, rating, offer count (continuous quantities)
    last -> sales rank, review count (running state, last non-missing value)

Buckets without input records are never emitted.
"""

from __future__ import annotations

from typing import List, Sequence, Union

import pandas as pd

from pricetrail.config import DAY_MS, GRANULARITY_DAYS, validate_granularity
from pricetrail.models import RECORD_FIELDS, AggregatedRecord, MergedRecord

MEAN_FIELDS = ("amazon_price", "fba_price", "fbm_price", "buy_box_price", "rating", "offer_count")
LAST_FIELDS = ("sales_rank", "review_count")

REDUCERS = {**{f: "mean" for f in MEAN_FIELDS}, **{f: "last" for f in LAST_FIELDS}}


def bucket_width_ms(granularity: str) -> int:
    days = GRANULARITY_DAYS[validate_granularity(granularity)]
    if days is None:
        raise ValueError("raw granularity has no bucket width")
    return days * DAY_MS


def bucket_start(timestamp_ms: int, width_ms: int) -> int:
    return (timestamp_ms // width_ms) * width_ms


def aggregate(
    records: Sequence[MergedRecord],
    granularity: str = "raw",
) -> Union[List[MergedRecord], List[AggregatedRecord]]:
    """
    Bucket and reduce a chronologically sorted list of MergedRecords.

    Raises:
        ValueError: unknown granularity (caller bug, not a data problem)
    """
    validate_granularity(granularity)
    if granularity == "raw":
        return list(records)
    if not records:
        return []

    width = bucket_width_ms(granularity)
    df = pd.DataFrame(
        [r.values() for r in records],
        columns=list(RECORD_FIELDS),
        dtype=float,
    )
    df["timestamp_ms"] = [r.timestamp_ms for r in records]
    # stable sort keeps "last" honest if a caller hands us unsorted input
    df = df.sort_values("timestamp_ms", kind="mergesort")
    df["bucket"] = (df["timestamp_ms"] // width) * width

    grouped = df.groupby("bucket", sort=True)
    reduced = grouped.agg(REDUCERS)
    counts = grouped.size()

    out = []
    for bucket, row in reduced.iterrows():
        values = {name: (None if pd.isna(row[name]) else float(row[name])) for name in RECORD_FIELDS}
        out.append(AggregatedRecord(
            bucket_start_ms=int(bucket),
            record_count=int(counts.loc[bucket]),
            **values,
        ))
    return out
