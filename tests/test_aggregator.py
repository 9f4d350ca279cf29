"""
Unit tests for pricetrail.aggregator.aggregate()

Run with:
    pytest tests/test_aggregator.py -v
"""

import pytest

from pricetrail.aggregator import aggregate, bucket_start, bucket_width_ms
from pricetrail.config import DAY_MS
from pricetrail.models import AggregatedRecord, MergedRecord

MINUTES_PER_DAY = 24 * 60


def _make_records():
    # three readings on day 0, one on day 1, one on day 9
    return [
        MergedRecord(0, amazon_price=10.0, sales_rank=500.0, review_count=10.0),
        MergedRecord(60, amazon_price=12.0, sales_rank=300.0),
        MergedRecord(120, amazon_price=14.0, sales_rank=700.0, offer_count=3.0),
        MergedRecord(MINUTES_PER_DAY + 5, fba_price=9.0, rating=4.5),
        MergedRecord(9 * MINUTES_PER_DAY, fbm_price=8.0, offer_count=1.0),
    ]


class TestRawGranularity:
    def test_raw_is_identity(self):
        records = _make_records()
        out = aggregate(records, "raw")
        assert out == records
        assert out is not records

    def test_default_is_raw(self):
        records = _make_records()
        assert aggregate(records) == records


class TestReducers:
    def test_prices_are_averaged(self):
        out = aggregate(_make_records(), "daily")
        assert out[0].amazon_price == pytest.approx(12.0)

    def test_sales_rank_takes_last_not_mean(self):
        out = aggregate(_make_records(), "daily")
        assert out[0].sales_rank == 700.0

    def test_last_skips_missing_values(self):
        records = [
            MergedRecord(0, review_count=10.0),
            MergedRecord(30, review_count=12.0),
            MergedRecord(60, amazon_price=5.0),
        ]
        out = aggregate(records, "daily")
        assert out[0].review_count == 12.0

    def test_field_absent_in_bucket_stays_none(self):
        out = aggregate(_make_records(), "daily")
        assert out[0].fba_price is None
        assert out[0].rating is None
        assert out[1].amazon_price is None
        assert out[1].rating == 4.5

    def test_unsorted_input_uses_chronological_last(self):
        records = list(reversed(_make_records()[:3]))
        out = aggregate(records, "daily")
        assert out[0].sales_rank == 700.0


class TestBuckets:
    def test_no_empty_buckets_emitted(self):
        out = aggregate(_make_records(), "daily")
        assert len(out) == 3
        assert all(r.record_count >= 1 for r in out)

    def test_record_counts_cover_every_input(self):
        records = _make_records()
        for granularity in ("daily", "weekly", "monthly"):
            out = aggregate(records, granularity)
            assert sum(r.record_count for r in out) == len(records)

    @pytest.mark.parametrize("granularity", ["daily", "weekly", "monthly"])
    def test_every_input_falls_in_its_bucket(self, granularity):
        width = bucket_width_ms(granularity)
        records = _make_records()
        starts = {r.bucket_start_ms for r in aggregate(records, granularity)}
        for record in records:
            start = bucket_start(record.timestamp_ms, width)
            assert start in starts
            assert start <= record.timestamp_ms < start + width

    def test_buckets_ascending(self):
        out = aggregate(_make_records(), "daily")
        starts = [r.bucket_start_ms for r in out]
        assert starts == sorted(starts)

    def test_weekly_groups_nearby_days(self):
        out = aggregate(_make_records()[:4], "weekly")
        assert len(out) == 1
        assert out[0].record_count == 4
        assert isinstance(out[0], AggregatedRecord)

    def test_bucket_widths(self):
        assert bucket_width_ms("daily") == DAY_MS
        assert bucket_width_ms("weekly") == 7 * DAY_MS
        assert bucket_width_ms("monthly") == 30 * DAY_MS

    def test_bucket_start_is_epoch_aligned(self):
        assert bucket_start(DAY_MS + 5, DAY_MS) == DAY_MS
        assert bucket_start(DAY_MS - 1, DAY_MS) == 0


class TestErrors:
    @pytest.mark.parametrize("granularity", ["hourly", "", "Daily", None])
    def test_unknown_granularity_raises(self, granularity):
        with pytest.raises(ValueError):
            aggregate(_make_records(), granularity)

    def test_unknown_granularity_raises_on_empty_input(self):
        with pytest.raises(ValueError):
            aggregate([], "yearly")

    def test_empty_input(self):
        assert aggregate([], "daily") == []

    def test_raw_has_no_bucket_width(self):
        with pytest.raises(ValueError):
            bucket_width_ms("raw")
