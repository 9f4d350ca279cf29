"""
End-to-end tests for pricetrail.pipeline.reconcile_product()

Run with:
    pytest tests/test_pipeline.py -v
"""

import json
from datetime import datetime, timezone

import pandas as pd
import pytest

from pricetrail.config import ReconcileSettings, SeriesKind
from pricetrail.pipeline import (
    AVAILABILITY_NO_DATA,
    AVAILABILITY_NO_DATA_IN_RANGE,
    AVAILABILITY_OK,
    get_raw_series,
    reconcile_product,
    reconcile_products,
)

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


# ─── Helpers ─────────────────────────────────────────────────────────────────

def _make_product(series_by_index, asin="B000TEST01", history=None, offers=None, as_dict=False):
    if as_dict:
        csv = {str(i): raw for i, raw in series_by_index.items()}
    else:
        csv = [None] * (max(series_by_index) + 1 if series_by_index else 0)
        for index, raw in series_by_index.items():
            csv[index] = raw
    return {
        "asin": asin,
        "csv": csv,
        "buyBoxSellerIdHistory": history if history is not None else [0, 555],
        "offers": offers if offers is not None else [
            {"sellerId": "555", "sellerName": "Acme", "priceHistory": [0, 1950]},
        ],
    }


def _basic_product(**kwargs):
    return _make_product({0: [0, 2000], 10: [0, 1900]}, **kwargs)


# ─── 1. Full scenario ────────────────────────────────────────────────────────

class TestReconcileScenario:
    def test_single_point_merged_with_reconstructed_buy_box(self):
        result = reconcile_product(_basic_product())
        assert len(result.merged) == 1
        record = result.merged[0]
        assert record.timestamp_units == 0
        assert record.amazon_price == 20.0
        assert record.fba_price == 19.0
        assert record.buy_box_price == 19.5
        assert record.fbm_price is None
        assert result.buy_box.points[0].seller_id == "555"
        assert result.buy_box.points[0].seller_name == "Acme"
        assert result.availability == AVAILABILITY_OK

    def test_csv_as_string_keyed_dict(self):
        result = reconcile_product(_basic_product(as_dict=True))
        assert result.merged[0].buy_box_price == 19.5

    def test_legacy_chart_layout(self):
        product = _make_product({0: [0, 2000], 16: [0, 1900], 4: [0, 1234]})
        result = reconcile_product(product, ReconcileSettings(layout="legacy_chart"))
        record = result.merged[0]
        assert record.fba_price == 19.0
        assert record.sales_rank == 1234.0
        assert record.buy_box_price == 19.5

    def test_custom_layout_mapping(self):
        product = _make_product({2: [0, 2000]})
        result = reconcile_product(product, ReconcileSettings(layout={"amazon": 2}))
        assert result.merged[0].amazon_price == 20.0
        assert set(result.series) == {SeriesKind.AMAZON}

    def test_reported_only_timestamps_not_merged(self):
        product = _make_product({0: [0, 2000], 18: [500, 3000, 0, 0, 1960, 0]})
        result = reconcile_product(product)
        assert [r.timestamp_units for r in result.merged] == [0]
        assert result.merged[0].buy_box_price == 19.5
        assert result.quality.buy_box.reported_compared == 1
        assert result.quality.buy_box.reported_agreements == 1

    def test_quality_report_describes_reconstruction(self):
        product = _make_product({0: [0, 2000, 10, -1], 18: [0, 1960, 0, 5, 1960, 0]})
        quality = reconcile_product(product).quality
        assert quality.total_timestamps == 1
        assert quality.series["amazon_price"].raw_count == 2
        assert quality.series["amazon_price"].filtered_count == 1
        assert quality.series["buy_box_price"].valid_count == 1
        assert quality.series["buy_box_price"].raw_count == 1
        assert quality.buy_box.final_valid_points == 1

    def test_aggregation_and_window_applied(self):
        minutes_per_day = 24 * 60
        product = _make_product({0: [0, 1000, 60, 2000, 2 * minutes_per_day, 3000]})
        result = reconcile_product(product, granularity="daily")
        assert len(result.merged) == 3
        assert [r.amazon_price for r in result.records] == [15.0, 30.0]
        assert [r.record_count for r in result.records] == [2, 1]

    def test_spike_ratio_from_settings(self):
        product = _make_product({0: [0, 1000, 1, 1000, 2, 1000, 3, 90000]})
        result = reconcile_product(product, ReconcileSettings(spike_ratio=3))
        assert 3 not in [r.timestamp_units for r in result.merged]

    def test_to_dict_is_json_serializable(self):
        data = reconcile_product(_basic_product()).to_dict()
        assert data["availability"] == AVAILABILITY_OK
        assert data["buy_box_points"][0]["seller_id"] == "555"
        json.dumps(data)


# ─── 2. Shipping triples & timestamp bounds ──────────────────────────────────

class TestRawSeriesShapes:
    def test_fbm_shipping_triples_read_as_price_points(self):
        # csv[7] is [t, price, shipping, ...] in the current Keepa API
        fbm = []
        for t, cents in [(7_000_000, 1999), (7_000_600, 2099), (7_001_200, 2199), (7_001_800, 2299)]:
            fbm += [t, cents, 499]
        result = reconcile_product(_make_product({7: fbm}))
        points = [(r.timestamp_units, r.fbm_price) for r in result.merged]
        assert points == [
            (7_000_000, 19.99),
            (7_000_600, 20.99),
            (7_001_200, 21.99),
            (7_001_800, 22.99),
        ]
        assert result.decode_stats[SeriesKind.FBM].raw_count == 4

    def test_shipping_value_never_becomes_a_price(self):
        result = reconcile_product(_make_product({7: [100, 2500, 499]}))
        assert [(r.timestamp_units, r.fbm_price) for r in result.merged] == [(100, 25.0)]

    def test_pair_encoded_series_with_triple_stride_is_malformed(self):
        # four values cannot be whole [t, price, shipping] observations
        result = reconcile_product(_make_product({7: [0, 1000, 10, 1100]}))
        assert result.availability == AVAILABILITY_NO_DATA

    def test_custom_layout_stride(self):
        product = _make_product({2: [0, 2000, 0, 60, 2100, 0]})
        result = reconcile_product(product, ReconcileSettings(layout={"fbm": (2, 3)}))
        assert [r.fbm_price for r in result.merged] == [20.0, 21.0]

    def test_legacy_layout_reads_index_18_as_pairs(self):
        product = _make_product({0: [0, 2000], 18: [0, 1800]})
        result = reconcile_product(product, ReconcileSettings(layout="legacy_chart"))
        assert result.merged[0].fbm_price == 18.0

    def test_timestamp_beyond_datetime_range_filtered(self):
        result = reconcile_product({"csv": {0: [1e19, 2000, 5, 1000]}})
        assert [r.timestamp_units for r in result.merged] == [5]
        assert result.decode_stats[SeriesKind.AMAZON].filtered_count == 1
        assert result.to_dict()["records"][0]["amazon_price"] == 10.0

    def test_only_out_of_range_timestamps_is_no_data(self):
        result = reconcile_product({"csv": {0: [1e19, 2000]}})
        assert result.availability == AVAILABILITY_NO_DATA
        result.to_dict()


# ─── 3. Availability ─────────────────────────────────────────────────────────

class TestAvailability:
    @pytest.mark.parametrize("product", [None, {}, {"csv": None}, {"csv": [[0, -1, 5, -1]]}])
    def test_no_data(self, product):
        result = reconcile_product(product)
        assert result.availability == AVAILABILITY_NO_DATA
        assert result.records == []
        assert result.quality.has_data is False

    def test_no_data_in_range(self):
        result = reconcile_product(_basic_product(), window="1d", now=NOW)
        assert result.merged
        assert result.availability == AVAILABILITY_NO_DATA_IN_RANGE

    def test_missing_seller_data_still_merges_prices(self):
        product = _basic_product(history=[], offers=[])
        result = reconcile_product(product)
        assert result.availability == AVAILABILITY_OK
        assert result.merged[0].buy_box_price is None
        assert result.quality.buy_box.total_candidate_timestamps == 0


# ─── 4. Caller errors ────────────────────────────────────────────────────────

class TestCallerErrors:
    def test_invalid_granularity_raises_before_data_work(self):
        with pytest.raises(ValueError):
            reconcile_product(None, granularity="hourly")

    def test_invalid_window_raises(self):
        with pytest.raises(ValueError):
            reconcile_product(_basic_product(), window="5y")

    def test_bad_layout_name_raises(self):
        with pytest.raises(ValueError):
            ReconcileSettings(layout="unknown")


# ─── 5. Batch / helpers ──────────────────────────────────────────────────────

class TestBatch:
    def test_reconcile_products_returns_long_frame(self):
        products = [
            _basic_product(asin="B000000001"),
            None,
            _make_product({0: [0, 1000, 60, 1100]}, asin="B000000002"),
        ]
        df = reconcile_products(products)
        assert isinstance(df, pd.DataFrame)
        assert list(df["asin"]) == ["B000000001", "B000000002", "B000000002"]
        assert df.columns[0] == "asin"

    def test_reconcile_products_empty(self):
        assert reconcile_products([None, {}]).empty

    def test_get_raw_series_variants(self):
        assert get_raw_series([[1, 2]], 0) == [1, 2]
        assert get_raw_series([[1, 2]], 5) is None
        assert get_raw_series({3: [1, 2]}, 3) == [1, 2]
        assert get_raw_series({"3": [1, 2]}, 3) == [1, 2]
        assert get_raw_series(None, 0) is None
        assert get_raw_series("junk", 0) is None
