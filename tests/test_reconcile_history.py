"""
Tests for the pipelines/reconcile_history.py job

Run with:
    pytest tests/test_reconcile_history.py -v
"""

import json

import pandas as pd
import pytest

from pipelines.reconcile_history import load_products, parse_window, run

PRODUCT = {
    "asin": "B000TEST01",
    "csv": [[0, 2000], None, None, [0, 4200], None, None, None, None, None, None, [0, 1900]],
    "buyBoxSellerIdHistory": [0, 555],
    "offers": [{"sellerId": "555", "priceHistory": [0, 1950]}],
    "monthlySold": 300,
}


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("PRICETRAIL_IDENTITY_TOLERANCE_MINUTES", "PRICETRAIL_PRICE_TOLERANCE_MINUTES",
                 "PRICETRAIL_SERIES_LAYOUT", "PRICETRAIL_SPIKE_RATIO"):
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path, name, payload):
    path = tmp_path / name
    path.write_text(json.dumps(payload))
    return path


class TestLoadProducts:
    @pytest.mark.parametrize("payload", [PRODUCT, [PRODUCT], {"products": [PRODUCT]}])
    def test_accepted_shapes(self, tmp_path, payload):
        products = load_products(_write(tmp_path, "p.json", payload))
        assert [p["asin"] for p in products] == ["B000TEST01"]

    def test_scalar_payload_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            load_products(_write(tmp_path, "p.json", 42))


class TestRun:
    def test_writes_csv(self, tmp_path):
        out = tmp_path / "out.csv"
        ok = run([str(_write(tmp_path, "p.json", PRODUCT))], "raw", "all", None, str(out))
        assert ok is True
        df = pd.read_csv(out)
        assert list(df["asin"]) == ["B000TEST01"]
        assert df.loc[0, "buy_box_price"] == 19.5
        assert df.loc[0, "sales_rank"] == 4200

    def test_writes_json_with_quality(self, tmp_path):
        out = tmp_path / "out.json"
        run([str(_write(tmp_path, "p.json", PRODUCT))], "daily", "all", "keepa", str(out))
        data = json.loads(out.read_text())
        assert data[0]["availability"] == "ok"
        assert data[0]["records"][0]["record_count"] == 1
        assert data[0]["quality"]["buy_box"]["final_valid_points"] == 1

    def test_quality_flag_prints_sales_estimate(self, tmp_path, capsys):
        run([str(_write(tmp_path, "p.json", PRODUCT))], "raw", "all", None, None, show_quality=True)
        printed = capsys.readouterr().out
        assert '"amazon_monthly_sold"' in printed

    def test_unreadable_input_reported_as_failure(self, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text("{not json")
        assert run([str(bad)], "raw", "all", None, str(tmp_path / "out.csv")) is False

    def test_parse_window(self):
        assert parse_window("14") == 14
        assert parse_window("3m") == "3m"
