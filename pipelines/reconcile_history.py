"""
PriceTrail History Reconciliation Job
=====================================
Reconciles saved Keepa /product responses into a clean price & sales history.

This job:
1. Loads one or more JSON files (a single product, a list of products, or a
   raw Keepa response with a "products" array)
2. Runs every product through pricetrail.pipeline
3. Writes the filtered records to CSV or JSON (by output extension)
4. Optionally prints the data quality report and a monthly sales estimate per product

Usage:
    python pipelines/reconcile_history.py product.json --granularity daily --range 3m -o out.csv
"""

import json
import logging
import sys
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

# Setup path for imports
ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT))

from pricetrail.config import GRANULARITY_DAYS, RANGE_WINDOWS, SERIES_LAYOUTS, ReconcileSettings
from pricetrail.estimators import estimate_monthly_sales
from pricetrail.pipeline import AVAILABILITY_NO_DATA, AVAILABILITY_NO_DATA_IN_RANGE, reconcile_product

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def load_products(path: Path) -> List[Dict[str, Any]]:
    """Accepts a product dict, a list of products, or {"products": [...]}."""
    with open(path, encoding="utf-8") as fh:
        payload = json.load(fh)
    if isinstance(payload, dict) and isinstance(payload.get("products"), list):
        return [p for p in payload["products"] if isinstance(p, dict)]
    if isinstance(payload, list):
        return [p for p in payload if isinstance(p, dict)]
    if isinstance(payload, dict):
        return [payload]
    raise ValueError(f"{path}: expected a product object or list of products")


def parse_window(value: str):
    return int(value) if value.isdigit() else value


def run(paths: List[str], granularity: str, window, layout: str,
        output: str = None, show_quality: bool = False) -> bool:
    settings = ReconcileSettings.from_env()
    if layout:
        settings = replace(settings, layout=layout)

    frames = []
    results = []
    success = True
    for raw_path in paths:
        path = Path(raw_path)
        try:
            products = load_products(path)
        except (OSError, ValueError) as e:
            logger.exception(f"❌ Failed to load {path}: {e}")
            success = False
            continue

        logger.info(f"📦 {path.name}: {len(products)} product(s)")
        for product in products:
            result = reconcile_product(product, settings, granularity, window)
            results.append(result)
            if result.availability == AVAILABILITY_NO_DATA:
                logger.warning(f"⚠️ {result.asin}: no historical data available at all")
            elif result.availability == AVAILABILITY_NO_DATA_IN_RANGE:
                logger.warning(f"⚠️ {result.asin}: no data in the selected range ({window})")
            else:
                frames.append(result.to_frame())
            if show_quality:
                estimate = estimate_monthly_sales(product, result.merged)
                print(json.dumps({
                    "asin": result.asin,
                    "quality": result.quality.to_dict(),
                    "monthly_sales": asdict(estimate),
                }, indent=2))

    if output:
        out_path = Path(output)
        if out_path.suffix.lower() == ".json":
            with open(out_path, "w", encoding="utf-8") as fh:
                json.dump([r.to_dict() for r in results], fh, indent=2)
        else:
            df = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()
            df.to_csv(out_path, index=False)
        logger.info(f"💾 Wrote {out_path}")
    elif frames:
        print(pd.concat(frames, ignore_index=True).to_string(index=False))

    return success


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Reconcile Keepa product history into a clean timeline")
    parser.add_argument("inputs", nargs="+", help="Keepa product JSON file(s)")
    parser.add_argument("--granularity", choices=list(GRANULARITY_DAYS), default="raw")
    parser.add_argument("--range", dest="window", default="all",
                        help=f"One of {list(RANGE_WINDOWS)} or a number of days")
    parser.add_argument("--layout", choices=sorted(SERIES_LAYOUTS), default=None,
                        help="csv index layout (default from PRICETRAIL_SERIES_LAYOUT or 'keepa')")
    parser.add_argument("-o", "--output", help="Output file (.csv or .json)")
    parser.add_argument("--quality", action="store_true", help="Print the data quality report")

    args = parser.parse_args()

    try:
        ok = run(args.inputs, args.granularity, parse_window(args.window), args.layout,
                 args.output, args.quality)
    except ValueError as e:
        parser.error(str(e))

    sys.exit(0 if ok else 1)
