"""
PriceTrail
==========
Reconciles a Keepa product feed into one consistent price / sales history.

This package contains:
- decoder: raw Keepa csv series -> typed, validated series
- sellers: Buy Box seller-identity history and per-seller offers
- buybox: seller-corroborated Buy Box price reconstruction
- merger: union of all series onto one timeline + quality report
- aggregator / range_filter: downsampling and trailing windows
- pipeline: one call from Keepa product JSON to filtered records
- estimators: best-effort monthly sales (outside the engine)
"""

from pricetrail.config import (
    SeriesKind,
    ReconcileSettings,
    KEEPA_LAYOUT,
    LEGACY_CHART_LAYOUT,
    SERIES_LAYOUTS,
    GRANULARITY_DAYS,
    RANGE_WINDOWS,
)
from pricetrail.models import (
    DecodedSeries,
    DecodeStats,
    SellerIdentityEvent,
    SellerOffer,
    ReconstructedPoint,
    BuyBoxValidationStats,
    BuyBoxReconstruction,
    MergedRecord,
    AggregatedRecord,
    QualityReport,
    SeriesQuality,
)
from pricetrail.decoder import decode_series
from pricetrail.sellers import extract_seller_history, extract_seller_offers
from pricetrail.buybox import BuyBoxReconstructor, reconstruct_buy_box
from pricetrail.merger import merge_series, records_to_frame
from pricetrail.aggregator import aggregate
from pricetrail.range_filter import filter_range
from pricetrail.pipeline import ReconciliationResult, reconcile_product, reconcile_products
from pricetrail.estimators import SalesEstimate, estimate_monthly_sales

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "SeriesKind",
    "ReconcileSettings",
    "KEEPA_LAYOUT",
    "LEGACY_CHART_LAYOUT",
    "SERIES_LAYOUTS",
    "GRANULARITY_DAYS",
    "RANGE_WINDOWS",

    # Models
    "DecodedSeries",
    "DecodeStats",
    "SellerIdentityEvent",
    "SellerOffer",
    "ReconstructedPoint",
    "BuyBoxValidationStats",
    "BuyBoxReconstruction",
    "MergedRecord",
    "AggregatedRecord",
    "QualityReport",
    "SeriesQuality",

    # Engine stages
    "decode_series",
    "extract_seller_history",
    "extract_seller_offers",
    "BuyBoxReconstructor",
    "reconstruct_buy_box",
    "merge_series",
    "records_to_frame",
    "aggregate",
    "filter_range",

    # Pipeline
    "ReconciliationResult",
    "reconcile_product",
    "reconcile_products",

    # Best-effort estimator
    "SalesEstimate",
    "estimate_monthly_sales",
]
