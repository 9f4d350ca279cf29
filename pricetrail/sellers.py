"""
PriceTrail Seller History Extractor
===================================
Normalizes the two seller-side inputs the Buy Box reconstruction needs:

- buyBoxSellerIdHistory: flat [keepa_minutes, seller_id, ...] telling who held
  the Buy Box from each timestamp on (last writer wins)
- offers: per-seller offer records, each with its own flat price history

Seller ids are normalized to strings so the identity feed (numeric ids or
merchant tokens such as ATVPDKIKX0DER) and offer records compare exactly.
Absent or malformed inputs yield empty results, never exceptions.
"""

from __future__ import annotations

import logging
import math
import numbers
from typing import Any, Dict, Iterable, List, Optional

from pricetrail.config import SENTINEL_VALUES
from pricetrail.decoder import decode_price_history
from pricetrail.models import SellerIdentityEvent, SellerOffer
from pricetrail.time_utils import MAX_KEEPA_MINUTES

logger = logging.getLogger(__name__)

PRICE_HISTORY_KEYS = ("priceHistory", "price_history", "offerCSV")
SELLER_ID_KEYS = ("sellerId", "seller_id")
SELLER_NAME_KEYS = ("sellerName", "seller_name", "seller")
PRIME_KEYS = ("isPrime", "prime", "is_prime")


def normalize_seller_id(value: Any) -> Optional[str]:
    """
    Returns a canonical seller id string, or None if the value is unusable.

    Numeric ids must be positive integers (sentinel, zero and negatives are
    rejected); non-numeric strings must be non-empty alphanumeric tokens.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Integral):
        return str(int(value)) if value > 0 else None
    if isinstance(value, numbers.Real):
        if not math.isfinite(value) or value != int(value) or value <= 0:
            return None
        return str(int(value))
    if isinstance(value, str):
        token = value.strip()
        if not token:
            return None
        try:
            number = int(token)
        except ValueError:
            return token if token.isalnum() else None
        return str(number) if number > 0 else None
    return None


def _first(source: Dict[str, Any], keys: Iterable[str], default=None):
    for key in keys:
        if key in source and source[key] is not None:
            return source[key]
    return default


# =============================================================================
# SELLER IDENTITY HISTORY
# =============================================================================

def extract_seller_history(raw_series) -> List[SellerIdentityEvent]:
    """
    Decode buyBoxSellerIdHistory into SellerIdentityEvents sorted by timestamp.

    Pairs with a non-numeric or out-of-range timestamp, or an unusable seller
    id, are dropped. Duplicate timestamps keep the last event.
    """
    if raw_series is None or isinstance(raw_series, (str, bytes, dict)):
        return []
    try:
        items = list(raw_series)
    except TypeError:
        return []
    if len(items) < 2 or len(items) % 2 != 0:
        logger.debug(f"Seller history malformed (length {len(items)}), ignoring")
        return []

    by_time: Dict[int, str] = {}
    dropped = 0
    for ts, raw_id in zip(items[0::2], items[1::2]):
        if isinstance(ts, bool) or not isinstance(ts, numbers.Real) or not math.isfinite(ts):
            dropped += 1
            continue
        if not 0 <= ts <= MAX_KEEPA_MINUTES:
            dropped += 1
            continue
        if raw_id in SENTINEL_VALUES:
            dropped += 1
            continue
        seller_id = normalize_seller_id(raw_id)
        if seller_id is None:
            dropped += 1
            continue
        by_time[int(ts)] = seller_id

    if dropped:
        logger.debug(f"Seller history: dropped {dropped} of {len(items) // 2} events")

    return [SellerIdentityEvent(ts, sid) for ts, sid in sorted(by_time.items())]


# =============================================================================
# SELLER OFFERS
# =============================================================================

def _offer_from_dict(raw: Dict[str, Any]) -> Optional[SellerOffer]:
    seller_id = normalize_seller_id(_first(raw, SELLER_ID_KEYS))
    if seller_id is None:
        return None
    name = _first(raw, SELLER_NAME_KEYS)
    return SellerOffer(
        seller_id=seller_id,
        seller_name=str(name) if name is not None else None,
        price_history=decode_price_history(_first(raw, PRICE_HISTORY_KEYS)),
        condition=raw.get("condition"),
        is_prime=bool(_first(raw, PRIME_KEYS, False)),
    )


def extract_seller_offers(offer_list) -> List[SellerOffer]:
    """
    Decode an offers list into SellerOffers.

    Offers without a usable seller id are skipped. An offer whose price
    history is absent or malformed is kept with an empty history, so the
    Buy Box funnel can still report "seller found, no price".
    """
    if not offer_list or isinstance(offer_list, (str, bytes, dict)):
        return []
    try:
        candidates = list(offer_list)
    except TypeError:
        return []

    offers: List[SellerOffer] = []
    skipped = 0
    for raw in candidates:
        if isinstance(raw, SellerOffer):
            offers.append(raw)
            continue
        if not isinstance(raw, dict):
            skipped += 1
            continue
        offer = _offer_from_dict(raw)
        if offer is None:
            skipped += 1
            continue
        offers.append(offer)

    if skipped:
        logger.debug(f"Offers: skipped {skipped} of {len(candidates)} without a usable seller id")
    return offers


def index_offers_by_seller(offers: Iterable[SellerOffer]) -> Dict[str, List[SellerOffer]]:
    """Groups offers by exact seller id (a seller may list several conditions)."""
    index: Dict[str, List[SellerOffer]] = {}
    for offer in offers:
        index.setdefault(offer.seller_id, []).append(offer)
    return index
