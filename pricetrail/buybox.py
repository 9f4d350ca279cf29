"""
PriceTrail Buy Box Reconstructor
================================
Keepa's reported Buy Box series is unreliable: it can carry phantom or stale
listings that were indexed but never sellable, which show up as price spikes.
Instead of trusting it, we rebuild the Buy Box price from two corroborating
sources:

1. Who held the Buy Box at time T (buyBoxSellerIdHistory, last writer wins)
2. What that seller's own offer was priced at around T (offer price history)

A point is accepted only if BOTH resolve, so every accepted price is traceable
to a specific seller and offer observation.

Candidate timestamps are the union of the Amazon, FBA and FBM series: we only
reconstruct where there is real competitive price activity.

The funnel (candidates -> seller resolved -> seller has offers -> price match
-> accepted) is returned as BuyBoxValidationStats. It is the primary answer to
"why is the Buy Box sparse/empty for this product".
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from pricetrail.config import (
    DEFAULT_IDENTITY_TOLERANCE_MINUTES,
    DEFAULT_PRICE_TOLERANCE_MINUTES,
    MAX_EXAMPLES,
    REPORTED_DOLLAR_TOLERANCE,
    REPORTED_PERCENT_TOLERANCE,
    SeriesKind,
)
from pricetrail.models import (
    BuyBoxReconstruction,
    BuyBoxValidationStats,
    DecodedSeries,
    ReconstructedPoint,
    SellerIdentityEvent,
    SellerOffer,
)
from pricetrail.sellers import index_offers_by_seller
from pricetrail.time_utils import keepa_minutes_to_ms, ms_to_iso

logger = logging.getLogger(__name__)


class SellerTimeline:
    """Sorted seller-identity events with tolerance-aware holder lookup."""

    def __init__(self, events: Sequence[SellerIdentityEvent]):
        ordered = sorted(events, key=lambda e: e.timestamp)
        self._times = np.array([e.timestamp for e in ordered], dtype="int64")
        self._sellers = [e.seller_id for e in ordered]

    def __len__(self) -> int:
        return len(self._sellers)

    def holder_at(self, timestamp: int, tolerance_minutes: int) -> Optional[str]:
        """
        Seller holding the Buy Box at `timestamp`.

        The latest event at or before `timestamp` wins. If no event precedes
        it, an event up to `tolerance_minutes` later is accepted (the identity
        feed samples at a different rate than the price feeds).
        """
        if not self._sellers:
            return None
        pos = int(np.searchsorted(self._times, timestamp, side="right"))
        if pos > 0:
            return self._sellers[pos - 1]
        if int(self._times[0]) - timestamp <= tolerance_minutes:
            return self._sellers[0]
        return None


def _match_price(offers: Iterable[SellerOffer], timestamp: int,
                 tolerance_minutes: int) -> Optional[Tuple[float, int, SellerOffer]]:
    """
    Price at `timestamp` across a seller's offers: exact observation first,
    else the nearest within tolerance (earlier observation wins ties).
    """
    best = None
    best_gap = None
    for offer in offers:
        ts = offer.price_history.nearest(timestamp, tolerance_minutes)
        if ts is None:
            continue
        gap = abs(ts - timestamp)
        if best_gap is None or gap < best_gap or (gap == best_gap and ts < best[1]):
            best = (offer.price_history[ts], ts, offer)
            best_gap = gap
    return best


def _agrees(reported: float, reconstructed: float) -> bool:
    diff = abs(reported - reconstructed)
    return diff <= REPORTED_DOLLAR_TOLERANCE or diff / reconstructed <= REPORTED_PERCENT_TOLERANCE


class BuyBoxReconstructor:
    """
    Rebuilds a seller-attributed Buy Box price series.

    Args:
        identity_tolerance_minutes: Forward slack when no identity event
            precedes a candidate timestamp
        price_tolerance_minutes: Max distance between a candidate timestamp
            and the holder's nearest priced offer observation
    """

    def __init__(self,
                 identity_tolerance_minutes: int = DEFAULT_IDENTITY_TOLERANCE_MINUTES,
                 price_tolerance_minutes: int = DEFAULT_PRICE_TOLERANCE_MINUTES):
        if identity_tolerance_minutes < 0 or price_tolerance_minutes < 0:
            raise ValueError("Tolerance windows must be >= 0 minutes")
        self.identity_tolerance_minutes = identity_tolerance_minutes
        self.price_tolerance_minutes = price_tolerance_minutes

    @classmethod
    def from_settings(cls, settings) -> "BuyBoxReconstructor":
        return cls(settings.identity_tolerance_minutes, settings.price_tolerance_minutes)

    @staticmethod
    def candidate_timestamps(corroborating: Iterable[Optional[Mapping[int, float]]]) -> List[int]:
        stamps = set()
        for series in corroborating:
            if series:
                stamps.update(series.keys())
        return sorted(stamps)

    def reconstruct(
        self,
        amazon: Optional[Mapping[int, float]],
        fba: Optional[Mapping[int, float]],
        fbm: Optional[Mapping[int, float]],
        seller_events: Optional[Sequence[SellerIdentityEvent]],
        offers: Optional[Sequence[SellerOffer]],
        reported: Optional[Mapping[int, float]] = None,
    ) -> BuyBoxReconstruction:
        """
        Run the reconstruction.

        Args:
            amazon, fba, fbm: Decoded corroborating price series
            seller_events: Output of extract_seller_history()
            offers: Output of extract_seller_offers()
            reported: Keepa's own Buy Box series, compared for information only

        Returns:
            BuyBoxReconstruction(series, points, stats)
        """
        stats = BuyBoxValidationStats()
        points: List[ReconstructedPoint] = []
        prices: Dict[int, float] = {}

        timeline = SellerTimeline(seller_events or [])
        offers_by_seller = index_offers_by_seller(offers or [])

        # No identity or no offer data at all: empty result, funnel stays at zero
        if not len(timeline) or not offers_by_seller:
            missing = "seller identity history" if not len(timeline) else "seller offers"
            stats.rejected_examples.append({"timestamp": None, "seller_id": None,
                                            "reason": f"No {missing} available"})
            logger.debug(f"Buy Box: no {missing}, skipping reconstruction")
            return BuyBoxReconstruction(DecodedSeries({}, SeriesKind.BUY_BOX), points, stats)

        candidates = self.candidate_timestamps([amazon, fba, fbm])
        stats.total_candidate_timestamps = len(candidates)

        for ts in candidates:
            seller_id = timeline.holder_at(ts, self.identity_tolerance_minutes)
            if seller_id is None:
                self._reject(stats, ts, None, "No Buy Box holder resolvable")
                continue
            stats.seller_resolved += 1

            seller_offers = offers_by_seller.get(seller_id)
            if not seller_offers:
                self._reject(stats, ts, seller_id, "Buy Box holder has no offer data")
                continue
            stats.seller_offers_found += 1

            match = _match_price(seller_offers, ts, self.price_tolerance_minutes)
            if match is None:
                self._reject(
                    stats, ts, seller_id,
                    f"No offer price within ±{self.price_tolerance_minutes} minutes",
                )
                continue
            stats.price_matches += 1

            price, offer_ts, offer = match
            point = ReconstructedPoint(
                timestamp=ts,
                price=price,
                seller_id=seller_id,
                seller_name=offer.seller_name,
                offer_timestamp=offer_ts,
            )
            points.append(point)
            prices[ts] = price
            stats.final_valid_points += 1
            stats.seller_contributions[seller_id] = stats.seller_contributions.get(seller_id, 0) + 1

            if len(stats.accepted_examples) < MAX_EXAMPLES:
                stats.accepted_examples.append({
                    "timestamp": ms_to_iso(keepa_minutes_to_ms(ts)),
                    "seller_id": seller_id,
                    "seller_name": offer.seller_name,
                    "price": price,
                    "offer_offset_minutes": offer_ts - ts,
                })

            if reported is not None and ts in reported:
                stats.reported_compared += 1
                if _agrees(reported[ts], price):
                    stats.reported_agreements += 1

        logger.debug(
            f"Buy Box funnel: {stats.total_candidate_timestamps} candidates -> "
            f"{stats.seller_resolved} resolved -> {stats.seller_offers_found} with offers -> "
            f"{stats.final_valid_points} accepted"
        )
        return BuyBoxReconstruction(
            series=DecodedSeries(prices, SeriesKind.BUY_BOX),
            points=points,
            stats=stats,
        )

    @staticmethod
    def _reject(stats: BuyBoxValidationStats, ts: int, seller_id: Optional[str], reason: str) -> None:
        if len(stats.rejected_examples) < MAX_EXAMPLES:
            stats.rejected_examples.append({
                "timestamp": ms_to_iso(keepa_minutes_to_ms(ts)),
                "seller_id": seller_id,
                "reason": reason,
            })


def reconstruct_buy_box(amazon, fba, fbm, seller_events, offers, reported=None,
                        identity_tolerance_minutes: int = DEFAULT_IDENTITY_TOLERANCE_MINUTES,
                        price_tolerance_minutes: int = DEFAULT_PRICE_TOLERANCE_MINUTES) -> BuyBoxReconstruction:
    """Functional wrapper around BuyBoxReconstructor.reconstruct()."""
    reconstructor = BuyBoxReconstructor(identity_tolerance_minutes, price_tolerance_minutes)
    return reconstructor.reconstruct(amazon, fba, fbm, seller_events, offers, reported=reported)
