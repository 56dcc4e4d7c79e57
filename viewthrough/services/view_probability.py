"""View probability estimator.

WHAT:
    Estimates, for one converted order, the probability that the buyer saw
    (but never clicked) each ad platform's ads before purchasing.

WHY:
    Platforms show far more ads than get clicked. Impressions, reach,
    frequency and recency are the only signals we have for those views, so
    the credit is modeled rather than observed.

MODEL (per platform, per campaign inside the lookback window):
    time_decay          = exp(-days_since_impression / decay_constant_days)
    avg_frequency       = Σ impressions / max(campaign_max_reach, 1)
    frequency_factor    = min(avg_frequency / frequency_saturation, 1.0)
    reach_factor        = campaign_max_reach / max(global_max_reach, 1)
    avg_time_decay      = Σ (impressions × time_decay) / Σ impressions
    probability         = min(max_view_probability,
                              frequency_factor × reach_factor × avg_time_decay × base_rate)

    The best campaign per platform wins; platforms at or below
    `min_probability` are dropped, as are platforms the visitor clicked.

This module is pure: no database access, no clock reads.

REFERENCES:
    - viewthrough/services/revenue_allocator.py (consumes the estimates)
    - viewthrough/services/event_store.py (builds the inputs)
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Set


DEFAULT_BASE_RATES: Dict[str, float] = {
    "meta": 0.15,
    "tiktok": 0.10,
    "google": 0.08,
    "newsbreak": 0.05,
}


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class ViewThroughConfig:
    """Model parameters, injected into every computation."""

    base_rates: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_BASE_RATES))
    default_base_rate: float = 0.05
    max_view_probability: float = 0.30
    max_view_credit_share: float = 0.30
    decay_constant_days: float = 14.0
    lookback_days: int = 30
    frequency_saturation: float = 10.0
    min_probability: float = 0.001
    model_version: str = "v1"
    batch_size: int = 500

    def base_rate_for(self, provider: str) -> float:
        return self.base_rates.get(provider, self.default_base_rate)

    @classmethod
    def from_settings(cls, settings) -> "ViewThroughConfig":
        """Build the config from `viewthrough.deps.Settings`."""
        return cls(
            base_rates=dict(settings.VIEW_THROUGH_BASE_RATES),
            default_base_rate=settings.VIEW_THROUGH_DEFAULT_BASE_RATE,
            max_view_probability=settings.VIEW_THROUGH_MAX_PROBABILITY,
            max_view_credit_share=settings.VIEW_THROUGH_MAX_CREDIT_SHARE,
            decay_constant_days=settings.VIEW_THROUGH_DECAY_DAYS,
            lookback_days=settings.VIEW_THROUGH_LOOKBACK_DAYS,
            model_version=settings.VIEW_THROUGH_MODEL_VERSION,
            batch_size=settings.VIEW_THROUGH_BATCH_SIZE,
        )


@dataclass(frozen=True)
class ConvertedOrder:
    """A completed purchase (first checkout_completed event per order id)."""

    order_id: str
    visitor_id: str
    revenue: float
    converted_at: datetime


@dataclass(frozen=True)
class ImpressionRecord:
    """Impressions for one platform/campaign/day, reach floored at 1."""

    provider: str
    campaign_id: str
    impression_date: date
    impressions: int
    reach: int


@dataclass(frozen=True)
class ViewEstimate:
    """Winning campaign and its view probability for one platform."""

    provider: str
    campaign_id: str
    probability: float


# =============================================================================
# GROUPING
# =============================================================================

def group_impressions_by_provider(
    records: Iterable[ImpressionRecord],
) -> Dict[str, List[ImpressionRecord]]:
    """Group impression records by provider, providers in lexicographic order.

    Records keep their (campaign_id, impression_date) order inside a provider.
    """
    grouped: Dict[str, List[ImpressionRecord]] = defaultdict(list)
    for record in records:
        grouped[record.provider].append(record)

    return {
        provider: sorted(grouped[provider], key=lambda r: (r.campaign_id, r.impression_date))
        for provider in sorted(grouped)
    }


# =============================================================================
# PROBABILITY
# =============================================================================

def _impression_datetime(impression_date: date) -> datetime:
    return datetime.combine(impression_date, time.min)


def campaign_view_probability(
    records: List[ImpressionRecord],
    provider: str,
    converted_at: datetime,
    global_max_reach: int,
    config: ViewThroughConfig,
) -> float:
    """Probability that one campaign's impressions drove a view-through.

    `records` must already be restricted to the lookback window.
    Returns 0.0 when the campaign has no impressions.
    """
    total_impressions = 0
    weighted_decay = 0.0
    campaign_max_reach = 0

    for record in records:
        days_since = (converted_at - _impression_datetime(record.impression_date)).total_seconds() / 86400
        time_decay = math.exp(-days_since / config.decay_constant_days)

        total_impressions += record.impressions
        weighted_decay += record.impressions * time_decay
        campaign_max_reach = max(campaign_max_reach, record.reach)

    if total_impressions <= 0:
        return 0.0

    avg_frequency = total_impressions / max(campaign_max_reach, 1)
    frequency_factor = min(avg_frequency / config.frequency_saturation, 1.0)
    reach_factor = campaign_max_reach / max(global_max_reach, 1)
    avg_time_decay = weighted_decay / total_impressions
    base_rate = config.base_rate_for(provider)

    return min(
        config.max_view_probability,
        frequency_factor * reach_factor * avg_time_decay * base_rate,
    )


def estimate_view_probabilities(
    order: ConvertedOrder,
    impressions_by_provider: Mapping[str, List[ImpressionRecord]],
    clicked_providers: Optional[Set[str]],
    global_max_reach: int,
    config: ViewThroughConfig,
) -> List[ViewEstimate]:
    """Best view estimate per eligible platform for one order.

    Args:
        order: The converted order
        impressions_by_provider: Tenant impressions, see `group_impressions_by_provider`
        clicked_providers: Platforms the visitor clicked (never eligible)
        global_max_reach: Max reach across all platforms in the loaded window
        config: Model parameters

    Returns:
        Estimates in lexicographic provider order. Empty when revenue <= 0.
    """
    if order.revenue <= 0:
        return []

    clicked = clicked_providers or set()
    window_start = order.converted_at - timedelta(days=config.lookback_days)
    estimates: List[ViewEstimate] = []

    for provider in sorted(impressions_by_provider):
        if provider in clicked:
            continue

        by_campaign: Dict[str, List[ImpressionRecord]] = defaultdict(list)
        for record in impressions_by_provider[provider]:
            seen_at = _impression_datetime(record.impression_date)
            if window_start <= seen_at <= order.converted_at:
                by_campaign[record.campaign_id].append(record)

        best_probability = 0.0
        best_campaign: Optional[str] = None
        for campaign_id in sorted(by_campaign):
            probability = campaign_view_probability(
                by_campaign[campaign_id],
                provider,
                order.converted_at,
                global_max_reach,
                config,
            )
            # Strictly greater: ties keep the lexicographically first campaign
            if probability > best_probability:
                best_probability = probability
                best_campaign = campaign_id

        if best_campaign is not None and best_probability > config.min_probability:
            estimates.append(ViewEstimate(
                provider=provider,
                campaign_id=best_campaign,
                probability=best_probability,
            ))

    return estimates
