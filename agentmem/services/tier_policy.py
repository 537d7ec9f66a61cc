"""
Subscription tier policy: retention windows and capacity quotas.

Tiers are plain data; adding a tier is an edit to TIER_LIMITS.
"""

from datetime import datetime, timedelta
from typing import Optional

from ..models.core import TierLimits

TIER_LIMITS = {
    'STANDARD': TierLimits(retention_days=30, max_entities=100, max_documents_mb=500, max_events_per_month=5000),
    'PRO': TierLimits(retention_days=None, max_entities=None, max_documents_mb=10240, max_events_per_month=100000),
}


def limits_for(tier: str) -> TierLimits:
    """Return the limits for a tier.

    Raises:
        ValueError: If the tier is unknown
    """
    try:
        return TIER_LIMITS[tier]
    except KeyError:
        raise ValueError(f'Unknown memory tier: {tier}')


def expiry_for(tier: str, now: datetime) -> Optional[datetime]:
    """Return when an event written at `now` expires, or None if it never does."""
    retention_days = limits_for(tier).retention_days
    if not retention_days:
        return None
    return now + timedelta(days=retention_days)
