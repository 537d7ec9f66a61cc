from datetime import datetime, timedelta, timezone

import pytest

from agentmem.services.tier_policy import TIER_LIMITS, expiry_for, limits_for


class TestTierPolicy:

    def test_standard_limits(self):
        limits = limits_for('STANDARD')
        assert limits.retention_days == 30
        assert limits.max_entities == 100
        assert limits.max_documents_mb == 500
        assert limits.max_events_per_month == 5000

    def test_pro_limits_are_unbounded_where_documented(self):
        limits = limits_for('PRO')
        assert limits.retention_days is None
        assert limits.max_entities is None
        assert limits.max_documents_mb == 10240
        assert limits.max_events_per_month == 100000

    def test_unknown_tier_raises(self):
        with pytest.raises(ValueError):
            limits_for('ENTERPRISE')

    def test_expiry_adds_retention_days(self):
        now = datetime(2025, 1, 31, 23, 30, tzinfo=timezone.utc)
        assert expiry_for('STANDARD', now) == now + timedelta(days=30)

    def test_pro_events_never_expire(self):
        assert expiry_for('PRO', datetime(2025, 1, 1, tzinfo=timezone.utc)) is None

    def test_every_tier_has_positive_caps(self):
        for tier, limits in TIER_LIMITS.items():
            assert limits.max_documents_mb > 0, tier
            assert limits.max_events_per_month > 0, tier
