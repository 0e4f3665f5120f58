#!/usr/bin/env python3
"""
Entitlement Engine Tests

End-to-end user journeys through the public engine operations, with the
ledger, store and clock replaced by fakes.
"""

import pytest
import os
import sys
from datetime import timedelta

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import config
import entitlements.engine as engine_module
from entitlements.analytics import LoggingAnalyticsSink
from entitlements.engine import EntitlementEngine, get_entitlement_engine
from entitlements.models import (
    SubscriptionStatus,
    RemoteOutcome,
    PaywallTrigger,
    PeriodType,
)
from entitlements.remote import OfflineProvider
from entitlements.state_store import (
    LocalStateStore,
    InMemoryStateStore,
    CACHED_ENTITLEMENT_KEY,
    USAGE_KEY_PREFIX,
)


class BrokenStateStore(LocalStateStore):
    """Storage that fails on every call"""

    def get(self, key):
        raise OSError("disk unavailable")

    def set(self, key, value):
        raise OSError("disk unavailable")

    def delete(self, key):
        raise OSError("disk unavailable")

    def keys(self, prefix=""):
        raise OSError("disk unavailable")


class UnreadableCountersStore(InMemoryStateStore):
    """Trial and cache readable, usage counters failing"""

    def get(self, key):
        if key.startswith(USAGE_KEY_PREFIX):
            raise OSError("usage table corrupted")
        return super().get(key)


# ============================================================================
# USER JOURNEYS
# ============================================================================

class TestTrialJourney:
    """Fresh install through trial expiry"""

    @pytest.mark.asyncio
    async def test_fresh_install_is_free(self, engine):
        assert await engine.resolve_status() == SubscriptionStatus.FREE
        assert engine.trial_days_remaining() is None

    @pytest.mark.asyncio
    async def test_trial_runs_then_expires(self, engine, clock):
        engine.start_trial_if_absent()

        clock.advance(days=2)
        assert await engine.resolve_status() == SubscriptionStatus.TRIAL_LOCAL
        assert engine.trial_days_remaining() == 1

        quota = await engine.check_quota()
        assert quota.max_sessions == 10
        assert quota.within_quota is True

        clock.advance(days=1)
        assert await engine.resolve_status() == SubscriptionStatus.EXPIRED
        assert engine.trial_days_remaining() == 0

        decision = await engine.decide_paywall()
        assert decision.show is True
        assert decision.trigger == PaywallTrigger.TRIAL_EXPIRED

    @pytest.mark.asyncio
    async def test_start_trial_is_idempotent(self, engine, clock):
        first = engine.start_trial_if_absent()
        clock.advance(hours=5)
        second = engine.start_trial_if_absent()

        assert first.started_at == second.started_at

    @pytest.mark.asyncio
    async def test_trial_daily_limit(self, engine):
        engine.start_trial_if_absent()
        for _ in range(10):
            engine.record_usage()

        decision = await engine.decide_paywall()

        assert decision.show is True
        assert decision.trigger == PaywallTrigger.DAILY_LIMIT
        assert decision.sessions_today == 10

    @pytest.mark.asyncio
    async def test_quota_resets_next_day(self, engine, clock):
        engine.record_usage()
        assert (await engine.check_quota()).within_quota is False

        clock.set(clock.now().replace(hour=0, minute=0, second=1) + timedelta(days=1))
        quota = await engine.check_quota()

        assert quota.sessions_today == 0
        assert quota.within_quota is True


class TestPaidJourney:
    """Purchases, outages and lapses"""

    @pytest.mark.asyncio
    async def test_annual_subscriber(self, engine, provider):
        provider.answer_active("unbind_yearly_9999")

        assert await engine.resolve_status() == SubscriptionStatus.PREMIUM_ANNUAL
        quota = await engine.check_quota()
        assert quota.max_sessions == 10

    @pytest.mark.asyncio
    async def test_store_trial(self, engine, provider):
        provider.answer_active("unbind_monthly_1999", PeriodType.TRIAL)
        assert await engine.resolve_status() == SubscriptionStatus.TRIAL_REMOTE

    @pytest.mark.asyncio
    async def test_outage_keeps_paying_user_premium(self, engine, provider, store):
        provider.answer_active("unbind_yearly_9999")
        await engine.resolve()
        assert store.get(CACHED_ENTITLEMENT_KEY)["is_premium"] is True

        provider.delay = 5.0
        resolution = await engine.resolve()

        assert resolution.status == SubscriptionStatus.PREMIUM_MONTHLY
        assert resolution.remote_outcome == RemoteOutcome.UNKNOWN
        assert resolution.source == "local"

    @pytest.mark.asyncio
    async def test_lapse_after_outage(self, engine, provider, store):
        provider.answer_active("unbind_monthly_1999")
        await engine.resolve()

        provider.go_offline()
        assert await engine.resolve_status() == SubscriptionStatus.PREMIUM_MONTHLY

        provider.answer_inactive(had_entitlement=True)
        assert await engine.resolve_status() == SubscriptionStatus.EXPIRED
        assert store.get(CACHED_ENTITLEMENT_KEY)["is_premium"] is False

    @pytest.mark.asyncio
    async def test_record_purchase_while_offline(self, engine, provider, analytics):
        provider.go_offline()

        engine.record_purchase(product_id="unbind_monthly_1999")

        assert await engine.resolve_status() == SubscriptionStatus.PREMIUM_MONTHLY
        assert analytics.of("purchase_synced") == [{"product_id": "unbind_monthly_1999"}]

    @pytest.mark.asyncio
    async def test_record_restore(self, engine, provider, analytics):
        provider.go_offline()

        engine.record_restore(True)
        assert await engine.resolve_status() == SubscriptionStatus.PREMIUM_MONTHLY

        engine.record_restore(False)
        assert await engine.resolve_status() == SubscriptionStatus.FREE
        assert analytics.of("purchases_restored") == [{"is_premium": True}, {"is_premium": False}]

    @pytest.mark.asyncio
    async def test_signed_out_user_resolves_locally(self, store, test_settings, clock, provider):
        engine = EntitlementEngine(store=store, provider=provider, settings=test_settings, clock=clock)

        assert await engine.resolve_status() == SubscriptionStatus.FREE
        assert provider.calls == 0

        engine.set_user_id("user_456")
        provider.answer_active("unbind_yearly_9999")
        assert await engine.resolve_status() == SubscriptionStatus.PREMIUM_ANNUAL
        assert engine.user_id == "user_456"


# ============================================================================
# HOUSEKEEPING
# ============================================================================

class TestEngineHousekeeping:
    """Reset, history and the global instance"""

    @pytest.mark.asyncio
    async def test_reset(self, engine, provider):
        provider.go_offline()
        engine.start_trial_if_absent()
        engine.record_purchase()
        engine.record_usage()

        engine.reset()

        assert await engine.resolve_status() == SubscriptionStatus.FREE
        assert engine.trial_days_remaining() is None
        assert (await engine.check_quota()).sessions_today == 0

    def test_usage_history(self, engine, clock):
        engine.record_usage()
        clock.advance(days=1)
        engine.record_usage()
        engine.record_usage()

        history = engine.usage_history(days=2)

        assert [h["count"] for h in history] == [1, 2]

    def test_global_engine(self, monkeypatch, temp_dir):
        monkeypatch.setattr(engine_module, "_engine", None)
        monkeypatch.setattr(config.settings, "STORAGE_DIR", str(temp_dir))
        monkeypatch.setattr(config.settings, "STATE_FILE", str(temp_dir / "entitlements.json"))
        monkeypatch.setattr(config.settings, "REVENUECAT_API_KEY", None)
        monkeypatch.setattr(config.settings, "ANALYTICS_URL", None)

        first = get_entitlement_engine("user_123")
        second = get_entitlement_engine("user_456")

        assert first is second
        assert second.user_id == "user_456"
        assert isinstance(first.resolver.provider, OfflineProvider)
        assert isinstance(first.analytics, LoggingAnalyticsSink)


# ============================================================================
# FAILURE HANDLING
# ============================================================================

class TestEngineNeverRaises:
    """Storage failures degrade to safe values"""

    @pytest.fixture
    def broken_engine(self, provider, test_settings, analytics, clock):
        return EntitlementEngine(
            store=BrokenStateStore(),
            provider=provider,
            settings=test_settings,
            user_id="user_123",
            analytics=analytics,
            clock=clock,
        )

    @pytest.mark.asyncio
    async def test_async_operations(self, broken_engine):
        assert await broken_engine.resolve_status() == SubscriptionStatus.FREE

        quota = await broken_engine.check_quota()
        assert quota.within_quota is True
        assert quota.max_sessions == 1

        decision = await broken_engine.decide_paywall()
        assert decision.show is False
        assert decision.trigger == PaywallTrigger.NONE

    def test_sync_operations(self, broken_engine):
        assert broken_engine.record_usage() == 0
        assert broken_engine.start_trial_if_absent().exists is False
        assert broken_engine.trial_days_remaining() is None
        assert broken_engine.usage_history() == []
        assert broken_engine.usage_stats().total_sessions == 0

        broken_engine.record_purchase()
        broken_engine.record_restore(True)
        broken_engine.reset()

    @pytest.mark.asyncio
    async def test_broken_ledger(self, engine, provider):
        provider.error = ValueError("unexpected payload")

        resolution = await engine.resolve()

        assert resolution.status == SubscriptionStatus.FREE
        assert resolution.remote_outcome == RemoteOutcome.UNKNOWN

    @pytest.mark.asyncio
    async def test_quota_and_paywall_agree_on_failure(self, provider, test_settings, analytics, clock):
        """An expired user with unreadable counters is allowed by both answers"""
        store = UnreadableCountersStore()
        engine = EntitlementEngine(
            store=store, provider=provider, settings=test_settings,
            user_id="user_123", analytics=analytics, clock=clock,
        )
        engine.start_trial_if_absent()
        clock.advance(days=4)

        quota = await engine.check_quota()
        decision = await engine.decide_paywall()

        assert quota.within_quota is True
        assert decision.show is False


# ============================================================================
# LIFETIME STATS
# ============================================================================

class TestUsageStats:
    """Lifetime totals and the trial allowance"""

    def test_fresh_install(self, engine):
        stats = engine.usage_stats()
        assert stats.total_sessions == 0
        assert stats.first_session_at is None
        assert stats.trial_max_total_sessions == 30
        assert stats.trial_sessions_remaining == 30

    @pytest.mark.asyncio
    async def test_trial_sessions_counted_from_last_resolution(self, engine, clock):
        engine.record_usage()
        first_at = clock.now()

        engine.start_trial_if_absent()
        clock.advance(hours=1)
        assert await engine.resolve_status() == SubscriptionStatus.TRIAL_LOCAL
        engine.record_usage()
        engine.record_usage()

        stats = engine.usage_stats()
        assert stats.total_sessions == 3
        assert stats.trial_sessions_used == 2
        assert stats.trial_sessions_remaining == 28
        assert stats.first_session_at == first_at
        assert stats.last_session_at == clock.now()

    def test_explicit_status(self, engine):
        engine.record_usage(status=SubscriptionStatus.TRIAL_REMOTE)
        engine.record_usage(status=SubscriptionStatus.PREMIUM_ANNUAL)

        stats = engine.usage_stats()
        assert stats.total_sessions == 2
        assert stats.trial_sessions_used == 1

    def test_configured_allowance(self, store, provider, test_settings, clock):
        settings = test_settings.model_copy(update={"TRIAL_MAX_TOTAL_SESSIONS": 2})
        engine = EntitlementEngine(store=store, provider=provider, settings=settings, clock=clock)

        engine.record_usage(status=SubscriptionStatus.TRIAL_LOCAL)
        engine.record_usage(status=SubscriptionStatus.TRIAL_LOCAL)

        stats = engine.usage_stats()
        assert stats.trial_cap_reached is True
        assert stats.trial_sessions_remaining == 0

    def test_totals_survive_pruning(self, engine, store, clock):
        engine.record_usage()
        clock.advance(days=90)
        engine.record_usage()

        assert len(store.keys(USAGE_KEY_PREFIX)) == 1
        assert engine.usage_stats().total_sessions == 2

    def test_reset_clears_totals(self, engine):
        engine.record_usage(status=SubscriptionStatus.TRIAL_LOCAL)
        engine.reset()

        stats = engine.usage_stats()
        assert stats.total_sessions == 0
        assert stats.trial_sessions_used == 0
