"""
Entitlement Engine - the surface consumed by screen logic

Wires the state store, ledger provider, analytics sink and clock into the
resolver, quota tracker, paywall engine and trial manager, and exposes the
operations the client calls. Every operation returns a value; none raises
into the host application.

Usage:
    engine = get_entitlement_engine(user_id)

    decision = await engine.decide_paywall()
    if decision.show:
        open_paywall(decision.trigger)
    else:
        engine.start_trial_if_absent()
        ...run the voice session...
        engine.record_usage()
"""

from datetime import datetime
from typing import Optional, List, Dict, Any

from entitlements.analytics import AnalyticsSink, create_analytics_sink, safe_capture
from entitlements.clock import SystemClock
from entitlements.models import (
    SubscriptionStatus,
    RemoteOutcome,
    UsageResult,
    UsageStats,
    PaywallDecision,
    PaywallTrigger,
    PlanLimits,
    Resolution,
    TrialRecord,
)
from entitlements.paywall import PaywallEngine
from entitlements.remote import RemoteEntitlementProvider, create_remote_provider
from entitlements.resolver import EntitlementResolver
from entitlements.state_store import LocalStateStore, create_state_store
from entitlements.trial import TrialManager
from entitlements.usage import UsageTracker
from utils.logger import logger


class EntitlementEngine:
    """
    Entitlement resolution and usage gating for one user on one device.

    All collaborators are injected; ``now`` defaults to the injected clock.

    Internal failures fail open: a broken store or sink never blocks a
    session. ``check_quota`` then reports the session as allowed and
    ``decide_paywall`` hides the paywall, so the two always agree.
    """

    def __init__(
        self,
        store: LocalStateStore,
        provider: RemoteEntitlementProvider,
        settings,
        user_id: Optional[str] = None,
        analytics: Optional[AnalyticsSink] = None,
        clock=None,
    ):
        self.settings = settings
        self.clock = clock or SystemClock(settings.TIMEZONE)
        self.analytics = analytics

        self.trials = TrialManager(store, duration_days=settings.TRIAL_DURATION_DAYS)
        self.resolver = EntitlementResolver(
            store=store,
            provider=provider,
            trials=self.trials,
            user_id=user_id,
            analytics=analytics,
            timeout_seconds=settings.REMOTE_TIMEOUT_SECONDS,
            monthly_product_id=settings.MONTHLY_PRODUCT_ID,
            annual_product_id=settings.ANNUAL_PRODUCT_ID,
        )
        self.tracker = UsageTracker(
            store,
            limits=PlanLimits.from_settings(settings),
            tz_name=settings.TIMEZONE,
            retention_days=settings.USAGE_RETENTION_DAYS,
        )
        self.paywall = PaywallEngine(self.resolver, self.tracker, self.trials, analytics=analytics)

    def _now(self, now: Optional[datetime]) -> datetime:
        return now if now is not None else self.clock.now()

    @property
    def user_id(self) -> Optional[str]:
        return self.resolver.user_id

    def set_user_id(self, user_id: Optional[str]) -> None:
        """Attach the authenticated user (after sign-in)"""
        self.resolver.user_id = user_id

    # ========== Resolution ==========

    async def resolve(self, now: Optional[datetime] = None) -> Resolution:
        """Resolve with full detail for support/debug screens"""
        now = self._now(now)
        try:
            return await self.resolver.resolve(now)
        except Exception as e:
            logger.error(f"resolve failed: {e}")
            return Resolution(status=SubscriptionStatus.FREE, source="local", remote_outcome=RemoteOutcome.UNKNOWN)

    async def resolve_status(self, now: Optional[datetime] = None) -> SubscriptionStatus:
        """Current subscription status"""
        resolution = await self.resolve(now)
        return resolution.status

    # ========== Quota ==========

    async def check_quota(self, now: Optional[datetime] = None) -> UsageResult:
        """Today's usage against the current status's cap. Read-only."""
        now = self._now(now)
        status = await self.resolve_status(now)
        try:
            return self.tracker.check_quota(status, now)
        except Exception as e:
            logger.error(f"check_quota failed, allowing the session: {e}")
            return UsageResult(
                sessions_today=0,
                max_sessions=self.tracker.limits.max_sessions_for(status),
                within_quota=True,
            )

    def record_usage(self, now: Optional[datetime] = None, status: Optional[SubscriptionStatus] = None) -> int:
        """
        Count one completed voice session; returns today's new count.

        ``status`` is the status the session ran under. When omitted, the
        last resolution is used, so trial sessions count against the
        lifetime trial allowance.
        """
        now = self._now(now)
        if status is None and self.resolver.last_resolution is not None:
            status = self.resolver.last_resolution.status
        try:
            return self.tracker.record_usage(now, status)
        except Exception as e:
            logger.error(f"record_usage failed, session not counted: {e}")
            return 0

    def usage_stats(self) -> UsageStats:
        """Lifetime totals and the trial allowance, for progress screens"""
        try:
            return self.tracker.get_usage_stats()
        except Exception as e:
            logger.error(f"usage_stats failed: {e}")
            return UsageStats(trial_max_total_sessions=self.tracker.limits.trial_max_total_sessions)

    def usage_history(self, now: Optional[datetime] = None, days: int = 7) -> List[Dict[str, Any]]:
        """Recent daily counts, oldest first"""
        try:
            return self.tracker.usage_history(self._now(now), days=days)
        except Exception as e:
            logger.error(f"usage_history failed: {e}")
            return []

    # ========== Paywall ==========

    async def decide_paywall(self, now: Optional[datetime] = None) -> PaywallDecision:
        """Whether to show the paywall right now, and why"""
        now = self._now(now)
        try:
            return await self.paywall.decide(now)
        except Exception as e:
            logger.error(f"decide_paywall failed: {e}")
            return PaywallDecision(show=False, trigger=PaywallTrigger.NONE, sessions_today=0, max_sessions=0)

    # ========== Trial ==========

    def start_trial_if_absent(self, now: Optional[datetime] = None) -> TrialRecord:
        """Start the local trial on first feature use; later calls are no-ops"""
        now = self._now(now)
        try:
            return self.trials.start_trial_if_absent(now)
        except Exception as e:
            logger.error(f"start_trial_if_absent failed: {e}")
            return TrialRecord()

    def trial_days_remaining(self, now: Optional[datetime] = None) -> Optional[int]:
        """Whole days left in the local trial, None if never started"""
        try:
            return self.trials.trial_days_remaining(self._now(now))
        except Exception as e:
            logger.error(f"trial_days_remaining failed: {e}")
            return None

    # ========== Purchase sync ==========

    def record_purchase(self, now: Optional[datetime] = None, product_id: Optional[str] = None) -> None:
        """Mirror a completed purchase into the cached flag"""
        now = self._now(now)
        try:
            self.resolver.set_cached_premium(True, now)
        except Exception as e:
            logger.error(f"Could not cache premium status after purchase: {e}")
            return
        safe_capture(self.analytics, "purchase_synced", {"product_id": product_id})
        logger.info(f"Premium status cached after purchase ({product_id or 'unknown product'})")

    def record_restore(self, is_premium: bool, now: Optional[datetime] = None) -> None:
        """Mirror the outcome of a restore into the cached flag"""
        now = self._now(now)
        try:
            self.resolver.set_cached_premium(is_premium, now)
        except Exception as e:
            logger.error(f"Could not cache premium status after restore: {e}")
            return
        safe_capture(self.analytics, "purchases_restored", {"is_premium": is_premium})
        logger.info(f"Premium status cached after restore: {is_premium}")

    def reset(self, now: Optional[datetime] = None) -> None:
        """Wipe trial, cached flag and counters (account/data wipe)"""
        now = self._now(now)
        try:
            self.trials.reset()
            self.resolver.set_cached_premium(False, now)
            self.tracker.reset()
        except Exception as e:
            logger.error(f"Entitlement state reset failed: {e}")
            return
        logger.info("Entitlement state reset")


# Global engine instance
_engine: Optional[EntitlementEngine] = None


def get_entitlement_engine(user_id: Optional[str] = None) -> EntitlementEngine:
    """Get the global engine, built from settings on first use"""
    global _engine
    if _engine is None:
        from config import settings
        _engine = EntitlementEngine(
            store=create_state_store(settings),
            provider=create_remote_provider(settings),
            settings=settings,
            user_id=user_id,
            analytics=create_analytics_sink(settings, distinct_id=user_id or "anonymous"),
        )
    elif user_id and _engine.user_id != user_id:
        _engine.set_user_id(user_id)
    return _engine
