"""
Entitlement Resolver - combines the billing ledger and local signals

Precedence (first match wins):
1. Ledger reports an active entitlement:
   trial period -> TRIAL_REMOTE, otherwise classified by product id
   (unknown ids fall back to PREMIUM_MONTHLY, logged and reported)
2. Ledger reachable, entitlement on record but lapsed -> EXPIRED
3. Local fallback:
   a. cached premium flag -> PREMIUM_MONTHLY (cache has no plan type)
   b. trial started and still running -> TRIAL_LOCAL
   c. trial started and elapsed -> EXPIRED
   d. otherwise -> FREE

``resolve_status`` is the pure decision. ``EntitlementResolver`` gathers
its inputs, bounds the ledger call, and keeps the cached flag current.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Optional

from entitlements.analytics import AnalyticsSink, safe_capture
from entitlements.clock import elapsed_between
from entitlements.models import (
    SubscriptionStatus,
    RemoteOutcome,
    RemoteLookup,
    PeriodType,
    TrialRecord,
    CachedEntitlement,
    Resolution,
)
from entitlements.remote import RemoteEntitlementProvider
from entitlements.state_store import LocalStateStore, CACHED_ENTITLEMENT_KEY
from entitlements.trial import TrialManager
from utils.logger import logger


def classify_product(
    product_id: str,
    monthly_product_id: str = "unbind_monthly_1999",
    annual_product_id: str = "unbind_yearly_9999",
) -> Optional[SubscriptionStatus]:
    """Map a store product id to a paid status, or None if unrecognized"""
    product = (product_id or "").lower()

    if product == monthly_product_id.lower() or "monthly" in product:
        return SubscriptionStatus.PREMIUM_MONTHLY

    if product == annual_product_id.lower() or "yearly" in product or "annual" in product:
        return SubscriptionStatus.PREMIUM_ANNUAL

    return None


def resolve_status(
    trial: TrialRecord,
    cached: CachedEntitlement,
    lookup: RemoteLookup,
    now: datetime,
    trial_duration: timedelta = timedelta(days=3),
    monthly_product_id: str = "unbind_monthly_1999",
    annual_product_id: str = "unbind_yearly_9999",
) -> Resolution:
    """
    Decide the subscription status from its inputs. No I/O, no side effects.

    Args:
        trial: Local trial record (may be empty)
        cached: Last known remote verdict
        lookup: This evaluation's ledger answer, possibly UNKNOWN
        now: Evaluation instant
        trial_duration: Length of the local trial window

    Returns:
        Resolution with exactly one status
    """
    # 1. Active remote entitlement
    if lookup.outcome == RemoteOutcome.ACTIVE and lookup.entitlement is not None:
        entitlement = lookup.entitlement

        if entitlement.period_type == PeriodType.TRIAL:
            return Resolution(
                status=SubscriptionStatus.TRIAL_REMOTE,
                source="remote",
                remote_outcome=lookup.outcome,
                product_id=entitlement.product_id,
            )

        status = classify_product(entitlement.product_id, monthly_product_id, annual_product_id)
        return Resolution(
            status=status or SubscriptionStatus.PREMIUM_MONTHLY,
            source="remote",
            remote_outcome=lookup.outcome,
            product_id=entitlement.product_id,
            classification_fallback=status is None,
        )

    # 2. Observed revocation beats the local cache
    if lookup.outcome == RemoteOutcome.INACTIVE and lookup.had_entitlement:
        return Resolution(
            status=SubscriptionStatus.EXPIRED,
            source="remote",
            remote_outcome=lookup.outcome,
        )

    # 3. Local signals
    if cached.is_premium:
        status = SubscriptionStatus.PREMIUM_MONTHLY
    elif trial.exists:
        if elapsed_between(trial.started_at, now) < trial_duration:
            status = SubscriptionStatus.TRIAL_LOCAL
        else:
            status = SubscriptionStatus.EXPIRED
    else:
        status = SubscriptionStatus.FREE

    return Resolution(status=status, source="local", remote_outcome=lookup.outcome)


class EntitlementResolver:
    """
    Resolves the current status for one user.

    The ledger call is bounded by ``timeout_seconds``; a timeout is treated
    as UNKNOWN. Reachable answers refresh the cached premium flag.
    """

    def __init__(
        self,
        store: LocalStateStore,
        provider: RemoteEntitlementProvider,
        trials: TrialManager,
        user_id: Optional[str] = None,
        analytics: Optional[AnalyticsSink] = None,
        timeout_seconds: float = 5.0,
        monthly_product_id: str = "unbind_monthly_1999",
        annual_product_id: str = "unbind_yearly_9999",
    ):
        self.store = store
        self.provider = provider
        self.trials = trials
        self.user_id = user_id
        self.analytics = analytics
        self.timeout_seconds = timeout_seconds
        self.monthly_product_id = monthly_product_id
        self.annual_product_id = annual_product_id
        self._last_resolution: Optional[Resolution] = None

    # ========== Cached flag ==========

    def get_cached_entitlement(self) -> CachedEntitlement:
        """Read the cached flag; unreadable data counts as not premium"""
        try:
            return CachedEntitlement.from_dict(self.store.get(CACHED_ENTITLEMENT_KEY))
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable cached entitlement: {e}")
            return CachedEntitlement()

    def set_cached_premium(self, is_premium: bool, now: datetime) -> None:
        """Mirror a remote verdict or a completed purchase/restore locally"""
        self.store.set(CACHED_ENTITLEMENT_KEY, CachedEntitlement(is_premium=is_premium, updated_at=now).to_dict())

    # ========== Resolution ==========

    async def fetch_remote(self) -> RemoteLookup:
        """Query the ledger within the timeout budget. Never raises."""
        if not self.user_id:
            return RemoteLookup.unreachable("no user id")

        try:
            return await asyncio.wait_for(
                self.provider.fetch_entitlement(self.user_id),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Entitlement provider exceeded {self.timeout_seconds}s budget, using local state")
            return RemoteLookup.unreachable("timeout")
        except Exception as e:
            logger.warning(f"Entitlement provider failed, using local state: {e}")
            return RemoteLookup.unreachable(str(e))

    def resolve_local(self, now: datetime, lookup: Optional[RemoteLookup] = None) -> Resolution:
        """Resolve from local state and an already known ledger answer"""
        try:
            trial = self.trials.get_trial_record()
        except Exception as e:
            logger.warning(f"Trial record unavailable, treating as absent: {e}")
            trial = TrialRecord()

        lookup = lookup or RemoteLookup.unreachable("not queried")
        if lookup.reachable:
            # The cached flag mirrors a reachable answer, whether or not the write landed
            cached = CachedEntitlement(is_premium=lookup.outcome == RemoteOutcome.ACTIVE, updated_at=now)
        else:
            try:
                cached = self.get_cached_entitlement()
            except Exception as e:
                logger.warning(f"Cached entitlement unavailable, treating as absent: {e}")
                cached = CachedEntitlement()

        return resolve_status(
            trial=trial,
            cached=cached,
            lookup=lookup,
            now=now,
            trial_duration=self.trials.duration,
            monthly_product_id=self.monthly_product_id,
            annual_product_id=self.annual_product_id,
        )

    async def resolve(self, now: datetime) -> Resolution:
        """
        Query the ledger, apply precedence, refresh the cache.

        Local writes are best effort: a failed cache or history write is
        logged and the status is still decided from the ledger answer.
        """
        lookup = await self.fetch_remote()

        try:
            self._sync_cache(lookup, now)
        except Exception as e:
            logger.warning(f"Could not mirror ledger answer into the cached flag: {e}")

        try:
            resolution = self.resolve_local(now, lookup)
        except Exception as e:
            logger.error(f"Entitlement resolution failed, treating user as free: {e}")
            resolution = Resolution(
                status=SubscriptionStatus.FREE,
                source="local",
                remote_outcome=lookup.outcome,
            )

        if resolution.status == SubscriptionStatus.TRIAL_REMOTE:
            try:
                self.trials.mark_remote_trial_seen(now)
            except Exception as e:
                logger.warning(f"Could not record store-granted trial: {e}")

        if resolution.classification_fallback:
            logger.warning(
                f"Unrecognized product id '{resolution.product_id}', defaulting to premium_monthly. "
                f"Add it to the product catalogue."
            )
            safe_capture(self.analytics, "unknown_product_id", {"product_id": resolution.product_id})

        safe_capture(self.analytics, "status_resolved", {
            "status": resolution.status.value,
            "source": resolution.source,
            "remote_outcome": resolution.remote_outcome.value,
        })

        self._last_resolution = resolution
        return resolution

    def _sync_cache(self, lookup: RemoteLookup, now: datetime) -> None:
        """A reachable ledger answer replaces the cached flag before resolving"""
        if not lookup.reachable:
            return

        is_premium = lookup.outcome == RemoteOutcome.ACTIVE
        if self.get_cached_entitlement().is_premium != is_premium:
            logger.info(f"Cached premium flag synced from ledger: {is_premium}")
        self.set_cached_premium(is_premium, now)

    @property
    def last_resolution(self) -> Optional[Resolution]:
        """Most recent resolution, for support/debug screens"""
        return self._last_resolution
