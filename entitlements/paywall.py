"""
Paywall Decision Engine

Composes the resolved status and today's quota into a single decision with
a reason code. Performs no entitlement logic of its own.

Decision table (first match wins):
1. EXPIRED with trial history                      -> TRIAL_EXPIRED, show
2. FREE/EXPIRED with no quota left                 -> NEVER_SUBSCRIBED (no trial record)
                                                      or DAILY_LIMIT, show
3. PREMIUM_* / TRIAL_* with quota left             -> NONE, hide
4. Anything else with no quota left                -> DAILY_LIMIT, show
5. Anything else                                   -> NONE, hide
"""

from datetime import datetime
from typing import Optional

from entitlements.analytics import AnalyticsSink, safe_capture
from entitlements.models import (
    SubscriptionStatus,
    UsageResult,
    PaywallTrigger,
    PaywallDecision,
)
from entitlements.resolver import EntitlementResolver
from entitlements.trial import TrialManager
from entitlements.usage import UsageTracker


def decide_from(
    status: SubscriptionStatus,
    usage: UsageResult,
    has_trial_record: bool,
    has_trial_history: bool,
) -> PaywallDecision:
    """
    Apply the decision table to already resolved inputs.

    Args:
        status: Resolved subscription status
        usage: Quota evaluation for the same instant
        has_trial_record: A local trial was ever started
        has_trial_history: A local or store-granted trial was ever seen

    Returns:
        PaywallDecision; never show=True with trigger NONE
    """
    exhausted = not usage.within_quota

    def decision(show: bool, trigger: PaywallTrigger) -> PaywallDecision:
        return PaywallDecision(
            show=show,
            trigger=trigger,
            sessions_today=usage.sessions_today,
            max_sessions=usage.max_sessions,
            status=status,
        )

    if status == SubscriptionStatus.EXPIRED and has_trial_history:
        return decision(True, PaywallTrigger.TRIAL_EXPIRED)

    if status in (SubscriptionStatus.FREE, SubscriptionStatus.EXPIRED) and exhausted:
        trigger = PaywallTrigger.DAILY_LIMIT if has_trial_record else PaywallTrigger.NEVER_SUBSCRIBED
        return decision(True, trigger)

    if (status.is_premium or status.is_trial) and not exhausted:
        return decision(False, PaywallTrigger.NONE)

    if exhausted:
        return decision(True, PaywallTrigger.DAILY_LIMIT)

    return decision(False, PaywallTrigger.NONE)


class PaywallEngine:
    """Decides whether and why to interrupt the user with a paywall"""

    def __init__(
        self,
        resolver: EntitlementResolver,
        tracker: UsageTracker,
        trials: TrialManager,
        analytics: Optional[AnalyticsSink] = None,
    ):
        self.resolver = resolver
        self.tracker = tracker
        self.trials = trials
        self.analytics = analytics

    async def decide(self, now: datetime) -> PaywallDecision:
        """Resolve status, check quota and apply the decision table"""
        resolution = await self.resolver.resolve(now)
        usage = self.tracker.check_quota(resolution.status, now)

        result = decide_from(
            status=resolution.status,
            usage=usage,
            has_trial_record=self.trials.get_trial_record().exists,
            has_trial_history=self.trials.has_trial_history(),
        )

        if not usage.within_quota:
            safe_capture(self.analytics, "quota_exhausted", {
                "status": resolution.status.value,
                "sessions_today": usage.sessions_today,
                "max_sessions": usage.max_sessions,
            })

        if result.show:
            safe_capture(self.analytics, "paywall_shown", {
                "trigger": result.trigger.value,
                "status": resolution.status.value,
                "sessions_today": result.sessions_today,
                "max_sessions": result.max_sessions,
            })

        return result
