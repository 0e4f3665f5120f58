"""
Entitlement Resolution & Usage Gating for Unbind

Decides what tier of access a user has, how many voice sessions remain
today, and whether a paywall should be shown and why.

Architecture:
- Remote billing ledger is authoritative when reachable
- Local cached premium flag keeps paying users working offline
- Local trial clock starts on first feature use
- Day-scoped session counters at device-local midnight
- Analytics are fire-and-forget and never affect gating
"""

from entitlements.models import (
    SubscriptionStatus,
    RemoteOutcome,
    PeriodType,
    PaywallTrigger,
    RemoteEntitlement,
    RemoteLookup,
    TrialRecord,
    CachedEntitlement,
    UsageCounter,
    UsageResult,
    UsageStats,
    Resolution,
    PaywallDecision,
    PlanLimits,
)
from entitlements.errors import EntitlementError, RemoteError, StateStoreError
from entitlements.clock import SystemClock, FixedClock
from entitlements.state_store import LocalStateStore, InMemoryStateStore, JsonFileStateStore
from entitlements.remote import RemoteEntitlementProvider, RevenueCatProvider, OfflineProvider
from entitlements.analytics import (
    AnalyticsSink,
    NullAnalyticsSink,
    LoggingAnalyticsSink,
    RecordingAnalyticsSink,
    HttpAnalyticsSink,
)
from entitlements.resolver import EntitlementResolver, resolve_status, classify_product
from entitlements.usage import UsageTracker
from entitlements.paywall import PaywallEngine, decide_from
from entitlements.trial import TrialManager
from entitlements.engine import EntitlementEngine, get_entitlement_engine

__all__ = [
    # Models
    'SubscriptionStatus',
    'RemoteOutcome',
    'PeriodType',
    'PaywallTrigger',
    'RemoteEntitlement',
    'RemoteLookup',
    'TrialRecord',
    'CachedEntitlement',
    'UsageCounter',
    'UsageResult',
    'UsageStats',
    'Resolution',
    'PaywallDecision',
    'PlanLimits',
    # Errors
    'EntitlementError',
    'RemoteError',
    'StateStoreError',
    # Collaborators
    'SystemClock',
    'FixedClock',
    'LocalStateStore',
    'InMemoryStateStore',
    'JsonFileStateStore',
    'RemoteEntitlementProvider',
    'RevenueCatProvider',
    'OfflineProvider',
    'AnalyticsSink',
    'NullAnalyticsSink',
    'LoggingAnalyticsSink',
    'RecordingAnalyticsSink',
    'HttpAnalyticsSink',
    # Engine
    'EntitlementResolver',
    'resolve_status',
    'classify_product',
    'UsageTracker',
    'PaywallEngine',
    'decide_from',
    'TrialManager',
    'EntitlementEngine',
    'get_entitlement_engine',
]
