"""
Entitlement Data Models

Defines the core data structures for entitlement resolution and usage gating.
Statuses are always derived from these records, never stored directly.
"""

from enum import Enum
from dataclasses import dataclass
from typing import Optional, Dict, Any
from datetime import datetime, date


class SubscriptionStatus(str, Enum):
    """
    Resolved access tier. Exactly one value is active at any instant.

    - FREE: never trialed, never paid
    - TRIAL_LOCAL: 3-day trial started on this device
    - TRIAL_REMOTE: store-granted free trial (before first charge)
    - PREMIUM_MONTHLY / PREMIUM_ANNUAL: paid plans
    - EXPIRED: trial elapsed or paid entitlement lapsed
    """
    FREE = "free"
    TRIAL_LOCAL = "trial_local"
    TRIAL_REMOTE = "trial_remote"
    PREMIUM_MONTHLY = "premium_monthly"
    PREMIUM_ANNUAL = "premium_annual"
    EXPIRED = "expired"

    @property
    def is_trial(self) -> bool:
        return self in (SubscriptionStatus.TRIAL_LOCAL, SubscriptionStatus.TRIAL_REMOTE)

    @property
    def is_premium(self) -> bool:
        return self in (SubscriptionStatus.PREMIUM_MONTHLY, SubscriptionStatus.PREMIUM_ANNUAL)


class RemoteOutcome(str, Enum):
    """Three-valued answer from the billing ledger"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    UNKNOWN = "unknown"  # unreachable, timed out or not configured


class PeriodType(str, Enum):
    """Billing period reported for an active entitlement"""
    TRIAL = "trial"
    NORMAL = "normal"


class PaywallTrigger(str, Enum):
    """Reason code for a paywall prompt"""
    NONE = "none"
    DAILY_LIMIT = "daily_limit"
    TRIAL_EXPIRED = "trial_expired"
    NEVER_SUBSCRIBED = "never_subscribed"


@dataclass
class RemoteEntitlement:
    """Entitlement as reported by the billing ledger"""
    active: bool
    product_id: str
    period_type: PeriodType = PeriodType.NORMAL
    expires_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            'active': self.active,
            'product_id': self.product_id,
            'period_type': self.period_type.value,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass
class RemoteLookup:
    """
    Result of one billing ledger query.

    ``had_entitlement`` is set when the ledger knows an entitlement for the
    user that is no longer active. An UNKNOWN outcome carries no entitlement
    and says nothing about revocation.
    """
    outcome: RemoteOutcome
    entitlement: Optional[RemoteEntitlement] = None
    had_entitlement: bool = False
    error: Optional[str] = None

    @classmethod
    def unreachable(cls, error: str) -> 'RemoteLookup':
        return cls(outcome=RemoteOutcome.UNKNOWN, error=error)

    @classmethod
    def inactive(cls, had_entitlement: bool = False) -> 'RemoteLookup':
        return cls(outcome=RemoteOutcome.INACTIVE, had_entitlement=had_entitlement)

    @classmethod
    def active(cls, entitlement: RemoteEntitlement) -> 'RemoteLookup':
        return cls(outcome=RemoteOutcome.ACTIVE, entitlement=entitlement, had_entitlement=True)

    @property
    def reachable(self) -> bool:
        return self.outcome != RemoteOutcome.UNKNOWN


@dataclass
class TrialRecord:
    """Locally started trial. Absence of ``started_at`` means no trial ever started."""
    started_at: Optional[datetime] = None

    @property
    def exists(self) -> bool:
        return self.started_at is not None

    def to_dict(self) -> dict:
        return {'started_at': self.started_at.isoformat() if self.started_at else None}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'TrialRecord':
        if not data or not data.get('started_at'):
            return cls()
        return cls(started_at=datetime.fromisoformat(data['started_at']))


@dataclass
class CachedEntitlement:
    """Local mirror of the last known remote verdict. Fallback only."""
    is_premium: bool = False
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            'is_premium': self.is_premium,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'CachedEntitlement':
        if not data:
            return cls()
        return cls(
            is_premium=bool(data.get('is_premium', False)),
            updated_at=datetime.fromisoformat(data['updated_at']) if data.get('updated_at') else None,
        )


@dataclass
class UsageCounter:
    """Completed gated actions for one local calendar day"""
    day: date
    count: int = 0

    def to_dict(self) -> dict:
        return {'day': self.day.isoformat(), 'count': self.count}


@dataclass
class UsageStats:
    """
    Lifetime session totals for progress screens.

    ``trial_sessions_used`` counts sessions recorded while a trial status
    was active. The trial total cap is reported here, not enforced by the
    daily quota.
    """
    total_sessions: int = 0
    first_session_at: Optional[datetime] = None
    last_session_at: Optional[datetime] = None
    trial_sessions_used: int = 0
    trial_max_total_sessions: int = 30

    @property
    def trial_sessions_remaining(self) -> int:
        return max(0, self.trial_max_total_sessions - self.trial_sessions_used)

    @property
    def trial_cap_reached(self) -> bool:
        return self.trial_sessions_used >= self.trial_max_total_sessions

    def to_dict(self) -> dict:
        return {
            'total_sessions': self.total_sessions,
            'first_session_at': self.first_session_at.isoformat() if self.first_session_at else None,
            'last_session_at': self.last_session_at.isoformat() if self.last_session_at else None,
            'trial_sessions_used': self.trial_sessions_used,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict], trial_max_total_sessions: int = 30) -> 'UsageStats':
        data = data or {}
        return cls(
            total_sessions=int(data.get('total_sessions') or 0),
            first_session_at=datetime.fromisoformat(data['first_session_at']) if data.get('first_session_at') else None,
            last_session_at=datetime.fromisoformat(data['last_session_at']) if data.get('last_session_at') else None,
            trial_sessions_used=int(data.get('trial_sessions_used') or 0),
            trial_max_total_sessions=trial_max_total_sessions,
        )


@dataclass
class UsageResult:
    """Quota evaluation for today"""
    sessions_today: int
    max_sessions: int
    within_quota: bool

    @property
    def remaining(self) -> int:
        return max(0, self.max_sessions - self.sessions_today)

    def to_dict(self) -> dict:
        return {
            'sessions_today': self.sessions_today,
            'max_sessions': self.max_sessions,
            'within_quota': self.within_quota,
            'remaining': self.remaining,
        }


@dataclass
class Resolution:
    """
    How a status was reached.

    ``source`` is "remote" when the ledger decided, "local" when the cached
    flag or trial clock did. ``classification_fallback`` marks an active
    entitlement whose product id matched no known plan.
    """
    status: SubscriptionStatus
    source: str
    remote_outcome: RemoteOutcome
    product_id: Optional[str] = None
    classification_fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'source': self.source,
            'remote_outcome': self.remote_outcome.value,
            'product_id': self.product_id,
            'classification_fallback': self.classification_fallback,
        }


@dataclass
class PaywallDecision:
    """Gating decision consumed by screen logic"""
    show: bool
    trigger: PaywallTrigger
    sessions_today: int
    max_sessions: int
    status: Optional[SubscriptionStatus] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'show': self.show,
            'trigger': self.trigger.value,
            'sessions_today': self.sessions_today,
            'max_sessions': self.max_sessions,
            'status': self.status.value if self.status else None,
        }


@dataclass
class PlanLimits:
    """
    Daily session caps per resolved status.

    Single source of truth for quota ceilings; the tracker never stores a
    ceiling alongside the counter.
    """
    free_daily_sessions: int = 1
    trial_daily_sessions: int = 10
    premium_daily_sessions: int = 10
    trial_max_total_sessions: int = 30

    @classmethod
    def from_settings(cls, settings) -> 'PlanLimits':
        return cls(
            free_daily_sessions=settings.FREE_DAILY_SESSIONS,
            trial_daily_sessions=settings.TRIAL_DAILY_SESSIONS,
            premium_daily_sessions=settings.PREMIUM_DAILY_SESSIONS,
            trial_max_total_sessions=settings.TRIAL_MAX_TOTAL_SESSIONS,
        )

    def max_sessions_for(self, status: SubscriptionStatus) -> int:
        """Get the daily cap for a status"""
        if status == SubscriptionStatus.FREE:
            return self.free_daily_sessions
        elif status.is_trial:
            return self.trial_daily_sessions
        elif status.is_premium:
            return self.premium_daily_sessions
        else:
            return 0


# Pricing configuration (for reference, display only)
PRICING = {
    'monthly': {
        'price': 19.99,
        'period': 'month',
    },
    'yearly': {
        'price': 99.99,
        'price_per_month': 8.33,  # 99.99 / 12
        'period': 'year',
        'savings_percent': 58,
    },
}
