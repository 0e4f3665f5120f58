"""
Usage Quota Tracker - day-scoped session counters

Tracks completed voice sessions per local calendar day and evaluates them
against the cap implied by the resolved status.

- Day keys follow device-local midnight, matching what the UI calls "today"
- ``check_quota`` never writes; ``record_usage`` is the only mutation
- Increments are read-modify-write under a lock, one per completed action
- Counters older than the retention window are pruned on write
- Lifetime totals (all sessions, trial sessions, first session) are kept
  alongside the day counters and never pruned
"""

import threading
from datetime import date, datetime, timedelta
from typing import Optional, List, Dict, Any

from entitlements.clock import local_day
from entitlements.models import SubscriptionStatus, UsageCounter, UsageResult, UsageStats, PlanLimits
from entitlements.state_store import LocalStateStore, USAGE_KEY_PREFIX, USAGE_STATS_KEY
from utils.logger import logger


class UsageTracker:
    """
    Tracks and evaluates daily session usage.

    Usage:
        tracker = UsageTracker(store, PlanLimits())
        result = tracker.check_quota(SubscriptionStatus.FREE, now)
        if result.within_quota:
            ...run the session...
            tracker.record_usage(now)
    """

    # One lock per process: every tracker shares the same counters
    _write_lock = threading.Lock()

    def __init__(
        self,
        store: LocalStateStore,
        limits: Optional[PlanLimits] = None,
        tz_name: Optional[str] = None,
        retention_days: int = 60,
    ):
        self.store = store
        self.limits = limits or PlanLimits()
        self.tz_name = tz_name
        self.retention_days = retention_days

    def _day_key(self, day: date) -> str:
        return f"{USAGE_KEY_PREFIX}{day.isoformat()}"

    def day_for(self, now: datetime) -> date:
        """Local calendar day of ``now``"""
        return local_day(now, self.tz_name)

    def get_counter(self, now: datetime) -> UsageCounter:
        """Counter for the day containing ``now``; absent or unreadable reads as zero"""
        day = self.day_for(now)
        raw = self.store.get(self._day_key(day))

        try:
            count = int(raw) if raw is not None else 0
        except (TypeError, ValueError):
            logger.warning(f"Ignoring unreadable usage counter for {day}: {raw!r}")
            count = 0

        return UsageCounter(day=day, count=max(0, count))

    def check_quota(self, status: SubscriptionStatus, now: datetime) -> UsageResult:
        """
        Evaluate today's usage against the status's cap.

        Args:
            status: Resolved subscription status
            now: Evaluation instant

        Returns:
            UsageResult with sessions_today, max_sessions and within_quota
        """
        counter = self.get_counter(now)
        max_sessions = self.limits.max_sessions_for(status)

        return UsageResult(
            sessions_today=counter.count,
            max_sessions=max_sessions,
            within_quota=counter.count < max_sessions,
        )

    def record_usage(self, now: datetime, status: Optional[SubscriptionStatus] = None) -> int:
        """
        Count one completed gated action.

        Call exactly once per successful session, after it has been saved.
        Failed attempts must not be recorded.

        Args:
            now: Completion instant
            status: Status the session ran under; trial statuses also
                count against the lifetime trial allowance

        Returns:
            The day's new count
        """
        with self._write_lock:
            counter = self.get_counter(now)
            new_count = counter.count + 1
            self.store.set(self._day_key(counter.day), new_count)
            self._bump_stats(now, status)
            self._prune(counter.day)

        logger.info(f"Recorded session for {counter.day.isoformat()}: {new_count} today")
        return new_count

    def get_usage_stats(self) -> UsageStats:
        """Lifetime totals; unreadable data reads as no sessions"""
        raw = self.store.get(USAGE_STATS_KEY)
        try:
            return UsageStats.from_dict(raw, self.limits.trial_max_total_sessions)
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable usage stats {raw!r}: {e}")
            return UsageStats(trial_max_total_sessions=self.limits.trial_max_total_sessions)

    def _bump_stats(self, now: datetime, status: Optional[SubscriptionStatus]) -> None:
        stats = self.get_usage_stats()
        stats.total_sessions += 1
        stats.last_session_at = now
        if stats.first_session_at is None:
            stats.first_session_at = now
        if status is not None and status.is_trial:
            stats.trial_sessions_used += 1
            if stats.trial_sessions_used == stats.trial_max_total_sessions:
                logger.info(f"Lifetime trial allowance of {stats.trial_max_total_sessions} sessions used up")
        self.store.set(USAGE_STATS_KEY, stats.to_dict())

    def _prune(self, today: date) -> None:
        """Drop counters outside the retention window"""
        cutoff = today - timedelta(days=self.retention_days)
        for key in self.store.keys(USAGE_KEY_PREFIX):
            try:
                day = date.fromisoformat(key[len(USAGE_KEY_PREFIX):])
            except ValueError:
                self.store.delete(key)
                continue
            if day < cutoff:
                self.store.delete(key)

    def usage_history(self, now: datetime, days: int = 7) -> List[Dict[str, Any]]:
        """
        Daily counts for the last ``days`` days including today, oldest first.

        Days without usage are reported with a zero count.
        """
        today = self.day_for(now)
        history = []
        for offset in range(days - 1, -1, -1):
            day = today - timedelta(days=offset)
            raw = self.store.get(self._day_key(day))
            try:
                count = int(raw) if raw is not None else 0
            except (TypeError, ValueError):
                count = 0
            history.append(UsageCounter(day=day, count=count).to_dict())
        return history

    def reset(self) -> None:
        """Remove every counter and the lifetime totals (account/data wipe only)"""
        with self._write_lock:
            for key in self.store.keys(USAGE_KEY_PREFIX):
                self.store.delete(key)
            self.store.delete(USAGE_STATS_KEY)
        logger.info("Usage counters cleared")
