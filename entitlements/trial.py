"""
Trial Lifecycle Manager

Owns the locally started trial window: creation (first call wins) and the
days-remaining arithmetic shown to users. Gating never reads
``trial_days_remaining``; it goes through the resolver.
"""

from datetime import datetime, timedelta
from typing import Optional

from entitlements.clock import elapsed_between
from entitlements.models import TrialRecord
from entitlements.state_store import LocalStateStore, TRIAL_START_KEY, TRIAL_HISTORY_KEY
from utils.logger import logger


class TrialManager:
    """
    Manages the local trial record.

    Usage:
        trials = TrialManager(store, duration_days=3)
        trials.start_trial_if_absent(now)
        trials.trial_days_remaining(now)  # 3, 2, 1, 0 or None
    """

    def __init__(self, store: LocalStateStore, duration_days: int = 3):
        self.store = store
        self.duration_days = duration_days

    @property
    def duration(self) -> timedelta:
        return timedelta(days=self.duration_days)

    def get_trial_record(self) -> TrialRecord:
        """Read the trial record; unreadable data counts as no trial"""
        raw = self.store.get(TRIAL_START_KEY)
        if raw is None:
            return TrialRecord()

        try:
            if isinstance(raw, str):
                return TrialRecord(started_at=datetime.fromisoformat(raw))
            return TrialRecord.from_dict(raw)
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable trial record {raw!r}: {e}")
            return TrialRecord()

    def start_trial_if_absent(self, now: datetime) -> TrialRecord:
        """
        Start the trial on first feature use.

        Subsequent calls leave the original start untouched and return it.
        """
        record = self.get_trial_record()
        if record.exists:
            return record

        record = TrialRecord(started_at=now)
        self.store.set(TRIAL_START_KEY, record.to_dict())
        logger.info(f"Local trial started at {now.isoformat()} ({self.duration_days} days)")
        return record

    def is_within_trial(self, record: TrialRecord, now: datetime) -> bool:
        """True while ``now - started_at`` is shorter than the trial duration"""
        if not record.exists:
            return False
        return elapsed_between(record.started_at, now) < self.duration

    def trial_days_remaining(self, now: datetime) -> Optional[int]:
        """
        Whole days left in the local trial, for messaging.

        Returns:
            None if no trial has started, 0 once it has elapsed, otherwise
            ``duration_days - elapsed whole days``
        """
        record = self.get_trial_record()
        if not record.exists:
            return None

        elapsed_days = elapsed_between(record.started_at, now).days
        return max(0, self.duration_days - elapsed_days)

    def trial_ends_at(self) -> Optional[datetime]:
        """End of the local trial window, if one was started"""
        record = self.get_trial_record()
        if not record.exists:
            return None
        return record.started_at + self.duration

    def mark_remote_trial_seen(self, now: datetime) -> None:
        """Remember that the ledger granted this user a trial"""
        if not self.store.get(TRIAL_HISTORY_KEY):
            self.store.set(TRIAL_HISTORY_KEY, {'remote_trial_seen_at': now.isoformat()})

    def has_trial_history(self) -> bool:
        """True if the user ever had a local or store-granted trial"""
        return self.get_trial_record().exists or bool(self.store.get(TRIAL_HISTORY_KEY))

    def reset(self) -> None:
        """Forget the trial (account/data wipe only)"""
        self.store.delete(TRIAL_START_KEY)
        self.store.delete(TRIAL_HISTORY_KEY)
        logger.info("Local trial record cleared")
