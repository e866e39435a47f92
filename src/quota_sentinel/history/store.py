"""Bounded, pruned per-account usage history."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable

from quota_sentinel.core import MAX_POINTS_PER_ACCOUNT, UsageDataPoint
from quota_sentinel.history.kv import KeyValueStore

logger = logging.getLogger(__name__)

HISTORY_KEY = "quota-sentinel.history"
DEFAULT_RETENTION_DAYS = 7

RetentionProvider = Callable[[], float]
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class HistoryStore:
    """Append-only usage series per account, persisted as one document.

    The whole map is loaded once at construction and written back in full
    after every mutation. Each write prunes the touched series: points at or
    before ``now - retention`` are dropped, then only the newest
    ``max_points`` are kept.

    Persistence failures are logged and never raised; a failed load starts
    from an empty history.

    Parameters
    ----------
    backend : KeyValueStore
        Durable key-value store holding the history under ``HISTORY_KEY``.
    retention_days : float | Callable[[], float]
        Retention window in days, or a callable read on every write so that
        configuration changes apply without reconstruction.
    clock : Callable[[], datetime]
        Source of "now" (UTC). Overridable for tests.
    max_points : int
        Hard cap on points kept per account.
    """

    def __init__(
        self,
        backend: KeyValueStore,
        retention_days: float | RetentionProvider = DEFAULT_RETENTION_DAYS,
        clock: Clock = utc_now,
        max_points: int = MAX_POINTS_PER_ACCOUNT,
    ) -> None:
        if max_points < 1:
            raise ValueError(f"max_points must be >= 1, got {max_points}")
        self._backend = backend
        if callable(retention_days):
            self._retention: RetentionProvider = retention_days
        else:
            fixed = float(retention_days)
            self._retention = lambda: fixed
        self._clock = clock
        self._max_points = max_points
        self._data: dict[str, list[UsageDataPoint]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._save_lock = threading.Lock()
        self._load()

    @property
    def max_points(self) -> int:
        return self._max_points

    def retention(self) -> timedelta:
        return timedelta(days=self._retention())

    # --- Public API ---

    def add_data_point(self, account_id: str, remaining: float, total: float) -> UsageDataPoint:
        """Record a sample at the current time, prune, and persist."""
        now = self._clock()
        point = UsageDataPoint(timestamp=now, remaining=float(remaining), total=float(total))

        with self._lock_for(account_id):
            series = list(self._data.get(account_id, ()))
            series.append(point)
            series = self._prune(series, now)
            self._data[account_id] = series
            count = len(series)

        self._save()
        logger.debug("Added data point for %s, total points: %d", account_id, count)
        return point

    def get_history(self, account_id: str) -> list[UsageDataPoint]:
        """Current series for an account, oldest first. Empty if unknown."""
        with self._lock_for(account_id):
            return list(self._data.get(account_id, ()))

    def account_ids(self) -> list[str]:
        return list(self._data.keys())

    def clear_history(self, account_id: str) -> None:
        with self._lock_for(account_id):
            self._data.pop(account_id, None)
        self._save()

    def clear_all(self) -> None:
        with self._locks_guard:
            locks = list(self._locks.values())
        for lock in locks:
            lock.acquire()
        try:
            self._data.clear()
        finally:
            for lock in reversed(locks):
                lock.release()
        self._save()

    # --- Internals ---

    def _lock_for(self, account_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[account_id] = lock
            return lock

    def _prune(self, series: list[UsageDataPoint], now: datetime) -> list[UsageDataPoint]:
        cutoff = now - self.retention()
        kept = [p for p in series if p.timestamp > cutoff]
        if len(kept) > self._max_points:
            kept = kept[-self._max_points :]
        return kept

    def _load(self) -> None:
        try:
            stored = self._backend.get(HISTORY_KEY, {}) or {}
            if not isinstance(stored, dict):
                raise TypeError(f"expected a mapping, got {type(stored).__name__}")
            self._data = {
                str(account_id): [UsageDataPoint.from_json(p) for p in points]
                for account_id, points in stored.items()
            }
            logger.debug("Loaded history for %d accounts", len(self._data))
        except Exception as e:
            logger.error("Failed to load history: %s", e)
            self._data = {}

    def _save(self) -> None:
        with self._save_lock:
            try:
                payload = {
                    account_id: [p.to_json() for p in series]
                    for account_id, series in list(self._data.items())
                }
                self._backend.set(HISTORY_KEY, payload)
            except Exception as e:
                logger.error("Failed to save history: %s", e)
