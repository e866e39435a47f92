"""quota_sentinel.history: Usage history persistence and depletion prediction."""

from quota_sentinel.history.kv import (
    JsonFileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
)
from quota_sentinel.history.prediction import DepletionPredictor
from quota_sentinel.history.store import HISTORY_KEY, HistoryStore, utc_now

__all__ = [
    "DepletionPredictor",
    "HISTORY_KEY",
    "HistoryStore",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "utc_now",
]
