"""quota_sentinel.monitor: Refresh scheduling and orchestration."""

from quota_sentinel.monitor.manager import (
    RefreshReport,
    UsageListener,
    UsageMonitor,
    build_monitor,
)
from quota_sentinel.monitor.scheduler import RefreshScheduler

__all__ = [
    "RefreshReport",
    "RefreshScheduler",
    "UsageListener",
    "UsageMonitor",
    "build_monitor",
]
