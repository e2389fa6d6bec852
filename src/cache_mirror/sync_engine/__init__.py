# SPDX-License-Identifier: MIT
"""Cache synchronization engine."""

from .discrepancy import ResyncCoordinator, choose_strategy, detect_discrepancy
from .engine import CacheKeys, CacheSyncEngine
from .health import HealthChecker, HealthMonitor, RecoveryLadder
from .metrics import SyncMetricsRecorder
from .notifications import ChangeNotificationReceiver
from .state import SyncState


__all__ = [
    "CacheKeys",
    "CacheSyncEngine",
    "ChangeNotificationReceiver",
    "HealthChecker",
    "HealthMonitor",
    "RecoveryLadder",
    "ResyncCoordinator",
    "SyncMetricsRecorder",
    "SyncState",
    "choose_strategy",
    "detect_discrepancy",
]
