# SPDX-License-Identifier: MIT
"""Constants used throughout the cache mirror.

This module centralizes the default tunables:

- **Population**: page size and provider page cap
- **Resync policy**: the targeted-sync threshold and per-priority group sync intervals
- **Retry buffer**: attempt limit, backoff base/cap, drain throttle and retention
- **Health**: count-probe tolerance, lightweight sync freshness and window
- **Cache TTLs**: lifetimes of the derived cache entries
"""

# Population
DEFAULT_PAGE_SIZE: int = 200
DEFAULT_MAX_PAGES: int = 1000
DEFAULT_ORIGIN_TIMEOUT: float = 30.0

# Resync policy
DEFAULT_TARGETED_SYNC_THRESHOLD: int = 100
DEFAULT_CHANGE_DETECTION_WINDOW_HOURS: int = 24

# Per-group periodic sync intervals (minutes)
GROUP_SYNC_INTERVAL_FAST: int = 30
GROUP_SYNC_INTERVAL_NORMAL: int = 60
GROUP_SYNC_INTERVAL_SLOW: int = 120

# Retry buffer
DEFAULT_MAX_ATTEMPTS: int = 5
DEFAULT_BACKOFF_BASE_SECONDS: float = 30.0
DEFAULT_BACKOFF_CAP_SECONDS: float = 300.0
DEFAULT_DRAIN_DELAY_SECONDS: float = 1.0
DEFAULT_RETENTION_DAYS: int = 7
DEFAULT_QUOTA_WINDOW_SECONDS: int = 3600

# Health check
DEFAULT_HEALTH_TOLERANCE: int = 10
DEFAULT_LIGHTWEIGHT_MIN_AGE_SECONDS: int = 3600  # 1 hour
DEFAULT_LIGHTWEIGHT_WINDOW_HOURS: int = 24

# Cache TTL (seconds)
RECORDS_TTL: int = 1800  # 30 minutes
GROUP_INDEX_TTL: int = 1800  # 30 minutes
METADATA_TTL: int = 3600  # 1 hour
SYNC_TIMESTAMP_TTL: int = 86400  # 24 hours
METRICS_TTL: int = 604800  # 7 days

# Scheduler intervals (seconds)
DRAIN_INTERVAL: int = 300
BUFFER_CLEANUP_INTERVAL: int = 3600
HEALTH_CHECK_INTERVAL: int = 3600
CHANGE_DETECTION_INTERVAL: int = 900
SCHEDULER_POLL_INTERVAL: float = 1.0

# Default cache key prefix
DEFAULT_KEY_PREFIX: str = "mirror"
