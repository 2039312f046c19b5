import os
from dataclasses import dataclass, field
from typing import FrozenSet

from dotenv import load_dotenv

load_dotenv()  # Load environment variables from .env file


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a valid integer, got {raw!r}")


def _csv_env(name: str) -> FrozenSet[str]:
    raw = os.environ.get(name, "")
    return frozenset(part.strip().lower() for part in raw.split(",") if part.strip())


# --------------------------------------------------
# API Configuration
# --------------------------------------------------
ALLOWED_ORIGINS = os.environ.get("ALLOWED_ORIGINS", "*")

# --------------------------------------------------
# Governance Classification
# --------------------------------------------------
# Days since the last qualifying action after which an open PR counts as stalled
STALL_THRESHOLD_DAYS = _int_env("STALL_THRESHOLD_DAYS", 60)

# GitHub logins treated as editors in addition to those recorded in the database
EIP_EDITORS = _csv_env("EIP_EDITORS")

# --------------------------------------------------
# Trending
# --------------------------------------------------
TRENDING_WINDOW_DAYS = _int_env("TRENDING_WINDOW_DAYS", 7)
TRENDING_DEFAULT_LIMIT = _int_env("TRENDING_DEFAULT_LIMIT", 20)

# --------------------------------------------------
# Batch / Pool Configuration
# --------------------------------------------------
DB_POOL_MIN = _int_env("DB_POOL_MIN", 1)
DB_POOL_MAX = _int_env("DB_POOL_MAX", 5)
BATCH_MAX_WORKERS = _int_env("BATCH_MAX_WORKERS", 4)

# Seconds a caller waits for a free pooled connection before giving up
DB_POOL_WAIT_SECONDS = _int_env("DB_POOL_WAIT_SECONDS", 10)

# Rollup views (buckets, funnels, heatmaps) are memoized for this long
ROLLUP_CACHE_TTL_SECONDS = _int_env("ROLLUP_CACHE_TTL_SECONDS", 300)


@dataclass(frozen=True)
class LifecycleSettings:
    """Snapshot of the tunables used by the lifecycle service."""
    stall_threshold_days: int = STALL_THRESHOLD_DAYS
    trending_window_days: int = TRENDING_WINDOW_DAYS
    trending_default_limit: int = TRENDING_DEFAULT_LIMIT
    batch_max_workers: int = BATCH_MAX_WORKERS
    rollup_cache_ttl_seconds: int = ROLLUP_CACHE_TTL_SECONDS
    editors: FrozenSet[str] = field(default_factory=lambda: EIP_EDITORS)

    def effective_workers(self, pool_max: int = DB_POOL_MAX) -> int:
        """Batch workers never exceed the connection pool size."""
        return max(1, min(self.batch_max_workers, pool_max))


def get_settings() -> LifecycleSettings:
    return LifecycleSettings()
