# hearth_migration/config.py

"""
Central configuration for the dual-write migration layer.

Values are read from environment variables or a .env file. Nothing is
required at import time: every setting has a default so the flag manager
can always fall back to environment-derived flags.

This module automatically loads .env file if python-dotenv is installed.
Otherwise, it falls back to environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import FrozenSet

# Load .env file if python-dotenv is installed (optional dependency)
try:
    from dotenv import load_dotenv

    load_dotenv()
except ImportError:
    # If dotenv is not installed, silently ignore; env vars still work.
    pass


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("true", "1", "yes")


# ---------------------------------------------------------
#  Dual-write settings
# ---------------------------------------------------------

FEATURE_FLAGS_CONFIG_KEY = os.getenv("DUAL_WRITE_FLAGS_KEY", "dual_write_feature_flags")
FLAG_CACHE_TTL_SECONDS = float(os.getenv("DUAL_WRITE_FLAG_CACHE_TTL_SECONDS", "5"))

# Warning-level diffs with more ops than this raise an alert
ALERT_DIFF_OP_THRESHOLD = int(os.getenv("DUAL_WRITE_ALERT_DIFF_THRESHOLD", "5"))
ALERT_WEBHOOK_URL = os.getenv("DUAL_WRITE_ALERT_WEBHOOK_URL", "")

# Identity and timestamp columns that legitimately differ between stores
DEFAULT_IGNORED_FIELDS: FrozenSet[str] = frozenset(
    {
        "id",
        "createdAt",
        "created_at",
        "updatedAt",
        "updated_at",
        "deletedAt",
        "deleted_at",
    }
)
EXTRA_IGNORED_FIELDS: FrozenSet[str] = frozenset(
    f.strip() for f in os.getenv("DUAL_WRITE_IGNORE_FIELDS", "").split(",") if f.strip()
)

# Methods only implemented on the Supabase side (stored procedures)
TARGET_ONLY_METHODS: FrozenSet[str] = frozenset({"record_spending"})

# ---------------------------------------------------------
#  Store A: Postgres via SQLAlchemy
# ---------------------------------------------------------

POSTGRES_URL = os.getenv("POSTGRES_URL", "")  # Full connection string (optional)
POSTGRES_HOST = os.getenv("POSTGRES_HOST", "localhost")
POSTGRES_PORT = int(os.getenv("POSTGRES_PORT", "5432"))
POSTGRES_DB = os.getenv("POSTGRES_DB", "hearth")
POSTGRES_USER = os.getenv("POSTGRES_USER", "postgres")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "")
POSTGRES_ECHO = _env_bool("POSTGRES_ECHO")

# ---------------------------------------------------------
#  Store B: Supabase REST
# ---------------------------------------------------------

SUPABASE_URL = os.getenv("SUPABASE_URL", "") or os.getenv("NEXT_PUBLIC_SUPABASE_URL", "")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
SUPABASE_TIMEOUT_SECONDS = float(os.getenv("SUPABASE_TIMEOUT_SECONDS", "10"))


# ---------------------------------------------------------
#  Typed config sections
# ---------------------------------------------------------


@dataclass(frozen=True)
class DualWriteConfig:
    flags_config_key: str = FEATURE_FLAGS_CONFIG_KEY
    flag_cache_ttl_seconds: float = FLAG_CACHE_TTL_SECONDS
    alert_diff_op_threshold: int = ALERT_DIFF_OP_THRESHOLD
    alert_webhook_url: str = ALERT_WEBHOOK_URL
    ignored_fields: FrozenSet[str] = field(
        default_factory=lambda: DEFAULT_IGNORED_FIELDS | EXTRA_IGNORED_FIELDS
    )
    target_only_methods: FrozenSet[str] = TARGET_ONLY_METHODS


@dataclass(frozen=True)
class PostgresConfig:
    """Postgres database configuration for the legacy store and audit tables."""
    url: str = POSTGRES_URL
    host: str = POSTGRES_HOST
    port: int = POSTGRES_PORT
    db: str = POSTGRES_DB
    user: str = POSTGRES_USER
    password: str = POSTGRES_PASSWORD
    echo: bool = POSTGRES_ECHO


@dataclass(frozen=True)
class SupabaseConfig:
    url: str = SUPABASE_URL
    service_role_key: str = SUPABASE_SERVICE_ROLE_KEY
    timeout_seconds: float = SUPABASE_TIMEOUT_SECONDS


@dataclass(frozen=True)
class AppConfig:
    dual_write: DualWriteConfig
    postgres: PostgresConfig
    supabase: SupabaseConfig


# ---------------------------------------------------------
#  SINGLETON ACCESSOR
# ---------------------------------------------------------

_config_singleton: AppConfig | None = None


def get_config() -> AppConfig:
    global _config_singleton
    if _config_singleton is None:
        _config_singleton = AppConfig(
            dual_write=DualWriteConfig(),
            postgres=PostgresConfig(),
            supabase=SupabaseConfig(),
        )
    return _config_singleton


def env_fallback_flags() -> tuple[bool, bool]:
    """Read the fallback flags fresh from the environment.

    Used only when the config store cannot be read, so an operator can flip
    `ENABLE_DUAL_WRITE` / `ENABLE_SUPABASE_PRIMARY` without a restart.

    Returns:
        (enable_dual_write, enable_supabase_primary)
    """
    return _env_bool("ENABLE_DUAL_WRITE"), _env_bool("ENABLE_SUPABASE_PRIMARY")
