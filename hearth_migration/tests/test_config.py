"""Tests for configuration defaults and environment fallbacks."""

from __future__ import annotations

from hearth_migration.config import (
    DEFAULT_IGNORED_FIELDS,
    DualWriteConfig,
    env_fallback_flags,
    get_config,
)


def test_env_fallback_reads_environment_each_time(monkeypatch):
    monkeypatch.delenv("ENABLE_DUAL_WRITE", raising=False)
    monkeypatch.delenv("ENABLE_SUPABASE_PRIMARY", raising=False)
    assert env_fallback_flags() == (False, False)

    monkeypatch.setenv("ENABLE_DUAL_WRITE", "TRUE")
    monkeypatch.setenv("ENABLE_SUPABASE_PRIMARY", "yes")
    assert env_fallback_flags() == (True, True)

    monkeypatch.setenv("ENABLE_DUAL_WRITE", "off")
    assert env_fallback_flags() == (False, True)


def test_default_ignored_fields_cover_ids_and_timestamps():
    assert {"id", "createdAt", "created_at", "updatedAt", "updated_at"} <= DEFAULT_IGNORED_FIELDS
    assert DEFAULT_IGNORED_FIELDS <= DualWriteConfig().ignored_fields


def test_config_singleton():
    cfg = get_config()

    assert cfg is get_config()
    assert "record_spending" in cfg.dual_write.target_only_methods
    assert cfg.dual_write.flags_config_key


def test_flags_are_not_snapshotted_into_config():
    import hearth_migration.config as config_module

    assert not hasattr(DualWriteConfig(), "enable_dual_write")
    assert not hasattr(DualWriteConfig(), "enable_supabase_primary")
    assert not hasattr(config_module, "ENABLE_DUAL_WRITE")
