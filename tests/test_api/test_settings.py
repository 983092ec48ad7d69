"""Tests for settings validation and environment overrides."""

from pathlib import Path

import pytest

from sextant.config.settings import APIConfig, BudgetConfig, RulesConfig, SextantConfig, StoreConfig


def test_api_config_default_origins(monkeypatch):
    monkeypatch.delenv("SEXTANT_ALLOWED_ORIGINS", raising=False)
    cfg = APIConfig()
    assert cfg.allowed_origins == ["http://localhost", "http://127.0.0.1"]


def test_api_config_rejects_wildcard_origin():
    with pytest.raises(ValueError):
        APIConfig(allowed_origins=["*"])


def test_api_config_rejects_wildcard_origin_from_env(monkeypatch):
    monkeypatch.setenv("SEXTANT_ALLOWED_ORIGINS", "https://a.dev, *")
    with pytest.raises(ValueError):
        APIConfig()


def test_api_config_rejects_invalid_origin_url():
    with pytest.raises(ValueError):
        APIConfig(allowed_origins=["localhost:3000"])


def test_budget_defaults(monkeypatch):
    for name in ("SEXTANT_MAX_PASSES", "SEXTANT_MAX_TOOL_INVOCATIONS", "SEXTANT_MAX_DURATION_MS"):
        monkeypatch.delenv(name, raising=False)
    cfg = BudgetConfig()
    assert (cfg.max_passes, cfg.max_tool_invocations, cfg.max_duration_ms) == (3, 48, 5000)


def test_budget_from_env(monkeypatch):
    monkeypatch.setenv("SEXTANT_MAX_TOOL_INVOCATIONS", "12")
    assert BudgetConfig().max_tool_invocations == 12


def test_budget_rejects_non_positive():
    with pytest.raises(ValueError):
        BudgetConfig(max_passes=0)


def test_budget_override_is_partial():
    base = BudgetConfig(max_passes=3, max_tool_invocations=48, max_duration_ms=5000)
    updated = base.override(max_duration_ms=100, max_passes=None)
    assert updated.max_duration_ms == 100
    assert updated.max_passes == 3
    assert base.max_duration_ms == 5000
    with pytest.raises(ValueError):
        base.override(max_tool_invocations=-1)


def test_store_config_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("SEXTANT_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("SEXTANT_STORE_LOCK_TIMEOUT_S", "0.5")
    cfg = StoreConfig()
    assert cfg.data_dir == Path(tmp_path)
    assert cfg.lock_timeout_s == 0.5


def test_store_config_rejects_non_positive_lock_timeout():
    with pytest.raises(ValueError):
        StoreConfig(lock_timeout_s=0)
    with pytest.raises(ValueError):
        StoreConfig(stale_lock_s=-1)


def test_rules_config(monkeypatch, tmp_path):
    monkeypatch.setenv("SEXTANT_RULES_DIR", str(tmp_path))
    monkeypatch.setenv("SEXTANT_INCLUDE_FIXTURE_RULES", "false")
    cfg = RulesConfig()
    assert cfg.rules_dir == Path(tmp_path)
    assert cfg.include_fixture_rules is False


def test_log_level_normalized():
    assert SextantConfig(log_level="debug").log_level == "DEBUG"
    with pytest.raises(ValueError):
        SextantConfig(log_level="chatty")
