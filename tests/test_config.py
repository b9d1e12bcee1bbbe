"""Tests for settings loading."""

from decimal import Decimal
from pathlib import Path

from cla_engine.config import (
    CONFIG_ENV_VAR,
    DEFAULT_RULE_CATALOG,
    EngineSettings,
    load_settings,
    settings_from_dict,
)


def test_bundled_config_matches_defaults(monkeypatch):
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    settings = load_settings()
    assert settings.pf_employee_threshold == 20
    assert settings.esi_employee_threshold == 10
    assert settings.plan_upgrade_turnover == Decimal("5000000")
    assert settings.late_fee_per_day == Decimal("50")
    assert settings.employee_count_thresholds == (10, 20)
    assert settings.rule_catalog == DEFAULT_RULE_CATALOG
    assert settings.collections.tasks == "compliance_task_instances"


def test_missing_keys_keep_defaults_and_unknown_ignored():
    settings = settings_from_dict({"pf_employee_threshold": 25, "colour": "blue"})
    assert settings.pf_employee_threshold == 25
    assert settings.esi_employee_threshold == EngineSettings().esi_employee_threshold
    assert not hasattr(settings, "colour")


def test_collections_partially_overridden():
    settings = settings_from_dict({"collections": {"tasks": "tasks_v2", "bogus": "x"}})
    assert settings.collections.tasks == "tasks_v2"
    assert settings.collections.events == "compliance_events"


def test_relative_catalog_resolves_against_config_dir(tmp_path: Path):
    config = tmp_path / "engine.yaml"
    config.write_text("rule_catalog: rules/custom.yaml\nlate_fee_per_day: 100\n", encoding="utf-8")
    settings = load_settings(config)
    assert settings.rule_catalog == tmp_path / "rules" / "custom.yaml"
    assert settings.late_fee_per_day == Decimal("100")


def test_env_var_used_when_no_explicit_path(tmp_path: Path, monkeypatch):
    config = tmp_path / "env.yaml"
    config.write_text("gstr_variance_high_pct: 15.0\n", encoding="utf-8")
    monkeypatch.setenv(CONFIG_ENV_VAR, str(config))
    assert load_settings().gstr_variance_high_pct == 15.0


def test_missing_file_falls_back_to_defaults(tmp_path: Path):
    settings = load_settings(tmp_path / "absent.yaml")
    assert settings == EngineSettings()


def test_empty_file_gives_defaults(tmp_path: Path):
    config = tmp_path / "empty.yaml"
    config.write_text("", encoding="utf-8")
    assert load_settings(config).pf_employee_threshold == 20
