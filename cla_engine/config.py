"""
Engine configuration.

Settings are read from a YAML file (the bundled ``data/engine_config.yaml``
unless ``CLA_ENGINE_CONFIG`` or an explicit path says otherwise). Missing
keys keep their defaults, unknown keys are ignored.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional, Union

import structlog
import yaml

logger = structlog.get_logger(__name__)

DATA_DIR = Path(__file__).parent / "data"
DEFAULT_CONFIG_FILE = DATA_DIR / "engine_config.yaml"
DEFAULT_RULE_CATALOG = DATA_DIR / "default_rules.yaml"
CONFIG_ENV_VAR = "CLA_ENGINE_CONFIG"


@dataclass(frozen=True)
class Collections:
    events: str = "compliance_events"
    tasks: str = "compliance_task_instances"
    task_keys: str = "compliance_task_keys"
    risks: str = "compliance_risks"
    recommendations: str = "plan_recommendations"
    audit_log: str = "compliance_audit_log"
    documents: str = "vault_documents"
    firms: str = "firms"


@dataclass(frozen=True)
class EngineSettings:
    """Thresholds, collection names and catalog location for one engine."""

    # Eligibility
    pf_employee_threshold: int = 20
    esi_employee_threshold: int = 10
    plan_upgrade_turnover: Decimal = Decimal("5000000")
    mca_entity_types: tuple[str, ...] = (
        "private_limited",
        "public_limited",
        "one_person_company",
    )

    # Risk detection
    gstr_variance_medium_pct: float = 5.0
    gstr_variance_high_pct: float = 10.0
    itc_shortfall_high_pct: float = 10.0
    delayed_filing_high_days: int = 15
    delayed_filing_critical_days: int = 30
    late_fee_per_day: Decimal = Decimal("50")

    # Event triggers
    employee_count_thresholds: tuple[int, ...] = (10, 20)
    default_entity_type: str = "private_limited"

    rule_catalog: Path = DEFAULT_RULE_CATALOG
    collections: Collections = field(default_factory=Collections)
    log_level: str = "INFO"


_DECIMAL_FIELDS = {"plan_upgrade_turnover", "late_fee_per_day"}
_TUPLE_FIELDS = {"mca_entity_types", "employee_count_thresholds"}


def _coerce(name: str, value: Any, config_dir: Path) -> Any:
    if name in _DECIMAL_FIELDS:
        return Decimal(str(value))
    if name in _TUPLE_FIELDS:
        return tuple(value)
    if name == "rule_catalog":
        path = Path(value)
        return path if path.is_absolute() else config_dir / path
    if name == "collections":
        known = {f.name for f in fields(Collections)}
        return Collections(**{k: v for k, v in value.items() if k in known})
    return value


def settings_from_dict(
    data: dict[str, Any], base_dir: Optional[Path] = None
) -> EngineSettings:
    """Overlay a plain mapping on top of the default settings."""
    known = {f.name for f in fields(EngineSettings)}
    config_dir = base_dir or Path.cwd()
    overrides = {
        name: _coerce(name, value, config_dir)
        for name, value in (data or {}).items()
        if name in known and value is not None
    }
    ignored = sorted(set(data or {}) - known)
    if ignored:
        logger.warning("config_keys_ignored", keys=ignored)
    return replace(EngineSettings(), **overrides)


def load_settings(path: Optional[Union[str, Path]] = None) -> EngineSettings:
    """
    Load settings from YAML.

    Resolution order: explicit ``path``, then ``$CLA_ENGINE_CONFIG``,
    then the bundled defaults file.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    config_path = Path(path or env_path or DEFAULT_CONFIG_FILE)

    if not config_path.exists():
        logger.warning("config_file_not_found", path=str(config_path))
        return EngineSettings()

    with open(config_path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    settings = settings_from_dict(data, base_dir=config_path.parent)
    logger.info("config_loaded", path=str(config_path))
    return settings


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through a level-filtering console logger."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        cache_logger_on_first_use=True,
    )
