"""Shared fixtures: a fixed clock, an in-memory store and a small rule catalog."""

from datetime import datetime, timezone

import pytest

from cla_engine.audit import AuditTrailWriter
from cla_engine.config import EngineSettings
from cla_engine.engine import ComplianceEngine
from cla_engine.graph import ComplianceRuleGraph
from cla_engine.orchestrator import TaskOrchestrator
from cla_engine.store import InMemoryDocumentStore

FIXED_NOW = datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc)

ALL_ENTITIES = ["private_limited", "llp", "partnership"]


def catalog_rule(rule_id, **overrides):
    """A minimal catalog record; keys follow the camelCase catalog format."""
    record = {
        "id": rule_id,
        "name": rule_id.replace("_", " ").title(),
        "entityTypes": ALL_ENTITIES,
        "triggerEvent": "month_end",
        "complianceType": "gst",
        "frequency": "monthly",
        "dueDateLogic": {"type": "fixed_day", "dayOfMonth": 11, "monthOffset": 1},
        "requiredDocuments": [],
        "dependencies": [],
        "taskConfiguration": {"priority": "high", "requiresCAReview": False},
        "active": True,
        "version": 1,
    }
    record.update(overrides)
    return record


SMALL_CATALOG = [
    catalog_rule(
        "gstr1",
        name="GSTR-1",
        requiredDocuments=[
            {"documentType": "sales_register", "mandatory": True},
            {"documentType": "credit_notes", "mandatory": False},
        ],
        taskConfiguration={"priority": "high", "requiresCAReview": True},
    ),
    catalog_rule(
        "gstr3b",
        name="GSTR-3B",
        dueDateLogic={"type": "fixed_day", "dayOfMonth": 20, "monthOffset": 1},
        dependencies=["gstr1"],
    ),
    catalog_rule(
        "pf_registration",
        name="PF Registration",
        triggerEvent="employee_count_threshold",
        triggerConditions={"employeeCount": {"gte": 20}},
        complianceType="pf",
        frequency="one_time",
        dueDateLogic={"type": "days_after_event", "daysAfter": 30},
        requiredDocuments=[{"documentType": "employee_register", "mandatory": True}],
    ),
    catalog_rule(
        "esi_registration",
        name="ESI Registration",
        triggerEvent="employee_count_threshold",
        triggerConditions={"employeeCount": {"gte": 10}},
        complianceType="esi",
        frequency="one_time",
        dueDateLogic={"type": "days_after_event", "daysAfter": 15},
    ),
    catalog_rule(
        "aoc4",
        name="AOC-4",
        entityTypes=["private_limited"],
        triggerEvent="financial_year_end",
        complianceType="mca",
        frequency="annual",
        dueDateLogic={"type": "year_end"},
    ),
    catalog_rule("legacy_return", name="Legacy Return", active=False),
]


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def store(clock) -> InMemoryDocumentStore:
    return InMemoryDocumentStore(clock=clock)


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings()


@pytest.fixture
def graph() -> ComplianceRuleGraph:
    return ComplianceRuleGraph(SMALL_CATALOG)


@pytest.fixture
def audit(store) -> AuditTrailWriter:
    return AuditTrailWriter(store)


@pytest.fixture
def orchestrator(store, audit, clock) -> TaskOrchestrator:
    return TaskOrchestrator(store, audit, clock=clock)


@pytest.fixture
def engine(settings, graph, store, clock) -> ComplianceEngine:
    return ComplianceEngine.create(settings, graph=graph, store=store, clock=clock)


@pytest.fixture
def firm(store, settings):
    """Seed a private limited firm profile and return its ids."""
    store.set(
        settings.collections.firms,
        "firm-1",
        {"user_id": "user-1", "entity_type": "private_limited"},
    )
    return "user-1", "firm-1"
