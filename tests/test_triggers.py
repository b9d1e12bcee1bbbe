"""Tests for the EventTriggerService (event fan-out and business hooks)."""

from datetime import date, datetime, timezone

import pytest

from cla_engine.engine import ComplianceEngine
from cla_engine.errors import StoreError
from cla_engine.graph import ComplianceRuleGraph
from cla_engine.models import AuditAction, SystemEventType, TaskStatus
from cla_engine.triggers import EventTriggerService, dedupe_key

from conftest import catalog_rule


@pytest.fixture
def triggers(engine: ComplianceEngine) -> EventTriggerService:
    return engine.triggers


# ── process_compliance_event ────────────────────────────────────────


def test_month_end_creates_tasks_in_dependency_order(engine, triggers):
    result = triggers.process_compliance_event(
        "u1", "f1", SystemEventType.MONTH_END, {}, "private_limited"
    )
    assert [o.rule_id for o in result.outcomes] == ["gstr1", "gstr3b"]
    assert len(result.task_ids) == 2
    assert result.failures == []

    tasks = engine.orchestrator.get_tasks_for_user("u1")
    assert {t.rule_id: t.due_date for t in tasks} == {
        "gstr1": date(2024, 2, 11),
        "gstr3b": date(2024, 2, 20),
    }
    assert all(t.status == TaskStatus.PENDING for t in tasks)
    assert all(t.trigger_event_id == result.event_id for t in tasks)


def test_event_recorded_and_marked_processed(engine, triggers):
    result = triggers.process_compliance_event(
        "u1", "f1", "month_end", {"month": 1}, "llp"
    )
    event = engine.store.get("compliance_events", result.event_id)
    assert event["processed"] is True
    assert event["processed_at"] is not None
    assert event["payload"] == {"month": 1}
    assert event["entity_type"] == "llp"


def test_event_audit_entry(engine, triggers):
    result = triggers.process_compliance_event("u1", "f1", "month_end", {}, "llp")
    entry = engine.audit.get_entity_history("event", result.event_id)[0]
    assert entry.action == AuditAction.EVENT_TRIGGERED
    assert entry.details["tasks_created"] == 2
    assert entry.details["failed_rules"] == []


def test_event_with_no_matching_rules(engine, triggers):
    result = triggers.process_compliance_event(
        "u1", "f1", "invoice_generated", {}, "llp"
    )
    assert result.outcomes == []
    assert engine.store.get("compliance_events", result.event_id)["processed"] is True


def test_payload_conditions_applied(engine, triggers):
    result = triggers.process_compliance_event(
        "u1", "f1", "employee_count_threshold", {"employeeCount": 12}, "llp"
    )
    assert [o.rule_id for o in result.outcomes] == ["esi_registration"]
    assert result.outcomes[0].due_date == date(2024, 1, 30)


def test_replaying_same_payload_creates_new_tasks(engine, triggers):
    first = triggers.process_compliance_event("u1", "f1", "month_end", {}, "llp")
    second = triggers.process_compliance_event("u1", "f1", "month_end", {}, "llp")
    assert first.event_id != second.event_id
    assert set(first.task_ids).isdisjoint(second.task_ids)
    assert len(engine.orchestrator.get_tasks_for_user("u1")) == 4


def test_dedupe_key_is_per_rule_and_event():
    assert dedupe_key("gstr1", "evt-1") == "gstr1:evt-1"


def test_failure_on_one_rule_does_not_stop_others(engine, triggers, monkeypatch):
    original = engine.orchestrator.create_task

    def flaky(user_id, firm_id, rule, *args, **kwargs):
        if rule.id == "gstr1":
            raise StoreError("write rejected")
        return original(user_id, firm_id, rule, *args, **kwargs)

    monkeypatch.setattr(engine.orchestrator, "create_task", flaky)

    result = triggers.process_compliance_event("u1", "f1", "month_end", {}, "llp")
    assert [o.rule_id for o in result.failures] == ["gstr1"]
    assert "write rejected" in result.failures[0].error
    assert len(result.task_ids) == 1

    entry = engine.audit.get_entity_history("event", result.event_id)[0]
    assert entry.details["failed_rules"] == ["gstr1"]
    assert engine.store.get("compliance_events", result.event_id)["processed"] is True


def test_cycle_edges_reported_in_result(settings, store, clock):
    graph = ComplianceRuleGraph(
        [catalog_rule("a", dependencies=["b"]), catalog_rule("b", dependencies=["a"])]
    )
    engine = ComplianceEngine.create(settings, graph=graph, store=store, clock=clock)
    result = engine.triggers.process_compliance_event("u1", "f1", "month_end", {}, "llp")
    assert len(result.task_ids) == 2
    assert result.skipped_edges == [("b", "a")]


# ── Entity resolution ───────────────────────────────────────────────


def test_entity_type_from_firm_profile(triggers, firm):
    user_id, firm_id = firm
    assert triggers.get_entity_type_for_firm(user_id, firm_id) == "private_limited"


def test_missing_firm_returns_none(triggers):
    assert triggers.get_entity_type_for_firm("u1", "ghost") is None
    assert triggers.on_month_end("u1", "ghost") is None
    assert triggers.on_employee_count_changed("u1", "ghost", 30) == []


def test_firm_without_entity_type_uses_default(triggers, store):
    store.set("firms", "bare", {"user_id": "u1"})
    assert triggers.get_entity_type_for_firm("u1", "bare") == "private_limited"


def test_store_failure_during_lookup_returns_none(triggers, monkeypatch):
    def broken(collection, doc_id):
        raise StoreError("unavailable")

    monkeypatch.setattr(triggers.store, "get", broken)
    assert triggers.get_entity_type_for_firm("u1", "f1") is None


# ── Business hooks ──────────────────────────────────────────────────


def test_on_month_end(engine, triggers, firm):
    user_id, firm_id = firm
    result = triggers.on_month_end(user_id, firm_id)
    assert result.event_type == "month_end"
    assert result.entity_type == "private_limited"
    event = engine.store.get("compliance_events", result.event_id)
    assert event["payload"] == {"month": 1, "year": 2024}


def test_on_quarter_end_payload(engine, triggers, firm):
    result = triggers.on_quarter_end(*firm)
    event = engine.store.get("compliance_events", result.event_id)
    assert event["payload"] == {"quarter": 1, "year": 2024}


def test_on_financial_year_end_label(engine, triggers, firm):
    result = triggers.on_financial_year_end(*firm)
    event = engine.store.get("compliance_events", result.event_id)
    # January 2024 belongs to FY 2023-24.
    assert event["payload"] == {"financialYear": "2023-24"}
    assert [o.rule_id for o in result.outcomes] == ["aoc4"]


def test_financial_year_label_after_april(settings, graph, store, firm):
    engine = ComplianceEngine.create(
        settings,
        graph=graph,
        store=store,
        clock=lambda: datetime(2024, 6, 1, tzinfo=timezone.utc),
    )
    result = engine.triggers.on_financial_year_end(*firm)
    event = store.get("compliance_events", result.event_id)
    assert event["payload"] == {"financialYear": "2024-25"}


def test_on_employee_count_changed_fires_reached_thresholds(triggers, firm):
    results = triggers.on_employee_count_changed(*firm, employee_count=25)
    assert [r.event_type for r in results] == [
        "employee_added",
        "employee_count_threshold",
        "employee_count_threshold",
    ]
    rule_ids = {o.rule_id for r in results for o in r.outcomes}
    assert rule_ids == {"pf_registration", "esi_registration"}


def test_rule_matching_several_thresholds_gets_task_per_event(triggers, firm):
    results = triggers.on_employee_count_changed(*firm, employee_count=25)
    esi_tasks = [
        o.task_id
        for r in results
        for o in r.outcomes
        if o.rule_id == "esi_registration" and o.ok
    ]
    assert len(esi_tasks) == 2
    assert esi_tasks[0] != esi_tasks[1]


def test_on_employee_count_below_thresholds(triggers, firm):
    results = triggers.on_employee_count_changed(*firm, employee_count=5)
    assert [r.event_type for r in results] == ["employee_added"]


def test_on_gst_registration_payload(engine, triggers, firm):
    result = triggers.on_gst_registration(*firm, gstin="29ABCDE1234F1Z5")
    event = engine.store.get("compliance_events", result.event_id)
    assert event["payload"] == {"gstin": "29ABCDE1234F1Z5", "gstRegistered": True}


def test_on_payroll_run_defaults_employee_count(engine, triggers, firm):
    result = triggers.on_payroll_run(*firm, payroll_data={"month": "2024-01"})
    event = engine.store.get("compliance_events", result.event_id)
    assert event["payload"]["employeeCount"] == 0


def test_on_subscription_activated_payload(engine, triggers, firm):
    result = triggers.on_compliance_subscription_activated(*firm, plan_tier="enterprise")
    event = engine.store.get("compliance_events", result.event_id)
    assert event["payload"] == {"planTier": "enterprise"}
