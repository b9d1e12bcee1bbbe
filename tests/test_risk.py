"""Tests for the RiskDetectionEngine."""

from datetime import date
from decimal import Decimal

import pytest

from cla_engine.engine import ComplianceEngine
from cla_engine.errors import RiskNotFoundError, StoreError
from cla_engine.models import AuditAction, RiskStatus, RiskType, Severity, TaskStatus
from cla_engine.risk import RiskDetectionEngine


@pytest.fixture
def risks(engine: ComplianceEngine) -> RiskDetectionEngine:
    return engine.risks


# ── GSTR-1 vs GSTR-3B ───────────────────────────────────────────────


def test_gstr_variance_within_tolerance(risks):
    assert risks.detect_gstr_mismatch("u1", "f1", Decimal("1000000"), Decimal("960000")) is None


def test_gstr_variance_exactly_five_percent_is_not_flagged(risks):
    assert risks.detect_gstr_mismatch("u1", "f1", 1000000, 950000) is None


def test_gstr_variance_medium(risks):
    risk_id = risks.detect_gstr_mismatch("u1", "f1", Decimal("10000000"), Decimal("10600000"))
    risk = risks.get_risk(risk_id)
    assert risk.severity == Severity.MEDIUM
    assert risk.risk_type == RiskType.GSTR_MISMATCH
    assert risk.risk_data["variance_percent"] == pytest.approx(6.0)
    assert risk.risk_data["variance"] == Decimal("600000")


def test_gstr_variance_high(risks):
    risk_id = risks.detect_gstr_mismatch("u1", "f1", Decimal("10000000"), Decimal("8800000"))
    risk = risks.get_risk(risk_id)
    assert risk.severity == Severity.HIGH
    assert risk.risk_data["variance_percent"] == pytest.approx(12.0)
    assert len(risk.recommended_actions) == 2


def test_gstr_zero_turnover_not_flagged(risks):
    assert risks.detect_gstr_mismatch("u1", "f1", 0, 50000) is None


def test_detection_writes_audit_entry(engine, risks):
    risk_id = risks.detect_gstr_mismatch("u1", "f1", 100, 150)
    entry = engine.audit.get_entity_history("risk", risk_id)[0]
    assert entry.action == AuditAction.RISK_DETECTED
    assert entry.details == {"risk_type": "gstr_mismatch", "severity": "high"}


# ── ITC shortfall ───────────────────────────────────────────────────


def test_itc_no_shortfall(risks):
    assert risks.detect_itc_shortfall("u1", "f1", Decimal("5000"), Decimal("5000")) is None
    assert risks.detect_itc_shortfall("u1", "f1", Decimal("6000"), Decimal("5000")) is None


def test_itc_small_shortfall_is_medium(risks):
    risk_id = risks.detect_itc_shortfall("u1", "f1", Decimal("95000"), Decimal("100000"))
    risk = risks.get_risk(risk_id)
    assert risk.severity == Severity.MEDIUM
    assert risk.risk_data["shortfall"] == Decimal("5000")


def test_itc_large_shortfall_is_high(risks):
    risk_id = risks.detect_itc_shortfall("u1", "f1", Decimal("80000"), Decimal("100000"))
    assert risks.get_risk(risk_id).severity == Severity.HIGH


# ── Delayed filings ─────────────────────────────────────────────────


def test_delayed_filing_severity_bands(engine, graph, risks):
    rule = graph.get_rule_by_id("gstr1")
    create = engine.orchestrator.create_task
    create("u1", "f1", rule, date(2023, 12, 6))   # 40 days
    create("u1", "f1", rule, date(2023, 12, 26))  # 20 days
    create("u1", "f1", rule, date(2024, 1, 10))   # 5 days
    create("u1", "f1", rule, date(2024, 2, 11))   # not due

    risk_ids = risks.detect_delayed_filings("u1")
    found = [risks.get_risk(r) for r in risk_ids]
    assert [r.severity for r in found] == [Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM]
    assert [r.risk_data["days_overdue"] for r in found] == [40, 20, 5]
    assert found[0].recommended_actions[0].estimated_penalty == Decimal("2000.00")
    assert found[0].related_task_id is not None


def test_delayed_filings_never_touch_task_state(engine, graph, risks):
    rule = graph.get_rule_by_id("gstr1")
    task_id = engine.orchestrator.create_task("u1", "f1", rule, date(2023, 12, 1))
    risks.detect_delayed_filings("u1")
    assert engine.orchestrator.get_task(task_id).status == TaskStatus.PENDING


def test_delayed_filings_skip_closed_tasks(engine, graph, risks):
    rule = graph.get_rule_by_id("gstr1")
    task_id = engine.orchestrator.create_task("u1", "f1", rule, date(2023, 12, 1))
    engine.orchestrator.transition_status(task_id, "filed")
    assert risks.detect_delayed_filings("u1") == []


# ── Missing documents ───────────────────────────────────────────────


def test_missing_mandatory_documents(engine, graph, risks):
    rule = graph.get_rule_by_id("gstr1")
    task_id = engine.orchestrator.create_task("u1", "f1", rule, date(2024, 2, 11))

    risk_id = risks.detect_missing_documents("u1", "f1", task_id)
    risk = risks.get_risk(risk_id)
    assert risk.risk_type == RiskType.MISSING_DOCUMENT
    assert risk.risk_data["missing_documents"] == ["sales_register"]

    engine.orchestrator.link_document(task_id, "doc-1", "sales_register")
    assert risks.detect_missing_documents("u1", "f1", task_id) is None


# ── Lifecycle ───────────────────────────────────────────────────────


def test_active_risks_and_resolution(engine, risks):
    first = risks.detect_gstr_mismatch("u1", "f1", 100, 120)
    second = risks.detect_itc_shortfall("u1", "f1", 50, 100)
    risks.detect_itc_shortfall("u2", "f1", 50, 100)

    assert [r.id for r in risks.get_active_risks("u1")] == [second, first]

    resolved = risks.resolve_risk(first, "Revised return filed", performed_by="ca-1")
    assert resolved.status == RiskStatus.RESOLVED
    assert resolved.resolution_notes == "Revised return filed"
    assert resolved.resolved_at is not None
    assert [r.id for r in risks.get_active_risks("u1")] == [second]

    entry = engine.audit.get_entries(action=AuditAction.RISK_RESOLVED)[0]
    assert entry.performed_by == "ca-1"
    assert entry.details["previous_status"] == "active"


def test_get_missing_risk_raises(risks):
    with pytest.raises(RiskNotFoundError):
        risks.get_risk("nope")


# ── Store failures ──────────────────────────────────────────────────


def test_store_failure_reaches_caller(engine, risks, monkeypatch):
    add = engine.store.add

    def reject_risks(collection, data):
        if collection == engine.settings.collections.risks:
            raise StoreError("write rejected")
        return add(collection, data)

    monkeypatch.setattr(engine.store, "add", reject_risks)

    with pytest.raises(StoreError):
        risks.detect_gstr_mismatch("u1", "f1", 100, 150)
    assert engine.audit.get_entries(user_id="u1") == []
