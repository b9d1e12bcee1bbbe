"""Tests for the ComplianceRuleGraph (indexing, resolution, due dates)."""

import json
from datetime import date

import pytest

from cla_engine.graph import ComplianceRuleGraph, calculate_due_date, load_catalog
from cla_engine.models import (
    ComplianceRule,
    DueDateLogic,
    EntityType,
    Equals,
    SystemEventType,
)

from conftest import catalog_rule


def _rule(logic: DueDateLogic) -> ComplianceRule:
    return ComplianceRule(id="r", name="R", due_date_logic=logic)


# ── Indexing and lookups ────────────────────────────────────────────


def test_inactive_rules_excluded_from_lookups(graph: ComplianceRuleGraph):
    active_ids = {r.id for r in graph.get_all_active_rules()}
    assert "legacy_return" not in active_ids
    assert "legacy_return" in graph
    assert all(r.id != "legacy_return" for r in graph.get_rules_by_event_type("month_end"))


def test_get_rule_by_id(graph: ComplianceRuleGraph):
    rule = graph.get_rule_by_id("gstr3b")
    assert rule is not None
    assert rule.dependencies == ("gstr1",)
    assert graph.get_rule_by_id("missing") is None


def test_lookup_accepts_enum_members(graph: ComplianceRuleGraph):
    by_enum = graph.get_rules_by_entity_type(EntityType.PRIVATE_LIMITED)
    by_str = graph.get_rules_by_entity_type("private_limited")
    assert [r.id for r in by_enum] == [r.id for r in by_str]


def test_entity_index_respects_entity_types(graph: ComplianceRuleGraph):
    llp_ids = {r.id for r in graph.get_rules_by_entity_type("llp")}
    assert "aoc4" not in llp_ids
    assert "gstr1" in llp_ids


def test_repeated_entity_type_indexed_once():
    graph = ComplianceRuleGraph([catalog_rule("twice", entityTypes=["llp", "llp"])])
    assert [r.id for r in graph.get_rules_by_entity_type("llp")] == ["twice"]


def test_unknown_values_load_and_never_match():
    graph = ComplianceRuleGraph(
        [catalog_rule("odd", entityTypes=["martian_corp"], triggerEvent="eclipse")]
    )
    assert "odd" in graph
    assert graph.resolve_compliances("month_end", "private_limited") == []
    assert [r.id for r in graph.resolve_compliances("eclipse", "martian_corp")] == ["odd"]


def test_malformed_record_skipped():
    graph = ComplianceRuleGraph([{"name": "no id"}, catalog_rule("ok")])
    assert len(graph) == 1
    assert "ok" in graph


def test_redefined_rule_replaces_earlier_definition():
    graph = ComplianceRuleGraph(
        [catalog_rule("dup"), catalog_rule("dup", triggerEvent="quarter_end")]
    )
    assert graph.resolve_compliances("month_end", "llp") == []
    assert [r.id for r in graph.resolve_compliances("quarter_end", "llp")] == ["dup"]


# ── Resolution ──────────────────────────────────────────────────────


def test_resolution_orders_dependencies_first(graph: ComplianceRuleGraph):
    resolution = graph.resolve("month_end", "private_limited", {})
    assert resolution.rule_ids == ["gstr1", "gstr3b"]
    assert resolution.has_cycle is False


def test_dependency_order_independent_of_catalog_order():
    graph = ComplianceRuleGraph(
        [
            catalog_rule("c", dependencies=["b"]),
            catalog_rule("b", dependencies=["a"]),
            catalog_rule("a"),
        ]
    )
    assert graph.resolve("month_end", "llp").rule_ids == ["a", "b", "c"]


def test_dependency_outside_candidates_ignored():
    graph = ComplianceRuleGraph(
        [
            catalog_rule("annual", triggerEvent="financial_year_end"),
            catalog_rule("monthly", dependencies=["annual"]),
        ]
    )
    assert graph.resolve("month_end", "llp").rule_ids == ["monthly"]


def test_cycle_terminates_and_reports_skipped_edge():
    graph = ComplianceRuleGraph(
        [
            catalog_rule("a", dependencies=["b"]),
            catalog_rule("b", dependencies=["a"]),
        ]
    )
    resolution = graph.resolve("month_end", "llp")
    assert sorted(resolution.rule_ids) == ["a", "b"]
    assert len(resolution.rule_ids) == 2
    assert resolution.has_cycle is True
    assert resolution.skipped_edges == [("b", "a")]


def test_self_dependency_is_a_cycle():
    graph = ComplianceRuleGraph([catalog_rule("loop", dependencies=["loop"])])
    resolution = graph.resolve("month_end", "llp")
    assert resolution.rule_ids == ["loop"]
    assert resolution.skipped_edges == [("loop", "loop")]


def test_gte_condition_filters_by_payload(graph: ComplianceRuleGraph):
    ids_25 = graph.resolve("employee_count_threshold", "llp", {"employeeCount": 25}).rule_ids
    ids_12 = graph.resolve("employee_count_threshold", "llp", {"employeeCount": 12}).rule_ids
    ids_5 = graph.resolve("employee_count_threshold", "llp", {"employeeCount": 5}).rule_ids
    assert set(ids_25) == {"pf_registration", "esi_registration"}
    assert ids_12 == ["esi_registration"]
    assert ids_5 == []


def test_missing_numeric_field_does_not_exclude(graph: ComplianceRuleGraph):
    ids = graph.resolve("employee_count_threshold", "llp", {}).rule_ids
    assert set(ids) == {"pf_registration", "esi_registration"}


def test_non_numeric_field_does_not_exclude(graph: ComplianceRuleGraph):
    ids = graph.resolve(
        "employee_count_threshold", "llp", {"employeeCount": "twenty"}
    ).rule_ids
    assert set(ids) == {"pf_registration", "esi_registration"}


def test_equality_condition_must_match_exactly():
    graph = ComplianceRuleGraph(
        [
            catalog_rule(
                "gst_setup",
                triggerEvent="gst_registration",
                triggerConditions={"gstRegistered": True},
            )
        ]
    )
    assert graph.resolve("gst_registration", "llp", {"gstRegistered": True}).rule_ids == ["gst_setup"]
    assert graph.resolve("gst_registration", "llp", {"gstRegistered": False}).rule_ids == []
    assert graph.resolve("gst_registration", "llp", {}).rule_ids == []


def test_boolean_condition_does_not_match_numbers():
    graph = ComplianceRuleGraph(
        [
            catalog_rule(
                "gst_setup",
                triggerEvent="gst_registration",
                triggerConditions={"gstRegistered": True},
            )
        ]
    )
    assert graph.resolve("gst_registration", "llp", {"gstRegistered": 1}).rule_ids == []
    assert Equals("count", 0).matches({"count": False}) is False
    assert Equals("count", 1).matches({"count": 1.0}) is True


def test_lte_condition():
    graph = ComplianceRuleGraph(
        [
            catalog_rule(
                "small",
                triggerConditions={"employeeCount": {"lte": 9}},
            )
        ]
    )
    assert graph.resolve("month_end", "llp", {"employeeCount": 9}).rule_ids == ["small"]
    assert graph.resolve("month_end", "llp", {"employeeCount": 10}).rule_ids == []


def test_entity_filter_applies(graph: ComplianceRuleGraph):
    assert graph.resolve(SystemEventType.FINANCIAL_YEAR_END, "llp").rule_ids == []
    assert graph.resolve(
        SystemEventType.FINANCIAL_YEAR_END, EntityType.PRIVATE_LIMITED
    ).rule_ids == ["aoc4"]


# ── Due dates ───────────────────────────────────────────────────────


def test_fixed_day_next_month():
    rule = _rule(DueDateLogic("fixed_day", day_of_month=11, month_offset=1))
    assert calculate_due_date(rule, date(2024, 1, 15)) == date(2024, 2, 11)


def test_fixed_day_rolls_over_year():
    rule = _rule(DueDateLogic("fixed_day", day_of_month=20, month_offset=1))
    assert calculate_due_date(rule, date(2024, 12, 31)) == date(2025, 1, 20)


def test_fixed_day_clamped_to_month_end():
    rule = _rule(DueDateLogic("fixed_day", day_of_month=31, month_offset=1))
    assert calculate_due_date(rule, date(2024, 1, 15)) == date(2024, 2, 29)


def test_month_end_same_and_next_month():
    same = _rule(DueDateLogic("month_end", month_offset=0))
    nxt = _rule(DueDateLogic("month_end", month_offset=1))
    assert calculate_due_date(same, date(2024, 1, 15)) == date(2024, 1, 31)
    assert calculate_due_date(nxt, date(2024, 1, 15)) == date(2024, 2, 29)


def test_quarter_end():
    rule = _rule(DueDateLogic("quarter_end"))
    assert calculate_due_date(rule, date(2024, 5, 2)) == date(2024, 6, 30)
    assert calculate_due_date(rule, date(2024, 12, 1)) == date(2024, 12, 31)


def test_quarter_end_with_offset():
    rule = _rule(DueDateLogic("quarter_end", month_offset=3))
    assert calculate_due_date(rule, date(2024, 11, 10)) == date(2025, 3, 31)


def test_year_end_rolls_forward_after_march():
    rule = _rule(DueDateLogic("year_end"))
    assert calculate_due_date(rule, date(2024, 6, 1)) == date(2025, 3, 31)
    assert calculate_due_date(rule, date(2024, 2, 10)) == date(2024, 3, 31)


def test_days_after_event():
    rule = _rule(DueDateLogic("days_after_event", days_after=30))
    assert calculate_due_date(rule, date(2024, 1, 15)) == date(2024, 2, 14)


def test_unknown_policy_returns_trigger_date():
    rule = _rule(DueDateLogic("custom", custom_formula="t+1"))
    assert calculate_due_date(rule, date(2024, 1, 15)) == date(2024, 1, 15)


def test_due_date_is_pure(graph: ComplianceRuleGraph):
    rule = graph.get_rule_by_id("gstr1")
    first = graph.calculate_due_date(rule, date(2024, 1, 15))
    second = graph.calculate_due_date(rule, date(2024, 1, 15))
    assert first == second == date(2024, 2, 11)


# ── Catalog files ───────────────────────────────────────────────────


def test_load_json_catalog(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps({"rules": [catalog_rule("x")]}), encoding="utf-8")
    graph = ComplianceRuleGraph.from_catalog(path)
    assert "x" in graph


def test_load_yaml_list_catalog(tmp_path):
    path = tmp_path / "rules.yaml"
    path.write_text("- id: y\n  name: Y\n  triggerEvent: month_end\n", encoding="utf-8")
    assert [r["id"] for r in load_catalog(path)] == ["y"]


def test_default_catalog_loads():
    graph = ComplianceRuleGraph.default()
    assert len(graph) > 10
    resolution = graph.resolve("month_end", "private_limited", {})
    ids = resolution.rule_ids
    assert ids.index("gstr1_monthly") < ids.index("gstr3b_monthly")
    assert "gstr9c_reconciliation_legacy" not in {
        r.id for r in graph.get_all_active_rules()
    }
