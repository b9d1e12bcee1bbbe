"""
Compliance rule graph.

Loads the static rule catalog, indexes it by entity type and by
triggering event, resolves which rules fire for an event, orders them by
their declared dependencies and computes concrete due dates.

The graph is tolerant of catalog shape problems: unknown entity types,
events or due-date policies are indexed as given and simply never match.
"""

from __future__ import annotations

import calendar
import json
from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

import structlog
import yaml

from cla_engine.config import DEFAULT_RULE_CATALOG
from cla_engine.models import ComplianceRule, DueDateType, enum_value

logger = structlog.get_logger(__name__)

# Indian financial year closes on March 31.
FINANCIAL_YEAR_END_MONTH = 3
FINANCIAL_YEAR_END_DAY = 31


@dataclass
class Resolution:
    """Rules that fire for one event, in dependency order."""

    rules: list[ComplianceRule] = field(default_factory=list)
    # (rule_id, dependency_id) edges skipped to break a dependency cycle
    skipped_edges: list[tuple[str, str]] = field(default_factory=list)

    @property
    def rule_ids(self) -> list[str]:
        return [r.id for r in self.rules]

    @property
    def has_cycle(self) -> bool:
        return bool(self.skipped_edges)


def _shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def _last_day(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def calculate_due_date(rule: ComplianceRule, trigger_date: date) -> date:
    """
    Concrete due date for ``rule`` relative to ``trigger_date``.

    - fixed_day: ``dayOfMonth`` of the month shifted by ``monthOffset``,
      clamped to that month's last day
    - month_end: last day of the shifted month
    - quarter_end: last day of the calendar quarter holding the shifted date
    - year_end: March 31, rolled forward a year if already past
    - days_after_event: trigger date plus ``daysAfter``
    - anything else: the trigger date unchanged
    """
    logic = rule.due_date_logic
    policy = logic.type

    if policy == DueDateType.FIXED_DAY.value:
        year, month = _shift_month(
            trigger_date.year, trigger_date.month, logic.month_offset
        )
        last = _last_day(year, month).day
        day = min(max(logic.day_of_month or 1, 1), last)
        return date(year, month, day)

    if policy == DueDateType.MONTH_END.value:
        year, month = _shift_month(
            trigger_date.year, trigger_date.month, logic.month_offset
        )
        return _last_day(year, month)

    if policy == DueDateType.QUARTER_END.value:
        year, month = _shift_month(
            trigger_date.year, trigger_date.month, logic.month_offset
        )
        quarter_end_month = ((month - 1) // 3 + 1) * 3
        return _last_day(year, quarter_end_month)

    if policy == DueDateType.YEAR_END.value:
        due = date(trigger_date.year, FINANCIAL_YEAR_END_MONTH, FINANCIAL_YEAR_END_DAY)
        if due < trigger_date:
            due = date(
                trigger_date.year + 1,
                FINANCIAL_YEAR_END_MONTH,
                FINANCIAL_YEAR_END_DAY,
            )
        return due

    if policy == DueDateType.DAYS_AFTER_EVENT.value:
        return trigger_date + timedelta(days=logic.days_after)

    return trigger_date


def load_catalog(path: Union[str, Path]) -> list[dict[str, Any]]:
    """Read raw rule records from a YAML or JSON catalog file."""
    catalog_path = Path(path)
    with open(catalog_path, encoding="utf-8") as f:
        if catalog_path.suffix == ".json":
            data = json.load(f)
        else:
            data = yaml.safe_load(f)

    if isinstance(data, Mapping):
        records = data.get("rules") or []
    else:
        records = data or []
    logger.info("rule_catalog_loaded", path=str(catalog_path), records=len(records))
    return list(records)


class ComplianceRuleGraph:
    """
    Indexed, read-only view over a rule catalog.

    Built once per engine and passed by reference to the components that
    need it. Rules are never modified after construction.
    """

    def __init__(self, rules: Iterable[Union[ComplianceRule, Mapping[str, Any]]]) -> None:
        self._rules: dict[str, ComplianceRule] = {}
        self._entity_index: dict[str, list[str]] = {}
        self._event_index: dict[str, list[str]] = {}
        self._dependencies: dict[str, tuple[str, ...]] = {}

        for item in rules:
            rule = item if isinstance(item, ComplianceRule) else self._parse(item)
            if rule is not None:
                self._add(rule)

    @classmethod
    def from_catalog(cls, path: Union[str, Path]) -> "ComplianceRuleGraph":
        return cls(load_catalog(path))

    @classmethod
    def default(cls) -> "ComplianceRuleGraph":
        """Graph over the catalog bundled with the package."""
        return cls.from_catalog(DEFAULT_RULE_CATALOG)

    @staticmethod
    def _parse(record: Mapping[str, Any]) -> Optional[ComplianceRule]:
        try:
            return ComplianceRule.from_catalog(record)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.warning(
                "rule_skipped",
                rule_id=record.get("id") if isinstance(record, Mapping) else None,
                error=str(exc),
            )
            return None

    def _add(self, rule: ComplianceRule) -> None:
        if rule.id in self._rules:
            logger.warning("rule_redefined", rule_id=rule.id)
            self._unindex(rule.id)

        self._rules[rule.id] = rule
        self._dependencies[rule.id] = rule.dependencies
        for entity_type in dict.fromkeys(rule.entity_types):
            self._entity_index.setdefault(entity_type, []).append(rule.id)
        self._event_index.setdefault(rule.trigger_event, []).append(rule.id)

    def _unindex(self, rule_id: str) -> None:
        for index in (self._entity_index, self._event_index):
            for ids in index.values():
                if rule_id in ids:
                    ids.remove(rule_id)

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._rules

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_rule_by_id(self, rule_id: str) -> Optional[ComplianceRule]:
        return self._rules.get(rule_id)

    def get_all_active_rules(self) -> list[ComplianceRule]:
        return [r for r in self._rules.values() if r.active]

    def dependencies_of(self, rule_id: str) -> tuple[str, ...]:
        return self._dependencies.get(rule_id, ())

    def get_rules_by_entity_type(self, entity_type: Any) -> list[ComplianceRule]:
        ids = self._entity_index.get(str(enum_value(entity_type)), [])
        return [self._rules[i] for i in ids if self._rules[i].active]

    def get_rules_by_event_type(self, event_type: Any) -> list[ComplianceRule]:
        ids = self._event_index.get(str(enum_value(event_type)), [])
        return [self._rules[i] for i in ids if self._rules[i].active]

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(
        self,
        event_type: Any,
        entity_type: Any,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> Resolution:
        """
        Rules that fire for an event, with any cycle edges reported.

        Intersects the event and entity indexes, drops inactive rules and
        rules whose trigger predicates fail, then orders the survivors so
        every rule follows the surviving rules it depends on.
        """
        payload = payload or {}
        entity_ids = {r.id for r in self.get_rules_by_entity_type(entity_type)}
        candidates = [
            rule
            for rule in self.get_rules_by_event_type(event_type)
            if rule.id in entity_ids and rule.matches_payload(payload)
        ]
        ordered, skipped = self._topological_order(candidates)

        if skipped:
            logger.warning(
                "rule_dependency_cycle",
                event_type=str(enum_value(event_type)),
                skipped_edges=[f"{a}->{b}" for a, b in skipped],
            )
        return Resolution(rules=ordered, skipped_edges=skipped)

    def resolve_compliances(
        self,
        event_type: Any,
        entity_type: Any,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> list[ComplianceRule]:
        return self.resolve(event_type, entity_type, payload).rules

    def _topological_order(
        self, rules: list[ComplianceRule]
    ) -> tuple[list[ComplianceRule], list[tuple[str, str]]]:
        """
        Iterative depth-first topological sort over the candidate rules.

        Dependencies outside the candidate set are ignored. An edge back
        into a rule still on the stack is skipped and reported.
        """
        selected = {r.id: r for r in rules}
        visited: set[str] = set()
        visiting: set[str] = set()
        ordered: list[ComplianceRule] = []
        skipped: list[tuple[str, str]] = []

        for root in rules:
            if root.id in visited:
                continue
            visiting.add(root.id)
            stack = [(root.id, iter(self.dependencies_of(root.id)))]

            while stack:
                rule_id, deps = stack[-1]
                advanced = False
                for dep_id in deps:
                    if dep_id not in selected or dep_id in visited:
                        continue
                    if dep_id in visiting:
                        skipped.append((rule_id, dep_id))
                        continue
                    visiting.add(dep_id)
                    stack.append((dep_id, iter(self.dependencies_of(dep_id))))
                    advanced = True
                    break

                if not advanced:
                    stack.pop()
                    visiting.discard(rule_id)
                    visited.add(rule_id)
                    ordered.append(selected[rule_id])

        return ordered, skipped

    def calculate_due_date(self, rule: ComplianceRule, trigger_date: date) -> date:
        return calculate_due_date(rule, trigger_date)
