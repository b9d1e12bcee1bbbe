"""
Event trigger service.

The single entry point business modules call when something happens:
the raw event is recorded, the rule graph decides which obligations it
creates, and the orchestrator materialises one task per rule in
dependency order. A failure on one rule never stops the others.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Optional

import structlog

from cla_engine.audit import AuditTrailWriter
from cla_engine.config import Collections, EngineSettings
from cla_engine.errors import StoreError
from cla_engine.graph import ComplianceRuleGraph
from cla_engine.models import (
    SYSTEM_ACTOR,
    AuditAction,
    AuditEntityType,
    SystemEventType,
    enum_value,
)
from cla_engine.orchestrator import TaskOrchestrator
from cla_engine.store import SERVER_TIMESTAMP, DocumentStore, utcnow

logger = structlog.get_logger(__name__)


@dataclass
class RuleOutcome:
    """What happened to one resolved rule during fan-out."""

    rule_id: str
    task_id: Optional[str] = None
    due_date: Optional[date] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class EventProcessingResult:
    event_id: str
    event_type: str
    entity_type: str
    outcomes: list[RuleOutcome] = field(default_factory=list)
    skipped_edges: list[tuple[str, str]] = field(default_factory=list)

    @property
    def task_ids(self) -> list[str]:
        return [o.task_id for o in self.outcomes if o.ok and o.task_id]

    @property
    def failures(self) -> list[RuleOutcome]:
        return [o for o in self.outcomes if not o.ok]


def dedupe_key(rule_id: str, event_id: str) -> str:
    return f"{rule_id}:{event_id}"


class EventTriggerService:
    """
    Turns business events into compliance tasks.

    The rule graph is injected; the service holds no process-wide state.
    """

    def __init__(
        self,
        store: DocumentStore,
        graph: ComplianceRuleGraph,
        orchestrator: TaskOrchestrator,
        audit: AuditTrailWriter,
        settings: Optional[EngineSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.graph = graph
        self.orchestrator = orchestrator
        self.audit = audit
        self.settings = settings or EngineSettings()
        self._clock = clock or utcnow

    @property
    def collections(self) -> Collections:
        return self.settings.collections

    def process_compliance_event(
        self,
        user_id: str,
        firm_id: str,
        event_type: Any,
        payload: Optional[dict[str, Any]],
        entity_type: Any,
    ) -> EventProcessingResult:
        """
        Record an event and create the tasks its rules require.

        Returns one outcome per resolved rule, in dependency order, so
        callers can see exactly which rules failed.
        """
        payload = dict(payload or {})
        event_value = str(enum_value(event_type))
        entity_value = str(enum_value(entity_type))

        event_id = self.store.add(
            self.collections.events,
            {
                "user_id": user_id,
                "firm_id": firm_id,
                "event_type": event_value,
                "payload": payload,
                "entity_type": entity_value,
                "timestamp": SERVER_TIMESTAMP,
                "processed": False,
                "processed_at": None,
            },
        )
        log = logger.bind(event_id=event_id, event_type=event_value)

        resolution = self.graph.resolve(event_value, entity_value, payload)
        result = EventProcessingResult(
            event_id=event_id,
            event_type=event_value,
            entity_type=entity_value,
            skipped_edges=list(resolution.skipped_edges),
        )
        trigger_date = self._clock().date()

        for rule in resolution.rules:
            outcome = RuleOutcome(rule_id=rule.id)
            try:
                outcome.due_date = self.graph.calculate_due_date(rule, trigger_date)
                outcome.task_id = self.orchestrator.create_task(
                    user_id,
                    firm_id,
                    rule,
                    outcome.due_date,
                    trigger_event_id=event_id,
                    trigger_event_type=event_value,
                    dedupe_key=dedupe_key(rule.id, event_id),
                )
            except Exception as exc:  # isolated per rule
                outcome.error = f"{type(exc).__name__}: {exc}"
                log.error("task_creation_failed", rule_id=rule.id, error=outcome.error)
            result.outcomes.append(outcome)

        self.store.update(
            self.collections.events,
            event_id,
            {"processed": True, "processed_at": SERVER_TIMESTAMP},
        )
        self.audit.create_entry(
            user_id=user_id,
            firm_id=firm_id,
            action=AuditAction.EVENT_TRIGGERED,
            entity_type=AuditEntityType.EVENT,
            entity_id=event_id,
            details={
                "event_type": event_value,
                "event_data": payload,
                "entity_type": entity_value,
                "tasks_created": len(result.task_ids),
                "failed_rules": [o.rule_id for o in result.failures],
                "skipped_dependency_edges": [
                    f"{a}->{b}" for a, b in result.skipped_edges
                ],
            },
            performed_by=SYSTEM_ACTOR,
        )
        log.info(
            "compliance_event_processed",
            rules_resolved=len(resolution.rules),
            tasks_created=len(result.task_ids),
            failures=len(result.failures),
        )
        return result

    # ------------------------------------------------------------------
    # Entity resolution
    # ------------------------------------------------------------------

    def get_entity_type_for_firm(self, user_id: str, firm_id: str) -> Optional[str]:
        """
        Entity type from the firm profile.

        None when the profile is missing or cannot be read; a profile
        without an entity type falls back to the configured default.
        """
        try:
            firm = self.store.get(self.collections.firms, firm_id)
        except StoreError as exc:
            logger.error(
                "entity_type_lookup_failed",
                user_id=user_id,
                firm_id=firm_id,
                error=str(exc),
            )
            return None

        if firm is None:
            logger.warning("firm_profile_not_found", user_id=user_id, firm_id=firm_id)
            return None
        return firm.get("entity_type") or self.settings.default_entity_type

    def _dispatch(
        self,
        user_id: str,
        firm_id: str,
        event_type: SystemEventType,
        payload: dict[str, Any],
    ) -> Optional[EventProcessingResult]:
        entity_type = self.get_entity_type_for_firm(user_id, firm_id)
        if entity_type is None:
            return None
        return self.process_compliance_event(
            user_id, firm_id, event_type, payload, entity_type
        )

    # ------------------------------------------------------------------
    # Business event hooks
    # ------------------------------------------------------------------

    def on_registration_completed(
        self,
        user_id: str,
        firm_id: str,
        registration_data: Optional[dict[str, Any]] = None,
    ) -> Optional[EventProcessingResult]:
        return self._dispatch(
            user_id,
            firm_id,
            SystemEventType.REGISTRATION_COMPLETED,
            dict(registration_data or {}),
        )

    def on_gst_registration(
        self, user_id: str, firm_id: str, gstin: str
    ) -> Optional[EventProcessingResult]:
        return self._dispatch(
            user_id,
            firm_id,
            SystemEventType.GST_REGISTRATION,
            {"gstin": gstin, "gstRegistered": True},
        )

    def on_employee_count_changed(
        self, user_id: str, firm_id: str, employee_count: int
    ) -> list[EventProcessingResult]:
        """
        Fire ``employee_added`` and one ``employee_count_threshold`` event
        per configured threshold the new headcount reaches.

        Each threshold event gets its own event id, so a rule whose
        condition holds at several thresholds (``employeeCount >= 10`` at
        a headcount of 25) gets one task per threshold event.
        """
        entity_type = self.get_entity_type_for_firm(user_id, firm_id)
        if entity_type is None:
            return []

        results = [
            self.process_compliance_event(
                user_id,
                firm_id,
                SystemEventType.EMPLOYEE_ADDED,
                {"employeeCount": employee_count},
                entity_type,
            )
        ]
        for threshold in sorted(self.settings.employee_count_thresholds):
            if employee_count >= threshold:
                results.append(
                    self.process_compliance_event(
                        user_id,
                        firm_id,
                        SystemEventType.EMPLOYEE_COUNT_THRESHOLD,
                        {"employeeCount": employee_count, "threshold": threshold},
                        entity_type,
                    )
                )
        return results

    def on_month_end(
        self, user_id: str, firm_id: str
    ) -> Optional[EventProcessingResult]:
        today = self._clock().date()
        return self._dispatch(
            user_id,
            firm_id,
            SystemEventType.MONTH_END,
            {"month": today.month, "year": today.year},
        )

    def on_quarter_end(
        self, user_id: str, firm_id: str
    ) -> Optional[EventProcessingResult]:
        today = self._clock().date()
        return self._dispatch(
            user_id,
            firm_id,
            SystemEventType.QUARTER_END,
            {"quarter": (today.month - 1) // 3 + 1, "year": today.year},
        )

    def on_financial_year_end(
        self, user_id: str, firm_id: str
    ) -> Optional[EventProcessingResult]:
        today = self._clock().date()
        # Financial year runs April to March.
        start = today.year if today.month >= 4 else today.year - 1
        return self._dispatch(
            user_id,
            firm_id,
            SystemEventType.FINANCIAL_YEAR_END,
            {"financialYear": f"{start}-{str(start + 1)[-2:]}"},
        )

    def on_payroll_run(
        self, user_id: str, firm_id: str, payroll_data: dict[str, Any]
    ) -> Optional[EventProcessingResult]:
        payload = dict(payroll_data)
        payload["employeeCount"] = payroll_data.get("employeeCount") or 0
        return self._dispatch(
            user_id, firm_id, SystemEventType.PAYROLL_RUN, payload
        )

    def on_invoice_generated(
        self, user_id: str, firm_id: str, invoice_data: dict[str, Any]
    ) -> Optional[EventProcessingResult]:
        return self._dispatch(
            user_id, firm_id, SystemEventType.INVOICE_GENERATED, dict(invoice_data)
        )

    def on_compliance_subscription_activated(
        self, user_id: str, firm_id: str, plan_tier: str
    ) -> Optional[EventProcessingResult]:
        return self._dispatch(
            user_id,
            firm_id,
            SystemEventType.COMPLIANCE_SUBSCRIPTION_ACTIVATED,
            {"planTier": plan_tier},
        )
