"""
Compliance risk detection.

Detectors:
- GSTR-1 vs GSTR-3B turnover mismatch
- Input tax credit shortfall
- Delayed filings (open tasks past their due date)
- Missing mandatory documents on a task

Each detector writes its own risk record(s) plus one audit entry per
record, and never touches task state. Store failures propagate to the
caller.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Optional, Union

import structlog

from cla_engine.audit import AuditTrailWriter
from cla_engine.config import EngineSettings
from cla_engine.errors import RiskNotFoundError
from cla_engine.models import (
    SYSTEM_ACTOR,
    AuditAction,
    AuditEntityType,
    ComplianceRisk,
    Priority,
    RecommendedAction,
    RiskStatus,
    RiskType,
    Severity,
)
from cla_engine.orchestrator import TaskOrchestrator
from cla_engine.store import (
    SERVER_TIMESTAMP,
    DocumentStore,
    query_with_fallback,
    utcnow,
    where,
)

logger = structlog.get_logger(__name__)

Amount = Union[Decimal, int, float, str]


def _to_decimal(value: Amount) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _round(amount: Decimal) -> Decimal:
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _action_record(action: RecommendedAction) -> dict[str, Any]:
    return {
        "action": action.action,
        "priority": action.priority,
        "estimated_penalty": action.estimated_penalty,
    }


class RiskDetectionEngine:
    def __init__(
        self,
        store: DocumentStore,
        orchestrator: TaskOrchestrator,
        audit: AuditTrailWriter,
        settings: Optional[EngineSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.audit = audit
        self.settings = settings or EngineSettings()
        self._clock = clock or utcnow

    @property
    def _risks(self) -> str:
        return self.settings.collections.risks

    # ------------------------------------------------------------------
    # Detectors
    # ------------------------------------------------------------------

    def detect_gstr_mismatch(
        self,
        user_id: str,
        firm_id: str,
        gstr1_turnover: Amount,
        gstr3b_turnover: Amount,
    ) -> Optional[str]:
        """
        Compare GSTR-1 and GSTR-3B turnover.

        Variance is measured against the GSTR-1 figure: above the medium
        threshold (5%) raises a medium risk, above the high threshold
        (10%) a high one.
        """
        gstr1 = _to_decimal(gstr1_turnover)
        gstr3b = _to_decimal(gstr3b_turnover)
        variance = abs(gstr1 - gstr3b)
        variance_pct = float(variance / gstr1 * 100) if gstr1 > 0 else 0.0

        if variance_pct <= self.settings.gstr_variance_medium_pct:
            return None

        severity = (
            Severity.HIGH
            if variance_pct > self.settings.gstr_variance_high_pct
            else Severity.MEDIUM
        )
        return self._create_risk(
            user_id,
            firm_id,
            RiskType.GSTR_MISMATCH,
            severity,
            description=(
                f"GSTR-1 and GSTR-3B turnover mismatch detected. "
                f"Variance: Rs. {variance:,.2f} ({variance_pct:.2f}%)"
            ),
            risk_data={
                "gstr1_turnover": gstr1,
                "gstr3b_turnover": gstr3b,
                "variance": variance,
                "variance_percent": variance_pct,
            },
            actions=[
                RecommendedAction(
                    "Review and reconcile GSTR-1 and GSTR-3B data",
                    Priority.HIGH.value,
                ),
                RecommendedAction(
                    "File revised returns if needed",
                    Priority.MEDIUM.value,
                    estimated_penalty=Decimal("200"),
                ),
            ],
            compliance_type="gst",
        )

    def detect_itc_shortfall(
        self,
        user_id: str,
        firm_id: str,
        claimed_itc: Amount,
        available_itc: Amount,
    ) -> Optional[str]:
        """Flag input tax credit that is available but was not claimed."""
        claimed = _to_decimal(claimed_itc)
        available = _to_decimal(available_itc)
        shortfall = available - claimed

        if shortfall <= 0:
            return None

        shortfall_pct = float(shortfall / available * 100) if available > 0 else 0.0
        severity = (
            Severity.HIGH
            if shortfall_pct > self.settings.itc_shortfall_high_pct
            else Severity.MEDIUM
        )
        return self._create_risk(
            user_id,
            firm_id,
            RiskType.ITC_SHORTFALL,
            severity,
            description=(
                f"ITC shortfall detected. Available: Rs. {available:,.2f}, "
                f"Claimed: Rs. {claimed:,.2f}, Shortfall: Rs. {shortfall:,.2f}"
            ),
            risk_data={
                "claimed_itc": claimed,
                "available_itc": available,
                "shortfall": shortfall,
                "shortfall_percent": shortfall_pct,
            },
            actions=[
                RecommendedAction(
                    "Review vendor invoices and GSTR-2A data", Priority.HIGH.value
                ),
                RecommendedAction(
                    "Claim eligible ITC in next return", Priority.MEDIUM.value
                ),
            ],
            compliance_type="gst",
        )

    def detect_delayed_filings(
        self,
        user_id: str,
        firm_id: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> list[str]:
        """
        One risk per open task that is past due.

        Severity escalates with days overdue; the suggested action carries
        an illustrative late fee of days overdue times the daily rate.
        """
        today = as_of or self._clock().date()
        tasks = self.orchestrator.get_overdue_tasks(
            user_id=user_id, firm_id=firm_id, as_of=today
        )

        risk_ids: list[str] = []
        for task in tasks:
            days_overdue = (today - task.due_date).days
            if days_overdue > self.settings.delayed_filing_critical_days:
                severity = Severity.CRITICAL
            elif days_overdue > self.settings.delayed_filing_high_days:
                severity = Severity.HIGH
            else:
                severity = Severity.MEDIUM

            penalty = _round(self.settings.late_fee_per_day * days_overdue)
            risk_ids.append(
                self._create_risk(
                    task.user_id,
                    task.firm_id,
                    RiskType.DELAYED_FILING,
                    severity,
                    description=(
                        f"{task.task_name} is overdue by {days_overdue} day(s)"
                    ),
                    risk_data={
                        "task_id": task.id,
                        "task_name": task.task_name,
                        "due_date": task.due_date,
                        "days_overdue": days_overdue,
                    },
                    actions=[
                        RecommendedAction(
                            f"File {task.task_name} immediately",
                            Priority.HIGH.value,
                            estimated_penalty=penalty,
                        )
                    ],
                    related_task_id=task.id,
                    compliance_type=task.compliance_type or None,
                )
            )

        logger.info(
            "delayed_filings_scanned",
            user_id=user_id,
            overdue_tasks=len(tasks),
            risks_created=len(risk_ids),
        )
        return risk_ids

    def detect_missing_documents(
        self, user_id: str, firm_id: str, task_id: str
    ) -> Optional[str]:
        """Flag mandatory document slots on a task that are still empty."""
        task = self.orchestrator.get_task(task_id)
        missing = task.missing_mandatory_documents
        if not missing:
            return None

        return self._create_risk(
            user_id,
            firm_id,
            RiskType.MISSING_DOCUMENT,
            Severity.MEDIUM,
            description=(
                f"Missing {len(missing)} required document(s) for {task.task_name}"
            ),
            risk_data={
                "task_id": task.id,
                "task_name": task.task_name,
                "missing_documents": missing,
            },
            actions=[
                RecommendedAction(
                    "Upload required documents before due date",
                    Priority.HIGH.value,
                )
            ],
            related_task_id=task.id,
            compliance_type=task.compliance_type or None,
        )

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def _create_risk(
        self,
        user_id: str,
        firm_id: str,
        risk_type: RiskType,
        severity: Severity,
        description: str,
        risk_data: dict[str, Any],
        actions: list[RecommendedAction],
        related_task_id: Optional[str] = None,
        compliance_type: Optional[str] = None,
    ) -> str:
        risk_id = self.store.add(
            self._risks,
            {
                "user_id": user_id,
                "firm_id": firm_id,
                "risk_type": risk_type.value,
                "severity": severity.value,
                "description": description,
                "related_task_id": related_task_id,
                "related_compliance_type": compliance_type,
                "risk_data": risk_data,
                "recommended_actions": [_action_record(a) for a in actions],
                "status": RiskStatus.ACTIVE.value,
                "detected_at": SERVER_TIMESTAMP,
                "resolved_at": None,
                "resolution_notes": None,
            },
        )
        self.audit.create_entry(
            user_id=user_id,
            firm_id=firm_id,
            action=AuditAction.RISK_DETECTED,
            entity_type=AuditEntityType.RISK,
            entity_id=risk_id,
            details={"risk_type": risk_type.value, "severity": severity.value},
            performed_by=SYSTEM_ACTOR,
        )
        logger.info(
            "risk_detected",
            risk_id=risk_id,
            risk_type=risk_type.value,
            severity=severity.value,
        )
        return risk_id

    def get_risk(self, risk_id: str) -> ComplianceRisk:
        doc = self.store.get(self._risks, risk_id)
        if doc is None:
            raise RiskNotFoundError(risk_id)
        return ComplianceRisk.from_dict(doc)

    def get_active_risks(
        self, user_id: str, firm_id: Optional[str] = None
    ) -> list[ComplianceRisk]:
        """Active risks for a user, newest first."""
        filters = [
            where("user_id", "==", user_id),
            where("status", "==", RiskStatus.ACTIVE.value),
        ]
        if firm_id is not None:
            filters.append(where("firm_id", "==", firm_id))
        docs = query_with_fallback(
            self.store, self._risks, filters, order_by="detected_at", descending=True
        )
        return [ComplianceRisk.from_dict(d) for d in docs]

    def resolve_risk(
        self,
        risk_id: str,
        resolution_notes: str,
        performed_by: str = SYSTEM_ACTOR,
    ) -> ComplianceRisk:
        risk = self.get_risk(risk_id)
        self.store.update(
            self._risks,
            risk_id,
            {
                "status": RiskStatus.RESOLVED.value,
                "resolution_notes": resolution_notes,
                "resolved_at": SERVER_TIMESTAMP,
            },
        )
        self.audit.create_entry(
            user_id=risk.user_id,
            firm_id=risk.firm_id,
            action=AuditAction.RISK_RESOLVED,
            entity_type=AuditEntityType.RISK,
            entity_id=risk_id,
            details={
                "previous_status": risk.status.value,
                "new_status": RiskStatus.RESOLVED.value,
                "resolution_notes": resolution_notes,
            },
            performed_by=performed_by,
        )
        return self.get_risk(risk_id)
