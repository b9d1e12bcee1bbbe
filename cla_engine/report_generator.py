"""
Compliance report generator.

Produces:
- Task status reports (counts by status, overdue and upcoming tasks)
- Risk reports (counts by severity and type, active risk details)
- Audit trail reports
- CSV and JSON export
"""

from __future__ import annotations

import json
from collections import Counter
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from cla_engine.models import (
    ComplianceAuditEntry,
    ComplianceRisk,
    ComplianceTaskInstance,
    RiskStatus,
    Severity,
    TaskStatus,
)
from cla_engine.orchestrator import OPEN_STATUSES

UPCOMING_WINDOW_DAYS = 30

_SEVERITY_ORDER = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


class _DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal and date objects."""

    def default(self, o: Any) -> Any:
        if isinstance(o, Decimal):
            return float(o)
        if isinstance(o, date):
            return o.isoformat()
        if isinstance(o, Enum):
            return o.value
        return super().default(o)


def _decimal_to_float(obj: Any) -> Any:
    """Recursively convert Decimal, date and enum values for serialization."""
    if isinstance(obj, dict):
        return {k: _decimal_to_float(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_decimal_to_float(i) for i in obj]
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, date):
        return obj.isoformat()
    return obj


def _task_row(task: ComplianceTaskInstance, today: date) -> dict[str, Any]:
    return {
        "task_id": task.id,
        "task_name": task.task_name,
        "compliance_type": task.compliance_type,
        "due_date": task.due_date.isoformat(),
        "status": task.status.value,
        "priority": task.priority,
        "days_until_due": (task.due_date - today).days,
        "missing_documents": len(task.missing_mandatory_documents),
    }


class ReportGenerator:
    """
    Generates formatted compliance reports with export capabilities.

    All reports can be returned as structured dicts, rendered to
    console-friendly text, or exported to CSV/JSON files.
    """

    def __init__(self, output_dir: Optional[str] = None) -> None:
        self.output_dir = Path(output_dir) if output_dir else Path("reports")

    def _write(self, filename: str, content: str) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / filename
        path.write_text(content, encoding="utf-8")
        return path

    # ------------------------------------------------------------------
    # Task status report
    # ------------------------------------------------------------------

    def task_status_report(
        self,
        tasks: list[ComplianceTaskInstance],
        as_of: Optional[date] = None,
    ) -> dict[str, Any]:
        """
        Summarise task instances by status.

        Overdue means an open task past its due date, or one the sweep
        already flagged; upcoming means an open task due within the next
        30 days.
        """
        today = as_of or date.today()
        horizon = today + timedelta(days=UPCOMING_WINDOW_DAYS)

        counts = Counter(t.status.value for t in tasks)
        overdue = [
            t
            for t in tasks
            if t.status == TaskStatus.OVERDUE
            or (t.status.value in OPEN_STATUSES and t.due_date < today)
        ]
        upcoming = [
            t
            for t in tasks
            if t.status.value in OPEN_STATUSES and today <= t.due_date <= horizon
        ]
        overdue.sort(key=lambda t: t.due_date)
        upcoming.sort(key=lambda t: t.due_date)

        return {
            "report_type": "task_status",
            "generated_date": today.isoformat(),
            "summary": {
                "total_tasks": len(tasks),
                "overdue": len(overdue),
                "upcoming_30_days": len(upcoming),
                "awaiting_ca_review": sum(
                    1
                    for t in tasks
                    if t.requires_ca_review and t.status.value in OPEN_STATUSES
                ),
            },
            "status_breakdown": {s.value: counts.get(s.value, 0) for s in TaskStatus},
            "overdue_tasks": [_task_row(t, today) for t in overdue],
            "upcoming_tasks": [_task_row(t, today) for t in upcoming],
        }

    # ------------------------------------------------------------------
    # Risk report
    # ------------------------------------------------------------------

    def risk_report(
        self,
        risks: list[ComplianceRisk],
        as_of: Optional[date] = None,
    ) -> dict[str, Any]:
        """Generate a risk report; details list active risks, worst first."""
        active = [r for r in risks if r.status == RiskStatus.ACTIVE]
        active.sort(key=lambda r: _SEVERITY_ORDER.get(r.severity, len(_SEVERITY_ORDER)))

        total_penalty = sum(
            (
                a.estimated_penalty
                for r in active
                for a in r.recommended_actions
                if a.estimated_penalty is not None
            ),
            Decimal("0"),
        )

        return {
            "report_type": "risk_summary",
            "generated_date": (as_of or date.today()).isoformat(),
            "summary": {
                "total_risks": len(risks),
                "active_risks": len(active),
                "estimated_penalty_exposure": total_penalty,
            },
            "severity_breakdown": dict(Counter(r.severity.value for r in active)),
            "type_breakdown": dict(Counter(r.risk_type.value for r in active)),
            "active_risks": [
                {
                    "risk_id": r.id,
                    "risk_type": r.risk_type.value,
                    "severity": r.severity.value,
                    "description": r.description,
                    "related_task_id": r.related_task_id,
                    "actions": "; ".join(a.action for a in r.recommended_actions),
                }
                for r in active
            ],
        }

    # ------------------------------------------------------------------
    # Audit report
    # ------------------------------------------------------------------

    def audit_report(
        self,
        entries: list[ComplianceAuditEntry],
        as_of: Optional[date] = None,
    ) -> dict[str, Any]:
        """Audit trail report; entries keep the order given (newest first)."""
        return {
            "report_type": "audit_trail",
            "generated_date": (as_of or date.today()).isoformat(),
            "summary": {"total_entries": len(entries)},
            "action_breakdown": dict(Counter(e.action.value for e in entries)),
            "entries": [
                {
                    "performed_at": e.performed_at,
                    "action": e.action.value,
                    "entity_type": e.entity_type.value,
                    "entity_id": e.entity_id,
                    "performed_by": e.performed_by,
                }
                for e in entries
            ],
        }

    # ------------------------------------------------------------------
    # Export methods
    # ------------------------------------------------------------------

    def to_json(
        self,
        report: dict[str, Any],
        filename: Optional[str] = None,
    ) -> str:
        """Export a report to JSON. Returns the JSON string."""
        serializable = _decimal_to_float(report)
        json_str = json.dumps(serializable, indent=2, cls=_DecimalEncoder)

        if filename:
            self._write(filename, json_str)

        return json_str

    def to_csv(
        self,
        report: dict[str, Any],
        filename: Optional[str] = None,
        section: str = "overdue_tasks",
    ) -> str:
        """
        Export a report section to CSV. Returns the CSV string.

        The section parameter specifies which list/dict in the report
        to export as rows.
        """
        data = _decimal_to_float(report.get(section, []))
        if not data:
            return ""

        if isinstance(data, list):
            frame = pd.DataFrame(data)
        else:
            frame = pd.DataFrame(list(data.items()), columns=["key", "value"])

        csv_str = frame.to_csv(index=False, lineterminator="\n")

        if filename:
            self._write(filename, csv_str)

        return csv_str

    # ------------------------------------------------------------------
    # Console-formatted text output
    # ------------------------------------------------------------------

    def format_text(self, report: dict[str, Any]) -> str:
        """Format a report as human-readable text for console output."""
        lines: list[str] = []
        report_type = report.get("report_type", "report").replace("_", " ").title()
        lines.append(f"{'=' * 60}")
        lines.append(f"  {report_type}")
        lines.append(f"  Generated: {report.get('generated_date', '')}")
        lines.append(f"{'=' * 60}")
        lines.append("")

        summary = report.get("summary", {})
        if summary:
            lines.append("SUMMARY")
            lines.append("-" * 40)
            for key, value in summary.items():
                label = key.replace("_", " ").title()
                if isinstance(value, (float, Decimal)):
                    lines.append(f"  {label}: Rs. {float(value):,.2f}")
                else:
                    lines.append(f"  {label}: {value}")
            lines.append("")

        for section in (
            "status_breakdown",
            "severity_breakdown",
            "type_breakdown",
            "action_breakdown",
        ):
            breakdown = report.get(section, {})
            if breakdown:
                lines.append(section.replace("_", " ").upper())
                lines.append("-" * 40)
                for key, count in breakdown.items():
                    lines.append(f"  {key}: {count}")
                lines.append("")

        for section in ("overdue_tasks", "upcoming_tasks"):
            rows = report.get(section, [])
            if rows:
                lines.append(section.replace("_", " ").upper())
                lines.append("-" * 40)
                for t in rows:
                    lines.append(
                        f"  {t['task_name']} | Due: {t['due_date']} | "
                        f"{t['status']} | {t['days_until_due']:+d} days"
                    )
                lines.append("")

        risks = report.get("active_risks", [])
        if risks:
            lines.append("ACTIVE RISKS")
            lines.append("-" * 40)
            for r in risks:
                lines.append(f"  [{r['severity'].upper()}] {r['description']}")
                if r.get("actions"):
                    lines.append(f"          Action: {r['actions']}")
            lines.append("")

        entries = report.get("entries", [])
        if entries:
            lines.append("AUDIT ENTRIES")
            lines.append("-" * 40)
            for e in entries:
                when = e["performed_at"]
                when = when.isoformat() if isinstance(when, date) else (when or "")
                lines.append(
                    f"  {when} {e['action']} {e['entity_type']}/{e['entity_id']} "
                    f"by {e['performed_by']}"
                )
            lines.append("")

        return "\n".join(lines)
