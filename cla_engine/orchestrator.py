"""
Compliance task orchestrator.

Owns the lifecycle of every task instance:
- Creation (always ``pending``), with optional per-event deduplication
- Status transitions, assignment and document linkage
- Filing details
- The overdue sweep

Every mutation writes exactly one audit entry describing the prior and
new values it touched.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Callable, Optional, Union

import structlog

from cla_engine.audit import AuditTrailWriter
from cla_engine.config import Collections
from cla_engine.errors import (
    ComplianceError,
    DocumentExistsError,
    InvalidTransitionError,
    TaskNotFoundError,
)
from cla_engine.models import (
    SYSTEM_ACTOR,
    AuditAction,
    AuditEntityType,
    ComplianceRule,
    ComplianceTaskInstance,
    FilingDetails,
    RequiredDocumentSlot,
    TaskStatus,
    enum_value,
)
from cla_engine.store import (
    SERVER_TIMESTAMP,
    DocumentStore,
    Filter,
    query_with_fallback,
    utcnow,
    where,
)

logger = structlog.get_logger(__name__)

OPEN_STATUSES = (TaskStatus.PENDING.value, TaskStatus.IN_PROGRESS.value)

# Manual transitions. OVERDUE is only ever set by the sweep.
_ALLOWED_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {
        TaskStatus.IN_PROGRESS,
        TaskStatus.COMPLETED,
        TaskStatus.FILED,
        TaskStatus.FAILED,
    },
    TaskStatus.IN_PROGRESS: {
        TaskStatus.COMPLETED,
        TaskStatus.FILED,
        TaskStatus.FAILED,
    },
    TaskStatus.OVERDUE: {
        TaskStatus.IN_PROGRESS,
        TaskStatus.COMPLETED,
        TaskStatus.FILED,
    },
    TaskStatus.COMPLETED: set(),
    TaskStatus.FILED: set(),
    TaskStatus.FAILED: set(),
}


def _iso(value: Any) -> Any:
    return value.isoformat() if isinstance(value, (date, datetime)) else value


class TaskOrchestrator:
    def __init__(
        self,
        store: DocumentStore,
        audit: AuditTrailWriter,
        collections: Optional[Collections] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.audit = audit
        self.collections = collections or Collections()
        self._clock = clock or utcnow

    @property
    def _tasks(self) -> str:
        return self.collections.tasks

    def today(self) -> date:
        return self._clock().date()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_task(
        self,
        user_id: str,
        firm_id: str,
        rule: ComplianceRule,
        due_date: date,
        trigger_event_id: Optional[str] = None,
        trigger_event_type: Optional[str] = None,
        dedupe_key: Optional[str] = None,
    ) -> str:
        """
        Materialise a ``pending`` task for ``rule`` and audit its creation.

        When ``dedupe_key`` is given the key is claimed with a conditional
        write first; if another task already holds it, that task's id is
        returned and nothing new is written.
        """
        record = _task_record(
            user_id,
            firm_id,
            rule,
            due_date,
            trigger_event_id,
            trigger_event_type,
            dedupe_key,
        )
        if dedupe_key is None:
            task_id = self.store.add(self._tasks, record)
            self._audit_created(task_id, record)
            return task_id

        keys = self.collections.task_keys
        try:
            self.store.create(keys, dedupe_key, {"task_id": None})
        except DocumentExistsError:
            claimed = self.store.get(keys, dedupe_key) or {}
            if not claimed.get("task_id"):
                raise ComplianceError(
                    f"Task for {dedupe_key} is still being created"
                )
            logger.info(
                "task_deduplicated",
                dedupe_key=dedupe_key,
                task_id=claimed["task_id"],
            )
            return claimed["task_id"]

        task_id = None
        try:
            task_id = self.store.add(self._tasks, record)
            self.store.update(keys, dedupe_key, {"task_id": task_id})
        except Exception:
            # Release the claim so a retry of the same key can succeed.
            if task_id is not None:
                self.store.delete(self._tasks, task_id)
            self.store.delete(keys, dedupe_key)
            raise
        self._audit_created(task_id, record)
        return task_id

    def _audit_created(self, task_id: str, record: dict[str, Any]) -> None:
        self.audit.create_entry(
            user_id=record["user_id"],
            firm_id=record["firm_id"],
            action=AuditAction.TASK_CREATED,
            entity_type=AuditEntityType.TASK,
            entity_id=task_id,
            details={
                "rule_id": record["rule_id"],
                "event_type": record["trigger_event_type"],
                "event_id": record["trigger_event_id"],
                "due_date": record["due_date"].isoformat(),
                "status": TaskStatus.PENDING.value,
            },
        )
        logger.info(
            "task_created",
            task_id=task_id,
            rule_id=record["rule_id"],
            due_date=record["due_date"].isoformat(),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> ComplianceTaskInstance:
        doc = self.store.get(self._tasks, task_id)
        if doc is None:
            raise TaskNotFoundError(task_id)
        return ComplianceTaskInstance.from_dict(doc)

    def get_tasks_for_user(
        self, user_id: str, firm_id: Optional[str] = None
    ) -> list[ComplianceTaskInstance]:
        filters = [where("user_id", "==", user_id)]
        if firm_id is not None:
            filters.append(where("firm_id", "==", firm_id))
        return self._ordered(filters)

    def get_tasks_by_status(
        self,
        user_id: str,
        status: Union[TaskStatus, str],
        firm_id: Optional[str] = None,
    ) -> list[ComplianceTaskInstance]:
        filters = [
            where("user_id", "==", user_id),
            where("status", "==", TaskStatus(status).value),
        ]
        if firm_id is not None:
            filters.append(where("firm_id", "==", firm_id))
        return self._ordered(filters)

    def get_overdue_tasks(
        self,
        user_id: Optional[str] = None,
        firm_id: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> list[ComplianceTaskInstance]:
        """Open tasks whose due date is before ``as_of`` (default today)."""
        cutoff = as_of or self.today()
        filters = [
            where("status", "in", OPEN_STATUSES),
            where("due_date", "<", cutoff),
        ]
        if user_id:
            filters.append(where("user_id", "==", user_id))
        if firm_id:
            filters.append(where("firm_id", "==", firm_id))
        return self._ordered(filters)

    def _ordered(self, filters: list[Filter]) -> list[ComplianceTaskInstance]:
        docs = query_with_fallback(self.store, self._tasks, filters, order_by="due_date")
        return [ComplianceTaskInstance.from_dict(d) for d in docs]

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def transition_status(
        self,
        task_id: str,
        new_status: Union[TaskStatus, str],
        performed_by: str = SYSTEM_ACTOR,
    ) -> ComplianceTaskInstance:
        """Move a task along the state machine; OVERDUE is sweep-only."""
        task = self.get_task(task_id)
        target = TaskStatus(new_status)
        if target not in _ALLOWED_TRANSITIONS[task.status]:
            raise InvalidTransitionError(task_id, task.status.value, target.value)
        return self._apply_status(task, target, performed_by)

    def _apply_status(
        self,
        task: ComplianceTaskInstance,
        target: TaskStatus,
        performed_by: str,
    ) -> ComplianceTaskInstance:
        changes: dict[str, Any] = {
            "status": target.value,
            "updated_at": SERVER_TIMESTAMP,
        }
        if target in (TaskStatus.COMPLETED, TaskStatus.FILED):
            changes["completed_at"] = SERVER_TIMESTAMP
        if target == TaskStatus.FILED:
            changes["filed_at"] = SERVER_TIMESTAMP

        self.store.update(self._tasks, task.id, changes)
        self.audit.create_entry(
            user_id=task.user_id,
            firm_id=task.firm_id,
            action=AuditAction.TASK_STATUS_CHANGED,
            entity_type=AuditEntityType.TASK,
            entity_id=task.id,
            details={
                "previous_status": task.status.value,
                "new_status": target.value,
                "updated_by": performed_by,
            },
            performed_by=performed_by,
        )
        logger.info(
            "task_status_changed",
            task_id=task.id,
            previous=task.status.value,
            new=target.value,
        )
        return self.get_task(task.id)

    def mark_overdue_tasks(self, as_of: Optional[date] = None) -> int:
        """Flip every open, past-due task to OVERDUE. Returns the count."""
        updated = 0
        for task in self.get_overdue_tasks(as_of=as_of):
            if task.status == TaskStatus.OVERDUE:
                continue
            self._apply_status(task, TaskStatus.OVERDUE, SYSTEM_ACTOR)
            updated += 1

        logger.info("overdue_sweep_completed", updated=updated)
        return updated

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def assign_associate(
        self,
        task_id: str,
        associate_code: str,
        performed_by: str = SYSTEM_ACTOR,
    ) -> None:
        task = self.get_task(task_id)
        self.store.update(
            self._tasks,
            task_id,
            {"assigned_to": associate_code, "updated_at": SERVER_TIMESTAMP},
        )
        self.audit.create_entry(
            user_id=task.user_id,
            firm_id=task.firm_id,
            action=AuditAction.TASK_ASSIGNED,
            entity_type=AuditEntityType.TASK,
            entity_id=task_id,
            details={
                "previous_associate": task.assigned_to,
                "associate_code": associate_code,
            },
            performed_by=performed_by,
        )

    def assign_ca_reviewer(
        self,
        task_id: str,
        ca_reviewer_code: str,
        performed_by: str = SYSTEM_ACTOR,
    ) -> None:
        task = self.get_task(task_id)
        self.store.update(
            self._tasks,
            task_id,
            {"ca_reviewer": ca_reviewer_code, "updated_at": SERVER_TIMESTAMP},
        )
        self.audit.create_entry(
            user_id=task.user_id,
            firm_id=task.firm_id,
            action=AuditAction.TASK_ASSIGNED,
            entity_type=AuditEntityType.TASK,
            entity_id=task_id,
            details={
                "previous_ca_reviewer": task.ca_reviewer,
                "ca_reviewer_code": ca_reviewer_code,
                "review_type": "ca_review",
            },
            performed_by=performed_by,
        )

    # ------------------------------------------------------------------
    # Documents and filing
    # ------------------------------------------------------------------

    def link_document(
        self,
        task_id: str,
        document_id: str,
        document_type: str,
        performed_by: str = SYSTEM_ACTOR,
    ) -> bool:
        """
        Attach a vault document to the slot(s) of matching type.

        Returns False, and writes nothing, when the task has no slot for
        ``document_type``.
        """
        task = self.get_task(task_id)
        matched = [
            slot for slot in task.required_documents
            if slot.document_type == document_type
        ]
        if not matched:
            logger.info(
                "document_slot_not_found",
                task_id=task_id,
                document_type=document_type,
            )
            return False

        now = self._clock()
        previous = [slot.document_id for slot in matched]
        for slot in matched:
            slot.document_id = document_id
            slot.uploaded = True
            slot.uploaded_at = now

        self.store.update(
            self._tasks,
            task_id,
            {
                "required_documents": [
                    _slot_record(slot) for slot in task.required_documents
                ],
                "updated_at": SERVER_TIMESTAMP,
            },
        )
        self.audit.create_entry(
            user_id=task.user_id,
            firm_id=task.firm_id,
            action=AuditAction.DOCUMENT_UPLOADED,
            entity_type=AuditEntityType.DOCUMENT,
            entity_id=document_id,
            details={
                "task_id": task_id,
                "document_type": document_type,
                "previous_document_ids": previous,
            },
            performed_by=performed_by,
        )
        return True

    def record_filing_details(
        self,
        task_id: str,
        filing_details: FilingDetails,
        performed_by: str = SYSTEM_ACTOR,
    ) -> ComplianceTaskInstance:
        """Store filing details and force the task to FILED."""
        task = self.get_task(task_id)
        record = {
            "form_type": filing_details.form_type,
            "period": filing_details.period,
            "reference": filing_details.reference,
            "portal_submission_id": filing_details.portal_submission_id,
            "portal": filing_details.portal,
            "filing_date": filing_details.filing_date or self.today(),
        }
        self.store.update(
            self._tasks,
            task_id,
            {
                "filing_details": record,
                "status": TaskStatus.FILED.value,
                "filed_at": SERVER_TIMESTAMP,
                "completed_at": SERVER_TIMESTAMP,
                "updated_at": SERVER_TIMESTAMP,
            },
        )
        self.audit.create_entry(
            user_id=task.user_id,
            firm_id=task.firm_id,
            action=AuditAction.FILING_SUBMITTED,
            entity_type=AuditEntityType.TASK,
            entity_id=task_id,
            details={
                "previous_status": task.status.value,
                "new_status": TaskStatus.FILED.value,
                "filing_details": {k: _iso(v) for k, v in record.items()},
            },
            performed_by=performed_by,
        )
        return self.get_task(task_id)


def _slot_record(slot: RequiredDocumentSlot) -> dict[str, Any]:
    return {
        "document_type": slot.document_type,
        "mandatory": slot.mandatory,
        "document_id": slot.document_id,
        "uploaded": slot.uploaded,
        "uploaded_at": slot.uploaded_at,
    }


def _task_record(
    user_id: str,
    firm_id: str,
    rule: ComplianceRule,
    due_date: date,
    trigger_event_id: Optional[str],
    trigger_event_type: Optional[str],
    dedupe_key: Optional[str],
) -> dict[str, Any]:
    return {
        "user_id": user_id,
        "firm_id": firm_id,
        "rule_id": rule.id,
        "rule_name": rule.name,
        "task_name": rule.name,
        "description": rule.description,
        "compliance_type": rule.compliance_type,
        "trigger_event_id": trigger_event_id,
        "trigger_event_type": enum_value(trigger_event_type),
        "frequency": rule.frequency,
        "due_date": due_date,
        "priority": rule.task_configuration.priority,
        "status": TaskStatus.PENDING.value,
        "requires_ca_review": rule.task_configuration.requires_ca_review,
        "platform_owned": True,
        "assigned_to": None,
        "ca_reviewer": None,
        "required_documents": [
            {
                "document_type": doc.document_type,
                "mandatory": doc.mandatory,
                "document_id": None,
                "uploaded": False,
                "uploaded_at": None,
            }
            for doc in rule.required_documents
        ],
        "filing_details": None,
        "dedupe_key": dedupe_key,
        "created_at": SERVER_TIMESTAMP,
        "updated_at": SERVER_TIMESTAMP,
        "completed_at": None,
        "filed_at": None,
    }
