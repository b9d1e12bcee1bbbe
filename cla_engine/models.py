"""
Domain model for compliance lifecycle automation.

Covers:
- Enumerations for entity types, system events, frequencies and statuses
- The static ComplianceRule loaded from the rule catalog
- Typed trigger predicates evaluated against event payloads
- Persisted records: events, task instances, risks, recommendations,
  audit entries and vault document metadata
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional, Union

SYSTEM_ACTOR = "system"


class EntityType(str, Enum):
    SOLE_PROPRIETORSHIP = "sole_proprietorship"
    PARTNERSHIP = "partnership"
    LLP = "llp"
    PRIVATE_LIMITED = "private_limited"
    PUBLIC_LIMITED = "public_limited"
    ONE_PERSON_COMPANY = "one_person_company"
    HUF = "huf"
    TRUST = "trust"
    SOCIETY = "society"


class ComplianceType(str, Enum):
    GST = "gst"
    INCOME_TAX = "income_tax"
    TDS = "tds"
    PAYROLL = "payroll"
    PF = "pf"
    ESI = "esi"
    PROFESSIONAL_TAX = "professional_tax"
    MCA = "mca"
    ROC = "roc"
    SHOP_ESTABLISHMENT = "shop_establishment"
    LABOR = "labor"
    ENVIRONMENTAL = "environmental"
    FIRE_SAFETY = "fire_safety"
    FSSAI = "fssai"
    IEC = "iec"
    CUSTOMS = "customs"
    EXCISE = "excise"


class SystemEventType(str, Enum):
    GST_REGISTRATION = "gst_registration"
    EMPLOYEE_ADDED = "employee_added"
    EMPLOYEE_COUNT_THRESHOLD = "employee_count_threshold"
    INVOICE_GENERATED = "invoice_generated"
    PAYROLL_RUN = "payroll_run"
    FUNDING_RECEIVED = "funding_received"
    ENTITY_TYPE_CHANGED = "entity_type_changed"
    TURNOVER_THRESHOLD = "turnover_threshold"
    GST_FILING_COMPLETED = "gst_filing_completed"
    REGISTRATION_COMPLETED = "registration_completed"
    COMPLIANCE_SUBSCRIPTION_ACTIVATED = "compliance_subscription_activated"
    DOCUMENT_UPLOADED = "document_uploaded"
    FINANCIAL_YEAR_END = "financial_year_end"
    QUARTER_END = "quarter_end"
    MONTH_END = "month_end"


class ComplianceFrequency(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    HALF_YEARLY = "half_yearly"
    ANNUAL = "annual"
    EVENT_BASED = "event_based"
    ONE_TIME = "one_time"


class DueDateType(str, Enum):
    FIXED_DAY = "fixed_day"
    MONTH_END = "month_end"
    QUARTER_END = "quarter_end"
    YEAR_END = "year_end"
    DAYS_AFTER_EVENT = "days_after_event"
    CUSTOM = "custom"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FILED = "filed"
    OVERDUE = "overdue"
    FAILED = "failed"


class RiskType(str, Enum):
    GSTR_MISMATCH = "gstr_mismatch"
    ITC_SHORTFALL = "itc_shortfall"
    DELAYED_FILING = "delayed_filing"
    MISSING_DOCUMENT = "missing_document"
    PENALTY_DUE = "penalty_due"
    THRESHOLD_BREACH = "threshold_breach"
    DATA_INCONSISTENCY = "data_inconsistency"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskStatus(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"


class RecommendationType(str, Enum):
    PF_REQUIRED = "pf_required"
    ESI_REQUIRED = "esi_required"
    MCA_COMPLIANCE_REQUIRED = "mca_compliance_required"
    GST_PLAN_UPGRADE = "gst_plan_upgrade"
    ADDITIONAL_COMPLIANCE = "additional_compliance"
    THRESHOLD_BREACH = "threshold_breach"


class RecommendationStatus(str, Enum):
    ACTIVE = "active"
    ACCEPTED = "accepted"
    DISMISSED = "dismissed"
    IMPLEMENTED = "implemented"


class AuditAction(str, Enum):
    EVENT_TRIGGERED = "event_triggered"
    TASK_CREATED = "task_created"
    TASK_ASSIGNED = "task_assigned"
    TASK_STATUS_CHANGED = "task_status_changed"
    DOCUMENT_UPLOADED = "document_uploaded"
    DOCUMENT_REVIEWED = "document_reviewed"
    FILING_SUBMITTED = "filing_submitted"
    RISK_DETECTED = "risk_detected"
    RISK_RESOLVED = "risk_resolved"
    RECOMMENDATION_PRESENTED = "recommendation_presented"
    RECOMMENDATION_STATUS_CHANGED = "recommendation_status_changed"
    PLAN_ELIGIBILITY_CHECKED = "plan_eligibility_checked"


class AuditEntityType(str, Enum):
    EVENT = "event"
    TASK = "task"
    DOCUMENT = "document"
    RISK = "risk"
    RECOMMENDATION = "recommendation"


class FilingStatus(str, Enum):
    UPLOADED = "uploaded"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    FILED = "filed"
    REJECTED = "rejected"
    ARCHIVED = "archived"


def enum_value(value: Any) -> Any:
    """Return the wire value of an enum member, or the value unchanged."""
    return value.value if isinstance(value, Enum) else value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


def _known(cls: type, data: Mapping[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


# -----------------------------------------------------------------------
# Trigger predicates
# -----------------------------------------------------------------------

_MISSING = object()


@dataclass(frozen=True)
class Equals:
    """
    Payload field must equal the literal exactly.

    Booleans only equal booleans, so ``True`` does not match ``1``.
    """

    field: str
    value: Any

    def matches(self, payload: Mapping[str, Any]) -> bool:
        value = payload.get(self.field, _MISSING)
        if isinstance(value, bool) != isinstance(self.value, bool):
            return False
        return value == self.value


@dataclass(frozen=True)
class GreaterOrEqual:
    """
    Numeric lower bound.

    Only applied when the payload carries a number for the field; a
    missing or non-numeric value does not exclude the rule.
    """

    field: str
    bound: Union[int, float, Decimal]

    def matches(self, payload: Mapping[str, Any]) -> bool:
        value = payload.get(self.field)
        if not _is_number(value):
            return True
        return value >= self.bound


@dataclass(frozen=True)
class LessOrEqual:
    """Numeric upper bound, with the same leniency as GreaterOrEqual."""

    field: str
    bound: Union[int, float, Decimal]

    def matches(self, payload: Mapping[str, Any]) -> bool:
        value = payload.get(self.field)
        if not _is_number(value):
            return True
        return value <= self.bound


TriggerPredicate = Union[Equals, GreaterOrEqual, LessOrEqual]


def parse_trigger_conditions(
    conditions: Optional[Mapping[str, Any]],
) -> tuple[TriggerPredicate, ...]:
    """
    Convert a catalog condition map into typed predicates.

    ``{"employeeCount": {"gte": 20}}`` becomes ``GreaterOrEqual``,
    ``{"gstRegistered": True}`` becomes ``Equals``. Unrecognised
    operators and non-numeric bounds are ignored.
    """
    if not conditions or not isinstance(conditions, Mapping):
        return ()

    predicates: list[TriggerPredicate] = []
    for name, condition in conditions.items():
        if isinstance(condition, Mapping):
            if "gte" in condition and _is_number(condition["gte"]):
                predicates.append(GreaterOrEqual(name, condition["gte"]))
            if "lte" in condition and _is_number(condition["lte"]):
                predicates.append(LessOrEqual(name, condition["lte"]))
            if "eq" in condition:
                predicates.append(Equals(name, condition["eq"]))
        else:
            predicates.append(Equals(name, condition))
    return tuple(predicates)


# -----------------------------------------------------------------------
# Rule catalog model
# -----------------------------------------------------------------------


@dataclass(frozen=True)
class DueDateLogic:
    type: str
    day_of_month: Optional[int] = None
    month_offset: int = 0
    days_after: int = 0
    custom_formula: Optional[str] = None

    @classmethod
    def from_catalog(cls, data: Optional[Mapping[str, Any]]) -> "DueDateLogic":
        data = data or {}
        day = data.get("dayOfMonth")
        return cls(
            type=str(enum_value(data.get("type", ""))),
            day_of_month=int(day) if day is not None else None,
            month_offset=int(data.get("monthOffset") or 0),
            days_after=int(data.get("daysAfter") or 0),
            custom_formula=data.get("customFormula"),
        )


@dataclass(frozen=True)
class PenaltyLogic:
    enabled: bool = False
    penalty_amount: Optional[Decimal] = None
    grace_period_days: int = 0

    @classmethod
    def from_catalog(cls, data: Optional[Mapping[str, Any]]) -> "PenaltyLogic":
        data = data or {}
        amount = data.get("penaltyAmount")
        return cls(
            enabled=bool(data.get("enabled", False)),
            penalty_amount=Decimal(str(amount)) if amount is not None else None,
            grace_period_days=int(data.get("gracePeriodDays") or 0),
        )


@dataclass(frozen=True)
class RuleDocument:
    """A document a rule requires before its task can be filed."""

    document_type: str
    description: str = ""
    mandatory: bool = True
    upload_before_due: bool = False


@dataclass(frozen=True)
class TaskConfiguration:
    priority: str = Priority.MEDIUM.value
    requires_ca_review: bool = False
    estimated_duration: Optional[float] = None
    auto_assign: bool = False
    review_stage: Optional[str] = None


@dataclass(frozen=True)
class ComplianceRule:
    """
    A static compliance obligation loaded from the rule catalog.

    Entity types, trigger event, frequency and due-date type stay as raw
    strings so that values unknown to this release still load and index.
    """

    id: str
    name: str
    description: str = ""
    entity_types: tuple[str, ...] = ()
    trigger_event: str = ""
    trigger_conditions: tuple[TriggerPredicate, ...] = ()
    compliance_type: str = ""
    frequency: str = ComplianceFrequency.ONE_TIME.value
    due_date_logic: DueDateLogic = field(
        default_factory=lambda: DueDateLogic(type="")
    )
    penalty_logic: PenaltyLogic = field(default_factory=PenaltyLogic)
    required_documents: tuple[RuleDocument, ...] = ()
    dependencies: tuple[str, ...] = ()
    task_configuration: TaskConfiguration = field(
        default_factory=TaskConfiguration
    )
    active: bool = True
    version: int = 1

    def matches_payload(self, payload: Mapping[str, Any]) -> bool:
        return all(p.matches(payload) for p in self.trigger_conditions)

    @classmethod
    def from_catalog(cls, data: Mapping[str, Any]) -> "ComplianceRule":
        """Build a rule from a catalog record (camelCase keys)."""
        task_cfg = data.get("taskConfiguration") or {}
        documents = tuple(
            RuleDocument(
                document_type=str(d["documentType"]),
                description=d.get("description", ""),
                mandatory=bool(d.get("mandatory", True)),
                upload_before_due=bool(d.get("uploadBeforeDue", False)),
            )
            for d in data.get("requiredDocuments") or []
        )
        return cls(
            id=str(data["id"]),
            name=data.get("name", data["id"]),
            description=data.get("description", ""),
            entity_types=tuple(
                str(enum_value(e)) for e in data.get("entityTypes") or []
            ),
            trigger_event=str(enum_value(data.get("triggerEvent", ""))),
            trigger_conditions=parse_trigger_conditions(
                data.get("triggerConditions")
            ),
            compliance_type=str(enum_value(data.get("complianceType", ""))),
            frequency=str(
                enum_value(data.get("frequency", ComplianceFrequency.ONE_TIME))
            ),
            due_date_logic=DueDateLogic.from_catalog(data.get("dueDateLogic")),
            penalty_logic=PenaltyLogic.from_catalog(data.get("penaltyLogic")),
            required_documents=documents,
            dependencies=tuple(str(d) for d in data.get("dependencies") or []),
            task_configuration=TaskConfiguration(
                priority=str(
                    enum_value(task_cfg.get("priority", Priority.MEDIUM))
                ),
                requires_ca_review=bool(task_cfg.get("requiresCAReview", False)),
                estimated_duration=task_cfg.get("estimatedDuration"),
                auto_assign=bool(task_cfg.get("autoAssign", False)),
                review_stage=task_cfg.get("reviewStage"),
            ),
            active=bool(data.get("active", True)),
            version=int(data.get("version") or 1),
        )


# -----------------------------------------------------------------------
# Persisted records
# -----------------------------------------------------------------------


@dataclass
class ComplianceEvent:
    """A business occurrence reported by an external module."""

    id: str
    user_id: str
    firm_id: str
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None
    processed: bool = False
    processed_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return _plain(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ComplianceEvent":
        return cls(**_known(cls, data))


@dataclass
class RequiredDocumentSlot:
    document_type: str
    mandatory: bool = True
    document_id: Optional[str] = None
    uploaded: bool = False
    uploaded_at: Optional[datetime] = None


@dataclass
class FilingDetails:
    form_type: str
    period: str
    reference: Optional[str] = None
    portal_submission_id: Optional[str] = None
    portal: Optional[str] = None
    filing_date: Optional[date] = None


@dataclass
class ComplianceTaskInstance:
    """A dated obligation derived from one rule and one triggering event."""

    id: str
    user_id: str
    firm_id: str
    rule_id: str
    rule_name: str
    task_name: str
    due_date: date
    description: str = ""
    compliance_type: str = ""
    trigger_event_id: Optional[str] = None
    trigger_event_type: Optional[str] = None
    frequency: str = ComplianceFrequency.ONE_TIME.value
    priority: str = Priority.MEDIUM.value
    status: TaskStatus = TaskStatus.PENDING
    requires_ca_review: bool = False
    platform_owned: bool = True
    assigned_to: Optional[str] = None
    ca_reviewer: Optional[str] = None
    required_documents: list[RequiredDocumentSlot] = field(default_factory=list)
    filing_details: Optional[FilingDetails] = None
    dedupe_key: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    filed_at: Optional[datetime] = None

    @property
    def missing_mandatory_documents(self) -> list[str]:
        return [
            slot.document_type
            for slot in self.required_documents
            if slot.mandatory and not slot.uploaded
        ]

    def to_dict(self) -> dict[str, Any]:
        return _plain(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ComplianceTaskInstance":
        values = _known(cls, data)
        values["status"] = TaskStatus(values.get("status", TaskStatus.PENDING))
        values["required_documents"] = [
            RequiredDocumentSlot(**_known(RequiredDocumentSlot, slot))
            for slot in values.get("required_documents") or []
        ]
        filing = values.get("filing_details")
        if filing is not None:
            values["filing_details"] = FilingDetails(
                **_known(FilingDetails, filing)
            )
        return cls(**values)


@dataclass
class RecommendedAction:
    action: str
    priority: str = Priority.MEDIUM.value
    estimated_penalty: Optional[Decimal] = None


@dataclass
class ComplianceRisk:
    """A detected anomaly or deadline breach."""

    id: str
    user_id: str
    firm_id: str
    risk_type: RiskType
    severity: Severity
    description: str
    risk_data: dict[str, Any] = field(default_factory=dict)
    recommended_actions: list[RecommendedAction] = field(default_factory=list)
    related_task_id: Optional[str] = None
    related_compliance_type: Optional[str] = None
    status: RiskStatus = RiskStatus.ACTIVE
    detected_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return _plain(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ComplianceRisk":
        values = _known(cls, data)
        values["risk_type"] = RiskType(values["risk_type"])
        values["severity"] = Severity(values["severity"])
        values["status"] = RiskStatus(values.get("status", RiskStatus.ACTIVE))
        values["recommended_actions"] = [
            RecommendedAction(**_known(RecommendedAction, a))
            for a in values.get("recommended_actions") or []
        ]
        return cls(**values)


@dataclass
class PlanRecommendation:
    """A suggested plan or compliance action; never a binding obligation."""

    id: str
    user_id: str
    firm_id: str
    recommendation_type: RecommendationType
    current_status: str
    recommended_action: str
    benefit_description: str
    trigger_data: dict[str, Any] = field(default_factory=dict)
    status: RecommendationStatus = RecommendationStatus.ACTIVE
    presented_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return _plain(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PlanRecommendation":
        values = _known(cls, data)
        values["recommendation_type"] = RecommendationType(
            values["recommendation_type"]
        )
        values["status"] = RecommendationStatus(
            values.get("status", RecommendationStatus.ACTIVE)
        )
        return cls(**values)


@dataclass(frozen=True)
class ComplianceAuditEntry:
    id: str
    user_id: str
    firm_id: str
    action: AuditAction
    entity_type: AuditEntityType
    entity_id: str
    details: dict[str, Any]
    performed_by: str
    performed_at: Optional[datetime] = None
    immutable: bool = True

    def to_dict(self) -> dict[str, Any]:
        return _plain(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ComplianceAuditEntry":
        values = _known(cls, data)
        values["action"] = AuditAction(values["action"])
        values["entity_type"] = AuditEntityType(values["entity_type"])
        return cls(**values)


@dataclass
class ComplianceDocumentMetadata:
    """Compliance extension carried in a vault document's metadata block."""

    compliance_type: Optional[str] = None
    document_type: Optional[str] = None
    linked_task_id: Optional[str] = None
    linked_rule_id: Optional[str] = None
    filing_reference: Optional[str] = None
    filing_status: Optional[FilingStatus] = None
    filing_period: Optional[str] = None  # e.g. "2024-04"
    filing_year: Optional[str] = None  # e.g. "2024-25"
    portal_submission_id: Optional[str] = None
    last_reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None

    def changes(self) -> dict[str, Any]:
        """Only the fields that were actually set."""
        return {k: v for k, v in _plain(self).items() if v is not None}
