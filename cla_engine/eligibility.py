"""
Plan eligibility and compliance recommendations.

Stateless threshold checks over business attributes:
- 20+ employees: Provident Fund registration
- 10-19 employees: ESI registration
- Company entity types: MCA annual filings
- Turnover at or above the plan-upgrade threshold: enterprise GST plan
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional, Union

import structlog

from cla_engine.audit import AuditTrailWriter
from cla_engine.config import EngineSettings
from cla_engine.errors import RecommendationNotFoundError
from cla_engine.models import (
    SYSTEM_ACTOR,
    AuditAction,
    AuditEntityType,
    PlanRecommendation,
    RecommendationStatus,
    RecommendationType,
    enum_value,
)
from cla_engine.store import SERVER_TIMESTAMP, DocumentStore, where

logger = structlog.get_logger(__name__)


class EligibilityEngine:
    def __init__(
        self,
        store: DocumentStore,
        audit: AuditTrailWriter,
        settings: Optional[EngineSettings] = None,
    ) -> None:
        self.store = store
        self.audit = audit
        self.settings = settings or EngineSettings()

    @property
    def _recommendations(self) -> str:
        return self.settings.collections.recommendations

    def evaluate_pf_eligibility(
        self, user_id: str, firm_id: str, employee_count: int
    ) -> Optional[str]:
        threshold = self.settings.pf_employee_threshold
        if employee_count < threshold:
            return None
        return self._create_recommendation(
            user_id,
            firm_id,
            RecommendationType.PF_REQUIRED,
            current_status=f"Current employee count: {employee_count}",
            recommended_action=(
                f"PF compliance is mandatory for businesses with "
                f"{threshold}+ employees"
            ),
            benefit_description=(
                "Ensure compliance with Employees Provident Fund Act to avoid "
                "penalties and legal issues"
            ),
            trigger_data={"employee_count": employee_count, "threshold": threshold},
        )

    def evaluate_esi_eligibility(
        self, user_id: str, firm_id: str, employee_count: int
    ) -> Optional[str]:
        lower = self.settings.esi_employee_threshold
        upper = self.settings.pf_employee_threshold
        if not lower <= employee_count < upper:
            return None
        return self._create_recommendation(
            user_id,
            firm_id,
            RecommendationType.ESI_REQUIRED,
            current_status=f"Current employee count: {employee_count}",
            recommended_action=(
                f"ESI compliance is mandatory for businesses with "
                f"{lower}-{upper - 1} employees"
            ),
            benefit_description=(
                "Ensure compliance with Employees State Insurance Act for "
                "employee welfare"
            ),
            trigger_data={"employee_count": employee_count, "threshold": lower},
        )

    def evaluate_mca_compliance(
        self, user_id: str, firm_id: str, entity_type: Any
    ) -> Optional[str]:
        entity = str(enum_value(entity_type))
        if entity not in self.settings.mca_entity_types:
            return None
        return self._create_recommendation(
            user_id,
            firm_id,
            RecommendationType.MCA_COMPLIANCE_REQUIRED,
            current_status=f"Entity type: {entity}",
            recommended_action=(
                "MCA compliance is mandatory for companies "
                "(Annual Returns, AOC-4, MGT-7)"
            ),
            benefit_description=(
                "Ensure timely filing of annual returns and financial "
                "statements to maintain company status"
            ),
            trigger_data={"entity_type": entity},
        )

    def evaluate_gst_plan_upgrade(
        self,
        user_id: str,
        firm_id: str,
        annual_turnover: Union[Decimal, int, float],
    ) -> Optional[str]:
        turnover = Decimal(str(annual_turnover))
        threshold = self.settings.plan_upgrade_turnover
        if turnover < threshold:
            return None
        return self._create_recommendation(
            user_id,
            firm_id,
            RecommendationType.GST_PLAN_UPGRADE,
            current_status=f"Annual turnover: Rs. {turnover:,.2f}",
            recommended_action=(
                "Consider upgrading to Enterprise Compliance Plan for "
                "comprehensive GST management"
            ),
            benefit_description=(
                "Enterprise plan includes GSTR-9C reconciliation, advanced "
                "analytics, and priority support"
            ),
            trigger_data={"annual_turnover": turnover, "threshold": threshold},
        )

    def perform_eligibility_check(
        self,
        user_id: str,
        firm_id: str,
        employee_count: Optional[int] = None,
        entity_type: Optional[Any] = None,
        annual_turnover: Optional[Union[Decimal, int, float]] = None,
    ) -> list[str]:
        """
        Run every evaluator whose input is present.

        Writes one summary audit entry, only when at least one
        recommendation was created.
        """
        created: list[Optional[str]] = []
        if employee_count is not None:
            created.append(
                self.evaluate_pf_eligibility(user_id, firm_id, employee_count)
            )
            created.append(
                self.evaluate_esi_eligibility(user_id, firm_id, employee_count)
            )
        if entity_type:
            created.append(self.evaluate_mca_compliance(user_id, firm_id, entity_type))
        if annual_turnover is not None:
            created.append(
                self.evaluate_gst_plan_upgrade(user_id, firm_id, annual_turnover)
            )

        recommendation_ids = [r for r in created if r]
        if recommendation_ids:
            self.audit.create_entry(
                user_id=user_id,
                firm_id=firm_id,
                action=AuditAction.PLAN_ELIGIBILITY_CHECKED,
                entity_type=AuditEntityType.RECOMMENDATION,
                entity_id="",
                details={
                    "recommendations_created": len(recommendation_ids),
                    "recommendation_ids": recommendation_ids,
                    "business_data": {
                        "employee_count": employee_count,
                        "entity_type": enum_value(entity_type),
                        "annual_turnover": annual_turnover,
                    },
                },
                performed_by=SYSTEM_ACTOR,
            )
        logger.info(
            "eligibility_checked",
            user_id=user_id,
            firm_id=firm_id,
            recommendations=len(recommendation_ids),
        )
        return recommendation_ids

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def _create_recommendation(
        self,
        user_id: str,
        firm_id: str,
        recommendation_type: RecommendationType,
        current_status: str,
        recommended_action: str,
        benefit_description: str,
        trigger_data: dict[str, Any],
    ) -> str:
        recommendation_id = self.store.add(
            self._recommendations,
            {
                "user_id": user_id,
                "firm_id": firm_id,
                "recommendation_type": recommendation_type.value,
                "current_status": current_status,
                "recommended_action": recommended_action,
                "benefit_description": benefit_description,
                "trigger_data": trigger_data,
                "status": RecommendationStatus.ACTIVE.value,
                "presented_at": SERVER_TIMESTAMP,
                "accepted_at": None,
                "dismissed_at": None,
            },
        )
        self.audit.create_entry(
            user_id=user_id,
            firm_id=firm_id,
            action=AuditAction.RECOMMENDATION_PRESENTED,
            entity_type=AuditEntityType.RECOMMENDATION,
            entity_id=recommendation_id,
            details={"recommendation_type": recommendation_type.value},
            performed_by=SYSTEM_ACTOR,
        )
        return recommendation_id

    def get_recommendation(self, recommendation_id: str) -> PlanRecommendation:
        doc = self.store.get(self._recommendations, recommendation_id)
        if doc is None:
            raise RecommendationNotFoundError(recommendation_id)
        return PlanRecommendation.from_dict(doc)

    def get_active_recommendations(
        self, user_id: str, firm_id: Optional[str] = None
    ) -> list[PlanRecommendation]:
        filters = [
            where("user_id", "==", user_id),
            where("status", "==", RecommendationStatus.ACTIVE.value),
        ]
        if firm_id is not None:
            filters.append(where("firm_id", "==", firm_id))
        docs = self.store.query(self._recommendations, filters)
        return [PlanRecommendation.from_dict(d) for d in docs]

    def accept_recommendation(
        self, recommendation_id: str, performed_by: str
    ) -> PlanRecommendation:
        return self._set_status(
            recommendation_id, RecommendationStatus.ACCEPTED, "accepted_at", performed_by
        )

    def dismiss_recommendation(
        self, recommendation_id: str, performed_by: str
    ) -> PlanRecommendation:
        return self._set_status(
            recommendation_id,
            RecommendationStatus.DISMISSED,
            "dismissed_at",
            performed_by,
        )

    def _set_status(
        self,
        recommendation_id: str,
        status: RecommendationStatus,
        stamp_field: str,
        performed_by: str,
    ) -> PlanRecommendation:
        current = self.get_recommendation(recommendation_id)
        self.store.update(
            self._recommendations,
            recommendation_id,
            {"status": status.value, stamp_field: SERVER_TIMESTAMP},
        )
        self.audit.create_entry(
            user_id=current.user_id,
            firm_id=current.firm_id,
            action=AuditAction.RECOMMENDATION_STATUS_CHANGED,
            entity_type=AuditEntityType.RECOMMENDATION,
            entity_id=recommendation_id,
            details={
                "previous_status": current.status.value,
                "new_status": status.value,
            },
            performed_by=performed_by,
        )
        return self.get_recommendation(recommendation_id)
