"""
Append-only compliance audit trail.

``AuditTrailWriter.create_entry`` is the only code path that produces audit
rows. Every row is written with ``immutable=True`` and a store-assigned
timestamp, and nothing in the engine ever updates one afterwards.
"""

from __future__ import annotations

from typing import Any, Optional, Union

import structlog

from cla_engine.models import (
    SYSTEM_ACTOR,
    AuditAction,
    AuditEntityType,
    ComplianceAuditEntry,
)
from cla_engine.store import (
    SERVER_TIMESTAMP,
    DocumentStore,
    Filter,
    query_with_fallback,
    where,
)

logger = structlog.get_logger(__name__)

DEFAULT_COLLECTION = "compliance_audit_log"


class AuditTrailWriter:
    def __init__(
        self, store: DocumentStore, collection: str = DEFAULT_COLLECTION
    ) -> None:
        self.store = store
        self.collection = collection

    def create_entry(
        self,
        user_id: str,
        firm_id: str,
        action: Union[AuditAction, str],
        entity_type: Union[AuditEntityType, str],
        entity_id: str,
        details: Optional[dict[str, Any]] = None,
        performed_by: str = SYSTEM_ACTOR,
    ) -> str:
        """Append one audit row and return its id."""
        action = AuditAction(action)
        entity_type = AuditEntityType(entity_type)

        entry_id = self.store.add(
            self.collection,
            {
                "user_id": user_id,
                "firm_id": firm_id,
                "action": action.value,
                "entity_type": entity_type.value,
                "entity_id": entity_id,
                "details": details or {},
                "performed_by": performed_by,
                "performed_at": SERVER_TIMESTAMP,
                "immutable": True,
            },
        )
        logger.debug(
            "audit_entry_created",
            entry_id=entry_id,
            action=action.value,
            entity_type=entity_type.value,
            entity_id=entity_id,
        )
        return entry_id

    def get_entries(
        self,
        user_id: Optional[str] = None,
        firm_id: Optional[str] = None,
        entity_type: Optional[Union[AuditEntityType, str]] = None,
        entity_id: Optional[str] = None,
        action: Optional[Union[AuditAction, str]] = None,
        limit: Optional[int] = None,
    ) -> list[ComplianceAuditEntry]:
        """Return matching entries, newest first."""
        filters: list[Filter] = []
        if user_id is not None:
            filters.append(where("user_id", "==", user_id))
        if firm_id is not None:
            filters.append(where("firm_id", "==", firm_id))
        if entity_type is not None:
            filters.append(
                where("entity_type", "==", AuditEntityType(entity_type).value)
            )
        if entity_id is not None:
            filters.append(where("entity_id", "==", entity_id))
        if action is not None:
            filters.append(where("action", "==", AuditAction(action).value))

        docs = query_with_fallback(
            self.store,
            self.collection,
            filters,
            order_by="performed_at",
            descending=True,
            limit=limit,
        )
        return [ComplianceAuditEntry.from_dict(d) for d in docs]

    def get_entity_history(
        self, entity_type: Union[AuditEntityType, str], entity_id: str
    ) -> list[ComplianceAuditEntry]:
        return self.get_entries(entity_type=entity_type, entity_id=entity_id)
