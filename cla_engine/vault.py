"""
Bridge between the document vault and compliance tasks.

Vault documents live in their own collection and carry a ``metadata``
block; the compliance fields are merged into that block. Linking a
document to a task also fills the matching required-document slot on
the task through the orchestrator.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Mapping, Optional, Union

import structlog

from cla_engine.audit import AuditTrailWriter
from cla_engine.config import EngineSettings
from cla_engine.errors import DocumentNotFoundError
from cla_engine.models import (
    AuditAction,
    AuditEntityType,
    ComplianceDocumentMetadata,
    FilingStatus,
    enum_value,
)
from cla_engine.orchestrator import TaskOrchestrator
from cla_engine.store import SERVER_TIMESTAMP, DocumentStore, utcnow, where

logger = structlog.get_logger(__name__)

MetadataInput = Union[ComplianceDocumentMetadata, Mapping[str, Any]]


def _metadata_changes(metadata: MetadataInput) -> dict[str, Any]:
    if isinstance(metadata, ComplianceDocumentMetadata):
        return metadata.changes()
    return {k: enum_value(v) for k, v in metadata.items() if v is not None}


class DocumentVaultBridge:
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
    def _documents(self) -> str:
        return self.settings.collections.documents

    def _get_document(self, document_id: str) -> dict[str, Any]:
        doc = self.store.get(self._documents, document_id)
        if doc is None:
            raise DocumentNotFoundError(self._documents, document_id)
        return doc

    # ------------------------------------------------------------------
    # Metadata updates
    # ------------------------------------------------------------------

    def update_document_compliance_metadata(
        self,
        document_id: str,
        metadata: MetadataInput,
        user_id: str,
        firm_id: str,
    ) -> dict[str, Any]:
        """
        Merge compliance metadata into a vault document.

        When the update links the document to a task, the task's slot for
        the document's type is filled as well. The type comes from the
        update itself, else from what the document already records.
        """
        doc = self._get_document(document_id)
        current = dict(doc.get("metadata") or {})
        changes = _metadata_changes(metadata)
        merged = {**current, **changes}

        task_id = changes.get("linked_task_id")
        if task_id:
            # Unknown task ids fail before the document is touched.
            self.orchestrator.get_task(task_id)

        self.store.update(
            self._documents,
            document_id,
            {"metadata": merged, "last_updated": SERVER_TIMESTAMP},
        )

        if task_id:
            document_type = (
                changes.get("document_type")
                or current.get("document_type")
                or doc.get("document_type")
            )
            if document_type:
                self.orchestrator.link_document(
                    task_id, document_id, document_type, performed_by=user_id
                )
            else:
                logger.warning(
                    "document_type_unknown",
                    document_id=document_id,
                    task_id=task_id,
                )

        self.audit.create_entry(
            user_id=user_id,
            firm_id=firm_id,
            action=AuditAction.DOCUMENT_REVIEWED,
            entity_type=AuditEntityType.DOCUMENT,
            entity_id=document_id,
            details={
                "metadata": changes,
                "previous_filing_status": current.get("filing_status"),
                "new_filing_status": changes.get("filing_status"),
            },
            performed_by=user_id,
        )
        return merged

    def link_document_to_compliance_task(
        self,
        document_id: str,
        task_id: str,
        compliance_type: str,
        user_id: str,
        firm_id: str,
        document_type: Optional[str] = None,
    ) -> dict[str, Any]:
        return self.update_document_compliance_metadata(
            document_id,
            ComplianceDocumentMetadata(
                compliance_type=enum_value(compliance_type),
                document_type=document_type,
                linked_task_id=task_id,
            ),
            user_id,
            firm_id,
        )

    def update_document_filing_status(
        self,
        document_id: str,
        filing_status: Union[FilingStatus, str],
        filing_details: Optional[Mapping[str, Any]] = None,
        user_id: Optional[str] = None,
        firm_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Set a document's filing status and optional filing references.

        Accepted ``filing_details`` keys: ``filing_reference``,
        ``filing_period``, ``filing_year`` and ``portal_submission_id``.
        The audit entry falls back to the document's own owner when
        ``user_id`` or ``firm_id`` is omitted, and is skipped if neither
        side knows them.
        """
        status = FilingStatus(filing_status)
        doc = self._get_document(document_id)
        user_id = user_id or doc.get("user_id")
        firm_id = firm_id or doc.get("firm_id")

        merged = dict(doc.get("metadata") or {})
        merged["filing_status"] = status.value
        if filing_details:
            for key in (
                "filing_reference",
                "filing_period",
                "filing_year",
                "portal_submission_id",
            ):
                merged[key] = filing_details.get(key)
        if status == FilingStatus.FILED:
            merged["last_reviewed_at"] = self._clock()

        self.store.update(
            self._documents,
            document_id,
            {"metadata": merged, "last_updated": SERVER_TIMESTAMP},
        )

        if user_id and firm_id:
            self.audit.create_entry(
                user_id=user_id,
                firm_id=firm_id,
                action=AuditAction.DOCUMENT_REVIEWED,
                entity_type=AuditEntityType.DOCUMENT,
                entity_id=document_id,
                details={
                    "filing_status": status.value,
                    "filing_details": dict(filing_details or {}),
                },
                performed_by=user_id,
            )
        return merged

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_documents_by_task_id(self, task_id: str) -> list[dict[str, Any]]:
        return self.store.query(
            self._documents, [where("metadata.linked_task_id", "==", task_id)]
        )

    def get_documents_by_compliance_type(
        self, user_id: str, compliance_type: str
    ) -> list[dict[str, Any]]:
        return self.store.query(
            self._documents,
            [
                where("user_id", "==", user_id),
                where("metadata.compliance_type", "==", enum_value(compliance_type)),
            ],
        )

    def get_documents_by_filing_status(
        self, user_id: str, filing_status: Union[FilingStatus, str]
    ) -> list[dict[str, Any]]:
        return self.store.query(
            self._documents,
            [
                where("user_id", "==", user_id),
                where("metadata.filing_status", "==", FilingStatus(filing_status).value),
            ],
        )
