"""
Exception hierarchy for the compliance lifecycle engine.

Store exceptions describe what went wrong talking to the document store;
compliance exceptions describe requests the engine refuses to carry out.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for document store failures."""


class DocumentNotFoundError(StoreError):
    def __init__(self, collection: str, doc_id: str) -> None:
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Document not found: {collection}/{doc_id}")


class DocumentExistsError(StoreError):
    def __init__(self, collection: str, doc_id: str) -> None:
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Document already exists: {collection}/{doc_id}")


class ImmutableDocumentError(StoreError):
    def __init__(self, collection: str, doc_id: str) -> None:
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Document is immutable: {collection}/{doc_id}")


class MissingIndexError(StoreError):
    """An ordered query needs a composite index the store does not have."""

    def __init__(self, collection: str, fields: tuple[str, ...]) -> None:
        self.collection = collection
        self.fields = fields
        super().__init__(
            f"Query on {collection} requires a composite index on "
            f"({', '.join(fields)})"
        )


class ComplianceError(Exception):
    """Base class for errors raised by engine operations."""


class TaskNotFoundError(ComplianceError):
    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Compliance task not found: {task_id}")


class InvalidTransitionError(ComplianceError):
    def __init__(self, task_id: str, current: str, requested: str) -> None:
        self.task_id = task_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Task {task_id} cannot move from {current} to {requested}"
        )


class RiskNotFoundError(ComplianceError):
    def __init__(self, risk_id: str) -> None:
        self.risk_id = risk_id
        super().__init__(f"Compliance risk not found: {risk_id}")


class RecommendationNotFoundError(ComplianceError):
    def __init__(self, recommendation_id: str) -> None:
        self.recommendation_id = recommendation_id
        super().__init__(f"Recommendation not found: {recommendation_id}")
