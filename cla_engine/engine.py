"""
Wiring for a complete compliance engine.

Every component takes its collaborators explicitly; ``ComplianceEngine``
builds one consistent set of them over a single store, rule graph,
settings object and clock.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from cla_engine.audit import AuditTrailWriter
from cla_engine.config import EngineSettings
from cla_engine.eligibility import EligibilityEngine
from cla_engine.graph import ComplianceRuleGraph
from cla_engine.orchestrator import TaskOrchestrator
from cla_engine.risk import RiskDetectionEngine
from cla_engine.store import DocumentStore, InMemoryDocumentStore, utcnow
from cla_engine.triggers import EventTriggerService
from cla_engine.vault import DocumentVaultBridge


@dataclass
class ComplianceEngine:
    settings: EngineSettings
    store: DocumentStore
    graph: ComplianceRuleGraph
    audit: AuditTrailWriter
    orchestrator: TaskOrchestrator
    triggers: EventTriggerService
    risks: RiskDetectionEngine
    eligibility: EligibilityEngine
    vault: DocumentVaultBridge

    @classmethod
    def create(
        cls,
        settings: Optional[EngineSettings] = None,
        graph: Optional[ComplianceRuleGraph] = None,
        store: Optional[DocumentStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "ComplianceEngine":
        """
        Build an engine.

        Defaults: bundled settings values, the settings' rule catalog,
        an in-memory store sharing ``clock``, and the UTC wall clock.
        """
        settings = settings or EngineSettings()
        clock = clock or utcnow
        store = store if store is not None else InMemoryDocumentStore(clock=clock)
        if graph is None:
            graph = ComplianceRuleGraph.from_catalog(settings.rule_catalog)

        audit = AuditTrailWriter(store, settings.collections.audit_log)
        orchestrator = TaskOrchestrator(
            store, audit, collections=settings.collections, clock=clock
        )
        return cls(
            settings=settings,
            store=store,
            graph=graph,
            audit=audit,
            orchestrator=orchestrator,
            triggers=EventTriggerService(
                store, graph, orchestrator, audit, settings=settings, clock=clock
            ),
            risks=RiskDetectionEngine(
                store, orchestrator, audit, settings=settings, clock=clock
            ),
            eligibility=EligibilityEngine(store, audit, settings=settings),
            vault=DocumentVaultBridge(
                store, orchestrator, audit, settings=settings, clock=clock
            ),
        )
