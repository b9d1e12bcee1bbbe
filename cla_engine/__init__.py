"""
Compliance Lifecycle Engine
===========================

Event-driven compliance automation: business events resolve against a
static rule catalog into dated compliance tasks, which are tracked
through an audited lifecycle alongside risk detection and plan
eligibility recommendations.

Modules:
    models           - Domain enums, rule catalog model and persisted records
    store            - Document store protocol and in-memory implementation
    graph            - Rule catalog indexing, resolution and due dates
    orchestrator     - Task creation, status transitions and overdue sweep
    triggers         - Business event entry points
    risk             - Compliance risk detectors
    eligibility      - Plan eligibility and recommendations
    vault            - Document vault to task linkage
    audit            - Append-only audit trail
    report_generator - Task, risk and audit reports with CSV/JSON export
    engine           - Wiring of all components over one store
    cli              - Command-line interface
"""

__version__ = "1.0.0"

from cla_engine.audit import AuditTrailWriter
from cla_engine.config import EngineSettings, load_settings
from cla_engine.eligibility import EligibilityEngine
from cla_engine.engine import ComplianceEngine
from cla_engine.graph import ComplianceRuleGraph
from cla_engine.orchestrator import TaskOrchestrator
from cla_engine.report_generator import ReportGenerator
from cla_engine.risk import RiskDetectionEngine
from cla_engine.store import InMemoryDocumentStore
from cla_engine.triggers import EventTriggerService
from cla_engine.vault import DocumentVaultBridge

__all__ = [
    "AuditTrailWriter",
    "ComplianceEngine",
    "ComplianceRuleGraph",
    "DocumentVaultBridge",
    "EligibilityEngine",
    "EngineSettings",
    "EventTriggerService",
    "InMemoryDocumentStore",
    "ReportGenerator",
    "RiskDetectionEngine",
    "TaskOrchestrator",
    "load_settings",
]
