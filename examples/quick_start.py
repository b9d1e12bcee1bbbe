#!/usr/bin/env python3
"""
Quick Start Example
===================

Processes a month-end event for a private limited company and prints the
compliance tasks it creates, then runs the overdue sweep a few weeks later.

Usage:
    python examples/quick_start.py
"""

from datetime import datetime, timezone

from cla_engine import ComplianceEngine
from cla_engine.store import InMemoryDocumentStore


def main() -> None:
    now = {"value": datetime(2024, 1, 31, 18, 0, tzinfo=timezone.utc)}

    def clock() -> datetime:
        return now["value"]

    engine = ComplianceEngine.create(
        store=InMemoryDocumentStore(clock=clock), clock=clock
    )

    # Register the firm profile the trigger service reads the entity type from
    engine.store.set("firms", "firm-1", {"entity_type": "private_limited"})

    result = engine.triggers.on_month_end("user-1", "firm-1")
    print(f"Event:          {result.event_id}")
    print(f"Tasks created:  {len(result.task_ids)}")
    for task in engine.orchestrator.get_tasks_for_user("user-1"):
        print(f"  {task.due_date}  {task.task_name:<28} {task.priority}")

    # Three weeks on, nothing has been filed
    now["value"] = datetime(2024, 2, 21, 9, 0, tzinfo=timezone.utc)
    print(f"Marked overdue: {engine.orchestrator.mark_overdue_tasks()}")


if __name__ == "__main__":
    main()
