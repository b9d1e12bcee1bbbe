"""
Command-line interface for the compliance lifecycle engine.

Provides subcommands to inspect the rule catalog, resolve and simulate
events, run eligibility checks and run risk detectors. Every command
works against a fresh in-memory store.
"""

from __future__ import annotations

import argparse
import sys
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

import yaml
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from cla_engine.config import EngineSettings, configure_logging, load_settings
from cla_engine.engine import ComplianceEngine
from cla_engine.graph import ComplianceRuleGraph
from cla_engine.models import EntityType, SystemEventType
from cla_engine.report_generator import ReportGenerator

console = Console()

CLI_USER = "cli-user"
CLI_FIRM = "cli-firm"

_SEVERITY_COLORS = {
    "critical": "red",
    "high": "red",
    "medium": "yellow",
    "low": "blue",
}


def _parse_payload(pairs: Optional[list[str]]) -> dict[str, Any]:
    """
    Parse ``key=value`` pairs; values are read as YAML scalars so that
    ``employeeCount=25`` is an int and ``gstRegistered=true`` a bool.
    """
    payload: dict[str, Any] = {}
    for pair in pairs or []:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            console.print(f"[red]Invalid payload entry (expected key=value): {pair}[/red]")
            sys.exit(1)
        payload[key.strip()] = yaml.safe_load(raw)
    return payload


def _parse_amount(value: str, flag: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        console.print(f"[red]{flag} must be a number, got {value!r}[/red]")
        sys.exit(1)


def _clock_for(args: argparse.Namespace) -> Optional[Callable[[], datetime]]:
    if not getattr(args, "date", None):
        return None
    try:
        day = date.fromisoformat(args.date)
    except ValueError:
        console.print(f"[red]--date must be YYYY-MM-DD, got {args.date!r}[/red]")
        sys.exit(1)
    moment = datetime.combine(day, time(9, 0), tzinfo=timezone.utc)
    return lambda: moment


def _load(args: argparse.Namespace) -> tuple[EngineSettings, ComplianceRuleGraph]:
    settings = load_settings(args.config)
    configure_logging(settings.log_level)
    catalog = args.catalog or settings.rule_catalog
    try:
        graph = ComplianceRuleGraph.from_catalog(catalog)
    except FileNotFoundError:
        console.print(f"[red]Rule catalog not found: {catalog}[/red]")
        sys.exit(1)
    return settings, graph


def _engine(args: argparse.Namespace) -> ComplianceEngine:
    settings, graph = _load(args)
    return ComplianceEngine.create(settings, graph=graph, clock=_clock_for(args))


def _export(report: dict[str, Any], args: argparse.Namespace) -> None:
    if args.export_json:
        rg = ReportGenerator(args.output_dir or "reports")
        rg.to_json(report, args.export_json)
        console.print(f"[green]Report exported to {args.export_json}[/green]")


# -----------------------------------------------------------------------
# Subcommand: rules
# -----------------------------------------------------------------------


def cmd_rules(args: argparse.Namespace) -> None:
    """List catalog rules, optionally filtered by entity or event."""
    _, graph = _load(args)

    rules = graph.get_all_active_rules()
    if args.entity:
        ids = {r.id for r in graph.get_rules_by_entity_type(args.entity)}
        rules = [r for r in rules if r.id in ids]
    if args.event:
        ids = {r.id for r in graph.get_rules_by_event_type(args.event)}
        rules = [r for r in rules if r.id in ids]

    table = Table(title="Compliance Rule Catalog", box=box.ROUNDED)
    table.add_column("ID", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Type")
    table.add_column("Trigger")
    table.add_column("Frequency")
    table.add_column("Due Date")
    table.add_column("Depends On")

    for rule in rules:
        logic = rule.due_date_logic
        table.add_row(
            rule.id,
            rule.name,
            rule.compliance_type,
            rule.trigger_event,
            rule.frequency,
            logic.type,
            ", ".join(rule.dependencies) or "-",
        )
    console.print(table)
    console.print(f"\n[bold]{len(rules)}[/bold] active rule(s)")


# -----------------------------------------------------------------------
# Subcommand: resolve
# -----------------------------------------------------------------------


def cmd_resolve(args: argparse.Namespace) -> None:
    """Show which rules an event fires, in dependency order, with due dates."""
    _, graph = _load(args)
    payload = _parse_payload(args.payload)
    clock = _clock_for(args)
    trigger_date = clock().date() if clock else date.today()

    resolution = graph.resolve(args.event, args.entity, payload)
    if not resolution.rules:
        console.print("[yellow]No rules fire for this event.[/yellow]")
        return

    table = Table(
        title=f"Rules for {args.event} ({args.entity})",
        box=box.ROUNDED,
        show_lines=True,
    )
    table.add_column("#", justify="right", style="dim")
    table.add_column("Rule")
    table.add_column("Type")
    table.add_column("Due Date", justify="right", style="bold")
    table.add_column("Documents")

    for i, rule in enumerate(resolution.rules, start=1):
        table.add_row(
            str(i),
            rule.name,
            rule.compliance_type,
            graph.calculate_due_date(rule, trigger_date).isoformat(),
            ", ".join(d.document_type for d in rule.required_documents) or "-",
        )
    console.print(table)

    if resolution.has_cycle:
        console.print(
            Panel(
                "\n".join(f"{a} -> {b}" for a, b in resolution.skipped_edges),
                title="[yellow]Dependency cycle: edges skipped[/yellow]",
                border_style="yellow",
            )
        )


# -----------------------------------------------------------------------
# Subcommand: simulate
# -----------------------------------------------------------------------


def cmd_simulate(args: argparse.Namespace) -> None:
    """Process an event end to end and print the resulting tasks and audit trail."""
    engine = _engine(args)
    payload = _parse_payload(args.payload)

    result = engine.triggers.process_compliance_event(
        args.user, args.firm, args.event, payload, args.entity
    )
    tasks = engine.orchestrator.get_tasks_for_user(args.user, args.firm)

    table = Table(title="Compliance Tasks Created", box=box.ROUNDED, show_lines=True)
    table.add_column("Task", style="bold")
    table.add_column("Type")
    table.add_column("Due Date", justify="right")
    table.add_column("Priority")
    table.add_column("CA Review", justify="center")
    table.add_column("Documents")

    for task in tasks:
        table.add_row(
            task.task_name,
            task.compliance_type,
            task.due_date.isoformat(),
            task.priority,
            "Y" if task.requires_ca_review else "",
            ", ".join(s.document_type for s in task.required_documents) or "-",
        )
    console.print(table)

    for failure in result.failures:
        console.print(f"[red]Rule {failure.rule_id} failed: {failure.error}[/red]")
    if result.skipped_edges:
        console.print(
            "[yellow]Dependency cycle edges skipped: "
            + ", ".join(f"{a}->{b}" for a, b in result.skipped_edges)
            + "[/yellow]"
        )

    rg = ReportGenerator(args.output_dir or "reports")
    audit_rpt = rg.audit_report(
        engine.audit.get_entries(user_id=args.user, firm_id=args.firm),
        as_of=engine.orchestrator.today(),
    )
    console.print(rg.format_text(audit_rpt))

    _export(rg.task_status_report(tasks, as_of=engine.orchestrator.today()), args)


# -----------------------------------------------------------------------
# Subcommand: eligibility
# -----------------------------------------------------------------------


def cmd_eligibility(args: argparse.Namespace) -> None:
    """Run the composite plan eligibility check."""
    engine = _engine(args)
    turnover = (
        _parse_amount(args.turnover, "--turnover") if args.turnover else None
    )

    engine.eligibility.perform_eligibility_check(
        args.user,
        args.firm,
        employee_count=args.employees,
        entity_type=args.entity,
        annual_turnover=turnover,
    )
    recommendations = engine.eligibility.get_active_recommendations(
        args.user, args.firm
    )

    if not recommendations:
        console.print("[green]No additional compliance requirements found.[/green]")
        return

    for rec in recommendations:
        console.print(
            Panel(
                f"{rec.current_status}\n\n"
                f"[bold]Action:[/bold] {rec.recommended_action}\n"
                f"[bold]Benefit:[/bold] {rec.benefit_description}",
                title=rec.recommendation_type.value.replace("_", " ").upper(),
                border_style="cyan",
            )
        )

    _export(
        {
            "report_type": "plan_eligibility",
            "generated_date": engine.orchestrator.today().isoformat(),
            "recommendations": [r.to_dict() for r in recommendations],
        },
        args,
    )


# -----------------------------------------------------------------------
# Subcommand: risk
# -----------------------------------------------------------------------


def cmd_risk(args: argparse.Namespace) -> None:
    """Run a single risk detector on the figures given."""
    engine = _engine(args)

    if args.detector == "gstr":
        engine.risks.detect_gstr_mismatch(
            args.user,
            args.firm,
            _parse_amount(args.gstr1, "--gstr1"),
            _parse_amount(args.gstr3b, "--gstr3b"),
        )
    else:
        engine.risks.detect_itc_shortfall(
            args.user,
            args.firm,
            _parse_amount(args.claimed, "--claimed"),
            _parse_amount(args.available, "--available"),
        )

    risks = engine.risks.get_active_risks(args.user, args.firm)
    if not risks:
        console.print("[green]No risk detected.[/green]")
        return

    for risk in risks:
        color = _SEVERITY_COLORS.get(risk.severity.value, "white")
        actions = "\n".join(f"  - {a.action}" for a in risk.recommended_actions)
        console.print(
            Panel(
                f"{risk.description}\n\n[bold]Actions:[/bold]\n{actions}",
                title=f"[{color}]{risk.severity.value.upper()}[/{color}] - "
                f"{risk.risk_type.value}",
                border_style=color,
            )
        )

    rg = ReportGenerator(args.output_dir or "reports")
    _export(rg.risk_report(risks, as_of=engine.orchestrator.today()), args)


# -----------------------------------------------------------------------
# Argument parser
# -----------------------------------------------------------------------


def _common(p: argparse.ArgumentParser, exports: bool = False) -> None:
    p.add_argument("--config", help="Engine settings YAML file")
    p.add_argument("--catalog", help="Rule catalog file (YAML or JSON)")
    if exports:
        p.add_argument("--user", default=CLI_USER, help="User id for created records")
        p.add_argument("--firm", default=CLI_FIRM, help="Firm id for created records")
        p.add_argument("--date", help="Treat this day (YYYY-MM-DD) as today")
        p.add_argument("--export-json", help="Export report to JSON file")
        p.add_argument("--output-dir", help="Output directory for exports")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cla-engine",
        description="Compliance Lifecycle Engine - Rule resolution, task orchestration, risk detection, and plan eligibility",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    entity_choices = [e.value for e in EntityType]
    event_choices = [e.value for e in SystemEventType]

    # rules
    rules_p = subparsers.add_parser("rules", help="List the rule catalog")
    rules_p.add_argument("--entity", choices=entity_choices, help="Entity type filter")
    rules_p.add_argument("--event", choices=event_choices, help="Trigger event filter")
    _common(rules_p)
    rules_p.set_defaults(func=cmd_rules)

    # resolve
    resolve_p = subparsers.add_parser(
        "resolve", help="Resolve the rules an event fires"
    )
    resolve_p.add_argument("--event", "-e", required=True, choices=event_choices)
    resolve_p.add_argument("--entity", required=True, choices=entity_choices)
    resolve_p.add_argument(
        "--payload", "-p", action="append", help="Payload entry key=value (repeatable)"
    )
    resolve_p.add_argument("--date", help="Trigger date (YYYY-MM-DD)")
    _common(resolve_p)
    resolve_p.set_defaults(func=cmd_resolve)

    # simulate
    sim_p = subparsers.add_parser(
        "simulate", help="Process an event and show tasks and audit trail"
    )
    sim_p.add_argument("--event", "-e", required=True, choices=event_choices)
    sim_p.add_argument("--entity", required=True, choices=entity_choices)
    sim_p.add_argument(
        "--payload", "-p", action="append", help="Payload entry key=value (repeatable)"
    )
    _common(sim_p, exports=True)
    sim_p.set_defaults(func=cmd_simulate)

    # eligibility
    elig_p = subparsers.add_parser(
        "eligibility", help="Check plan eligibility and compliance needs"
    )
    elig_p.add_argument("--employees", type=int, help="Employee count")
    elig_p.add_argument("--entity", choices=entity_choices, help="Entity type")
    elig_p.add_argument("--turnover", help="Annual turnover in rupees")
    _common(elig_p, exports=True)
    elig_p.set_defaults(func=cmd_eligibility)

    # risk
    risk_p = subparsers.add_parser("risk", help="Run a risk detector")
    detectors = risk_p.add_subparsers(dest="detector", required=True)

    gstr_p = detectors.add_parser("gstr", help="GSTR-1 vs GSTR-3B turnover mismatch")
    gstr_p.add_argument("--gstr1", required=True, help="GSTR-1 turnover")
    gstr_p.add_argument("--gstr3b", required=True, help="GSTR-3B turnover")
    _common(gstr_p, exports=True)
    gstr_p.set_defaults(func=cmd_risk)

    itc_p = detectors.add_parser("itc", help="Input tax credit shortfall")
    itc_p.add_argument("--claimed", required=True, help="ITC claimed")
    itc_p.add_argument("--available", required=True, help="ITC available")
    _common(itc_p, exports=True)
    itc_p.set_defaults(func=cmd_risk)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    args.func(args)
