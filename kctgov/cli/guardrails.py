"""Guardrail checks from the command line: readiness, mapping, rules and diff."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List, Optional, Sequence

import typer
from rich.console import Console
from rich.table import Table

from kctgov.core.validation import ValidationFailure, strict_validation
from kctgov.guardrails.mapping import mapping_status
from kctgov.lifecycle.diff import diff_versions
from kctgov.models.mapping import ClassFacts
from kctgov.models.rules import Conflict, RuleCategory
from kctgov.models.versions import CurriculumVersion
from kctgov.pipeline.bootstrap import bootstrap_governance, configure_logging
from kctgov.pipeline.context import GovernanceContext

app = typer.Typer(help="Run KCT governance guardrails against version and class files.")
console = Console()

CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Governance YAML (default: $KCTGOV_CONFIG or config/governance.yaml).",
)
JSON_OPTION = typer.Option(False, "--json", help="Emit machine-readable JSON instead of tables.")

SEVERITY_STYLES = {"high": "bold red", "medium": "yellow", "low": "cyan"}


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")) -> None:
    configure_logging("DEBUG" if verbose else "WARNING")


def _context(config: Optional[Path]) -> GovernanceContext:
    try:
        return bootstrap_governance(config)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--config") from exc


def _load_version(path: Path) -> CurriculumVersion:
    try:
        return strict_validation.load_model(path, CurriculumVersion)
    except ValidationFailure as exc:
        _fail(f"Invalid version file {path}", exc.errors)
        raise


def _load_classes(path: Path, class_ids: Sequence[str]) -> List[ClassFacts]:
    try:
        classes = strict_validation.load_model_list(path, ClassFacts, key="classes")
    except ValidationFailure as exc:
        _fail(f"Invalid class file {path}", exc.errors)
        raise
    if class_ids:
        by_id = {facts.class_id: facts for facts in classes}
        missing = [class_id for class_id in class_ids if class_id not in by_id]
        if missing:
            raise typer.BadParameter(f"Unknown class id(s): {', '.join(missing)}", param_hint="--class-id")
        classes = [by_id[class_id] for class_id in class_ids]
    if not classes:
        raise typer.BadParameter(f"No classes found in {path}")
    return classes


def _fail(title: str, errors: Sequence[str]) -> None:
    console.print(f"[bold red]{title}[/bold red]")
    for error in errors:
        console.print(f"  - {error}")
    raise typer.Exit(code=2)


def _print_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def _conflict_table(title: str, conflicts: Sequence[Conflict]) -> Table:
    table = Table(title=title, show_header=True)
    table.add_column("Class")
    table.add_column("Type")
    table.add_column("Severity", justify="center")
    table.add_column("Rule")
    table.add_column("Message")
    table.add_column("Suggested fix")
    for conflict in conflicts:
        table.add_row(
            conflict.class_id or "-",
            conflict.type.value,
            conflict.severity.value,
            conflict.rule_id,
            conflict.message,
            conflict.suggested_fix or "",
            style=SEVERITY_STYLES.get(conflict.severity.value),
        )
    return table


@app.command()
def readiness(
    version_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Version YAML/JSON."),
    config: Optional[Path] = CONFIG_OPTION,
    as_json: bool = JSON_OPTION,
) -> None:
    """Check whether a version's content is ready to publish."""
    ctx = _context(config)
    version = _load_version(version_file)
    report = ctx.lifecycle.readiness(version)

    if as_json:
        _print_json(report.model_dump(mode="json"))
    else:
        table = Table(title=f"Publish readiness: {version.version_label}", show_header=True)
        table.add_column("Check")
        table.add_column("Result", justify="center")
        for name, passed in report.checks.items():
            table.add_row(name, "pass" if passed else "FAIL", style=None if passed else "bold red")
        console.print(table)
        for issue in report.blocking_issues:
            console.print(f"[red]blocking:[/red] {issue}")
        for warning in report.warnings:
            console.print(f"[yellow]warning:[/yellow] {warning}")
        console.print("[green]Ready to publish.[/green]" if report.ready else "[bold red]Publish blocked.[/bold red]")

    if not report.ready:
        raise typer.Exit(code=1)


@app.command()
def mapping(
    version_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Version YAML/JSON."),
    classes_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Class facts YAML/JSON."),
    class_id: List[str] = typer.Option([], "--class-id", help="Validate only these classes (repeatable)."),
    config: Optional[Path] = CONFIG_OPTION,
    as_json: bool = JSON_OPTION,
) -> None:
    """Validate mapping a version onto one or more classes."""
    ctx = _context(config)
    version = _load_version(version_file)
    classes = _load_classes(classes_file, class_id)
    report = ctx.validator.validate_mapping(version, classes, ctx.policy.effective_rules(RuleCategory.MAPPING))

    if as_json:
        payload = report.model_dump(mode="json")
        payload["status"] = mapping_status(report)
        _print_json(payload)
    else:
        if report.conflicts:
            console.print(_conflict_table(f"Mapping conflicts for {version.version_label}", report.conflicts))
        console.print(
            f"Risk: [bold]{report.risk_level.value}[/bold]  "
            f"status: {mapping_status(report)}  conflicts: {len(report.conflicts)}"
        )
        console.print("[green]Mapping can proceed.[/green]" if report.can_proceed else "[bold red]Mapping blocked.[/bold red]")

    if not report.can_proceed:
        raise typer.Exit(code=1)


@app.command()
def rules(
    category: Optional[RuleCategory] = typer.Option(None, "--category", help="Only list rules in this category."),
    config: Optional[Path] = CONFIG_OPTION,
    as_json: bool = JSON_OPTION,
) -> None:
    """List the effective rules after policy tunables are applied."""
    ctx = _context(config)
    effective = ctx.policy.effective_rules(category)
    if as_json:
        _print_json([rule.model_dump(mode="json") for rule in effective])
        return
    table = Table(title="Effective validation rules", show_header=True)
    table.add_column("Rule")
    table.add_column("Category")
    table.add_column("Severity")
    table.add_column("Enabled", justify="center")
    table.add_column("Config")
    for rule in effective:
        table.add_row(
            rule.id,
            rule.category.value,
            rule.severity.value,
            "yes" if rule.enabled else "no",
            json.dumps(rule.config, sort_keys=True) if rule.config else "",
            style=None if rule.enabled else "dim",
        )
    console.print(table)


@app.command()
def diff(
    current_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Newer version YAML/JSON."),
    previous_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Older version YAML/JSON."),
    as_json: bool = JSON_OPTION,
) -> None:
    """Show course, hour and unit changes between two versions."""
    current = _load_version(current_file)
    previous = _load_version(previous_file)
    changes = diff_versions(current, previous)
    if as_json:
        _print_json([change.model_dump(mode="json") for change in changes])
        return
    if not changes:
        console.print(f"No structural changes between {previous.version_label} and {current.version_label}.")
        return
    table = Table(title=f"{previous.version_label} -> {current.version_label}", show_header=True)
    table.add_column("Change")
    table.add_column("Field")
    table.add_column("Old")
    table.add_column("New")
    table.add_column("Description")
    for change in changes:
        table.add_row(change.type, change.field, str(change.old_value), str(change.new_value), change.description)
    console.print(table)


if __name__ == "__main__":
    app()
