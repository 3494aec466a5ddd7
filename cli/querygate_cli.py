#!/usr/bin/env python3
"""
QueryGate CLI - Check, rewrite and run dashboard SQL templates locally

Usage:
    querygate --help
    querygate validate "SELECT * FROM sales"
    querygate rewrite "SELECT * FROM sales WHERE region = '{{region}}'" -p region=EU
    querygate rewrite "SELECT * FROM sales" -t sales=sales.json -p region=EU
    querygate run "SELECT region, amount FROM sales" -t sales=sales.json -p region=EU

Install:
    pip install -e .  # From repo root
"""

import json
import sys
from typing import Any, Dict, List, Optional, Tuple

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.syntax import Syntax

from app.adapters.memory_adapter import MemoryAdapter
from app.batch import run_batch
from app.domain.query.orchestrator import QueryOrchestrator
from app.domain.query.validator import validate_query
from app.errors import QueryGateError
from app.infrastructure.memory.store import TableStore
from app.shared.types.models import ExecuteQueriesRequest, FilterBinding, QueryTemplate

# =============================================================================
# CONFIGURATION
# =============================================================================

console = Console()

VERSION = "1.0.0"


def parse_params(pairs: Tuple[str, ...], params_json: str = None) -> Dict[str, Any]:
    """Merge --params JSON with repeated -p key=value pairs (pairs win)."""
    values: Dict[str, Any] = {}

    if params_json:
        try:
            loaded = json.loads(params_json)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"not valid JSON: {e}", param_hint="--params")
        if not isinstance(loaded, dict):
            raise click.BadParameter("must be a JSON object", param_hint="--params")
        values.update(loaded)

    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got '{pair}'", param_hint="-p")
        values[key.strip()] = value

    return values


def load_rows(path: str) -> List[Dict[str, Any]]:
    """Read a JSON file holding a list of row objects."""
    with open(path) as f:
        try:
            rows = json.load(f)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"{path} is not valid JSON: {e}", param_hint="-t")
    if not isinstance(rows, list):
        raise click.BadParameter(f"{path} must contain a JSON array of rows", param_hint="-t")
    return rows


def load_tables(store: TableStore, entries: Tuple[str, ...]):
    """Load each name=path entry into the store."""
    for entry in entries:
        name, sep, path = entry.partition("=")
        if not sep:
            raise click.BadParameter(f"expected name=path, got '{entry}'", param_hint="-t")
        store.add_table(name, load_rows(path))


def parse_filter_meta(filter_meta_json: str = None) -> Optional[List[FilterBinding]]:
    if not filter_meta_json:
        return None
    try:
        loaded = json.loads(filter_meta_json)
        if not isinstance(loaded, list):
            raise click.BadParameter("must be a JSON array", param_hint="--filter-meta")
        return [FilterBinding.model_validate(item) for item in loaded]
    except (json.JSONDecodeError, ValidationError) as e:
        raise click.BadParameter(f"not valid filter metadata: {e}", param_hint="--filter-meta")


def handle_error(error: QueryGateError):
    """Print a structured error and exit."""
    console.print(f"\n[bold red]Error {error.code.value}[/bold red]")
    console.print(f"[red]{error.message}[/red]")

    if error.suggestion:
        console.print(f"\n[yellow]Suggestion:[/yellow] {error.suggestion}")

    if error.details:
        console.print("\n[dim]Details:[/dim]")
        console.print(Syntax(json.dumps(error.details, indent=2, default=str), "json"))

    sys.exit(1)


def print_rows(title: str, rows: List[Dict[str, Any]]):
    if not rows:
        console.print(f"[dim]{title}: no rows[/dim]")
        return

    table = Table(title=title, show_header=True)
    columns = list(rows[0].keys())
    for column in columns:
        table.add_column(column, style="cyan")

    for row in rows:
        table.add_row(*["NULL" if row.get(c) is None else str(row.get(c)) for c in columns])

    console.print(table)


# =============================================================================
# MAIN CLI GROUP
# =============================================================================

@click.group()
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.version_option(version=VERSION, prog_name="querygate")
@click.pass_context
def cli(ctx, output_json):
    """
    QueryGate CLI - Apply dashboard filters to SQL templates safely.

    \b
    Quick Start:
        querygate validate "SELECT * FROM sales"
        querygate run "SELECT * FROM sales" -t sales=sales.json
    """
    ctx.ensure_object(dict)
    ctx.obj["output_json"] = output_json


# =============================================================================
# VALIDATE
# =============================================================================

@cli.command()
@click.argument("sql")
@click.option("--parse-check", is_flag=True, help="Also require the SQL to parse as one SELECT")
@click.pass_context
def validate(ctx, sql, parse_check):
    """Check SQL against the read-only safety rules."""
    verdict = validate_query(sql, parse_check=parse_check or None)

    if ctx.obj.get("output_json"):
        click.echo(json.dumps({"valid": verdict.valid, "reason": verdict.reason}))
    elif verdict.valid:
        console.print("[green]Valid[/green]")
    else:
        console.print(f"[red]Invalid:[/red] {verdict.reason}")

    if not verdict.valid:
        sys.exit(1)


# =============================================================================
# REWRITE
# =============================================================================

@cli.command()
@click.argument("sql")
@click.option("--table", "-t", "tables", multiple=True, help="In-memory table as name=rows.json (sharpens auto-inference)")
@click.option("--param", "-p", "pairs", multiple=True, help="Filter value as key=value")
@click.option("--params", "params_json", help="Filter values as a JSON object")
@click.option("--filter-meta", "filter_meta_json", help="Filter bindings as a JSON array")
@click.option("--key", default="query", help="Query key (keys starting with distinct- run unfiltered)")
@click.pass_context
def rewrite(ctx, sql, tables, pairs, params_json, filter_meta_json, key):
    """Show the strategy, final SQL and bound parameters for a template."""
    values = parse_params(pairs, params_json)
    store = TableStore()

    try:
        load_tables(store, tables)
        template = QueryTemplate(key=key, sql=sql, filterMeta=parse_filter_meta(filter_meta_json))
        prepared = QueryOrchestrator(MemoryAdapter(store=store)).prepare(template, values)
    except QueryGateError as e:
        handle_error(e)
        return

    verdict = validate_query(prepared.sql)

    if ctx.obj.get("output_json"):
        click.echo(json.dumps({
            "strategy": prepared.strategy.value,
            "sql": prepared.sql,
            "params": prepared.params,
            "residue": prepared.residue,
            "valid": verdict.valid,
            "reason": verdict.reason,
        }, default=str))
        return

    console.print(f"[bold]Strategy:[/bold] {prepared.strategy.value}")
    console.print(Panel(Syntax(prepared.sql, "sql", word_wrap=True), title="Final SQL", expand=False))
    if prepared.params:
        console.print(f"[bold]Params:[/bold] {json.dumps(prepared.params, default=str)}")
    if prepared.residue:
        console.print(f"[red]Placeholders left:[/red] {', '.join(prepared.residue)}")
    if not verdict.valid:
        console.print(f"[red]Final SQL is not valid:[/red] {verdict.reason}")


# =============================================================================
# RUN
# =============================================================================

@cli.command()
@click.argument("sql")
@click.option("--table", "-t", "tables", multiple=True, help="In-memory table as name=rows.json")
@click.option("--param", "-p", "pairs", multiple=True, help="Filter value as key=value")
@click.option("--params", "params_json", help="Filter values as a JSON object")
@click.option("--key", default="query", help="Query key (keys starting with distinct- run unfiltered)")
@click.pass_context
def run(ctx, sql, tables, pairs, params_json, key):
    """Run SQL over JSON row files with filters applied."""
    values = parse_params(pairs, params_json)
    store = TableStore()

    try:
        load_tables(store, tables)

        request = ExecuteQueriesRequest(
            queries=[QueryTemplate(key=key, sql=sql)],
            filterParams=values,
        )
        response = run_batch(request, store=store)
    except QueryGateError as e:
        handle_error(e)
        return

    if ctx.obj.get("output_json"):
        click.echo(json.dumps(response.model_dump(exclude_none=True), indent=2, default=str))
    else:
        executed = response.executedSql.get(key)
        if executed:
            console.print(Syntax(executed, "sql", word_wrap=True))
        if key in response.results:
            print_rows(f"Results: {key}", response.results[key])
        else:
            error = response.errors[key]
            console.print(f"\n[bold red]Error {error.code}[/bold red] [dim]({error.kind})[/dim]")
            console.print(f"[red]{error.message}[/red]")
            if error.suggestion:
                console.print(f"\n[yellow]Suggestion:[/yellow] {error.suggestion}")

    if key in response.errors:
        sys.exit(1)


# =============================================================================
# ENTRY POINT
# =============================================================================

def main():
    """Entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
