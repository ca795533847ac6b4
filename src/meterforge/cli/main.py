"""CLI for MeterForge."""

import csv
import io
import json
from pathlib import Path
from typing import Annotated

import duckdb
import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from meterforge.errors import MeterForgeError
from meterforge.log import configure_logging
from meterforge.models.query import CompiledQuery
from meterforge.models.usage import ExecutionContext
from meterforge.store import MeterStore

app = typer.Typer(
    name="meterforge",
    help="MeterForge - usage query compiler CLI",
    no_args_is_help=True,
)
console = Console()

MetersDir = Annotated[Path, typer.Option("--dir", "-d", help="Meters directory")]
StartTime = Annotated[
    str | None, typer.Option("--start", help="Window start, inclusive (ISO datetime)")
]
EndTime = Annotated[str | None, typer.Option("--end", help="Window end, exclusive (ISO datetime)")]
ExternalCustomer = Annotated[
    str | None, typer.Option("--external-customer", "-e", help="External customer id")
]
Customer = Annotated[str | None, typer.Option("--customer", "-c", help="Customer id")]
Tenant = Annotated[str | None, typer.Option("--tenant", help="Tenant id")]
Environment = Annotated[str | None, typer.Option("--env", help="Environment id")]


@app.callback()
def main(
    log_level: Annotated[
        str, typer.Option("--log-level", help="Log level for stderr output")
    ] = "WARNING",
    json_logs: Annotated[bool, typer.Option("--json-logs", help="Log as JSON lines")] = False,
) -> None:
    """MeterForge - usage query compiler CLI."""
    configure_logging(log_level, json_output=json_logs)


def get_store(meters_dir: Path, db_path: str | None = None) -> MeterStore:
    return MeterStore(meters_dir, db_path)


def _load_store(meters_dir: Path, db_path: str | None = None) -> MeterStore:
    try:
        return get_store(meters_dir, db_path)
    except (MeterForgeError, ValueError, OSError) as e:
        console.print(f"[red]Error loading meters: {e}[/red]")
        raise typer.Exit(1)


@app.command("list")
def list_meters(meters_dir: MetersDir = Path("./meters")) -> None:
    """List registered meters."""
    store = _load_store(meters_dir)
    meters = store.list_meters()

    if not meters:
        console.print("[yellow]No meters defined[/yellow]")
        return

    table = Table(title="Meters")
    table.add_column("Name", style="cyan")
    table.add_column("Event", style="green")
    table.add_column("Aggregation", style="yellow")
    table.add_column("Field")
    table.add_column("Groups", justify="right")
    table.add_column("Description")

    for meter in meters:
        table.add_row(
            meter["name"],
            meter["event_name"],
            meter["aggregation"],
            meter["field"] or "-",
            str(meter["filter_groups"]),
            meter["description"] or "-",
        )

    console.print(table)


@app.command("show-sql")
def show_sql(
    meter: Annotated[str, typer.Argument(help="Meter name")],
    meters_dir: MetersDir = Path("./meters"),
    start: StartTime = None,
    end: EndTime = None,
    external_customer: ExternalCustomer = None,
    customer: Customer = None,
    tenant: Tenant = None,
    env: Environment = None,
    dialect: Annotated[
        str, typer.Option("--dialect", help="Target dialect: clickhouse or duckdb")
    ] = "clickhouse",
    pretty: Annotated[bool, typer.Option("--pretty", help="Reformat with sqlglot")] = False,
) -> None:
    """Show the compiled SQL and its arguments without executing."""
    store = _load_store(meters_dir)

    try:
        compiled = store.get_sql(
            meter,
            start_time=start,
            end_time=end,
            external_customer_id=external_customer,
            customer_id=customer,
            context=ExecutionContext(tenant_id=tenant, environment_id=env),
            dialect=dialect,
        )
    except (MeterForgeError, ValueError) as e:
        console.print(f"[red]Error generating SQL: {e}[/red]")
        raise typer.Exit(1)

    sql = compiled.pretty() if pretty else compiled.sql
    console.print(Syntax(sql, "sql", theme="monokai", line_numbers=True))
    console.print()
    _print_args(compiled)


def _print_args(compiled: CompiledQuery) -> None:
    table = Table(title=f"Arguments ({compiled.param_count})")
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Value")
    table.add_column("Type", style="green")

    for i, arg in enumerate(compiled.args, start=1):
        table.add_row(str(i), str(arg), type(arg).__name__)

    console.print(table)


@app.command()
def query(
    meter: Annotated[str, typer.Argument(help="Meter name")],
    meters_dir: MetersDir = Path("./meters"),
    db_path: Annotated[str | None, typer.Option("--db", help="DuckDB database path")] = None,
    start: StartTime = None,
    end: EndTime = None,
    external_customer: ExternalCustomer = None,
    customer: Customer = None,
    tenant: Tenant = None,
    env: Environment = None,
    show_sql: Annotated[bool, typer.Option("--sql", "-s", help="Show generated SQL")] = False,
    output: Annotated[
        str, typer.Option("--output", "-o", help="Output format: table, json, csv")
    ] = "table",
) -> None:
    """Run a meter against a DuckDB events table."""
    store = _load_store(meters_dir, db_path)

    try:
        result = store.query(
            meter,
            start_time=start,
            end_time=end,
            external_customer_id=external_customer,
            customer_id=customer,
            context=ExecutionContext(tenant_id=tenant, environment_id=env),
        )
    except (MeterForgeError, ValueError, duckdb.Error) as e:
        console.print(f"[red]Query error: {e}[/red]")
        raise typer.Exit(1)
    finally:
        store.close()

    if show_sql:
        console.print(Syntax(result.sql, "sql", theme="monokai", line_numbers=True))
        console.print()

    _output_result(result, output)


def _output_result(result, output_format: str) -> None:
    """Output query result in the specified format."""
    if output_format == "json":
        console.print(json.dumps(result.data, indent=2, default=str))
    elif output_format == "csv":
        if result.data:
            buf = io.StringIO()
            writer = csv.writer(buf, lineterminator="\n")
            writer.writerow(result.columns)
            for row in result.data:
                writer.writerow([row.get(c, "") for c in result.columns])
            # plain text, rich must not reinterpret brackets or wrap lines
            console.print(
                buf.getvalue().rstrip("\n"), markup=False, highlight=False, soft_wrap=True
            )
    else:
        table = Table(
            title=f"Usage ({result.row_count} rows, {result.execution_time_ms}ms)"
        )
        for col in result.columns:
            table.add_column(col)

        for row in result.data:
            values = [str(row.get(c, "")) for c in result.columns]
            table.add_row(*values)

        console.print(table)


@app.command()
def validate(meters_dir: MetersDir = Path("./meters")) -> None:
    """Validate all meter definitions."""
    store = _load_store(meters_dir)

    errors = store.validate()

    if errors:
        console.print("[red]Validation failed:[/red]")
        for error in errors:
            console.print(f"  - {error}")
        raise typer.Exit(1)

    console.print(
        f"[green]Validated {len(store.registry.meters)} meters successfully![/green]"
    )


if __name__ == "__main__":
    app()
