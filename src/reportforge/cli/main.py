"""CLI for ReportForge."""

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from reportforge.config import get_settings
from reportforge.log import configure_logging
from reportforge.models.metric import MetricFormula, UnitType
from reportforge.models.query import FormulaResult, GroupBySpec, MetricResult
from reportforge.models.schema import FieldRef
from reportforge.parser.loader import load_formula, load_formulas
from reportforge.store import ReportStore

app = typer.Typer(
    name="rf",
    help="ReportForge - metric computation for report builders",
    no_args_is_help=True,
)
console = Console()

SchemaOption = Annotated[
    Path, typer.Option("--schema", "-s", help="Schema YAML file or directory")
]
DataOption = Annotated[
    Path, typer.Option("--data", "-d", help="Warehouse file (json/yaml/csv/parquet) or directory")
]
DEFAULT_SCHEMA = Path("./data/schema.yaml")
DEFAULT_DATA = Path("./data/warehouse.json")


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
) -> None:
    configure_logging("DEBUG" if verbose else get_settings().log_level)


def get_store(schema: Path, data: Path | None = None) -> ReportStore:
    return ReportStore(schema, data)


def _open_store(schema: Path, data: Path | None) -> ReportStore:
    try:
        return get_store(schema, data)
    except Exception as e:
        console.print(f"[red]Error loading schema or data: {e}[/red]")
        raise typer.Exit(1)


def _open_formula(path: Path, name: str | None) -> MetricFormula:
    try:
        return load_formula(path, name)
    except Exception as e:
        console.print(f"[red]Error loading formula: {e}[/red]")
        raise typer.Exit(1)


def _split(value: str | None) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()] if value else []


def format_value(value: float | None, unit_type: UnitType | None = None) -> str:
    """Render a value for the terminal. None shows as a dash."""
    if value is None:
        return "-"
    if unit_type == UnitType.CURRENCY:
        return f"{value:,.2f}"
    if unit_type == UnitType.RATE:
        return f"{value:.2%}"
    if float(value).is_integer():
        return f"{value:,.0f}"
    return f"{value:,.2f}"


@app.command()
def objects(
    schema: SchemaOption = DEFAULT_SCHEMA,
    data: DataOption = DEFAULT_DATA,
) -> None:
    """List schema objects and how many records each has."""
    store = _open_store(schema, data)
    rows = store.list_objects()

    if not rows:
        console.print("[yellow]No objects defined[/yellow]")
        return

    table = Table(title="Objects")
    table.add_column("Name", style="cyan")
    table.add_column("Label")
    table.add_column("Fields", justify="right", style="green")
    table.add_column("Records", justify="right", style="yellow")

    for row in rows:
        table.add_row(row["name"], row["label"], str(row["fields"]), str(row["records"]))

    console.print(table)


@app.command("group-fields")
def group_fields(
    selected: Annotated[str, typer.Argument(help="Comma-separated object names")],
    schema: SchemaOption = DEFAULT_SCHEMA,
) -> None:
    """List group-by candidates for the selected objects."""
    store = _open_store(schema, None)
    fields = store.group_fields(_split(selected))

    if not fields:
        console.print("[yellow]No groupable fields[/yellow]")
        return

    table = Table(title="Group-by fields")
    table.add_column("Field", style="cyan")
    table.add_column("Label")
    for field in fields:
        table.add_row(field.ref.qualified, field.label)

    console.print(table)


@app.command("group-values")
def group_values(
    field: Annotated[str, typer.Argument(help="Field as object.field")],
    schema: SchemaOption = DEFAULT_SCHEMA,
    data: DataOption = DEFAULT_DATA,
    primary: Annotated[
        str | None, typer.Option("--primary", "-p", help="Count per row of this object")
    ] = None,
    limit: Annotated[int | None, typer.Option("--limit", "-l", help="Maximum values")] = None,
) -> None:
    """Show distinct values of a field, most common first."""
    store = _open_store(schema, data)
    try:
        values = store.group_values(FieldRef.parse(field), limit, primary)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Values of {field}")
    table.add_column("Value", style="cyan")
    table.add_column("Count", justify="right", style="green")
    for value in values:
        table.add_row(value.value, str(value.count))

    console.print(table)


@app.command()
def compute(
    formula_file: Annotated[Path, typer.Argument(help="Formula YAML file")],
    start: Annotated[str, typer.Option("--start", help="Start date (YYYY-MM-DD)")],
    end: Annotated[str, typer.Option("--end", help="End date (YYYY-MM-DD)")],
    name: Annotated[
        str | None, typer.Option("--name", "-n", help="Formula name, if the file has several")
    ] = None,
    schema: SchemaOption = DEFAULT_SCHEMA,
    data: DataOption = DEFAULT_DATA,
    grain: Annotated[
        str, typer.Option("--grain", "-t", help="Granularity: day, week, month, quarter, year")
    ] = "month",
    compare: Annotated[
        str,
        typer.Option(
            "--compare", "-c", help="none, previous_period, previous_year or period_start"
        ),
    ] = "none",
    selected: Annotated[
        str | None, typer.Option("--objects", help="Comma-separated selected objects")
    ] = None,
    group_by: Annotated[
        str | None, typer.Option("--group-by", "-g", help="Group by object.field")
    ] = None,
    output: Annotated[
        str, typer.Option("--output", "-o", help="Output format: table, json")
    ] = "table",
) -> None:
    """Compute a formula over a date range."""
    store = _open_store(schema, data)
    formula = _open_formula(formula_file, name)
    selected_objects = _split(selected)

    try:
        if group_by:
            # top values up to the selection cap, like picking them in the ui
            ref = FieldRef.parse(group_by)
            primary = selected_objects[0] if selected_objects else None
            values = store.group_values(ref, store.settings.max_group_selections, primary)
            spec = GroupBySpec(field=ref, selected_values=[v.value for v in values])
            grouped = store.grouped(
                formula, spec, start, end, grain, selected_objects=selected_objects
            )
        else:
            result = store.compute(
                formula, start, end, grain, selected_objects=selected_objects, comparison=compare
            )
    except ValueError as e:
        console.print(f"[red]Compute error: {e}[/red]")
        raise typer.Exit(1)

    if group_by:
        _output_grouped(grouped, output)
    else:
        _output_result(result, output, formula.name)


def _output_result(result: FormulaResult, output_format: str, title: str | None) -> None:
    """Output a formula result in the specified format."""
    if output_format == "json":
        console.print(json.dumps(result.model_dump(mode="json"), indent=2))
        return

    main_result = result.result
    unit = main_result.unit_type
    console.print(f"[bold]{title or 'Result'}:[/bold] {format_value(main_result.value, unit)}")
    if main_result.note:
        console.print(f"[yellow]{main_result.note}[/yellow]")

    if result.comparison is not None:
        cmp = result.comparison
        pct = format_value(cmp.percent_delta, UnitType.RATE)
        console.print(
            f"vs {cmp.mode.value}: {format_value(cmp.baseline_value, unit)} "
            f"(delta {format_value(cmp.delta, unit)}, {pct})"
        )

    table = Table(title="Series")
    table.add_column("Bucket", style="cyan")
    table.add_column("Value", justify="right", style="green")
    for block in result.block_results:
        table.add_column(block.block_name, justify="right")

    for index, point in enumerate(main_result.series or []):
        values = [_point_value(block, index) for block in result.block_results]
        table.add_row(point.label, format_value(point.value, unit), *values)

    console.print(table)


def _point_value(block: MetricResult, index: int) -> str:
    if not block.series or index >= len(block.series):
        return "-"
    return format_value(block.series[index].value, block.unit_type)


def _output_grouped(grouped: dict[str, FormulaResult], output_format: str) -> None:
    if output_format == "json":
        payload = {value: r.model_dump(mode="json") for value, r in grouped.items()}
        console.print(json.dumps(payload, indent=2))
        return

    table = Table(title="Grouped results")
    table.add_column("Group", style="cyan")
    table.add_column("Value", justify="right", style="green")
    for value, result in grouped.items():
        table.add_row(value, format_value(result.result.value, result.result.unit_type))
    console.print(table)


@app.command("show-sql")
def show_sql(
    formula_file: Annotated[Path, typer.Argument(help="Formula YAML file")],
    start: Annotated[str, typer.Option("--start", help="Start date (YYYY-MM-DD)")],
    end: Annotated[str, typer.Option("--end", help="End date (YYYY-MM-DD)")],
    name: Annotated[
        str | None, typer.Option("--name", "-n", help="Formula name, if the file has several")
    ] = None,
    schema: SchemaOption = DEFAULT_SCHEMA,
    data: DataOption = DEFAULT_DATA,
    grain: Annotated[str, typer.Option("--grain", "-t", help="Granularity")] = "month",
    primary: Annotated[
        str | None, typer.Option("--primary", "-p", help="Primary object for source-less counts")
    ] = None,
    run: Annotated[bool, typer.Option("--run", "-r", help="Execute against the data")] = False,
) -> None:
    """Show the SQL equivalent of each block."""
    store = _open_store(schema, data if run else None)
    formula = _open_formula(formula_file, name)

    try:
        queries = store.get_sql(formula, start, end, grain, primary)
    except ValueError as e:
        console.print(f"[red]Error generating SQL: {e}[/red]")
        raise typer.Exit(1)

    for block_id, sql in queries.items():
        console.print(f"[bold cyan]-- {block_id}[/bold cyan]")
        console.print(Syntax(sql, "sql", theme="monokai", line_numbers=True))
        if run and not sql.startswith("--"):
            try:
                result = store.run_sql(sql)
            except Exception as e:
                console.print(f"[red]Query error: {e}[/red]")
                raise typer.Exit(1)
            table = Table(
                title=f"{block_id} ({result.row_count} rows, {result.execution_time_ms}ms)"
            )
            for col in result.columns:
                table.add_column(col)
            for row in result.data:
                table.add_row(*[str(row.get(c, "")) for c in result.columns])
            console.print(table)
        console.print()

    store.close()


@app.command()
def validate(
    formula_file: Annotated[Path, typer.Argument(help="Formula YAML file")],
    schema: SchemaOption = DEFAULT_SCHEMA,
) -> None:
    """Validate every formula in a file against the schema."""
    store = _open_store(schema, None)
    try:
        formulas = load_formulas(formula_file)
    except Exception as e:
        console.print(f"[red]Error loading formulas: {e}[/red]")
        raise typer.Exit(1)

    errors = []
    for index, formula in enumerate(formulas):
        label = formula.name or f"#{index + 1}"
        errors.extend(f"{label}: {error}" for error in store.validate_formula(formula))

    if errors:
        console.print("[red]Validation failed:[/red]")
        for error in errors:
            console.print(f"  - {error}")
        raise typer.Exit(1)

    console.print(
        f"[green]Validated {len(formulas)} formulas against "
        f"{len(store.schema.objects)} objects successfully![/green]"
    )


if __name__ == "__main__":
    app()
