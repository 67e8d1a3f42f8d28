"""Command Line Interface for the LDT ingestion pipeline.

Typer commands for bulk ingestion, inspection and export of LDT messages
and for operating the quarantine.

Security Impact:
    - Manual resolutions require an operator name, recorded on the entry and
      in the audit trail
    - ``inspect`` prints message content to the terminal only, never to logs
"""

from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ldt_pipeline import __version__
from ldt_pipeline.adapters.ingesters import Tokenizer
from ldt_pipeline.domain.enums import QuarantineStatus, ResolutionDisposition
from ldt_pipeline.domain.lab_result import DomainResult
from ldt_pipeline.domain.pipeline_models import Applied, Duplicate, PipelineOutcome, Quarantined
from ldt_pipeline.domain.ports import EncodingError, SourceNotFoundError, StoreUnavailableError
from ldt_pipeline.domain.projection import project_result
from ldt_pipeline.domain.services import (
    QuarantineEntryNotFoundError,
    RecordEncoder,
    RecordValidator,
    SemanticExtractor,
)
from ldt_pipeline.infrastructure.logging_config import setup_logging
from ldt_pipeline.infrastructure.settings import settings
from ldt_pipeline.main import (
    StoreBundle,
    build_pipeline,
    create_stores,
    flush_audit,
    process_path,
)
from ldt_pipeline.pipeline import IngestionPipeline, describe_diagnostic

# Initialize Typer app and Rich console
app = typer.Typer(
    name="ldt-pipeline",
    help="LDT laboratory message ingestion",
    add_completion=False,
)
quarantine_app = typer.Typer(help="Inspect, retry and resolve quarantined messages")
app.add_typer(quarantine_app, name="quarantine")
console = Console()


def _configure_logging(verbose: bool) -> None:
    setup_logging(use_json=settings.log_json, log_level="DEBUG" if verbose else settings.log_level)


def create_stores_cli() -> StoreBundle:
    """Create the configured stores (CLI wrapper)."""
    try:
        return create_stores(settings.db_config)
    except (ValueError, RuntimeError, StoreUnavailableError) as e:
        console.print(f"[red]✗[/red] Failed to create stores: {str(e)}")
        raise typer.Exit(code=1)


def create_pipeline_cli(stores: StoreBundle, directory_file: Optional[Path]) -> IngestionPipeline:
    try:
        return build_pipeline(stores, settings=settings, directory_file=str(directory_file) if directory_file else None)
    except (SourceNotFoundError, ValueError) as e:
        stores.close()
        console.print(f"[red]✗[/red] Failed to load directory: {str(e)}")
        raise typer.Exit(code=1)


def _outcome_row(outcome: PipelineOutcome) -> tuple[str, str, str]:
    if isinstance(outcome, Applied):
        return "[green]applied[/green]", outcome.application_id, outcome.entity.entity_id
    if isinstance(outcome, Duplicate):
        return "[yellow]duplicate[/yellow]", outcome.original.application_id or "", outcome.original.entity_id or ""
    return f"[red]quarantined[/red] ({outcome.reason_code.value})", outcome.entry_id or "", ""


def _warn_if_volatile(stores: StoreBundle) -> None:
    if not stores.durable:
        console.print("[yellow]⚠[/yellow] Stores are not durable (LDT_DB_TYPE=memory or :memory:); "
                      "quarantine state does not outlive this command")


@app.command()
def ingest(
    path: Path = typer.Argument(..., help="LDT file or directory of LDT files", exists=True),
    external_id: Optional[str] = typer.Option(None, "--external-id", "-e", help="Envelope message id (single file only)"),
    source_id: str = typer.Option("file-import", "--source-id", "-s", help="Sending system identifier"),
    directory_file: Optional[Path] = typer.Option(None, "--directory-file", "-d", help="JSON directory of practices and patients", exists=True),
    pattern: str = typer.Option("*.ldt", "--pattern", "-p", help="File pattern for directory imports"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Ingest LDT messages through the pipeline.

    Each file is one message: decoded, validated, matched against the
    directory and applied at most once; everything else is quarantined.

    Examples:
        ldt-pipeline ingest inbox/ --directory-file directory.json
        ldt-pipeline ingest result.ldt --external-id 4711 --source-id lab-a
    """
    _configure_logging(verbose)

    console.print("\n[bold blue]LDT Ingestion[/bold blue]")
    console.print(f"[dim]Input:[/dim] {path}")
    console.print(f"[dim]Store:[/dim] {settings.db_config.db_type}")
    console.print()

    stores = create_stores_cli()
    pipeline = create_pipeline_cli(stores, directory_file)
    try:
        summary = process_path(
            str(path),
            pipeline,
            source_id=source_id,
            external_message_id=external_id,
            pattern=pattern,
        )
        flush_audit(pipeline, stores)
    except (SourceNotFoundError, ValueError) as e:
        console.print(f"[red]✗[/red] Ingestion failed: {str(e)}")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        console.print("\n[yellow]⚠[/yellow] Ingestion interrupted by user")
        raise typer.Exit(code=130)
    finally:
        pipeline.close()
        stores.close()

    table = Table(show_header=True, header_style="bold")
    table.add_column("File", style="cyan")
    table.add_column("Outcome")
    table.add_column("Application / entry")
    table.add_column("Entity")
    for file_path, outcome in summary.outcomes:
        table.add_row(file_path.name, *_outcome_row(outcome))
    console.print(table)

    console.print("\n[bold]Ingestion Summary:[/bold]")
    summary_table = Table(show_header=False, box=None, padding=(0, 2))
    summary_table.add_row("Total processed:", f"[bold]{summary.total:,}[/bold]")
    summary_table.add_row("Applied:", f"[green]{summary.applied:,}[/green]")
    summary_table.add_row("Duplicate:", f"{summary.duplicate:,}")
    summary_table.add_row(
        "Quarantined:",
        f"[red]{summary.quarantined:,}[/red]" if summary.quarantined else f"{summary.quarantined:,}",
    )
    console.print(summary_table)

    if summary.quarantined:
        console.print(f"\n[yellow]⚠[/yellow] {summary.quarantined} message(s) quarantined")
        raise typer.Exit(code=1)
    console.print("\n[green]✓[/green] Ingestion completed successfully")


@app.command()
def inspect(
    path: Path = typer.Argument(..., help="LDT file to inspect", exists=True, dir_okay=False),
) -> None:
    """Decode one file and show its records, diagnostics and extracted result."""
    tokenizer = Tokenizer(settings.terminator_length, settings.wrapper_tag)
    tokenized = tokenizer.tokenize(path.read_bytes())

    console.print(f"[dim]Format:[/dim] {tokenized.format.value}")
    console.print(f"[dim]Fingerprint:[/dim] {tokenized.fingerprint}")

    records_table = Table(title="Records", show_header=True, header_style="bold")
    records_table.add_column("Line", justify="right")
    records_table.add_column("Length", justify="right")
    records_table.add_column("Type")
    records_table.add_column("Field")
    records_table.add_column("Content")
    for record in tokenized.records:
        records_table.add_row(
            str(record.line_number),
            str(record.declared_length),
            record.record_type,
            record.field_id,
            escape(record.content),
        )
    console.print(records_table)

    for error in tokenized.errors:
        console.print(f"[yellow]⚠[/yellow] {error.describe()}")

    validation = RecordValidator(settings.max_decode_failure_ratio).validate(tokenized.records, tokenized.errors)
    if validation.is_failure():
        reason = validation.error_details["reason_code"]
        console.print(f"\n[red]✗[/red] Structural reject ({reason.value}): {validation.error}")
        raise typer.Exit(code=1)

    report = validation.value
    extraction = SemanticExtractor().extract(report.valid_records, report.sequence)
    for diagnostic in extraction.diagnostics:
        console.print(f"[yellow]⚠[/yellow] {describe_diagnostic(diagnostic)}")

    layout = project_result(extraction.result)
    console.print(f"\n[bold]{layout.title}[/bold]")
    for section in layout.sections:
        section_table = Table(title=section.title, show_header=False, box=None, padding=(0, 2))
        for layout_field in section.fields:
            section_table.add_row(f"{escape(layout_field.label)}:", escape(layout_field.value))
        console.print(section_table)

    if layout.rows:
        rows_table = Table(title="Results", show_header=True, header_style="bold")
        for column in ("Code", "Name", "Value", "Unit", "Reference", "Flag"):
            rows_table.add_column(column)
        for row in layout.rows:
            rows_table.add_row(*(escape(v) for v in (row.code, row.name, row.value, row.unit, row.reference_range, row.flag)))
        console.print(rows_table)

    for annotation in layout.annotations:
        console.print(f"[dim]{escape(annotation.label)}:[/dim] {escape(annotation.value)}")


@app.command()
def encode(
    result_json: Path = typer.Argument(..., help="DomainResult as JSON", exists=True, dir_okay=False),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file (defaults to stdout)"),
) -> None:
    """Export a stored lab result back into LDT records."""
    try:
        result = DomainResult.model_validate_json(result_json.read_text(encoding="utf-8"))
    except PydanticValidationError as e:
        console.print(f"[red]✗[/red] Invalid result file: {str(e)}")
        raise typer.Exit(code=1)

    try:
        encoder = RecordEncoder(terminator_length=settings.terminator_length)
        lines = encoder.encode_lines(result)
    except EncodingError as e:
        console.print(f"[red]✗[/red] Cannot encode {e.attribute or 'result'}: {str(e)}")
        raise typer.Exit(code=1)

    text = "".join(line + encoder.terminator for line in lines)
    if output is None:
        typer.echo(text, nl=False)
        return
    output.write_bytes(text.encode("utf-8"))
    console.print(f"[green]✓[/green] Wrote {len(lines)} records to {output}")


@quarantine_app.command("list")
def quarantine_list(
    status: Optional[QuarantineStatus] = typer.Option(None, "--status", help="Only entries in this state"),
) -> None:
    """List quarantine entries."""
    stores = create_stores_cli()
    try:
        _warn_if_volatile(stores)
        entries = stores.quarantine_store.list_entries(status)
    except StoreUnavailableError as e:
        console.print(f"[red]✗[/red] Quarantine store unavailable: {str(e)}")
        raise typer.Exit(code=1)
    finally:
        stores.close()

    table = Table(show_header=True, header_style="bold")
    table.add_column("Entry", style="cyan")
    table.add_column("Status")
    table.add_column("Reason")
    table.add_column("Attempts", justify="right")
    table.add_column("Next attempt")
    table.add_column("Received")
    for entry in entries:
        table.add_row(
            entry.entry_id,
            entry.status.value,
            entry.reason_code.value,
            str(entry.retry_count),
            entry.next_attempt_at.isoformat() if entry.next_attempt_at else "",
            entry.received_at.isoformat(),
        )
    console.print(table)
    console.print(f"{len(entries)} entr{'y' if len(entries) == 1 else 'ies'}")


@quarantine_app.command("retry")
def quarantine_retry(
    directory_file: Optional[Path] = typer.Option(None, "--directory-file", "-d", help="JSON directory of practices and patients", exists=True),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Retry every due quarantine entry once."""
    _configure_logging(verbose)
    stores = create_stores_cli()
    pipeline = create_pipeline_cli(stores, directory_file)
    try:
        _warn_if_volatile(stores)
        manager = pipeline.retry_manager()
        report = manager.run_due()
        stale = manager.stale_entries()
        flush_audit(pipeline, stores)
    except StoreUnavailableError as e:
        console.print(f"[red]✗[/red] Quarantine store unavailable: {str(e)}")
        raise typer.Exit(code=1)
    finally:
        pipeline.close()
        stores.close()

    summary_table = Table(show_header=False, box=None, padding=(0, 2))
    summary_table.add_row("Attempted:", f"[bold]{report.attempted}[/bold]")
    summary_table.add_row("Applied:", f"[green]{report.applied}[/green]")
    summary_table.add_row("Requeued:", str(report.requeued))
    summary_table.add_row("Stale:", f"[red]{report.stale}[/red]" if report.stale else "0")
    summary_table.add_row("Stale total:", str(len(stale)))
    console.print(summary_table)


@quarantine_app.command("resolve")
def quarantine_resolve(
    entry_id: str = typer.Argument(..., help="Quarantine entry id"),
    accept: Optional[bool] = typer.Option(None, "--accept/--reject", help="Accept (re-run) or reject the message"),
    operator: str = typer.Option(..., "--operator", help="Name of the resolving operator"),
    entity_id: Optional[str] = typer.Option(None, "--entity-id", help="Directory entity to apply the message to"),
    note: Optional[str] = typer.Option(None, "--note", help="Resolution note"),
    corrected_file: Optional[Path] = typer.Option(None, "--corrected-file", help="Corrected message to run instead", exists=True, dir_okay=False),
    directory_file: Optional[Path] = typer.Option(None, "--directory-file", "-d", help="JSON directory of practices and patients", exists=True),
) -> None:
    """Resolve a quarantine entry by hand."""
    if accept is None:
        console.print("[red]✗[/red] Choose --accept or --reject")
        raise typer.Exit(code=2)
    _configure_logging(False)
    disposition = ResolutionDisposition.ACCEPTED if accept else ResolutionDisposition.REJECTED
    corrected = corrected_file.read_text(encoding="utf-8") if corrected_file else None

    stores = create_stores_cli()
    pipeline = create_pipeline_cli(stores, directory_file)
    try:
        entry, outcome = pipeline.retry_manager().resolve(
            entry_id,
            disposition,
            operator,
            note=note,
            corrected_message=corrected,
            entity_id=entity_id,
        )
        flush_audit(pipeline, stores)
    except QuarantineEntryNotFoundError as e:
        console.print(f"[red]✗[/red] {str(e)}")
        raise typer.Exit(code=1)
    except ValueError as e:
        console.print(f"[red]✗[/red] {str(e)}")
        raise typer.Exit(code=1)
    except StoreUnavailableError as e:
        console.print(f"[red]✗[/red] Quarantine store unavailable: {str(e)}")
        raise typer.Exit(code=1)
    finally:
        pipeline.close()
        stores.close()

    if isinstance(outcome, Quarantined):
        console.print(
            f"[yellow]⚠[/yellow] Entry {entry.entry_id} still cannot be applied "
            f"({outcome.reason_code.value}); it stays quarantined"
        )
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Entry {entry.entry_id} resolved as {disposition.value} by {operator}")


@app.command()
def info() -> None:
    """Display system information and configuration."""
    console.print("[bold blue]System Information[/bold blue]\n")

    info_table = Table(show_header=False, box=None, padding=(0, 2))
    info_table.add_row("Application:", settings.app_name)
    info_table.add_row("Store Type:", settings.db_config.db_type)
    if settings.db_config.db_type == "duckdb":
        info_table.add_row("Database Path:", settings.get_db_path())
    info_table.add_row("Terminator Length:", str(settings.terminator_length))
    info_table.add_row("Wrapper Tag:", settings.wrapper_tag)
    info_table.add_row("Fuzzy Threshold:", f"{settings.fuzzy_threshold:.2f}")
    info_table.add_row("Lookup Timeout:", f"{settings.lookup_timeout:.1f}s")
    info_table.add_row("Retry Attempts:", str(settings.retry_max_attempts))
    info_table.add_row("Directory File:", settings.directory_file or "-")
    console.print(info_table)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show version information"),
) -> None:
    """LDT laboratory message ingestion."""
    if version:
        console.print(f"ldt-pipeline v{__version__}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


if __name__ == "__main__":
    app()
