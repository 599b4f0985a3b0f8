"""Command Line Interface for the patient roster ingestion engine.

This module provides a Typer CLI for ingesting roster files from disk and
previewing how their columns map onto a campaign configuration.

Security Impact:
    - Sample rows are printed only on request (they contain patient data)
    - Log output goes to stderr and never contains raw identity values

Exit codes:
    0: ingestion produced at least one valid row
    1: file or configuration error
    2: rows were read but none was valid
"""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from patient_intake.adapters.decoder import FileDecoder
from patient_intake.adapters.directory import InMemoryPatientDirectory
from patient_intake.adapters.formatters import format_phone_display
from patient_intake.domain.models import IngestionConfig, IngestionResult, ProcessedRow
from patient_intake.domain.ports import ConfigError, DirectoryError, ParseError
from patient_intake.infrastructure.config_manager import load_campaign_config
from patient_intake.infrastructure.logging_config import configure_logging
from patient_intake.infrastructure.settings import Settings
from patient_intake.main import create_patient_directory, create_pipeline, process_ingestion

app = typer.Typer(
    name="patient-intake",
    help="Patient roster ingestion: column matching, validation and de-duplication",
    add_completion=False,
)
console = Console()

EXIT_FAILURE = 1
EXIT_NO_VALID_ROWS = 2


def _load_config(config: Optional[Path]) -> IngestionConfig:
    if config is None:
        return IngestionConfig()
    return load_campaign_config(str(config))


@app.command()
def ingest(
    input_file: Path = typer.Argument(..., help="Roster file (CSV, TSV, TXT or XLSX)", exists=True),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Campaign configuration JSON (auto-mapping when omitted)", exists=True
    ),
    org: str = typer.Option(..., "--org", "-o", help="Organisation owning the patients"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", min=1, help="Concurrent workers"),
    json_output: bool = typer.Option(False, "--json", help="Print the full result as JSON"),
    show_samples: bool = typer.Option(False, "--samples", help="Print sample rows"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Ingest a roster file and report statistics and column diagnostics."""
    settings = Settings()
    configure_logging("DEBUG" if verbose else settings.log_level, use_json=settings.structured_logs)

    directory = None
    try:
        campaign_config = _load_config(config)
        directory = create_patient_directory(settings.directory_config)
        pipeline = create_pipeline(settings, directory=directory, max_workers=workers)
        result = process_ingestion(input_file, campaign_config, org, pipeline)
    except (ParseError, ConfigError) as e:
        console.print(f"[red]✗[/red] {type(e).__name__}: {str(e)}")
        raise typer.Exit(code=EXIT_FAILURE)
    except DirectoryError as e:
        console.print(f"[red]✗[/red] Patient directory unavailable: {str(e)}")
        raise typer.Exit(code=EXIT_FAILURE)
    finally:
        if directory is not None:
            directory.close()

    if json_output:
        typer.echo(result.model_dump_json(by_alias=True, indent=2))
    else:
        _print_result(input_file, result, show_samples)

    if result.has_no_valid_rows:
        raise typer.Exit(code=EXIT_NO_VALID_ROWS)


@app.command()
def columns(
    input_file: Path = typer.Argument(..., help="Roster file (CSV, TSV, TXT or XLSX)", exists=True),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Campaign configuration JSON (auto-mapping when omitted)", exists=True
    ),
) -> None:
    """Show which header each configured field would be read from."""
    settings = Settings()
    configure_logging("WARNING", use_json=settings.structured_logs)

    try:
        campaign_config = _load_config(config)
        table = FileDecoder(max_file_size=settings.max_file_size).parse(input_file.read_bytes(), input_file.name)
        pipeline = create_pipeline(settings, directory=InMemoryPatientDirectory())
        preview = pipeline.preview_mappings(table.headers, campaign_config)
    except (ParseError, ConfigError) as e:
        console.print(f"[red]✗[/red] {type(e).__name__}: {str(e)}")
        raise typer.Exit(code=EXIT_FAILURE)

    mapping_table = Table(title=f"Column mapping for {input_file.name}")
    mapping_table.add_column("Section", style="dim")
    mapping_table.add_column("Field")
    mapping_table.add_column("Header")
    used = set()
    for section, fields in preview.items():
        for key, header in fields.items():
            mapping_table.add_row(section, key, header or "[yellow](no match)[/yellow]")
            if header:
                used.add(header)
    console.print(mapping_table)

    unused = [h for h in table.headers if h not in used]
    if unused:
        console.print(f"[dim]Unused columns:[/dim] {', '.join(unused)}")


def _print_result(input_file: Path, result: IngestionResult, show_samples: bool) -> None:
    stats = result.stats
    console.print(f"\n[bold blue]Ingestion of {input_file.name}[/bold blue]")

    summary_table = Table(show_header=False, box=None, padding=(0, 2))
    summary_table.add_column("Metric", style="cyan")
    summary_table.add_column("Value", style="magenta")
    summary_table.add_row("Total rows", str(stats.total_rows))
    summary_table.add_row("Valid rows", str(stats.valid_rows))
    summary_table.add_row("Invalid rows", str(stats.invalid_rows))
    summary_table.add_row("Unique patients", str(stats.unique_patients))
    summary_table.add_row("Duplicate patients", str(stats.duplicate_patients))
    summary_table.add_row("New patients", str(stats.new_patients))
    summary_table.add_row("Existing patients", str(stats.existing_patients))
    console.print(summary_table)

    console.print(f"\n[bold]Matched columns:[/bold] {', '.join(result.matched_columns) or '-'}")
    console.print(f"[bold]Unmatched columns:[/bold] {', '.join(result.unmatched_columns) or '-'}")

    for warning in result.warnings:
        console.print(f"[yellow]⚠[/yellow] {warning}")
    for error in result.errors:
        console.print(f"[red]✗[/red] {error}")

    if show_samples and result.sample_rows:
        console.print(_sample_table(result.sample_rows))

    if result.has_no_valid_rows:
        console.print("\n[red]✗[/red] No valid rows could be processed")
    else:
        console.print(f"\n[green]✓[/green] Ingestion completed: {stats.valid_rows} valid rows")


def _sample_table(rows: list[ProcessedRow]) -> Table:
    table = Table(title="Sample rows")
    table.add_column("Row", justify="right")
    table.add_column("Valid")
    table.add_column("Name")
    table.add_column("Phone")
    table.add_column("Errors")
    for row in rows:
        data = row.patient_data
        name = " ".join(str(data[k]) for k in ("firstName", "lastName") if data.get(k))
        phone = data.get("primaryPhone")
        table.add_row(
            str(row.row_index),
            "[green]yes[/green]" if row.is_valid else "[red]no[/red]",
            name or "-",
            format_phone_display(phone) if phone else "-",
            "; ".join(row.validation_errors) or "-",
        )
    return table


if __name__ == "__main__":
    app()
