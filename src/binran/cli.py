# /binran/cli.py
"""
Command-line interface for the handbook service.
Lists the catalog, materializes a single handbook, or converts every
handbook to its stored text form.
"""
import sys
import time

# Rich UI Components
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table, box

from .config import (
    CACHE_LOCK_MODE,
    EXTRACTION_BACKEND,
    HANDBOOK_TEXT_DIR,
    PYMUPDF_AVAILABLE,
    console,
)
from .errors import DocumentUnavailableError, UnknownKeyError
from .observability import get_logger
from .service import HandbookService, build_service

logger = get_logger(__name__)


# --- UI & Formatting Functions ---

def display_welcome_banner():
    console.print(
        Panel(
            "[bold]Binran Handbook Service[/bold]\n"
            f"Text store: {HANDBOOK_TEXT_DIR}\n"
            f"Extraction backend: {EXTRACTION_BACKEND}  |  Cache lock mode: {CACHE_LOCK_MODE}",
            title="Welcome",
            border_style="magenta",
        )
    )
    if EXTRACTION_BACKEND == "pymupdf" and not PYMUPDF_AVAILABLE:
        console.print("[bold yellow]PyMuPDF is not installed; extraction will fail.[/bold yellow]")


def list_handbooks(service: HandbookService):
    """Displays a table of all catalog entries with their cache/store state."""
    table = Table(title="Handbooks", border_style="blue", header_style="bold", box=box.SQUARE)
    table.add_column("Key", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("Offset", style="yellow", justify="right")
    table.add_column("Departments", style="white", justify="right")
    table.add_column("Status", style="white")

    for row in service.describe():
        if row["state"] == "present":
            status = "[green]In memory[/green]"
        elif row["stored"]:
            status = "[cyan]Stored[/cyan]"
        else:
            status = "[red]Not converted[/red]"
        table.add_row(row["key"], row["name"], str(row["page_offset"]), str(len(row["departments"])), status)
    console.print(table)


def handle_materialize(service: HandbookService):
    """CLI flow for loading one handbook."""
    key = Prompt.ask("Enter the handbook key", choices=service.catalog.keys())
    start = time.perf_counter()
    try:
        with console.status(f"[bold cyan]Loading {key}...[/bold cyan]", spinner="dots"):
            text = service.get_text(key)
    except UnknownKeyError as exc:
        console.print(f"[bold red]Error: {exc}[/bold red]")
        return
    except DocumentUnavailableError as exc:
        logger.error("cli_materialize_failed", key=key, error=str(exc), error_type=type(exc).__name__)
        console.print(f"[bold red]Handbook unavailable: {exc}[/bold red]")
        return
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    console.print(f"[green]OK Loaded {key} ({len(text)} characters) in {elapsed_ms:.1f} ms[/green]")


def handle_convert_all(service: HandbookService):
    """CLI flow for converting every handbook in the catalog."""
    start = time.perf_counter()
    with console.status("[bold cyan]Converting handbooks...[/bold cyan]", spinner="dots"):
        reports = service.materialize_all()
    elapsed_s = time.perf_counter() - start

    table = Table(title="Conversion", border_style="blue", header_style="bold", box=box.SQUARE)
    table.add_column("Key", style="cyan")
    table.add_column("Result", style="white")
    table.add_column("Detail", style="dim")
    styles = {"materialized": "green", "stored": "cyan", "cached": "cyan", "failed": "red"}
    for report in reports:
        detail = report.error or (f"{report.characters} characters" if report.characters else "")
        table.add_row(report.key, f"[{styles.get(report.status, 'white')}]{report.status}[/]", detail)
    console.print(table)
    console.print(f"[dim]Processed {len(reports)} handbook(s) in {elapsed_s:.1f} s[/dim]")


# --- Main Application Flow ---

def main():
    """Main application loop."""
    display_welcome_banner()
    service = build_service()

    while True:
        try:
            console.print("\n[bold]Main Menu:[/bold]")
            console.print("[cyan]1. List Handbooks[/cyan]")
            console.print("[green]2. Load a Handbook[/green]")
            console.print("[blue]3. Convert All Handbooks[/blue]")
            console.print("[red]4. Exit[/red]")

            choice = Prompt.ask("Choose an option", choices=["1", "2", "3", "4"])

            if choice == "1":
                list_handbooks(service)
            elif choice == "2":
                handle_materialize(service)
            elif choice == "3":
                handle_convert_all(service)
            elif choice == "4":
                break
        except KeyboardInterrupt:
            break

    console.print("\n[bold magenta]Goodbye![/bold magenta]")
    sys.exit(0)


if __name__ == "__main__":
    main()
