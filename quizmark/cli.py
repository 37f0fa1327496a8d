"""
CLI Interface
=============
Command-line interface for the quiz markup engine.

Usage:
    python -m quizmark parse <file> [options]
    python -m quizmark batch [directory] [options]
    python -m quizmark validate <json_path>
    python -m quizmark blanks <text> [--mode grouped]
    python -m quizmark preview <text> [--type CLOZE]
    python -m quizmark export <file> [--deck Default]
    python -m quizmark serve [options]
"""

from __future__ import annotations

import json
import os
import sys

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)
from rich.table import Table
from rich.text import Text

from . import __version__
from . import blanks as blank_resolver
from . import storage
from .anki_connect import AnkiConnectError
from .engine import ParserConfig, ParserEngine
from .exporter import AnkiConfig, AnkiExporter, ExportError
from .models import ElementType

console = Console()

LOG_LEVELS = click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"])


@click.group()
@click.version_option(version=__version__, prog_name="quizmark")
def cli():
    """Quiz Markup Engine: cloze, math and media-aware question parser."""
    pass


@cli.command()
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--output", "-o",
    default="output",
    help="Output directory for parsed data",
)
@click.option(
    "--name", "-n",
    default="",
    help="Document name (defaults to filename)",
)
@click.option(
    "--math-placeholders",
    is_flag=True,
    default=False,
    help="Keep math in cloze questions as placeholder elements",
)
@click.option(
    "--no-consistency-check",
    is_flag=True,
    default=False,
    help="Skip the element-stream consistency check",
)
@click.option("--log-level", default="INFO", type=LOG_LEVELS, help="Logging level")
@click.option("--log-file", default=None, help="Path to log file")
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only JSON result to stdout (for programmatic use)",
)
def parse(
    file_path: str,
    output: str,
    name: str,
    math_placeholders: bool,
    no_consistency_check: bool,
    log_level: str,
    log_file: str,
    json_output: bool,
):
    """Parse a single question document into structured questions."""

    if json_output:
        # Suppress console output for JSON mode
        log_level = "ERROR"

    config = ParserConfig(
        output_dir=output,
        document_name=name,
        math_placeholders=math_placeholders,
        check_consistency=not no_consistency_check,
        log_level=log_level,
        log_file=log_file,
        save_output=not json_output,
    )

    if not json_output:
        console.print()
        console.print(
            Panel.fit(
                f"[bold cyan]Quiz Markup Engine v{__version__}[/]\n"
                f"[dim]Parsing: {os.path.basename(file_path)}[/]",
                border_style="cyan",
            )
        )
        console.print()

    try:
        engine = ParserEngine(config)

        if not json_output:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=console,
            ) as progress:
                task = progress.add_task("Assembling groups...", total=None)

                def on_group(current, total):
                    progress.update(task, completed=current, total=total)

                result = engine.parse_file(file_path, progress_callback=on_group)

            _display_results(result)
        else:
            result = engine.parse_file(file_path)
            print(json.dumps(
                result.model_dump(mode="json"),
                indent=2,
                ensure_ascii=False,
            ))

    except FileNotFoundError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)
    except (OSError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        if log_level == "DEBUG":
            console.print_exception()
        sys.exit(1)


@cli.command()
@click.argument("directory", required=False, type=click.Path(file_okay=False))
@click.option("--vault", envvar=storage.VAULT_ENV_VAR, default=None, help="Vault root")
@click.option("--output", "-o", default="output", help="Output directory")
@click.option("--pattern", default="*.md", help="Glob for question files")
@click.option("--log-level", default="WARNING", type=LOG_LEVELS, help="Logging level")
def batch(
    directory: str,
    vault: str,
    output: str,
    pattern: str,
    log_level: str,
):
    """Batch parse every question document in a directory (default: the vault)."""

    try:
        files = storage.find_question_files(directory or vault, pattern=pattern)
    except NotADirectoryError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    if not files:
        console.print(f"[yellow]No question files found in: {directory or vault or '.'}[/]")
        return

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Batch Quiz Parser[/]\n"
            f"[dim]Found {len(files)} documents[/]",
            border_style="cyan",
        )
    )
    console.print()

    results = []
    errors = []
    engine = ParserEngine(ParserConfig(output_dir=output, log_level=log_level))

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeRemainingColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Processing documents...", total=len(files))

        for path in files:
            progress.update(task, description=f"Parsing: {path.name}")
            try:
                results.append((path.name, engine.parse_file(str(path))))
            except (OSError, ValueError) as e:
                errors.append((path.name, str(e)))
            progress.advance(task)

    _display_batch_summary(results, errors)


@cli.command()
@click.argument("json_path", type=click.Path(exists=True, dir_okay=False))
def validate(json_path: str):
    """Show the validation report of a previously generated parse result."""

    with open(json_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Validation Report[/]\n"
            f"[dim]File: {json_path}[/]",
            border_style="cyan",
        )
    )

    # Accept both a full result and a bare *_validation.json report
    validation = data.get("validation", data)
    _display_validation_table(validation)


@cli.command()
@click.argument("text", required=False)
@click.option("--file", "-f", "file_path", type=click.Path(exists=True, dir_okay=False),
              help="Read the text from a file")
@click.option(
    "--mode", "-m",
    default="individual",
    type=click.Choice(["grouped", "individual", "sequential", "static", "strip", "renumber"]),
    help="Projection to print",
)
def blanks(text: str, file_path: str, mode: str):
    """Print a blank projection of a cloze text."""

    if file_path:
        text = storage.read_question_file(file_path)
    if text is None:
        console.print("[red]Error:[/] provide TEXT or --file")
        sys.exit(1)

    if mode in ("grouped", "individual"):
        values = (
            blank_resolver.grouped_blanks(text)
            if mode == "grouped"
            else blank_resolver.individual_blanks(text)
        )
        table = Table(title=f"Blanks ({mode})", border_style="cyan")
        table.add_column("#", justify="right", style="bold")
        table.add_column("Answer")
        for i, value in enumerate(values, start=1):
            table.add_row(str(i), value)
        console.print(table)
        return

    converters = {
        "sequential": blank_resolver.to_sequential_blanks,
        "static": blank_resolver.static_blanks,
        "strip": blank_resolver.strip_markers,
        "renumber": blank_resolver.renumber_clozes,
    }
    console.print(converters[mode](text), markup=False, highlight=False)


@cli.command()
@click.argument("text")
@click.option("--type", "-t", "question_type", default="CLOZE",
              type=click.Choice(["CLOZE", "T-F", "SHORT", "AUDIO"], case_sensitive=False),
              help="Question type")
@click.option("--answer", "-a", default="", help="Answer line for T-F/SHORT")
@click.option("--math-placeholders", is_flag=True, default=False,
              help="Keep math in cloze questions as placeholder elements")
def preview(text: str, question_type: str, answer: str, math_placeholders: bool):
    """Assemble one question and show its elements, blanks and issues."""

    engine = ParserEngine(ParserConfig(
        save_output=False,
        log_level="WARNING",
        math_placeholders=math_placeholders,
    ))
    question = engine.parse_question(text, question_type=question_type, answer=answer)

    console.print()
    console.print(Panel(
        Text(blank_resolver.static_blanks(text, engine.config.blank_placeholder)),
        title=f"[bold cyan]{question.id}[/] [dim]({question.question_type.value})[/]",
        border_style="cyan",
    ))

    table = Table(title="Ordered Elements", border_style="cyan")
    table.add_column("#", justify="right", style="bold")
    table.add_column("Type")
    table.add_column("Content")
    for i, e in enumerate(question.ordered_elements, start=1):
        table.add_row(str(i), e.type.value, _element_summary(e))
    console.print(table)

    if question.blanks:
        blanks_table = Table(title="Blanks", border_style="green")
        blanks_table.add_column("Token", style="bold")
        blanks_table.add_column("Answer")
        for i, value in enumerate(question.blanks, start=1):
            blanks_table.add_row(blank_resolver.SEQUENTIAL_TOKEN.format(i), value)
        console.print(blanks_table)

    if question.issues:
        issues_table = Table(title="Issues", border_style="yellow")
        issues_table.add_column("Type", style="bold")
        issues_table.add_column("Severity", justify="right")
        issues_table.add_column("Message")
        for issue in question.issues:
            issues_table.add_row(issue.type.value, str(issue.severity), issue.message)
        console.print(issues_table)
    console.print()


@cli.command()
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--deck", "-d", default="Default", help="Target deck")
@click.option("--tag", "tags", multiple=True, default=("quizmark",), help="Note tag (repeatable)")
@click.option("--url", default="http://localhost:8765", help="AnkiConnect URL")
@click.option("--vault", envvar=storage.VAULT_ENV_VAR, default=None,
              help="Vault root for media lookups")
@click.option("--log-level", default="WARNING", type=LOG_LEVELS, help="Logging level")
def export(file_path: str, deck: str, tags: tuple, url: str, vault: str, log_level: str):
    """Parse a document and add every question to Anki via AnkiConnect."""

    engine = ParserEngine(ParserConfig(save_output=False, log_level=log_level))
    result = engine.parse_file(file_path)
    questions = result.questions

    exporter = AnkiExporter(AnkiConfig(
        url=url,
        deck=deck,
        tags=list(tags),
        vault=vault or os.path.dirname(os.path.abspath(file_path)),
    ))
    if not exporter.client.test_connection():
        console.print(f"[red]Error:[/] AnkiConnect is not reachable at {url}")
        sys.exit(1)

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Exporting to Anki...", total=len(questions))
            summary = exporter.export_questions(
                questions,
                progress_callback=lambda current, total: progress.update(task, completed=current),
            )
    except (ExportError, AnkiConnectError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    console.print(
        f"[bold]Exported:[/] {len(summary['added'])}/{len(questions)} "
        f"questions to deck '{summary['deck']}'"
    )
    for qid, error in summary["failed"].items():
        console.print(f"  [red]✗[/] {qid}: {error}")
    if summary["failed"]:
        sys.exit(1)


@cli.command()
@click.option("--host", default="0.0.0.0", help="Server host")
@click.option("--port", default=5000, type=int, help="Server port")
@click.option("--vault", envvar=storage.VAULT_ENV_VAR, default=None, help="Vault root")
@click.option("--debug", is_flag=True, default=False, help="Debug mode")
def serve(host: str, port: int, vault: str, debug: bool):
    """Start the HTTP microservice server."""
    from .server import app, run_server

    if vault:
        app.config["VAULT_DIR"] = str(storage.get_vault_dir(vault))

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Quiz Markup Microservice[/]\n"
            f"[dim]Starting on {host}:{port}[/]",
            border_style="cyan",
        )
    )
    console.print()

    run_server(host=host, port=port, debug=debug)


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _element_summary(element, width: int = 60) -> str:
    if element.type == ElementType.TEXT:
        value = element.content
    elif element.type == ElementType.IMAGE:
        value = element.filename
    elif element.type == ElementType.CODE_BLOCK:
        value = f"[{element.lang or 'code'}] {element.code}"
    elif element.type == ElementType.TABLE:
        value = element.markup
    elif element.type == ElementType.MATH:
        value = f"{'$$' if element.display else '$'}{element.expr}"
    else:
        value = element.token
    value = " ".join(value.split())
    return value if len(value) <= width else value[:width - 1] + "…"


def _display_results(result):
    """Display parse results in a formatted table."""
    console.print()

    source = result.source
    table = Table(title="Document Information", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")
    table.add_row("Name", source.name or "(auto)")
    table.add_row("Source File", source.source_file or "(memory)")
    table.add_row("Groups", str(len(result.groups)))
    if source.file_hash:
        table.add_row("File Hash", source.file_hash[:16] + "...")
    console.print(table)
    console.print()

    _display_validation_table(result.validation.model_dump())

    pv = result.parse_version
    console.print(
        f"[dim]Parser v{pv.parser_version} | "
        f"Groups: {pv.group_count} | "
        f"Questions: {pv.question_count} | "
        f"Timestamp: {pv.parse_timestamp}[/]"
    )
    console.print()


def _display_validation_table(validation: dict):
    """Display validation report as a rich table."""
    table = Table(title="Validation Report", border_style="green")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_column("Status", justify="center")

    total = validation.get("total_questions", 0)
    clean = validation.get("clean_questions", 0)
    rate = validation.get("clean_rate", 0)

    def status_icon(count, threshold=0):
        if count <= threshold:
            return "[green]✓[/]"
        return "[red]✗[/]"

    table.add_row(
        "Total Questions",
        str(total),
        "[green]✓[/]" if total > 0 else "[red]✗[/]",
    )
    table.add_row(
        "Cloze Questions",
        f"{validation.get('cloze_questions', 0)} "
        f"({validation.get('total_blanks', 0)} blanks)",
        "",
    )
    table.add_row(
        "Clean Questions",
        f"{clean} ({rate}%)",
        "[green]✓[/]" if rate >= 90 else "[yellow]⚠[/]",
    )

    for label, key in (
        ("Skipped Blocks", "skipped_blocks"),
        ("Duplicate Question IDs", "duplicate_question_ids"),
        ("Questions Missing Answer", "questions_missing_answer"),
        ("Non-Sequential Cloze IDs", "questions_with_non_sequential_ids"),
        ("Element Stream Mismatches", "inconsistent_questions"),
    ):
        value = validation.get(key, 0)
        count = value if isinstance(value, int) else len(value)
        table.add_row(label, str(count), status_icon(count))

    console.print(table)
    console.print()

    breakdown = validation.get("issue_breakdown", {})
    if breakdown:
        issue_table = Table(title="Issue Breakdown", border_style="yellow")
        issue_table.add_column("Type", style="bold")
        issue_table.add_column("Count", justify="right")
        for itype, count in sorted(breakdown.items()):
            issue_table.add_row(itype, str(count))
        console.print(issue_table)
        console.print()


def _display_batch_summary(results, errors):
    """Display batch processing summary."""
    console.print()

    table = Table(title="Batch Processing Summary", border_style="cyan")
    table.add_column("Document", style="bold")
    table.add_column("Questions", justify="right")
    table.add_column("Clean Rate", justify="right")
    table.add_column("Issues", justify="right")
    table.add_column("Status", justify="center")

    total_questions = 0
    total_issues = 0

    for name, result in results:
        q_count = len(result.questions)
        rate = result.validation.clean_rate
        issues = sum(result.validation.issue_breakdown.values())

        total_questions += q_count
        total_issues += issues

        status = "[green]✓[/]" if rate >= 90 else "[yellow]⚠[/]"
        table.add_row(name, str(q_count), f"{rate}%", str(issues), status)

    for name, error in errors:
        table.add_row(name, "-", "-", "-", "[red]✗ FAILED[/]")

    console.print(table)
    console.print()
    console.print(
        f"[bold]Total:[/] {total_questions} questions from "
        f"{len(results)} documents, {total_issues} issues, "
        f"{len(errors)} failures"
    )
    console.print()


if __name__ == "__main__":
    cli()
