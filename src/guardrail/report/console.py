"""
Console report generator for Guardrail.

Renders batch evaluation results to the terminal using Rich:
one table row per finding, grouped by package, followed by a summary.

Design Principles:
    - Status at a glance: icons and colors per package
    - Deterministic: packages and findings in sorted order
"""

from rich.console import Console
from rich.table import Table

from guardrail.policy.evaluator import BatchEntry


# Status icons
ICON_PASS = "[green]✓[/green]"
ICON_FAIL = "[red]✗[/red]"
ICON_WARN = "[yellow]![/yellow]"
ICON_ERROR = "[red]⊘[/red]"
ICON_UNRESOLVED = "[dim]○[/dim]"


def generate_console_report(
    entries: list[BatchEntry],
    console: Console | None = None,
    verbose: bool = False,
) -> None:
    """
    Print a console report for a batch evaluation.

    Args:
        entries: Batch entries to render
        console: Rich Console instance (creates one if not provided)
        verbose: Also list packages without findings
    """
    if console is None:
        console = Console()

    table = Table(show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Package", style="cyan")
    table.add_column("Severity")
    table.add_column("Message")

    for entry in entries:
        if entry.error is not None:
            table.add_row(ICON_ERROR, entry.package, "[red]ERROR[/red]", entry.error.message)
            continue

        result = entry.result
        if not result.resolved:
            if verbose:
                table.add_row(ICON_UNRESOLVED, entry.package, "", "[dim]no policy package[/dim]")
            continue

        for finding in result.sorted_violations():
            table.add_row(ICON_FAIL, entry.package, "[red]ERROR[/red]", finding.message)
        for finding in result.sorted_warnings():
            table.add_row(ICON_WARN, entry.package, "[yellow]WARNING[/yellow]", finding.message)
        if verbose and result.passed and not result.warnings:
            table.add_row(ICON_PASS, entry.package, "", "[dim]no findings[/dim]")

    console.print(table)
    console.print()
    _print_summary(console, entries)


def _print_summary(console: Console, entries: list[BatchEntry]) -> None:
    fail_count = sum(e.result.fail_count for e in entries if e.result is not None)
    warn_count = sum(e.result.warn_count for e in entries if e.result is not None)
    errors = sum(1 for e in entries if e.error is not None)

    status = "[green]PASS[/green]" if fail_count == 0 and errors == 0 else "[red]FAIL[/red]"
    console.print(
        f"{status} [dim]Packages: {len(entries)} | Violations: {fail_count} | "
        f"Warnings: {warn_count} | Errors: {errors}[/dim]"
    )
