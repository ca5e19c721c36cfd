"""
CLI entry point for Guardrail.

This module provides the Typer-based command-line interface for Guardrail.

Commands:
    serve       Run the admission webhook
    eval        Evaluate an input document against loaded policies
    packages    List loaded policy packages
    check       Verify that every policy file parses

Configuration comes from the environment (see guardrail.config);
command-line options override it.
"""

import json
import logging
import sys
import traceback
from pathlib import Path
from typing import Annotated, Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from guardrail import __version__
from guardrail.config import GatewayConfig, UnresolvedPolicy
from guardrail.errors import EvaluationError, GuardrailError
from guardrail.policy import PolicyStore, evaluate, evaluate_all
from guardrail.policy.evaluator import BatchEntry
from guardrail.report import generate_console_report, generate_json_report

app = typer.Typer(
    name="guardrail",
    help="Evaluate declarative guardrail policies and gate admission requests.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console()

logger = logging.getLogger("guardrail")

PolicyDirOption = Annotated[
    Optional[list[Path]],
    typer.Option(
        "--policy-dir",
        "-p",
        help="Policy root directory (repeatable). Defaults to POLICY_DIRS.",
    ),
]


def configure_logging(level: str) -> None:
    """Route all logging through Rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]guardrail[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    Guardrail - policy evaluation and admission control.
    """
    pass


def _load_config(**overrides) -> GatewayConfig:
    try:
        return GatewayConfig.from_env(**overrides)
    except GuardrailError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=2)


def _load_store(config: GatewayConfig, debug: bool = False) -> PolicyStore:
    try:
        return PolicyStore.from_config(config)
    except GuardrailError as e:
        console.print(f"[red]Error loading policies: {e}[/red]")
        if debug:
            console.print(f"[dim]{traceback.format_exc()}[/dim]")
        raise typer.Exit(code=1)


@app.command()
def serve(
    policy_dirs: PolicyDirOption = None,
    host: Annotated[Optional[str], typer.Option("--host", help="Interface to bind.")] = None,
    port: Annotated[Optional[int], typer.Option("--port", help="Port to bind.")] = None,
    tls_cert: Annotated[
        Optional[Path],
        typer.Option("--tls-cert", help="PEM certificate file.", exists=True, readable=True),
    ] = None,
    tls_key: Annotated[
        Optional[Path],
        typer.Option("--tls-key", help="PEM private key file.", exists=True, readable=True),
    ] = None,
    timeout: Annotated[
        Optional[float],
        typer.Option("--timeout", help="Per-request evaluation deadline in seconds."),
    ] = None,
    unresolved: Annotated[
        Optional[UnresolvedPolicy],
        typer.Option("--unresolved", help="Decision when no policy package matches a kind."),
    ] = None,
    log_level: Annotated[Optional[str], typer.Option("--log-level", help="Logging level.")] = None,
) -> None:
    """
    Run the admission webhook.

    Policies are loaded before the port is bound; a policy that fails to
    parse stops the server from starting. Send SIGHUP to reload.

    Example:
        $ guardrail serve --policy-dir policies/kubernetes --port 8443
    """
    import uvicorn

    from guardrail.gateway import create_app

    config = _load_config(
        policy_dirs=tuple(policy_dirs) if policy_dirs else None,
        host=host,
        port=port,
        tls_cert_file=tls_cert,
        tls_key_file=tls_key,
        request_timeout_seconds=timeout,
        unresolved_policy=unresolved,
        log_level=log_level,
    )
    configure_logging(config.log_level)
    store = _load_store(config)

    scheme = "https" if config.tls_enabled else "http"
    logger.info("Starting server on %s://%s:%d", scheme, config.host, config.port)

    uvicorn.run(
        create_app(store, config, reload_on_sighup=True),
        host=config.host,
        port=config.port,
        ssl_certfile=str(config.tls_cert_file) if config.tls_cert_file else None,
        ssl_keyfile=str(config.tls_key_file) if config.tls_key_file else None,
        log_config=None,
    )


@app.command("eval")
def eval_command(
    input_path: Annotated[
        Path,
        typer.Argument(
            help="Input document (JSON or YAML), or - for stdin.",
            allow_dash=True,
        ),
    ],
    policy_dirs: PolicyDirOption = None,
    package: Annotated[
        Optional[str],
        typer.Option("--package", help="Evaluate only this package. Defaults to every package."),
    ] = None,
    data_file: Annotated[
        Optional[Path],
        typer.Option("--data", help="Auxiliary data document for rules.", exists=True, readable=True),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output results in JSON format."),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Also list packages without findings."),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Show full error tracebacks."),
    ] = False,
) -> None:
    """
    Evaluate an input document against loaded policies.

    Exits 1 when any deny rule matches or any package fails to evaluate.

    Example:
        $ guardrail eval binding.json -p policies/gcp --package gcp.iam
    """
    configure_logging("DEBUG" if debug else "WARNING")
    config = _load_config(
        policy_dirs=tuple(policy_dirs) if policy_dirs else None,
        data_file=data_file,
    )

    try:
        document = _read_document(input_path)
    except (OSError, yaml.YAMLError, ValueError) as e:
        console.print(f"[red]Error reading input: {e}[/red]")
        raise typer.Exit(code=1)

    snapshot = _load_store(config, debug).snapshot

    if package is None:
        entries = evaluate_all(snapshot, document)
    else:
        try:
            entries = [BatchEntry(package=package, result=evaluate(snapshot, package, document))]
        except EvaluationError as e:
            entries = [BatchEntry(package=package, error=e)]

    if json_output:
        print(generate_json_report(entries))
    else:
        generate_console_report(entries, console=console, verbose=verbose or package is not None)

    failed = any(e.error is not None or not e.result.passed for e in entries)
    raise typer.Exit(code=1 if failed else 0)


def _read_document(path: Path) -> dict:
    text = sys.stdin.read() if str(path) == "-" else path.read_text()
    document = yaml.safe_load(text)
    if not isinstance(document, dict):
        msg = "input document must be a mapping"
        raise ValueError(msg)
    return document


@app.command()
def packages(policy_dirs: PolicyDirOption = None) -> None:
    """
    List loaded policy packages and the files contributing to each.
    """
    configure_logging("WARNING")
    config = _load_config(policy_dirs=tuple(policy_dirs) if policy_dirs else None)
    snapshot = _load_store(config).snapshot

    if not snapshot.packages:
        console.print("[dim]No policy packages found.[/dim]")
        raise typer.Exit(code=0)

    table = Table(show_header=True, header_style="bold")
    table.add_column("Package", style="cyan")
    table.add_column("Modules")
    for name in snapshot.packages:
        table.add_row(name, "\n".join(m.source for m in snapshot.modules_for(name)))
    console.print(table)


@app.command()
def check(
    policy_dirs: PolicyDirOption = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output result in JSON format."),
    ] = False,
) -> None:
    """
    Verify that every policy file parses.

    Exits 1 and names the offending file on the first failure.
    """
    configure_logging("WARNING")
    config = _load_config(policy_dirs=tuple(policy_dirs) if policy_dirs else None)

    try:
        store = PolicyStore.from_config(config)
    except GuardrailError as e:
        if json_output:
            print(json.dumps({"ok": False, "error": e.to_dict()}, indent=2))
        else:
            console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)

    snapshot = store.snapshot
    if json_output:
        print(json.dumps({
            "ok": True,
            "modules": len(snapshot.modules),
            "packages": snapshot.packages,
        }, indent=2))
    else:
        console.print(
            f"[green]✓[/green] {len(snapshot.modules)} modules in "
            f"{len(snapshot.packages)} packages parsed"
        )


if __name__ == "__main__":
    app()
