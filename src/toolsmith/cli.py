"""
CLI entry point for Toolsmith.

This module provides the Typer-based command-line interface for Toolsmith.

Commands:
    chat            Interactive conversation with background capability builds
    build           Build a capability and stream the builder's progress
    run             Execute a registered capability
    capabilities    List, show, disable and enable capabilities
    secrets         Store and list capability secrets
    relay           Inspect and answer builder relay messages
    doctor          Check system environment and dependencies

Architecture Note:
    The CLI is thin: it parses arguments and delegates to Session and the
    capability modules, which are usable programmatically without it.
"""

import json
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from toolsmith import __version__
from toolsmith.agent.loop import ToolEvent
from toolsmith.builder.loop import BuildResult
from toolsmith.capabilities.catalog import CapabilityCatalog
from toolsmith.config import ToolsmithConfig, load_config
from toolsmith.errors import ToolsmithError
from toolsmith.log import configure_logging
from toolsmith.model.ollama import OllamaChatModel
from toolsmith.relay.queue import MessageRelay
from toolsmith.schema import Capability, CapabilityStatus, RelayDirection, RelayKind, RelayMessage
from toolsmith.session import SecretRequest, Session
from toolsmith.store.db import ToolsmithDB

app = typer.Typer(
    name="toolsmith",
    help="A conversational agent that builds its own tools.",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()

# Resolved by the main callback
_state: dict[str, Any] = {"config_path": None}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]toolsmith[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to a YAML config file.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Enable debug logging."),
    ] = False,
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    Toolsmith - a chat agent that writes, tests and registers its own tools.
    """
    configure_logging(verbose)
    _state["config_path"] = config_path


def _load_config() -> ToolsmithConfig:
    try:
        return load_config(_state["config_path"])
    except ToolsmithError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1) from e


def _open_db(config: ToolsmithConfig) -> ToolsmithDB:
    config.data_dir.mkdir(parents=True, exist_ok=True)
    return ToolsmithDB(config.database_path)


def _timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S")


def _status_display(status: CapabilityStatus) -> str:
    if status == CapabilityStatus.ACTIVE:
        return "[green]active[/green]"
    if status == CapabilityStatus.FAILED:
        return "[red]failed[/red]"
    if status == CapabilityStatus.BUILDING:
        return "[yellow]building[/yellow]"
    return f"[dim]{status.value}[/dim]"


def _require_capability(catalog: CapabilityCatalog, name: str) -> Capability:
    cap = catalog.get_by_name(name)
    if cap is None:
        console.print(f"[red]Capability not found: {name}[/red]")
        raise typer.Exit(code=1)
    return cap


# =============================================================================
# Chat
# =============================================================================


def _print_event(event: ToolEvent) -> None:
    if event.type == "tool_start":
        console.print(f"[dim]-> {event.name}({json.dumps(event.input or {})[:80]})[/dim]")
    elif event.is_error:
        console.print(f"[dim red]<- {event.name}: {(event.result or '')[:120]}[/dim red]")
    else:
        console.print(f"[dim]<- {event.name}: {(event.result or '')[:120]}[/dim]")


def _handle_update(session: Session, message: RelayMessage) -> None:
    """Show one builder message and collect any answer it needs."""
    payload = message.payload
    tag = f"[cyan]\\[build {message.build_id[:8]}][/cyan]"
    if message.kind == RelayKind.PROGRESS:
        detail = f" - {payload['detail']}" if payload.get("detail") else ""
        console.print(f"{tag} {payload.get('step', '')}{detail}")
    elif message.kind == RelayKind.QUESTION:
        answer = Prompt.ask(f"{tag} [bold]{payload.get('question', '')}[/bold]")
        session.answer_builder(message.build_id, answer)
    elif message.kind == RelayKind.SECRET_REQUEST:
        request = SecretRequest.from_message(message)
        console.print(f"{tag} Secret needed: [bold]{request.name}[/bold] - {request.description}")
        value = typer.prompt(request.name, hide_input=True, default="", show_default=False)
        if value:
            session.submit_secret(request.build_id, request.name, value, request.capability_id)
            console.print(f"{tag} [green]Secret {request.name} saved.[/green]")
        else:
            session.decline_secret(request.build_id, request.name)
            console.print(f"{tag} [yellow]Secret {request.name} skipped.[/yellow]")
    elif message.kind == RelayKind.COMPLETE:
        console.print(
            f"{tag} [green]Capability {payload.get('capability_name')} is ready.[/green] "
            f"{payload.get('summary', '')}"
        )
    elif message.kind == RelayKind.ERROR:
        console.print(f"{tag} [red]Build failed: {payload.get('error', '')}[/red]")


def _pump(session: Session) -> None:
    for message in session.drain_updates():
        _handle_update(session, message)


def _wait_for_builds(session: Session, interval: float) -> None:
    while session.active_builds:
        _pump(session)
        if session.active_builds:
            time.sleep(interval)


@app.command()
def chat() -> None:
    """
    Start an interactive conversation.

    Builds requested during the conversation run in the background; their
    questions, secret requests and results are shown between turns.
    Type /wait to block until running builds finish, /quit to leave.

    Example:
        $ toolsmith chat
    """
    config = _load_config()
    console.print(f"[bold]Toolsmith[/bold] v{__version__} - model [cyan]{config.model.model}[/cyan]")
    console.print("[dim]/wait waits for builds, /quit exits[/dim]")
    console.print()

    with Session.from_config(config, on_event=_print_event) as session:
        while True:
            _pump(session)
            try:
                text = Prompt.ask("[bold]you[/bold]")
            except (EOFError, KeyboardInterrupt):
                console.print()
                break
            text = text.strip()
            if not text:
                continue
            if text in ("/quit", "/exit"):
                break
            if text == "/wait":
                _wait_for_builds(session, config.builder.poll_interval_seconds)
                continue

            result = session.send(text)
            style = "yellow" if result.pending_question else "green"
            console.print(f"[bold {style}]assistant[/bold {style}] {result.text}")
            if result.build_id:
                console.print(f"[dim]Build {result.build_id} started.[/dim]")


# =============================================================================
# Build / run
# =============================================================================


@app.command()
def build(
    description: Annotated[
        str,
        typer.Argument(help="What the capability should do."),
    ],
    name: Annotated[
        str,
        typer.Option("--name", "-n", help="snake_case capability name."),
    ],
) -> None:
    """
    Build a capability and stream the builder's progress.

    Creates the catalog entry if needed (a failed entry is rebuilt) and
    waits for the build, answering its questions interactively.

    Example:
        $ toolsmith build "Current weather for a city via Open-Meteo" --name weather_lookup
    """
    config = _load_config()
    with Session.from_config(config) as session:
        try:
            cap = session.catalog.get_by_name(name)
            if cap is None:
                cap = session.catalog.create(name=name, description=description)
            elif cap.status == CapabilityStatus.FAILED:
                cap = session.catalog.set_status(cap.id, CapabilityStatus.BUILDING)
            future = session.start_build(cap.id, description=description)
        except ToolsmithError as e:
            console.print(f"[red]{e.message}[/red]")
            raise typer.Exit(code=1) from e

        console.print(f"[bold]Building[/bold] [cyan]{name}[/cyan] [dim](build {cap.id})[/dim]")
        while not future.done():
            _pump(session)
            time.sleep(config.builder.poll_interval_seconds)
        _pump(session)

        result: BuildResult = future.result()
        if not result.success:
            raise typer.Exit(code=1)
        console.print(f"[green]Registered {name}[/green] [dim]({result.capability_id})[/dim]")


@app.command()
def run(
    name: Annotated[
        str,
        typer.Argument(help="Capability name."),
    ],
    args_json: Annotated[
        str,
        typer.Option("--args", "-a", help="Arguments as a JSON object."),
    ] = "{}",
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output results in JSON format."),
    ] = False,
) -> None:
    """
    Execute a registered capability.

    Example:
        $ toolsmith run weather_lookup --args '{"city": "Oslo"}'
    """
    try:
        args = json.loads(args_json)
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid --args JSON: {e}[/red]")
        raise typer.Exit(code=1) from e
    if not isinstance(args, dict):
        console.print("[red]--args must be a JSON object[/red]")
        raise typer.Exit(code=1)

    config = _load_config()
    with Session.from_config(config) as session:
        cap = _require_capability(session.catalog, name)
        output = session.executor.execute(cap.id, args)

    if json_output:
        print(json.dumps({
            "success": output.success,
            "result": output.result,
            "error": output.error,
            "stdout": output.stdout,
            "stderr": output.stderr,
        }, indent=2))
    elif output.success:
        console.print(output.result)
    else:
        console.print(f"[red]{output.error}[/red]")
        if output.stderr:
            console.print(f"[dim]{output.stderr}[/dim]")
    if not output.success:
        raise typer.Exit(code=1)


# =============================================================================
# Capabilities Subcommand Group
# =============================================================================

capabilities_app = typer.Typer(
    name="capabilities",
    help="Inspect and manage the capability catalog.",
    no_args_is_help=True,
)
app.add_typer(capabilities_app, name="capabilities")


@capabilities_app.command("list")
def capabilities_list(
    status: Annotated[
        Optional[CapabilityStatus],
        typer.Option("--status", "-s", help="Only show capabilities in this state."),
    ] = None,
) -> None:
    """
    List capabilities.

    Example:
        $ toolsmith capabilities list --status active
    """
    config = _load_config()
    with _open_db(config) as db:
        caps = CapabilityCatalog(db, config.capabilities_dir).list_capabilities(status)

    if not caps:
        console.print("[dim]No capabilities found.[/dim]")
        raise typer.Exit(code=0)

    table = Table(show_header=True, header_style="bold")
    table.add_column("Name", style="cyan")
    table.add_column("Status", width=10)
    table.add_column("Version", justify="right")
    table.add_column("Updated")
    table.add_column("Description")
    for cap in caps:
        description = cap.description
        if len(description) > 60:
            description = description[:57] + "..."
        table.add_row(
            cap.name,
            _status_display(cap.status),
            str(cap.version),
            _timestamp(cap.updated_at),
            description,
        )
    console.print(table)


@capabilities_app.command("show")
def capabilities_show(
    name: Annotated[str, typer.Argument(help="Capability name.")],
    code: Annotated[
        bool,
        typer.Option("--code", help="Also print main.py."),
    ] = False,
) -> None:
    """
    Show a capability's metadata, schema and required secrets.

    Example:
        $ toolsmith capabilities show weather_lookup --code
    """
    config = _load_config()
    with _open_db(config) as db:
        catalog = CapabilityCatalog(db, config.capabilities_dir)
        cap = _require_capability(catalog, name)
        manifest = catalog.load_manifest(cap.id)
        files = catalog.load_files(cap.id) if code else None

    console.print(f"[bold]{cap.name}[/bold] [dim]({cap.id})[/dim]")
    console.print(f"  Status: {_status_display(cap.status)}")
    console.print(f"  Version: {cap.version}")
    console.print(f"  Created: {_timestamp(cap.created_at)}")
    console.print(f"  Updated: {_timestamp(cap.updated_at)}")
    if cap.tags:
        console.print(f"  Tags: {', '.join(cap.tags)}")
    console.print(f"  Path: [dim]{cap.path}[/dim]")
    console.print()
    console.print(cap.description)
    console.print()
    console.print("[bold]Input schema[/bold]")
    console.print_json(data=cap.input_schema)
    if manifest and manifest.required_secrets:
        console.print()
        console.print("[bold]Required secrets[/bold]")
        for secret in manifest.required_secrets:
            console.print(f"  [cyan]{secret.name}[/cyan] - {secret.description}")
    if files is not None:
        console.print()
        console.print("[bold]main.py[/bold]")
        console.print(files.main_py, markup=False, highlight=False)


def _set_enabled(name: str, enabled: bool) -> None:
    config = _load_config()
    with _open_db(config) as db:
        catalog = CapabilityCatalog(db, config.capabilities_dir)
        cap = _require_capability(catalog, name)
        try:
            cap = catalog.enable(cap.id) if enabled else catalog.disable(cap.id)
        except ToolsmithError as e:
            console.print(f"[red]{e.message}[/red]")
            raise typer.Exit(code=1) from e
    console.print(f"{cap.name}: {_status_display(cap.status)}")


@capabilities_app.command("disable")
def capabilities_disable(name: Annotated[str, typer.Argument(help="Capability name.")]) -> None:
    """Disable a capability; it stops being offered to the model."""
    _set_enabled(name, enabled=False)


@capabilities_app.command("enable")
def capabilities_enable(name: Annotated[str, typer.Argument(help="Capability name.")]) -> None:
    """Re-enable a disabled capability."""
    _set_enabled(name, enabled=True)


# =============================================================================
# Secrets Subcommand Group
# =============================================================================

secrets_app = typer.Typer(
    name="secrets",
    help="Manage encrypted capability secrets.",
    no_args_is_help=True,
)
app.add_typer(secrets_app, name="secrets")


@secrets_app.command("set")
def secrets_set(
    capability: Annotated[str, typer.Argument(help="Capability name.")],
    key: Annotated[str, typer.Argument(help="Secret name, e.g. OPENWEATHER_API_KEY.")],
) -> None:
    """
    Store a secret for a capability. The value is read with hidden input.

    Example:
        $ toolsmith secrets set weather_lookup OPENWEATHER_API_KEY
    """
    config = _load_config()
    value = typer.prompt(key, hide_input=True)
    with Session.from_config(config) as session:
        cap = _require_capability(session.catalog, capability)
        session.secrets.set_secret(cap.id, key, value)
    console.print(f"[green]Saved {key} for {capability}.[/green]")


@secrets_app.command("list")
def secrets_list(
    capability: Annotated[str, typer.Argument(help="Capability name.")],
) -> None:
    """List the secret names stored for a capability (never the values)."""
    config = _load_config()
    with Session.from_config(config) as session:
        cap = _require_capability(session.catalog, capability)
        keys = session.secrets.list_keys(cap.id)
    if not keys:
        console.print("[dim]No secrets stored.[/dim]")
        raise typer.Exit(code=0)
    for key in keys:
        console.print(key)


# =============================================================================
# Relay Subcommand Group
# =============================================================================

relay_app = typer.Typer(
    name="relay",
    help="Inspect and answer builder relay messages.",
    no_args_is_help=True,
)
app.add_typer(relay_app, name="relay")


@relay_app.command("peek")
def relay_peek(
    build_id: Annotated[str, typer.Argument(help="Build id (the capability id).")],
    direction: Annotated[
        RelayDirection,
        typer.Option("--direction", "-d", help="Queue to inspect."),
    ] = RelayDirection.TO_USER,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output messages as JSON envelopes."),
    ] = False,
) -> None:
    """
    Show unconsumed messages of a build without consuming them.

    Example:
        $ toolsmith relay peek 4f1c... --direction to_builder
    """
    config = _load_config()
    with _open_db(config) as db:
        messages = MessageRelay(db).peek(build_id, direction)

    if json_output:
        print(json.dumps([message.envelope() for message in messages], indent=2))
        return
    if not messages:
        console.print("[dim]No pending messages.[/dim]")
        raise typer.Exit(code=0)

    table = Table(show_header=True, header_style="bold")
    table.add_column("Created")
    table.add_column("Kind", style="cyan")
    table.add_column("Payload")
    for message in messages:
        table.add_row(_timestamp(message.created_at), message.kind.value, json.dumps(message.payload))
    console.print(table)


@relay_app.command("answer")
def relay_answer(
    build_id: Annotated[str, typer.Argument(help="Build id (the capability id).")],
    text: Annotated[str, typer.Argument(help="Answer for the builder's question.")],
) -> None:
    """
    Answer a builder question from outside the chat.

    Example:
        $ toolsmith relay answer 4f1c... "Use Celsius"
    """
    config = _load_config()
    with _open_db(config) as db:
        MessageRelay(db).push(build_id, RelayDirection.TO_BUILDER, RelayKind.ANSWER, {"answer": text})
    console.print("[green]Answer queued.[/green]")


# =============================================================================
# Doctor
# =============================================================================


@app.command()
def doctor(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output results in JSON format."),
    ] = False,
) -> None:
    """
    Check system environment and dependencies.

    Verifies that Toolsmith's dependencies are properly configured:
    - Python version (3.11+)
    - Ollama connectivity and the configured model
    - Database accessibility

    Example:
        $ toolsmith doctor
    """
    config = _load_config()
    checks = []

    py_version = sys.version_info
    py_ok = py_version >= (3, 11)
    checks.append({
        "name": "Python version",
        "ok": py_ok,
        "value": f"{py_version.major}.{py_version.minor}.{py_version.micro}",
        "message": "OK" if py_ok else "Requires Python 3.11+",
    })

    with OllamaChatModel(config.model) as model:
        ollama_ok, ollama_message = model.check_connection()
    checks.append({
        "name": "Ollama",
        "ok": ollama_ok,
        "value": config.model.base_url,
        "message": ollama_message,
    })

    db_path = config.database_path
    try:
        with _open_db(config) as db:
            count = len(CapabilityCatalog(db, config.capabilities_dir).list_capabilities())
        db_ok, db_message = True, f"OK ({count} capabilities)"
    except (ToolsmithError, OSError) as e:
        db_ok, db_message = False, f"Error: {e}"
    checks.append({
        "name": "Database",
        "ok": db_ok,
        "value": str(db_path),
        "message": db_message,
    })

    all_ok = all(check["ok"] for check in checks)
    if json_output:
        print(json.dumps({"ok": all_ok, "version": __version__, "checks": checks}, indent=2))
    else:
        console.print(f"[bold]Toolsmith Doctor[/bold] v{__version__}")
        console.print()
        for check in checks:
            icon = "[green]✓[/green]" if check["ok"] else "[red]✗[/red]"
            if check["ok"]:
                console.print(f"{icon} {check['name']}: [dim]{check['value']}[/dim] - {check['message']}")
            else:
                console.print(f"{icon} {check['name']}: [red]{check['message']}[/red]")
    if not all_ok:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
