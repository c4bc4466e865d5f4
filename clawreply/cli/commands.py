"""CLI commands for clawreply."""

import asyncio
import json
import time
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from clawreply import __logo__, __version__

app = typer.Typer(
    name="clawreply",
    help=f"{__logo__} clawreply - chat control commands and session state",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} clawreply v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """clawreply - chat control commands and session state."""
    pass


def _open_store(store: Path | None):
    from clawreply.config.loader import load_config
    from clawreply.session.store import SessionStore

    config = load_config()
    return config, SessionStore(store or config.session_store_path)


# ============================================================================
# Classify
# ============================================================================


@app.command()
def classify(
    text: str = typer.Argument(..., help="Message body to classify"),
    status_directive: bool = typer.Option(False, "--status-directive", help="Treat as carrying an inline /status"),
):
    """Show which control command a message would trigger."""
    from clawreply.commands.classifier import classify_command
    from clawreply.commands.detection import has_control_command

    command = classify_command(text, status_directive=status_directive)

    table = Table(title="Classification")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("command", command.kind.value)
    table.add_row("mode", command.mode or "[dim]-[/dim]")
    table.add_row("instructions", command.instructions or "[dim]-[/dim]")
    table.add_row("has control command", "✓" if has_control_command(text) else "✗")
    console.print(table)


# ============================================================================
# Sessions
# ============================================================================


sessions_app = typer.Typer(help="Inspect and adjust persisted sessions")
app.add_typer(sessions_app, name="sessions")


@sessions_app.command("list")
def sessions_list(
    store: Path = typer.Option(None, "--store", "-s", help="Session store path"),
):
    """List persisted sessions."""
    _config, session_store = _open_store(store)
    entries = session_store.entries()

    if not entries:
        console.print("No sessions.")
        return

    table = Table(title="Sessions")
    table.add_column("Key", style="cyan")
    table.add_column("Session ID")
    table.add_column("Send")
    table.add_column("Activation")
    table.add_column("Compactions")
    table.add_column("Updated")

    ordered = sorted(entries.items(), key=lambda item: item[1].updated_at, reverse=True)
    for key, entry in ordered:
        send = {"allow": "on", "deny": "off"}.get(entry.send_policy or "", "[dim]inherit[/dim]")
        updated = ""
        if entry.updated_at:
            updated = time.strftime("%Y-%m-%d %H:%M", time.localtime(entry.updated_at / 1000))
        table.add_row(
            key,
            entry.session_id or "[dim]-[/dim]",
            send,
            entry.group_activation or "[dim]-[/dim]",
            str(entry.compaction_count),
            updated,
        )

    console.print(table)


@sessions_app.command("show")
def sessions_show(
    key: str = typer.Argument(..., help="Session key"),
    store: Path = typer.Option(None, "--store", "-s", help="Session store path"),
):
    """Print one session entry as JSON."""
    _config, session_store = _open_store(store)
    entry = session_store.get(key)
    if entry is None:
        console.print(f"[red]Session {key} not found[/red]")
        raise typer.Exit(1)
    console.print_json(json.dumps(entry.to_dict(), default=str))


@sessions_app.command("send-policy")
def sessions_send_policy(
    key: str = typer.Argument(..., help="Session key"),
    mode: str = typer.Argument(..., help="on, off or inherit"),
    store: Path = typer.Option(None, "--store", "-s", help="Session store path"),
):
    """Set or clear the send policy override for a session."""
    from clawreply.audit.logger import AuditLogger
    from clawreply.commands.send_policy import parse_send_policy_command, send_policy_label
    from clawreply.session.updates import apply_send_policy

    parsed = parse_send_policy_command(f"/send {mode}")
    if not parsed.mode:
        console.print("[red]Mode must be on, off or inherit[/red]")
        raise typer.Exit(1)

    config, session_store = _open_store(store)
    updated = asyncio.run(session_store.update_entry(key, apply_send_policy(parsed.mode)))
    if updated is None:
        console.print(f"[red]Session {key} not found[/red]")
        raise typer.Exit(1)

    if config.audit.enabled:
        AuditLogger(Path(config.audit.path), level=config.audit.level).log_event(
            "cli_send_policy", {"session_key": key, "mode": parsed.mode}
        )
    console.print(f"[green]✓[/green] Send policy for {key} set to {send_policy_label(parsed.mode)}")
