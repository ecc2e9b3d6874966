"""
Claude Story CLI - Main command-line interface for Claude Story.

Controls the background daemon that turns Claude Code conversation logs into
Markdown history inside each project, and offers a one-shot scan and a
listing of stored conversations.
"""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from claude_story.logging_config import setup_logging

app = typer.Typer(
    name="claude-story",
    help="Claude Story - Markdown history of your Claude Code conversations",
    no_args_is_help=True,
)

console = Console()


@app.command()
def start() -> None:
    """
    Start the background daemon.

    The daemon scans existing conversation logs, then keeps watching for new
    messages until stopped.
    """
    from claude_story.daemon import DaemonController
    from claude_story.exceptions import DaemonStartError

    setup_logging(context="cli", level="WARNING")

    controller = DaemonController()
    current = controller.status()
    if current.running:
        console.print(
            f"[green]✓ Claude Story daemon is already running[/green] (PID {current.pid})"
        )
        return

    try:
        status = controller.start()
    except DaemonStartError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    console.print(f"[green]✓ Claude Story daemon started[/green] (PID {status.pid})")
    console.print(f"  Log file: {controller.log_file}")


@app.command()
def stop() -> None:
    """Stop the background daemon."""
    from claude_story.daemon import DaemonController

    setup_logging(context="cli", level="WARNING")

    if DaemonController().stop():
        console.print("[green]✓ Claude Story daemon stopped[/green]")
    else:
        console.print("[yellow]Claude Story daemon is not running[/yellow]")


@app.command()
def status() -> None:
    """Show daemon status and Claude Code detection."""
    from claude_story.config import settings
    from claude_story.daemon import DaemonController
    from claude_story.watch import discover_conversation_logs

    setup_logging(context="cli", level="WARNING")

    daemon_status = DaemonController().status()
    if daemon_status.running:
        console.print(
            f"[bold]Daemon:[/bold] [green]running[/green] (PID {daemon_status.pid})"
        )
    else:
        console.print("[bold]Daemon:[/bold] [yellow]stopped[/yellow]")

    if settings.logs_root.is_dir():
        logs = discover_conversation_logs(settings.logs_root)
        console.print(
            f"[bold]Claude Code:[/bold] [green]detected[/green] ({settings.logs_root})"
        )
        console.print(f"  Conversation logs: {len(logs)}")
    else:
        console.print(
            f"[bold]Claude Code:[/bold] [red]not found[/red] ({settings.logs_root})"
        )


@app.command()
def scan(
    force: bool = typer.Option(
        False, "--force", help="Re-parse logs even if unchanged since the last run"
    ),
) -> None:
    """
    Ingest every existing conversation log once, without watching.

    Useful to backfill history when the daemon is not running.
    """
    from claude_story.config import settings
    from claude_story.ingest import IngestStatus, LogIngestor
    from claude_story.watch import discover_conversation_logs

    setup_logging(context="cli")

    if not settings.logs_root.is_dir():
        console.print(
            f"[bold red]Error:[/bold red] Claude projects directory not found: "
            f"{settings.logs_root}"
        )
        raise typer.Exit(1)

    logs = discover_conversation_logs(settings.logs_root)
    if not logs:
        console.print("[yellow]No conversation logs found[/yellow]")
        raise typer.Exit(0)

    console.print(f"Found {len(logs)} conversation log(s) to process\n")

    ingestor = LogIngestor()
    counts = {status: 0 for status in IngestStatus}
    new_messages = 0
    for log_file in logs:
        result = ingestor.ingest_file(log_file, force=force)
        counts[result.status] += 1
        new_messages += result.new_messages
        if result.status == IngestStatus.FAILED:
            console.print(f"[red]✗[/red] {log_file.name}: {result.reason}")

    console.print()
    console.print("[bold]Summary:[/bold]")
    console.print(f"  Ingested: {counts[IngestStatus.INGESTED]} (+{new_messages} messages)")
    console.print(f"  Skipped: {counts[IngestStatus.SKIPPED]}")
    console.print(f"  Failed: {counts[IngestStatus.FAILED]}")

    if counts[IngestStatus.FAILED]:
        raise typer.Exit(1)


@app.command("list")
def list_conversations(
    project: Optional[Path] = typer.Argument(
        None, help="Project directory (defaults to the current directory)"
    ),
) -> None:
    """List the conversations stored for a project."""
    from claude_story.artifacts import artifact_paths
    from claude_story.db.store import ConversationStore

    setup_logging(context="cli", level="WARNING")

    project_dir = (project or Path.cwd()).resolve()
    artifacts = artifact_paths(project_dir)
    if not artifacts.database_path.exists():
        console.print(f"[yellow]No conversation history in {project_dir}[/yellow]")
        raise typer.Exit(0)

    store = ConversationStore(artifacts.database_path)
    conversations = store.list_conversations()

    table = Table(title=f"Conversations in {project_dir.name}")
    table.add_column("Title", style="cyan")
    table.add_column("Started (UTC)")
    table.add_column("Updated (UTC)")
    table.add_column("Active", justify="center")
    table.add_column("Export")

    for conversation in conversations:
        table.add_row(
            conversation.title,
            conversation.created_at.strftime("%Y-%m-%d %H:%M"),
            conversation.updated_at.strftime("%Y-%m-%d %H:%M"),
            "●" if conversation.is_active else "",
            Path(conversation.export_path).name if conversation.export_path else "-",
        )

    console.print(table)
    console.print(
        f"{store.count_conversations()} conversation(s), "
        f"{store.count_messages()} message(s)"
    )


@app.command(hidden=True)
def daemon() -> None:
    """Run the watcher in the foreground (entry point of the detached daemon)."""
    from claude_story.daemon import run_daemon

    setup_logging(context="daemon")
    raise typer.Exit(run_daemon())


if __name__ == "__main__":
    app()
