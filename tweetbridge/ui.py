"""Rich console output for the CLI commands."""
from __future__ import annotations

from rich import box
from rich.console import Console
from rich.table import Table

from tweetbridge.state import BotState

console = Console()


def print_status(text: str, style: str = "green") -> None:
    """Print a status line with a colored bullet."""
    console.print(f"  [{style}]●[/{style}] {text}")


# ── State display ─────────────────────────────────────────────────────

def print_state(state: BotState, path: str) -> None:
    """Show the timeline cursor and the trust map."""
    console.print()
    console.print(f"[bold cyan]Bridge state[/bold cyan] [dim]{path}[/dim]")
    console.print()
    print_status(f"Timeline cursor: {state.last_post or 'none'}")

    if not state.trusted:
        print_status("Trust map is empty: every user may run commands", style="yellow")
        console.print()
        return

    table = Table(box=box.SIMPLE, padding=(0, 2))
    table.add_column("User ID", style="bold white")
    table.add_column("Trusted", width=8)
    for uid, flag in sorted(state.trusted.items()):
        table.add_row(uid, "[bold green]yes[/bold green]" if flag else "[bold red]no[/bold red]")
    console.print(table)
