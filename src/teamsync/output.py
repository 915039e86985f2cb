from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.text import Text

console = Console(soft_wrap=True)
# Errors stay visible with --quiet.
err_console = Console(stderr=True, soft_wrap=True)


def set_quiet(quiet: bool) -> None:
    console.quiet = quiet


def warn(message: str) -> None:
    console.print(f"[yellow]warning:[/yellow] {escape(message)}")


def error(message: str) -> None:
    err_console.print(f"[red]error:[/red] {escape(message)}")


def print_header(version: str, mode: str | None = None) -> None:
    title = Text()
    title.append("teamsync", style="bold magenta")
    title.append(f" v{version}", style="dim")
    if mode:
        title.append(f"  [{mode}]", style="bold yellow")

    console.print()
    console.print(title)
    console.print()


def print_status(subject: str, status: str, detail: str) -> None:
    """One line of apply progress: ok / would / skip / fail."""
    subject = escape(subject)
    detail = escape(detail)
    if status == "ok":
        console.print(f"  [green]✓[/green] {subject:<40} [dim]{detail}[/dim]")
    elif status == "would":
        console.print(f"  [blue]○[/blue] {subject:<40} [dim]{detail}[/dim]")
    elif status == "skip":
        console.print(f"  [dim]·[/dim] {subject:<40} [dim]{detail}[/dim]")
    else:
        err_console.print(f"  [red]✗[/red] {subject:<40} [red]{detail}[/red]")


def print_separator() -> None:
    console.print("  " + "─" * 50, style="dim")
    console.print()
