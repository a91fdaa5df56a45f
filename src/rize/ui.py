"""User-facing status lines (distinct from diagnostic logging)."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape

console = Console(highlight=False)
err_console = Console(stderr=True, highlight=False)


def success(message: str) -> None:
    console.print(f"[green]✓[/green] {escape(message)}")


def info(message: str) -> None:
    console.print(f"[blue]→[/blue] {escape(message)}")


def warning(message: str) -> None:
    console.print(f"[yellow]![/yellow] {escape(message)}")


def error(message: str) -> None:
    err_console.print(f"[red]✗[/red] {escape(message)}")
