"""Console output for the pyargon CLI."""

import json
from typing import Any, Optional

from rich.console import Console
from rich.table import Table

from .utils import format_size


class OutputFormatter:
    """Formats CLI output as rich text or JSON.

    Status messages go to stderr so that ``--json`` output on stdout stays
    machine readable.
    """

    def __init__(self, json_output: bool = False, quiet: bool = False):
        self.json_output = json_output
        self.quiet = quiet
        self.console = Console()
        self.err_console = Console(stderr=True)

    def info(self, message: str) -> None:
        if not self.quiet and not self.json_output:
            self.err_console.print(message)

    def success(self, message: str) -> None:
        if not self.quiet and not self.json_output:
            self.err_console.print(f"[green]✓[/green] {message}")

    def warning(self, message: str) -> None:
        if not self.quiet:
            self.err_console.print(f"[yellow]Warning:[/yellow] {message}")

    def error(self, message: str) -> None:
        self.err_console.print(f"[red]Error:[/red] {message}")

    def output_json(self, data: Any) -> None:
        self.console.print_json(json.dumps(data, ensure_ascii=False))

    def output_table(
        self,
        rows: list[dict[str, Any]],
        columns: list[str],
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        """Print rows as a table, or as a JSON array in JSON mode."""
        if self.json_output:
            self.output_json(rows)
            return

        headers = headers or {}
        table = Table(show_header=True, header_style="bold")
        for column in columns:
            table.add_column(headers.get(column, column))
        for row in rows:
            table.add_row(*(str(row.get(column, "")) for column in columns))
        self.console.print(table)

    def print_summary(self, title: str, items: list[tuple[str, str]]) -> None:
        if self.json_output:
            self.output_json({key: value for key, value in items})
            return
        if self.quiet:
            return

        table = Table(title=title, show_header=False, box=None)
        table.add_column(style="bold cyan")
        table.add_column()
        for key, value in items:
            table.add_row(key, value)
        self.console.print(table)

    def format_size(self, size_bytes: int) -> str:
        return format_size(size_bytes)
