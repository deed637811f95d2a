from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.style import Style
from rich.table import Table


@dataclass(frozen=True, slots=True)
class SpecCliTheme:
    h1: str = "#7C3AED"
    h2: str = "#00FFFF"
    header: str = "bold #4ADE80"
    null: str = "dim"


class CliHeadings:
    def __init__(
        self, *, console: Console | None = None, theme: SpecCliTheme | None = None
    ):
        self.console = console or Console()
        self.theme = theme or SpecCliTheme()

    def h1(self, text: str) -> None:
        self.console.rule(
            f"[bold]{text}[/bold]",
            style=Style(color=self.theme.h1, bold=True),
            characters="=",
        )

    def h2(self, text: str) -> None:
        self.console.rule(text, style=Style(color=self.theme.h2), characters="─")


def _format_cell(value: Any, theme: SpecCliTheme) -> str:
    if value is None:
        return f"[{theme.null}]null[/{theme.null}]"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    return escape(str(value))


def build_records_table(
    records: Sequence[Mapping[str, Any]],
    *,
    theme: SpecCliTheme | None = None,
    title: str | None = None,
) -> Table:
    """Render dynamic records as a table; columns are the union of keys in order."""
    theme = theme or SpecCliTheme()
    l_columns = list(dict.fromkeys(_key for _record in records for _key in _record))
    table = Table(title=title, header_style=theme.header, show_lines=False)
    for _column in l_columns:
        table.add_column(_column, overflow="fold")
    for _record in records:
        table.add_row(*(_format_cell(_record.get(_c), theme) for _c in l_columns))
    return table
