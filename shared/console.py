"""
Lancet Console Interface
=========================

Rich-powered console abstraction providing the presentation layer for the
Lancet command-line tools.

The class wraps :class:`rich.console.Console` and adds convenience methods
for section headers, status-coloured messages and tables, all with
consistent styling.

References:
    - Rich library: https://github.com/Textualize/rich
"""

from __future__ import annotations

from typing import Any, Sequence

from rich.console import Console
from rich.table import Table
from rich.theme import Theme

# ---------------------------------------------------------------------------
# Theme -- consistent palette across all Lancet output
# ---------------------------------------------------------------------------
_LANCET_THEME = Theme(
    {
        "lancet.section": "bold bright_magenta",
        "lancet.warning": "bold yellow",
        "lancet.error": "bold red",
        "lancet.dim": "dim white",
        "lancet.address": "bright_cyan",
        "lancet.mnemonic": "bold bright_white",
        "lancet.call": "bold bright_magenta",
        "lancet.jump": "bold yellow",
        "lancet.conditional": "bold bright_green",
    }
)


class LancetConsole:
    """Unified console interface for Lancet tools.

    Usage::

        con = LancetConsole()
        con.section("Memory Map")
        con.error("Cannot decode start address")
    """

    # ------------------------------------------------------------------ #
    #  Construction
    # ------------------------------------------------------------------ #

    def __init__(self, *, quiet: bool = False) -> None:
        """Initialise the console.

        Args:
            quiet:  Suppress all output (useful in library / test mode).
        """
        self._console = Console(
            theme=_LANCET_THEME,
            quiet=quiet,
            highlight=False,
        )

    @property
    def rich(self) -> Console:
        """Direct access to the underlying Rich Console instance."""
        return self._console

    # ------------------------------------------------------------------ #
    #  Section header
    # ------------------------------------------------------------------ #

    def section(self, title: str) -> None:
        """Print a prominent section header."""
        self._console.rule(
            f"  {title}  ",
            style="lancet.section",
            characters="─",
        )
        self._console.print()

    # ------------------------------------------------------------------ #
    #  Message helpers
    # ------------------------------------------------------------------ #

    def warning(self, message: str) -> None:
        self._console.print(
            f"[lancet.warning][⚠] WARNING:[/lancet.warning] {message}"
        )

    def error(self, message: str) -> None:
        self._console.print(
            f"[lancet.error][✘] ERROR:[/lancet.error] {message}"
        )

    # ------------------------------------------------------------------ #
    #  Table display
    # ------------------------------------------------------------------ #

    def table(
        self,
        title: str,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
        *,
        caption: str | None = None,
        styles: Sequence[str] | None = None,
    ) -> None:
        """Render a styled Rich table.

        Args:
            title:    Table title.
            columns:  Column header labels.
            rows:     Iterable of row tuples; each element is stringified.
            caption:  Optional footer caption.
            styles:   Optional per-column Rich style strings.
        """
        tbl = Table(
            title=title,
            caption=caption,
            border_style="bright_cyan",
            header_style="bold bright_magenta",
            show_lines=False,
            padding=(0, 1),
        )
        for idx, col_name in enumerate(columns):
            style = styles[idx] if styles and idx < len(styles) else ""
            tbl.add_column(col_name, style=style)

        for row in rows:
            tbl.add_row(*(str(cell) for cell in row))

        self._console.print(tbl)

    # ------------------------------------------------------------------ #
    #  Utility
    # ------------------------------------------------------------------ #

    def print(self, *args: Any, **kwargs: Any) -> None:
        """Proxy to :meth:`rich.console.Console.print`."""
        self._console.print(*args, **kwargs)

    def blank(self, count: int = 1) -> None:
        """Print *count* blank lines."""
        for _ in range(count):
            self._console.print()
