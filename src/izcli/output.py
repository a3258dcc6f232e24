"""Output rendering with strict stdout/stderr discipline.

* **stdout** -- command results only (tables, JSON, values). This is what
  scripts pipe and parse.
* **stderr** -- every diagnostic: status lines, warnings, errors, hints
  and ``--verbose`` debug output.
* **Colour** -- ``color: auto`` enables Rich styling when the stream is a
  terminal; ``always`` forces it; ``never``, ``--no-color``, ``NO_COLOR``
  and ``TERM=dumb`` disable it.

:class:`OutputManager` holds the rendering preferences and is installed
once per invocation by :func:`izcli.app.main_callback` via
:func:`set_output`. The module-level helpers (:func:`info`,
:func:`error`, :func:`debug`, ...) delegate to it so that callers do not
pass the manager around. It carries presentation state only; resolved
configuration is always passed explicitly.
"""

from __future__ import annotations

import json
import os
import sys
from enum import Enum
from typing import Any, Optional

from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table


class OutputFormat(str, Enum):
    """Result formats selectable with ``--output`` / ``output-format``.

    ``TABLE`` renders a Rich table on a colour terminal and tab-separated
    text otherwise.
    """

    TABLE = "table"
    JSON = "json"


class ColorMode(str, Enum):
    """Values of the ``color`` setting."""

    AUTO = "auto"
    ALWAYS = "always"
    NEVER = "never"


class OutputManager:
    """Routes every piece of CLI output to the right stream and format.

    Args:
        format: Result format for stdout.
        color: Colour mode; ``AUTO`` follows TTY detection.
        verbose: Show :meth:`debug` messages on stderr.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.TABLE,
        color: ColorMode = ColorMode.AUTO,
        verbose: bool = False,
    ) -> None:
        self._format = OutputFormat(format)
        self._verbose = verbose

        color = ColorMode(color)
        if color == ColorMode.NEVER or _should_disable_color():
            self._color = False
        elif color == ColorMode.ALWAYS:
            self._color = True
        else:
            self._color = _is_tty()

        self._stdout = Console(
            file=sys.stdout,
            no_color=not self._color,
            force_terminal=True if color == ColorMode.ALWAYS and self._color else None,
        )
        self._stderr = Console(
            file=sys.stderr,
            no_color=not self._color,
            stderr=True,
        )

    @property
    def format(self) -> OutputFormat:
        """The result format."""
        return self._format

    @property
    def color(self) -> bool:
        """Whether Rich styling is active."""
        return self._color

    @property
    def is_verbose(self) -> bool:
        """Whether verbose mode is enabled."""
        return self._verbose

    # ------------------------------------------------------------------ #
    # Data output (stdout)
    # ------------------------------------------------------------------ #

    def format_response(self, data: Any) -> None:
        """Print a mapping, list or scalar result to stdout.

        JSON mode always emits indented JSON. Table mode prints ``key:
        value`` lines for mappings (highlighted JSON on a colour terminal
        for nested data) and one line per item for lists.
        """
        if self._format == OutputFormat.JSON:
            self.print_data(json.dumps(data, indent=2, ensure_ascii=False, default=str))
            return

        if isinstance(data, dict) and not any(isinstance(v, (dict, list)) for v in data.values()):
            for key, value in data.items():
                self.print_data(f"{key}: {_cell(value)}")
        elif isinstance(data, (dict, list)):
            text = json.dumps(data, indent=2, ensure_ascii=False, default=str)
            if self._color:
                self._stdout.print(Syntax(text, "json", theme="monokai", word_wrap=True))
            else:
                self.print_data(text)
        else:
            self.print_data(_cell(data))

    def print_data(self, text: str) -> None:
        """Print raw text to stdout."""
        print(text, file=sys.stdout, flush=True)

    def print_table(
        self,
        headers: list[str],
        rows: list[list[str]],
        title: Optional[str] = None,
    ) -> None:
        """Print tabular data to stdout.

        * **JSON** -- array of objects keyed by lower-cased header names.
        * **Table, colour** -- a Rich :class:`~rich.table.Table`.
        * **Table, plain** -- tab-separated values with a header line.

        Args:
            headers: Column header strings.
            rows: One list of cell strings per row.
            title: Optional table title (Rich only).
        """
        if self._format == OutputFormat.JSON:
            keys = [h.lower() for h in headers]
            records = [dict(zip(keys, row)) for row in rows]
            self.print_data(json.dumps(records, indent=2, ensure_ascii=False))
        elif self._color:
            table = Table(title=title, show_header=True, header_style="bold cyan")
            for h in headers:
                table.add_column(h)
            for row in rows:
                table.add_row(*row)
            self._stdout.print(table)
        else:
            self.print_data("\t".join(headers))
            for row in rows:
                self.print_data("\t".join(row))

    # ------------------------------------------------------------------ #
    # Diagnostics (stderr)
    # ------------------------------------------------------------------ #

    def info(self, message: str) -> None:
        """Print an informational message to stderr."""
        self._emit(message, None)

    def success(self, message: str) -> None:
        """Print a green success message to stderr."""
        self._emit(message, "green")

    def warning(self, message: str) -> None:
        """Print a warning to stderr."""
        if self._color:
            self._stderr.print(f"[yellow]Warning:[/yellow] {message}", highlight=False)
        else:
            print(f"Warning: {message}", file=sys.stderr, flush=True)

    def error(self, message: str) -> None:
        """Print an error to stderr. Never suppressed."""
        if self._color:
            self._stderr.print(f"[bold red]Error:[/bold red] {message}", highlight=False)
        else:
            print(f"Error: {message}", file=sys.stderr, flush=True)

    def suggest(self, message: str) -> None:
        """Print a dimmed next-step hint to stderr."""
        self._emit(f"→ {message}", "dim")

    def debug(self, message: str) -> None:
        """Print a debug message to stderr when ``--verbose`` is active."""
        if self._verbose:
            self._emit(f"[debug] {message}", "dim")

    def _emit(self, message: str, style: Optional[str]) -> None:
        if self._color:
            self._stderr.print(message, style=style, markup=False, highlight=False)
        else:
            print(message, file=sys.stderr, flush=True)


# ------------------------------------------------------------------ #
# Module-level helpers
# ------------------------------------------------------------------ #


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _is_tty() -> bool:
    """Check if stdout is a TTY."""
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _should_disable_color() -> bool:
    """True when ``NO_COLOR`` is set (any value) or ``TERM=dumb``."""
    if os.environ.get("NO_COLOR") is not None:
        return True
    return os.environ.get("TERM") == "dumb"


# ------------------------------------------------------------------ #
# Global output instance (set during app startup)
# ------------------------------------------------------------------ #

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the installed :class:`OutputManager`, creating a default one lazily."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    """Install *output* as the process-wide :class:`OutputManager`."""
    global _output
    _output = output


def reset_output() -> None:
    """Drop the installed manager. Used by the test suite between tests."""
    global _output
    _output = None


# ------------------------------------------------------------------ #
# Convenience functions that use the global instance
# ------------------------------------------------------------------ #


def format_response(data: Any) -> None:
    """Print a result to stdout via the global OutputManager."""
    get_output().format_response(data)


def print_data(text: str) -> None:
    """Print raw data to stdout via the global OutputManager."""
    get_output().print_data(text)


def print_table(
    headers: list[str],
    rows: list[list[str]],
    title: Optional[str] = None,
) -> None:
    """Print tabular data to stdout via the global OutputManager."""
    get_output().print_table(headers, rows, title)


def info(message: str) -> None:
    """Print info message to stderr via the global OutputManager."""
    get_output().info(message)


def error(message: str) -> None:
    """Print error to stderr via the global OutputManager."""
    get_output().error(message)


def success(message: str) -> None:
    """Print success message to stderr via the global OutputManager."""
    get_output().success(message)


def warning(message: str) -> None:
    """Print warning to stderr via the global OutputManager."""
    get_output().warning(message)


def suggest(message: str) -> None:
    """Print next-step suggestion to stderr via the global OutputManager."""
    get_output().suggest(message)


def debug(message: str) -> None:
    """Print debug message to stderr via the global OutputManager."""
    get_output().debug(message)
