"""Terminal output for authloop.

Data and diagnostics never share a stream. The token and profile listings
are the only things written to stdout, so ``TOKEN=$(authloop login --plain)``
captures exactly one line. Everything a human reads while the login is in
progress (the URL to open, the port that was bound, warnings, errors) goes
to stderr.

Rendering depends on the resolved :class:`OutputFormat`:

* ``RICH`` -- tables and highlighted JSON, used when stdout is a terminal.
* ``PLAIN`` -- tab-separated text, used when stdout is piped.
* ``JSON`` -- machine-readable records on stdout.

Colour is disabled by ``--no-color``, ``NO_COLOR`` (any value), or
``TERM=dumb``.

Commands normally go through the module-level helpers (:func:`info`,
:func:`error`, :func:`format_record`, ...) which delegate to the
:class:`OutputManager` installed by :func:`~authloop.app.main_callback`.
"""

from __future__ import annotations

import json
import os
import sys
from enum import Enum
from typing import Any, NamedTuple, Optional

from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table


class OutputFormat(str, Enum):
    """Output formats accepted by the global ``--json``/``--plain`` flags.

    ``AUTO`` becomes ``RICH`` on an interactive, colour-capable stdout and
    ``PLAIN`` everywhere else.
    """

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


class _Level(NamedTuple):
    prefix: str
    markup: str
    quietable: bool


# How each stderr diagnostic is decorated. ``{}`` in *markup* is the message.
_LEVELS: dict[str, _Level] = {
    "info": _Level("", "{}", True),
    "success": _Level("", "[green]{}[/green]", True),
    "suggest": _Level("→ ", "[dim]→ {}[/dim]", True),
    "warning": _Level("Warning: ", "[yellow]Warning:[/yellow] {}", False),
    "error": _Level("Error: ", "[bold red]Error:[/bold red] {}", False),
    "debug": _Level("[debug] ", "[dim]\\[debug] {}[/dim]", False),
}


class OutputManager:
    """Routes data to stdout and diagnostics to stderr.

    Args:
        format: Requested format; ``AUTO`` is resolved at construction.
        no_color: Strip colour and Rich markup from everything.
        quiet: Drop info, success and suggestion messages. Warnings and
            errors are always shown.
        verbose: Show debug messages.

    Example::

        out = OutputManager(format=OutputFormat.PLAIN, quiet=True)
        out.format_record(token.model_dump(), primary="access_token")
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet
        self._verbose = verbose
        self._format = _resolve_format(format, self._no_color)

        rich = self._format == OutputFormat.RICH
        self._stdout = Console(file=sys.stdout, no_color=self._no_color, force_terminal=rich)
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    # stdout

    def print_data(self, text: str) -> None:
        """Write one line of data to stdout, unformatted."""
        sys.stdout.write(text + "\n")
        sys.stdout.flush()

    def format_record(self, data: dict[str, Any], primary: Optional[str] = None) -> None:
        """Write a flat record such as a token response.

        ``None`` values are dropped. In plain mode only ``data[primary]`` is
        written when *primary* is present, otherwise one ``key<TAB>value``
        line per field. JSON mode writes the whole record; Rich mode
        highlights it.
        """
        record = {key: value for key, value in data.items() if value is not None}

        if self._format == OutputFormat.PLAIN:
            if primary in record:
                self.print_data(str(record[primary]))
                return
            for key, value in record.items():
                self.print_data(f"{key}\t{value}")
            return

        rendered = json.dumps(record, indent=2, ensure_ascii=False, default=str)
        if self._format == OutputFormat.JSON:
            self.print_data(rendered)
        else:
            self._stdout.print(Syntax(rendered, "json", theme="monokai", word_wrap=True))

    def print_table(
        self,
        headers: list[str],
        rows: list[list[str]],
        title: Optional[str] = None,
    ) -> None:
        """Write rows under *headers*; *title* is only shown in Rich mode."""
        if self._format == OutputFormat.JSON:
            rendered = json.dumps([dict(zip(headers, row)) for row in rows], indent=2, ensure_ascii=False)
            self.print_data(rendered)
            return
        if self._format == OutputFormat.PLAIN:
            for line in [headers, *rows]:
                self.print_data("\t".join(line))
            return

        table = Table(*headers, title=title, header_style="bold cyan")
        for row in rows:
            table.add_row(*row)
        self._stdout.print(table)

    # stderr

    def _emit(self, level: str, message: str) -> None:
        spec = _LEVELS[level]
        if spec.quietable and self._quiet:
            return
        if level == "debug" and not self._verbose:
            return
        if self._no_color:
            sys.stderr.write(f"{spec.prefix}{message}\n")
            sys.stderr.flush()
        else:
            self._stderr.print(spec.markup.format(message))

    def info(self, message: str) -> None:
        self._emit("info", message)

    def success(self, message: str) -> None:
        self._emit("success", message)

    def suggest(self, message: str) -> None:
        """Hint at the next command to run, e.g. after a failure."""
        self._emit("suggest", message)

    def warning(self, message: str) -> None:
        self._emit("warning", message)

    def error(self, message: str) -> None:
        self._emit("error", message)

    def debug(self, message: str) -> None:
        self._emit("debug", message)


def _is_tty() -> bool:
    isatty = getattr(sys.stdout, "isatty", None)
    return bool(isatty and isatty())


def _should_disable_color() -> bool:
    """True when ``NO_COLOR`` is set to anything or ``TERM`` is ``dumb``."""
    return "NO_COLOR" in os.environ or os.environ.get("TERM") == "dumb"


def _resolve_format(requested: OutputFormat, no_color: bool) -> OutputFormat:
    if requested != OutputFormat.AUTO:
        return requested
    if _is_tty() and not no_color:
        return OutputFormat.RICH
    return OutputFormat.PLAIN


_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the installed :class:`OutputManager`, building a default one if needed."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    """Forget the installed manager so the next :func:`get_output` starts fresh."""
    global _output
    _output = None


def format_record(data: dict[str, Any], primary: Optional[str] = None) -> None:
    get_output().format_record(data, primary)


def print_data(text: str) -> None:
    get_output().print_data(text)


def print_table(headers: list[str], rows: list[list[str]], title: Optional[str] = None) -> None:
    get_output().print_table(headers, rows, title)


def info(message: str) -> None:
    get_output().info(message)


def success(message: str) -> None:
    get_output().success(message)


def suggest(message: str) -> None:
    get_output().suggest(message)


def warning(message: str) -> None:
    get_output().warning(message)


def error(message: str) -> None:
    get_output().error(message)


def debug(message: str) -> None:
    get_output().debug(message)
