"""Typer application factory and CLI entry point for authloop.

This module wires together the top-level Typer application and registers
the built-in sub-commands (``login``, ``profile``).

:func:`main` is the ``authloop`` console script. It makes SIGTERM behave
like Ctrl-C and writes a crash log under the data directory for any
exception that is not an :class:`~authloop.exceptions.AuthloopError`.

See Also:
    :mod:`authloop.config`: Profile resolution and server settings.
    :mod:`authloop.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

import typer

from authloop import __version__
from authloop.exit_codes import EXIT_CANCELLED, EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="authloop",
    help="Obtain OAuth 2.0 tokens through the browser with a local redirect server.",
    no_args_is_help=True,
    add_completion=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    """Eager ``--version`` handler."""
    if value:
        typer.echo(f"authloop {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    profile: Optional[str] = typer.Option(
        None, "--profile", "-p", help="Profile name to use."
    ),
    json_output: bool = typer.Option(
        False, "--json", help="JSON output format."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Plain text output."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
) -> None:
    """Obtain OAuth 2.0 tokens by sending the user through a browser login.

    Global flags apply to every sub-command: they pick the output format
    and the stored profile (also taken from ``AUTHLOOP_PROFILE``).
    ``--verbose`` additionally routes the server and flow loggers to
    stderr at DEBUG level.
    """
    from authloop.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            stream=sys.stderr,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    ctx.ensure_object(dict)
    ctx.obj["profile"] = profile
    ctx.obj["verbose"] = verbose


def _setup_signal_handlers() -> None:
    """Turn SIGTERM into ``KeyboardInterrupt``.

    Ctrl-C already raises ``KeyboardInterrupt`` in the main thread, which
    the local server treats as a cancellation and closes its listener
    before the process exits. SIGTERM gets the same treatment.
    """

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Dump the traceback of *exc* under ``<data dir>/logs`` and return the path."""
    from authloop.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(
        "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    )
    return str(log_path)


def _register_commands() -> None:
    from authloop.commands.login import login_command
    from authloop.commands.profile import profile_app

    if any(info.name == "login" for info in app.registered_commands):
        return
    app.command("login")(login_command)
    app.add_typer(profile_app, name="profile", help="Manage saved OAuth profiles.")


def main() -> None:
    """Console-script entry point.

    Ctrl-C and SIGTERM exit with :data:`~authloop.exit_codes.EXIT_CANCELLED`.
    An :class:`~authloop.exceptions.AuthloopError` that escapes a command
    exits with its own ``exit_code``. Anything else is a bug: the traceback
    goes to a crash log and the exit code is
    :data:`~authloop.exit_codes.EXIT_GENERIC_FAILURE`.
    """
    _setup_signal_handlers()
    try:
        _register_commands()
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)
    except Exception as exc:
        from authloop.exceptions import AuthloopError
        from authloop.output import error

        if isinstance(exc, AuthloopError):
            error(str(exc))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
