"""Typer application and CLI entry point for ``iz``.

This module wires the root Typer application: the global flags shared by
every command, the built-in sub-commands (``login``, ``logout``,
``config``, ``profiles``, ``sessions``) and the :func:`main` console-script
entry point declared in ``pyproject.toml``.

The root callback leaves three things in ``ctx.obj`` for sub-commands:

* ``paths`` -- the :class:`~izcli.paths.PathProvider` (tests inject one
  rooted in a temporary directory via ``CliRunner.invoke(obj=...)``);
* ``flags`` -- the global :class:`~izcli.resolver.CliFlags`;
* ``force`` -- skip confirmations.

See Also:
    :mod:`izcli.resolver`: How flags are merged with env, profile and session.
    :mod:`izcli.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

import typer

from izcli import __version__
from izcli.commands.config import config_app
from izcli.commands.login import login_command, logout_command
from izcli.commands.profiles import profiles_app
from izcli.commands.sessions import sessions_app
from izcli.exit_codes import EXIT_GENERIC_FAILURE, EXIT_INVALID_USAGE


app = typer.Typer(
    name="iz",
    help="Command-line administration client for Izanami.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

app.command("login")(login_command)
app.command("logout")(logout_command)
app.add_typer(config_app, name="config", help="Manage global configuration.")
app.add_typer(profiles_app, name="profiles", help="Manage connection profiles.")
app.add_typer(sessions_app, name="sessions", help="Manage stored login sessions.")


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"iz {__version__}")
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
    url: Optional[str] = typer.Option(None, "--url", help="Izanami server URL."),
    tenant: Optional[str] = typer.Option(None, "--tenant", help="Tenant name."),
    project: Optional[str] = typer.Option(None, "--project", help="Project name."),
    context: Optional[str] = typer.Option(None, "--context", help="Context path."),
    jwt_token: Optional[str] = typer.Option(
        None, "--jwt-token", help="Admin JWT (overrides the session token)."
    ),
    personal_access_token: Optional[str] = typer.Option(
        None, "--personal-access-token", help="Personal access token."
    ),
    personal_access_token_username: Optional[str] = typer.Option(
        None, "--personal-access-token-username", help="Username owning the token."
    ),
    client_id: Optional[str] = typer.Option(None, "--client-id", help="Client ID."),
    client_secret: Optional[str] = typer.Option(None, "--client-secret", help="Client secret."),
    profile: Optional[str] = typer.Option(None, "--profile", help="Profile name to use."),
    output_format: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output format: table or json."
    ),
    timeout: Optional[int] = typer.Option(None, "--timeout", help="Request timeout in seconds."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmations."),
) -> None:
    """Root callback executed before every sub-command.

    Collects the global flags into a :class:`~izcli.resolver.CliFlags`,
    installs the :class:`~izcli.output.OutputManager` for this
    invocation, and stores shared state in ``ctx.obj``.

    Output settings follow the usual precedence (flag, env, config file,
    default). A config that cannot be read at this point falls back to
    the built-in defaults; the command itself reports the problem.
    """
    from izcli.exceptions import IzError
    from izcli.models import COLOR_MODES, OUTPUT_FORMATS
    from izcli.output import OutputManager, debug, error, set_output
    from izcli.paths import default_paths
    from izcli.resolver import CliFlags

    if output_format is not None and output_format not in OUTPUT_FORMATS:
        set_output(OutputManager(verbose=verbose))
        error("Output format must be 'table' or 'json'")
        raise typer.Exit(code=EXIT_INVALID_USAGE)

    flags = CliFlags(
        url=url,
        tenant=tenant,
        project=project,
        context=context,
        jwt_token=jwt_token,
        personal_access_token=personal_access_token,
        personal_access_token_username=personal_access_token_username,
        client_id=client_id,
        client_secret=client_secret,
        profile=profile,
        output_format=output_format,
        timeout=timeout,
        verbose=verbose or None,
        no_color=no_color,
    )

    ctx.ensure_object(dict)
    ctx.obj.setdefault("paths", default_paths())
    ctx.obj["flags"] = flags
    ctx.obj["force"] = force

    fmt = output_format or "table"
    color = "never" if no_color else "auto"
    is_verbose = verbose
    problem: Optional[str] = None
    try:
        from izcli.config import ConfigStore
        from izcli.resolver import resolve
        from izcli.sessions import SessionStore

        paths = ctx.obj["paths"]
        resolved = resolve(flags, ConfigStore(paths), SessionStore(paths))
    except IzError as exc:
        problem = str(exc)
    else:
        fmt, is_verbose = resolved.output_format, resolved.verbose
        color = resolved.color if resolved.color in COLOR_MODES else "auto"
        if fmt not in OUTPUT_FORMATS:
            fmt = "table"

    set_output(OutputManager(format=fmt, color=color, verbose=is_verbose))
    if problem is not None:
        debug(f"Using default output settings: {problem}")


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write the current traceback under the data directory and return its path."""
    from izcli.paths import get_data_dir

    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = get_data_dir() / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``iz`` console script.

    Unhandled :class:`~izcli.exceptions.IzError` instances print their
    message and exit with the error's ``exit_code``. All other exceptions
    produce a crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from izcli.exceptions import IzError
        from izcli.output import error

        if isinstance(exc, IzError):
            error(str(exc))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
