"""Config commands -- view and modify global settings.

Provides the ``iz config`` sub-command group. Only the global keys
(``timeout``, ``verbose``, ``output-format``, ``color``) are managed here;
profile-scoped settings such as ``base-url`` or ``tenant`` are rejected
with a pointer to ``iz profiles set``.
"""

from __future__ import annotations

import typer

from izcli.commands import config_store, get_paths, is_forced, reporting_errors
from izcli.output import error, info, print_data, print_table, success, suggest


config_app = typer.Typer(no_args_is_help=True)

_PROFILE_ROWS = (
    ("base-url", "base_url"),
    ("tenant", "tenant"),
    ("project", "project"),
    ("context", "context"),
    ("session", "session"),
    ("username", "username"),
    ("personal-access-token-username", "personal_access_token_username"),
    ("personal-access-token", "personal_access_token"),
)


@config_app.command("init")
def config_init(
    ctx: typer.Context,
    defaults: bool = typer.Option(
        False, "--defaults", help="Write only the default values, without examples."
    ),
) -> None:
    """Create the configuration file.

    The file is created with ``0600`` permissions next to a
    ``.gitignore`` that keeps it out of version control.

    Example::

        iz config init
        iz config init --defaults
    """
    store = config_store(ctx)
    with reporting_errors():
        path = store.init(defaults=defaults)
    success(f"✓ Configuration file created at: {path}")
    info("\nNext steps:")
    info("  1. Run 'iz login <url> <username>' to create a profile")
    info("  2. Or use environment variables (IZ_BASE_URL, IZ_TENANT, ...)")
    info("  3. Or use command-line flags (--url, --tenant, ...)")
    info("\nFile permissions are 0600. Tokens are stored in plaintext; never commit this file.")


@config_app.command("path")
def config_path(ctx: typer.Context) -> None:
    """Show where the configuration and session files live."""
    paths = get_paths(ctx)
    store = config_store(ctx)
    print_data(f"Config file: {paths.config_path()}")
    print_data(f"Config directory: {paths.config_dir()}")
    print_data(f"Sessions file: {paths.sessions_path()}")
    if store.exists():
        print_data("Status: exists")
    else:
        print_data("Status: not created (run 'iz config init' to create)")


@config_app.command("set")
def config_set(
    ctx: typer.Context,
    key: str = typer.Argument(help="Global key: timeout, verbose, output-format or color."),
    value: str = typer.Argument(help="Value to set."),
) -> None:
    """Set a global configuration value.

    Example::

        iz config set timeout 60
        iz config set output-format json
    """
    from izcli.config import GLOBAL_KEYS
    from izcli.exceptions import IzError

    store = config_store(ctx)
    try:
        coerced = store.set(key, value)
    except IzError as exc:
        error(str(exc))
        if str(exc).startswith("invalid config key"):
            suggest(f"Valid keys: {', '.join(GLOBAL_KEYS)}")
        raise typer.Exit(code=exc.exit_code) from None
    success(f"✓ Set {key} = {_display(coerced)}")


@config_app.command("get")
def config_get(
    ctx: typer.Context,
    key: str = typer.Argument(help="Global key to read."),
) -> None:
    """Show a global value and where it comes from (env, file or not set).

    Example::

        iz config get timeout
    """
    store = config_store(ctx)
    with reporting_errors():
        value = store.get(key)
    if value.source == "not set":
        print_data(f"{key}: (not set)")
        if value.default is not None:
            info(f"Default: {value.default}")
    else:
        print_data(f"{key}: {value.value} (source: {value.source})")


@config_app.command("unset")
def config_unset(
    ctx: typer.Context,
    key: str = typer.Argument(help="Global key to remove."),
) -> None:
    """Remove a global value from the config file.

    Environment variables and built-in defaults may still provide a value.
    """
    store = config_store(ctx)
    with reporting_errors():
        store.unset(key)
    success(f"✓ Removed {key} from config file")


@config_app.command("list")
def config_list(
    ctx: typer.Context,
    show_secrets: bool = typer.Option(
        False, "--show-secrets", help="Show tokens instead of <redacted>."
    ),
) -> None:
    """List global settings and the active profile's values with their sources."""
    from izcli.config import GLOBAL_KEYS, SENSITIVE_KEYS

    store = config_store(ctx)
    rows: list[list[str]] = []
    with reporting_errors():
        for key in GLOBAL_KEYS:
            value = store.get(key)
            if value.source == "not set" and value.default is not None:
                rows.append([key, value.default, "default"])
            else:
                rows.append([key, value.value or "(not set)", value.source])

        doc = store.load()
    active = doc.active_profile
    profile = doc.profiles.get(active) if active else None
    if profile is not None:
        rows.append(["active_profile", active, "file"])
        for key, attr in _PROFILE_ROWS:
            raw = getattr(profile, attr)
            if not raw:
                continue
            shown = "<redacted>" if key in SENSITIVE_KEYS and not show_secrets else str(raw)
            rows.append([key, shown, f"profile:{active}"])

    print_table(["KEY", "VALUE", "SOURCE"], rows)
    info("\nNote: client keys are profile-specific. Use 'iz profiles client-keys' to manage them.")


@config_app.command("validate")
def config_validate(ctx: typer.Context) -> None:
    """Check every global setting and report all problems at once.

    Exits non-zero when the file is missing or has errors.
    """
    from izcli.exceptions import ConfigValidationError

    store = config_store(ctx)
    if not store.exists():
        error("no configuration file found")
        suggest(f"Run 'iz config init' to create one at: {store.path}")
        raise typer.Exit(code=1)

    with reporting_errors():
        try:
            store.validate()
        except ConfigValidationError as exc:
            print_data(f"✗ Configuration has {len(exc.issues)} error(s):\n")
            for issue in exc.issues:
                print_data(f"  - {issue.field}: {issue.message}")
            raise typer.Exit(code=exc.exit_code) from None
    print_data("✓ Configuration is valid")


@config_app.command("reset")
def config_reset(ctx: typer.Context) -> None:
    """Delete the configuration file.

    Asks for confirmation unless ``--force`` is active. Run
    ``iz config init`` afterwards to start over.

    Example::

        iz config reset
        iz --force config reset
    """
    store = config_store(ctx)
    with reporting_errors():
        if not store.exists():
            from izcli.exceptions import ConfigError

            raise ConfigError("config file does not exist")

        if not is_forced(ctx):
            info(f"This will delete: {store.path}")
            if not typer.confirm("Are you sure?"):
                info("Cancelled.")
                raise typer.Exit()

        store.reset()
    success("✓ Configuration file deleted")
    suggest("Run 'iz config init' to create a new config file")


def _display(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
