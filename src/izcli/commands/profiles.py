"""Profile commands -- manage named connection profiles.

Provides the ``iz profiles`` sub-command group. A profile bundles a server
URL (or a session reference), tenant, project, context and credentials;
``iz login`` creates and links profiles automatically, these commands
cover everything else.

Typical workflow::

    iz profiles add sandbox --url http://localhost:9000 --tenant demo
    iz profiles use sandbox
    iz profiles set project billing
    iz profiles client-keys add --tenant demo --client-id k --client-secret s
"""

from __future__ import annotations

from typing import List, Optional

import typer

from izcli.commands import config_store, is_forced, reporting_errors, session_store
from izcli.config import ConfigStore
from izcli.models import Profile
from izcli.output import format_response, info, print_data, print_table, success, suggest, warning


profiles_app = typer.Typer(no_args_is_help=True)
client_keys_app = typer.Typer(no_args_is_help=True)
profiles_app.add_typer(
    client_keys_app, name="client-keys", help="Manage client credentials of the active profile."
)

SETTABLE_KEYS = {
    "base-url": "base_url",
    "tenant": "tenant",
    "project": "project",
    "context": "context",
    "session": "session",
    "username": "username",
    "personal-access-token": "personal_access_token",
    "personal-access-token-username": "personal_access_token_username",
    "insecure-skip-verify": "insecure_skip_verify",
}
"""``iz profiles set`` keys mapped to :class:`~izcli.models.Profile` attributes."""

_KEY_ALIASES = {"leader-url": "base-url"}
_SECRET_KEYS = frozenset({"personal-access-token"})
_PLAINTEXT_NOTICE = (
    "Credentials are stored in plaintext in the config file (mode 0600). "
    "Never commit config.yaml to version control."
)


def _require_active(store: ConfigStore) -> str:
    from izcli.exceptions import ResolutionError

    name = store.get_active_profile_name()
    if not name or not store.has_profile(name):
        raise ResolutionError(
            "no active profile. Use 'iz profiles use <name>' to select a profile first"
        )
    return name


def _settable_key(key: str) -> str:
    from izcli.exceptions import InvalidUsageError

    key = _KEY_ALIASES.get(key, key)
    if key not in SETTABLE_KEYS:
        raise InvalidUsageError(
            f"invalid key '{key}'. Valid keys: {', '.join(sorted(SETTABLE_KEYS))}"
        )
    return key


def _profile_view(
    name: str, profile: Profile, effective_url: Optional[str], show_secrets: bool
) -> dict[str, object]:
    def secret(value: Optional[str]) -> Optional[str]:
        if value and not show_secrets:
            return "<redacted>"
        return value

    view: dict[str, object] = {
        "name": name,
        "url": effective_url,
        "session": profile.session,
        "username": profile.username,
        "tenant": profile.tenant,
        "project": profile.project,
        "context": profile.context,
        "personal-access-token-username": profile.personal_access_token_username,
        "personal-access-token": secret(profile.personal_access_token),
        "insecure-skip-verify": profile.insecure_skip_verify,
    }
    view = {k: v for k, v in view.items() if v is not None}
    if profile.client_keys:
        view["client-keys"] = {
            tenant: {
                "client-id": keys.client_id,
                "client-secret": secret(keys.client_secret),
                "projects": {
                    project: {
                        "client-id": pk.client_id,
                        "client-secret": secret(pk.client_secret),
                    }
                    for project, pk in keys.projects.items()
                },
            }
            for tenant, keys in profile.client_keys.items()
        }
    return view


# --- Listing ---


@profiles_app.command("list")
def profiles_list(ctx: typer.Context) -> None:
    """List all profiles; ``*`` marks the active one."""
    store = config_store(ctx)
    with reporting_errors():
        profiles = store.list_profiles()
        active = store.get_active_profile_name()
        sessions = session_store(ctx).load()

    if not profiles:
        info("No profiles configured")
        suggest("Create one with 'iz login <url> <username>' or 'iz profiles add <name>'")
        return

    rows = []
    for name, profile in profiles.items():
        rows.append(
            [
                "*" if name == active else "",
                name,
                store.effective_url(profile, sessions) or "",
                profile.tenant or "",
                profile.project or "",
                profile.session or "",
            ]
        )
    print_table(["ACTIVE", "NAME", "URL", "TENANT", "PROJECT", "SESSION"], rows)
    if active:
        info(f"\nActive profile: {active}")
    else:
        info("\nNo active profile set")
        suggest("Switch to a profile with: iz profiles use <name>")


@profiles_app.command("current")
def profiles_current(
    ctx: typer.Context,
    show_secrets: bool = typer.Option(False, "--show-secrets", help="Show secret values."),
) -> None:
    """Show the active profile."""
    store = config_store(ctx)
    with reporting_errors():
        name = store.get_active_profile_name()
        if not name:
            info("No active profile set")
            suggest("Set a profile with: iz profiles use <name>")
            return
        profile = store.get_profile(name)
        url = store.effective_url(profile, session_store(ctx).load())
    format_response(_profile_view(name, profile, url, show_secrets))


@profiles_app.command("show")
def profiles_show(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Profile name (default: the active one)."),
    show_secrets: bool = typer.Option(False, "--show-secrets", help="Show secret values."),
) -> None:
    """Show a profile's settings, secrets redacted unless ``--show-secrets``."""
    store = config_store(ctx)
    with reporting_errors():
        if name is None:
            name = _require_active(store)
        profile = store.get_profile(name)
        url = store.effective_url(profile, session_store(ctx).load())
    format_response(_profile_view(name, profile, url, show_secrets))


# --- Mutation ---


@profiles_app.command("use")
def profiles_use(
    ctx: typer.Context,
    name: str = typer.Argument(help="Profile to activate."),
) -> None:
    """Switch the active profile."""
    store = config_store(ctx)
    with reporting_errors():
        store.set_active_profile(name)
        profile = store.get_profile(name)
    success(f"✓ Switched to profile '{name}'")
    if profile.session:
        info(f"  Session: {profile.session}")
    if profile.base_url:
        info(f"  URL:     {profile.base_url}")
    if profile.tenant:
        info(f"  Tenant:  {profile.tenant}")


@profiles_app.command("add")
def profiles_add(
    ctx: typer.Context,
    name: str = typer.Argument(help="Name of the new profile."),
    url: Optional[str] = typer.Option(None, "--url", help="Izanami server URL."),
    tenant: Optional[str] = typer.Option(None, "--tenant", help="Default tenant."),
    project: Optional[str] = typer.Option(None, "--project", help="Default project."),
    context: Optional[str] = typer.Option(None, "--context", help="Default context."),
    client_id: Optional[str] = typer.Option(None, "--client-id", help="Client ID for --tenant."),
    client_secret: Optional[str] = typer.Option(
        None, "--client-secret", help="Client secret for --tenant."
    ),
) -> None:
    """Create a profile.

    The first profile created becomes the active one. ``--client-id`` and
    ``--client-secret`` are stored as the tenant-wide client keys of
    ``--tenant``.

    Example::

        iz profiles add sandbox --url http://localhost:9000 --tenant demo
    """
    from izcli.exceptions import InvalidUsageError
    from izcli.models import TenantClientKeys

    store = config_store(ctx)
    with reporting_errors():
        if store.has_profile(name):
            raise InvalidUsageError(f"profile '{name}' already exists")
        if not url:
            raise InvalidUsageError("--url is required")
        if (client_id or client_secret) and not tenant:
            raise InvalidUsageError("--tenant is required with --client-id/--client-secret")

        profile = Profile(base_url=url, tenant=tenant, project=project, context=context)
        if tenant and (client_id or client_secret):
            profile.client_keys[tenant] = TenantClientKeys(
                client_id=client_id, client_secret=client_secret
            )
        first = not store.list_profiles()
        store.add_profile(name, profile)
        if first:
            store.set_active_profile(name)

    success(f"✓ Profile '{name}' created")
    if first:
        info("✓ Set as active profile (first profile created)")
    else:
        suggest(f"Switch to this profile with: iz profiles use {name}")
    if client_secret:
        warning(_PLAINTEXT_NOTICE)


@profiles_app.command("set")
def profiles_set(
    ctx: typer.Context,
    key: str = typer.Argument(help="Profile key, e.g. tenant or base-url."),
    value: str = typer.Argument(help="Value to set."),
) -> None:
    """Set a value on the active profile.

    Example::

        iz profiles set tenant demo
        iz profiles set base-url https://izanami.example.com
    """
    from izcli.exceptions import InvalidUsageError

    store = config_store(ctx)
    with reporting_errors():
        key = _settable_key(key)
        name = _require_active(store)
        stored: object = value
        if key == "insecure-skip-verify":
            lowered = value.strip().lower()
            if lowered not in ("true", "false"):
                raise InvalidUsageError("insecure-skip-verify must be 'true' or 'false'")
            stored = lowered == "true"
        doc = store.load()
        setattr(doc.profiles[name], SETTABLE_KEYS[key], stored)
        store.save(doc)

    shown = "<redacted>" if key in _SECRET_KEYS else value
    success(f"✓ Updated {name}.{key} = {shown}")
    if key in _SECRET_KEYS:
        warning(_PLAINTEXT_NOTICE)


@profiles_app.command("unset")
def profiles_unset(
    ctx: typer.Context,
    key: str = typer.Argument(help="Profile key to remove."),
) -> None:
    """Remove a value from the active profile."""
    store = config_store(ctx)
    with reporting_errors():
        key = _settable_key(key)
        name = _require_active(store)
        doc = store.load()
        setattr(doc.profiles[name], SETTABLE_KEYS[key], None)
        store.save(doc)
    success(f"✓ Removed {key} from profile '{name}'")


@profiles_app.command("delete")
def profiles_delete(
    ctx: typer.Context,
    name: str = typer.Argument(help="Profile to delete."),
) -> None:
    """Delete a profile.

    Asks for confirmation unless ``--force`` is active. Deleting the active
    profile leaves no profile active. The linked session is kept.
    """
    store = config_store(ctx)
    with reporting_errors():
        store.get_profile(name)
        was_active = store.get_active_profile_name() == name
        if not is_forced(ctx):
            if was_active:
                warning(f"'{name}' is currently the active profile")
            if not typer.confirm(f"Delete profile '{name}'?"):
                info("Cancelled.")
                raise typer.Exit()
        store.delete_profile(name)

    success(f"✓ Profile '{name}' deleted")
    if was_active:
        info("No active profile set.")
        suggest("Switch to another profile with: iz profiles use <name>")


# --- Client keys ---


@client_keys_app.command("add")
def client_keys_add(
    ctx: typer.Context,
    tenant: str = typer.Option(..., "--tenant", help="Tenant the keys belong to."),
    projects: Optional[List[str]] = typer.Option(
        None, "--project", help="Scope the keys to a project (repeatable)."
    ),
    client_id: Optional[str] = typer.Option(None, "--client-id", help="Client ID."),
    client_secret: Optional[str] = typer.Option(None, "--client-secret", help="Client secret."),
) -> None:
    """Store client credentials in the active profile.

    Without ``--project`` the keys apply to the whole tenant; otherwise
    they are stored for each listed project. Missing values are prompted
    for. Existing keys are replaced after confirmation unless ``--force``.

    Example::

        iz profiles client-keys add --tenant demo
        iz profiles client-keys add --tenant demo --project billing --project web
    """
    from izcli.exceptions import InvalidUsageError
    from izcli.models import ProjectClientKeys, TenantClientKeys

    store = config_store(ctx)
    with reporting_errors():
        name = _require_active(store)
        info(f"Adding credentials to profile: {name}")
        if not client_id:
            client_id = typer.prompt("Client ID")
        if not client_secret:
            client_secret = typer.prompt("Client Secret", hide_input=True)
        if not client_id:
            raise InvalidUsageError("client ID cannot be empty")
        if not client_secret:
            raise InvalidUsageError("client secret cannot be empty")

        doc = store.load()
        profile = doc.profiles[name]
        tenant_keys = profile.client_keys.setdefault(tenant, TenantClientKeys())

        targets = list(projects or [])
        existing = (
            [p for p in targets if p in tenant_keys.projects]
            if targets
            else ([tenant] if tenant_keys.client_id else [])
        )
        if existing and not is_forced(ctx):
            label = ", ".join(f"{tenant}/{p}" for p in existing) if targets else tenant
            warning(f"Profile '{name}' already has credentials for '{label}'")
            if not typer.confirm("Overwrite existing credentials?"):
                info("Aborted.")
                raise typer.Exit()

        if targets:
            for project in targets:
                tenant_keys.projects[project] = ProjectClientKeys(
                    client_id=client_id, client_secret=client_secret
                )
        else:
            tenant_keys.client_id = client_id
            tenant_keys.client_secret = client_secret
        store.save(doc)

    if targets:
        success(
            f"✓ Client credentials saved to profile '{name}' for tenant '{tenant}', "
            f"projects: {', '.join(targets)}"
        )
    else:
        success(f"✓ Client credentials saved to profile '{name}' for tenant '{tenant}'")
    warning(_PLAINTEXT_NOTICE)


@client_keys_app.command("list")
def client_keys_list(ctx: typer.Context) -> None:
    """List client keys of the active profile (secrets are never shown)."""
    store = config_store(ctx)
    with reporting_errors():
        name = _require_active(store)
        profile = store.get_profile(name)

    if not profile.client_keys:
        print_data(f"No client keys configured in profile '{name}'")
        suggest("Add client keys with: iz profiles client-keys add --tenant <tenant>")
        return
    rows = []
    for tenant in sorted(profile.client_keys):
        keys = profile.client_keys[tenant]
        if keys.client_id:
            rows.append([tenant, "", keys.client_id])
        for project in sorted(keys.projects):
            rows.append([tenant, project, keys.projects[project].client_id or ""])
    print_table(["TENANT", "PROJECT", "CLIENT ID"], rows)
