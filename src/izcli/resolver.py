"""Precedence resolution: flags, environment, profile, session, defaults.

Every command that talks to the server starts here. :func:`resolve` folds
all configuration sources into one :class:`~izcli.models.ResolvedConfig`
which is then passed explicitly to whatever needs it; nothing is kept in
module-level state.

Precedence (high to low), per field:
    1. CLI flag for this invocation (:class:`CliFlags`)
    2. The field's environment variable (``IZ_TENANT``, ...)
    3. The selected profile's own value
    4. The profile's linked session (URL, username and JWT only)
    5. Built-in default (:data:`izcli.config.GLOBAL_DEFAULTS`)

Sessions never carry tenant, project or context. Personal access tokens
come from flags, environment or the profile, never from a session.

The ``validate*`` helpers raise :class:`~izcli.exceptions.ResolutionError`
naming the missing requirement and how to supply it. They are meant to run
before any network call so the user gets fast, local feedback.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from izcli.config import GLOBAL_DEFAULTS, ConfigStore
from izcli.exceptions import InvalidUsageError, ProfileNotFoundError, ResolutionError
from izcli.models import Profile, ResolvedConfig, Session
from izcli.sessions import SessionStore

ENV_BASE_URL = "IZ_BASE_URL"
ENV_LEGACY_BASE_URL = "IZ_LEADER_URL"
ENV_PROFILE = "IZ_PROFILE"

_FIELD_ENV = {
    "tenant": "IZ_TENANT",
    "project": "IZ_PROJECT",
    "context": "IZ_CONTEXT",
    "jwt_token": "IZ_JWT_TOKEN",
    "personal_access_token": "IZ_PERSONAL_ACCESS_TOKEN",
    "personal_access_token_username": "IZ_PERSONAL_ACCESS_TOKEN_USERNAME",
    "client_id": "IZ_CLIENT_ID",
    "client_secret": "IZ_CLIENT_SECRET",
}

MSG_BASE_URL_REQUIRED = "base URL is required (use --url flag or set IZ_BASE_URL)"
MSG_TENANT_REQUIRED = "tenant is required (use --tenant flag or set IZ_TENANT)"
MSG_ADMIN_AUTH_REQUIRED = (
    "admin operations require authentication: use 'iz login' for JWT, "
    "or set IZ_JWT_TOKEN, or set IZ_PERSONAL_ACCESS_TOKEN "
    "(with IZ_PERSONAL_ACCESS_TOKEN_USERNAME)"
)
MSG_PAT_USERNAME_REQUIRED = (
    "personal-access-token-username required when using personal access token "
    "(use --personal-access-token-username flag or set IZ_PERSONAL_ACCESS_TOKEN_USERNAME)"
)
MSG_CLIENT_AUTH_REQUIRED = (
    "client credentials are required (use --client-id and --client-secret flags, "
    "set IZ_CLIENT_ID and IZ_CLIENT_SECRET, or add client keys to the profile)"
)


@dataclass
class CliFlags:
    """Global flag values for one invocation; ``None`` means the flag was not given."""

    url: Optional[str] = None
    tenant: Optional[str] = None
    project: Optional[str] = None
    context: Optional[str] = None
    jwt_token: Optional[str] = None
    personal_access_token: Optional[str] = None
    personal_access_token_username: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    profile: Optional[str] = None
    output_format: Optional[str] = None
    timeout: Optional[int] = None
    verbose: Optional[bool] = None
    no_color: bool = False


@dataclass
class ActiveContext:
    """The profile selected for an invocation and the session it links to."""

    profile_name: Optional[str] = None
    profile: Optional[Profile] = None
    session_name: Optional[str] = None
    session: Optional[Session] = None


class _Builder:
    """Accumulates resolved values together with their provenance."""

    def __init__(self) -> None:
        self.values: dict[str, Any] = {}
        self.sources: dict[str, str] = {}

    def pick(self, field: str, *candidates: tuple[str, Any]) -> None:
        """Keep the first non-empty candidate ``(source, value)`` for *field*."""
        for source, value in candidates:
            if value is not None and value != "":
                self.values[field] = value
                self.sources[field] = source
                return


def select_profile(
    flags: CliFlags,
    config_store: ConfigStore,
    session_store: SessionStore,
    environ: Optional[Mapping[str, str]] = None,
) -> ActiveContext:
    """Pick the profile for this invocation and load its linked session.

    The profile name comes from ``--profile``, then ``IZ_PROFILE``, then
    the document's ``active_profile``. A session reference that points at
    a missing session is tolerated: the context simply has no session.

    Raises:
        ProfileNotFoundError: If a profile is named but does not exist.
    """
    env = os.environ if environ is None else environ
    doc = config_store.load()

    name = flags.profile or env.get(ENV_PROFILE) or doc.active_profile or None
    if name is None:
        return ActiveContext()
    profile = doc.profiles.get(name)
    if profile is None:
        raise ProfileNotFoundError(
            f"profile '{name}' not found (use 'iz profiles list' to see available profiles)"
        )

    context = ActiveContext(profile_name=name, profile=profile)
    if profile.session:
        session = session_store.load().sessions.get(profile.session)
        if session is not None:
            context.session_name = profile.session
            context.session = session
    return context


def resolve(
    flags: CliFlags,
    config_store: ConfigStore,
    session_store: SessionStore,
    environ: Optional[Mapping[str, str]] = None,
) -> ResolvedConfig:
    """Merge every configuration source into a :class:`ResolvedConfig`.

    Args:
        flags: Global CLI flags for this invocation.
        config_store: Source of the selected profile and global settings.
        session_store: Source of the profile's linked session.
        environ: Environment to consult (``os.environ`` when ``None``).

    Returns:
        The resolved configuration, with ``sources`` describing where each
        populated field came from and ``warnings`` listing flag overrides
        worth telling the user about.

    Raises:
        ProfileNotFoundError: If the selected profile does not exist.
        InvalidUsageError: If an environment variable holds an unusable value.
        ConfigError: If a document on disk cannot be parsed.
    """
    env = os.environ if environ is None else environ
    doc = config_store.load()
    active = select_profile(flags, config_store, session_store, env)
    profile = active.profile or Profile()
    session = active.session

    b = _Builder()
    b.pick(
        "base_url",
        ("flag", flags.url),
        ("env", env.get(ENV_BASE_URL)),
        ("env", env.get(ENV_LEGACY_BASE_URL)),
        ("profile", profile.base_url),
        ("session", session.url if session else None),
    )
    b.pick(
        "username",
        ("profile", profile.username),
        ("session", session.username if session else None),
    )
    for field in ("tenant", "project", "context"):
        b.pick(
            field,
            ("flag", getattr(flags, field)),
            ("env", env.get(_FIELD_ENV[field])),
            ("profile", getattr(profile, field)),
        )
    b.pick(
        "jwt_token",
        ("flag", flags.jwt_token),
        ("env", env.get(_FIELD_ENV["jwt_token"])),
        ("session", session.jwt_token if session else None),
    )
    for field in ("personal_access_token", "personal_access_token_username"):
        b.pick(
            field,
            ("flag", getattr(flags, field)),
            ("env", env.get(_FIELD_ENV[field])),
            ("profile", getattr(profile, field)),
        )
    for field in ("client_id", "client_secret"):
        b.pick(field, ("flag", getattr(flags, field)), ("env", env.get(_FIELD_ENV[field])))

    b.pick(
        "timeout",
        ("flag", flags.timeout),
        ("env", _env_int(env, "IZ_TIMEOUT")),
        ("file", doc.timeout),
        ("default", GLOBAL_DEFAULTS["timeout"]),
    )
    b.pick(
        "output_format",
        ("flag", flags.output_format),
        ("env", env.get("IZ_OUTPUT_FORMAT")),
        ("file", doc.output_format),
        ("default", GLOBAL_DEFAULTS["output-format"]),
    )
    b.pick(
        "verbose",
        ("flag", True if flags.verbose else None),
        ("env", _env_bool(env, "IZ_VERBOSE")),
        ("file", doc.verbose),
        ("default", GLOBAL_DEFAULTS["verbose"]),
    )
    b.pick(
        "color",
        ("flag", "never" if flags.no_color else None),
        ("env", env.get("IZ_COLOR")),
        ("file", doc.color),
        ("default", GLOBAL_DEFAULTS["color"]),
    )

    resolved = ResolvedConfig(
        **b.values,
        client_keys=dict(profile.client_keys),
        auth_method=session.auth_method if session else None,
        insecure_skip_verify=bool(profile.insecure_skip_verify),
        profile_name=active.profile_name,
        session_name=active.session_name,
        sources=b.sources,
    )

    # Client keys fill in only what flags and environment left empty.
    if not (resolved.client_id and resolved.client_secret) and resolved.tenant:
        projects = [resolved.project] if resolved.project else []
        client_id, client_secret = resolve_client_credentials(
            resolved, resolved.tenant, projects
        )
        if client_id and client_secret:
            resolved.client_id = client_id
            resolved.client_secret = client_secret
            resolved.sources["client_id"] = "profile"
            resolved.sources["client_secret"] = "profile"

    if active.profile is not None and active.profile.session and session is None:
        resolved.warnings.append(
            f"profile '{active.profile_name}' references session "
            f"'{active.profile.session}', which does not exist"
        )
    if flags.jwt_token and session is not None and session.jwt_token:
        resolved.warnings.append(
            f"--jwt-token overrides the token stored in session '{active.session_name}'"
        )
    if flags.personal_access_token and profile.personal_access_token:
        resolved.warnings.append(
            f"--personal-access-token overrides the token stored in profile "
            f"'{active.profile_name}'"
        )
    return resolved


def _env_int(env: Mapping[str, str], name: str) -> Optional[int]:
    raw = env.get(name, "")
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise InvalidUsageError(f"{name} must be an integer, got: {raw}") from None


def _env_bool(env: Mapping[str, str], name: str) -> Optional[bool]:
    raw = env.get(name, "").strip().lower()
    if not raw:
        return None
    return raw in ("true", "1", "yes", "on")


# --- Validation helpers ---


def validate(config: ResolvedConfig) -> None:
    """Require a base URL.

    Raises:
        ResolutionError: If no base URL was resolved from any source.
    """
    if not config.base_url:
        raise ResolutionError(MSG_BASE_URL_REQUIRED)


def validate_tenant(config: ResolvedConfig) -> None:
    """Require a tenant.

    Raises:
        ResolutionError: If no tenant was resolved from any source.
    """
    if not config.tenant:
        raise ResolutionError(MSG_TENANT_REQUIRED)


def validate_admin_auth(config: ResolvedConfig) -> None:
    """Require admin credentials: a JWT, or a personal access token with its username.

    Raises:
        ResolutionError: If neither credential set is complete.
    """
    if config.jwt_token:
        return
    if config.personal_access_token:
        if config.personal_access_token_username:
            return
        raise ResolutionError(MSG_PAT_USERNAME_REQUIRED)
    raise ResolutionError(MSG_ADMIN_AUTH_REQUIRED)


def validate_client_auth(config: ResolvedConfig) -> None:
    """Require a client id and secret (feature checks).

    Raises:
        ResolutionError: If either half is missing.
    """
    if not (config.client_id and config.client_secret):
        raise ResolutionError(MSG_CLIENT_AUTH_REQUIRED)


def resolve_client_credentials(
    config: ResolvedConfig, tenant: str, projects: Sequence[str] = ()
) -> tuple[Optional[str], Optional[str]]:
    """Look up a client id/secret pair in the profile's client keys.

    Project-specific keys are tried first, in the order given, then the
    tenant-wide pair. Only complete pairs are returned.

    Returns:
        ``(client_id, client_secret)``, or ``(None, None)`` if no complete
        pair exists for *tenant*.
    """
    if not tenant:
        return None, None
    tenant_keys = config.client_keys.get(tenant)
    if tenant_keys is None:
        return None, None
    for project in projects:
        keys = tenant_keys.projects.get(project)
        if keys is not None and keys.client_id and keys.client_secret:
            return keys.client_id, keys.client_secret
    if tenant_keys.client_id and tenant_keys.client_secret:
        return tenant_keys.client_id, tenant_keys.client_secret
    return None, None


def describe_sources(config: ResolvedConfig) -> list[str]:
    """Render ``field: value (source)`` lines for ``--verbose`` output, secrets redacted."""
    summary = config.summary()
    return [
        f"{field}: {summary.get(field)} ({source})"
        for field, source in sorted(config.sources.items())
    ]
