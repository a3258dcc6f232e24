"""Canonical Pydantic models shared across all izcli modules.

This is the single source of truth for data shapes in the project. The
models fall into two groups:

**Persisted models** -- serialised as YAML on disk:
    :class:`Profile`, :class:`TenantClientKeys`, :class:`ProjectClientKeys`,
    :class:`ConfigDocument` (``config.yaml``), :class:`Session` and
    :class:`SessionDocument` (``~/.izsessions``).

**Ephemeral models** -- built per invocation, never written:
    :class:`ResolvedConfig`, :class:`ConfigValue`, :class:`ValidationIssue`.

On-disk keys are kebab-case (``base-url``, ``output-format``) while Python
attributes are snake_case; the mapping is declared with field aliases and
``populate_by_name=True`` so both spellings are accepted on input. Dumps for
disk always use ``by_alias=True`` and drop ``None`` values so that absent
settings stay absent.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# --- Enumerations ---


class AuthMethod(str, enum.Enum):
    """How a :class:`Session` token was obtained."""

    PASSWORD = "password"
    OIDC = "oidc"


OUTPUT_FORMATS = ("table", "json")
COLOR_MODES = ("auto", "always", "never")


# --- Client keys ---


class ProjectClientKeys(BaseModel):
    """Client credentials scoped to one project inside a tenant."""

    model_config = ConfigDict(populate_by_name=True)

    client_id: Optional[str] = Field(default=None, alias="client-id")
    client_secret: Optional[str] = Field(default=None, alias="client-secret")


class TenantClientKeys(BaseModel):
    """Client credentials for a tenant, with optional per-project overrides.

    Used for non-interactive feature checks, where the server expects an
    API key pair rather than an admin token.

    Example::

        TenantClientKeys(
            client_id="tenant-key",
            client_secret="tenant-secret",
            projects={"billing": ProjectClientKeys(client_id="b", client_secret="s")},
        )
    """

    model_config = ConfigDict(populate_by_name=True)

    client_id: Optional[str] = Field(default=None, alias="client-id")
    client_secret: Optional[str] = Field(default=None, alias="client-secret")
    projects: dict[str, ProjectClientKeys] = Field(default_factory=dict)


# --- Profiles ---


class Profile(BaseModel):
    """A named bundle of connection defaults stored under ``profiles:`` in ``config.yaml``.

    The profile name is the mapping key in :attr:`ConfigDocument.profiles`
    and is not repeated inside the model.

    A profile's *effective URL* is its own :attr:`base_url` when set,
    otherwise the URL of the session named by :attr:`session`. See
    :meth:`izcli.config.ConfigStore.effective_url`.

    Unknown keys are preserved (``extra="allow"``) so that settings written
    by newer versions of the tool survive a round trip.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    base_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("base-url", "leader-url", "base_url"),
        serialization_alias="base-url",
        description="Admin API URL; overrides the linked session's URL",
    )
    tenant: Optional[str] = None
    project: Optional[str] = None
    context: Optional[str] = None
    session: Optional[str] = Field(
        default=None, description="Name of a session in the session document"
    )
    username: Optional[str] = None
    personal_access_token: Optional[str] = Field(
        default=None, alias="personal-access-token"
    )
    personal_access_token_username: Optional[str] = Field(
        default=None, alias="personal-access-token-username"
    )
    client_keys: dict[str, TenantClientKeys] = Field(
        default_factory=dict, alias="client-keys"
    )
    insecure_skip_verify: Optional[bool] = Field(
        default=None, alias="insecure-skip-verify"
    )


# --- Sessions ---


class Session(BaseModel):
    """A named authentication record stored in ``~/.izsessions``.

    Several sessions may share the same ``(url, username)`` identity; they
    are considered the same logical login and are refreshed together.
    """

    model_config = ConfigDict(populate_by_name=True)

    url: str = ""
    username: str = ""
    jwt_token: str = Field(default="", alias="jwtToken")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    auth_method: Optional[AuthMethod] = Field(
        default=None,
        description="None for sessions written before the field existed; treated as password",
    )

    @property
    def effective_auth_method(self) -> AuthMethod:
        """The auth method, defaulting to password for older sessions."""
        return self.auth_method or AuthMethod.PASSWORD

    def is_expired(self, max_age: timedelta = timedelta(hours=24)) -> bool:
        """Return ``True`` when the session is older than *max_age*.

        The server decides real token validity; this is only a display hint
        for ``iz sessions list``.
        """
        created = self.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) - created > max_age


class SessionDocument(BaseModel):
    """Top-level shape of the session file."""

    sessions: dict[str, Session] = Field(default_factory=dict)


# --- Config document ---


class ConfigDocument(BaseModel):
    """Top-level shape of ``config.yaml``.

    Global settings are optional: ``None`` means the key is absent from the
    file and the built-in default in :data:`izcli.config.GLOBAL_DEFAULTS`
    applies at resolution time.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    timeout: Optional[int] = None
    verbose: Optional[bool] = None
    output_format: Optional[str] = Field(default=None, alias="output-format")
    color: Optional[str] = None
    active_profile: Optional[str] = None
    profiles: dict[str, Profile] = Field(default_factory=dict)


# --- Ephemeral models ---


class ConfigValue(BaseModel):
    """A global setting as reported by ``iz config get``.

    Attributes:
        value: The value from the environment or the file, or ``None``.
        source: ``env``, ``file`` or ``not set``.
        default: The built-in default, if the key has one.
    """

    value: Optional[str] = None
    source: str = "not set"
    default: Optional[str] = None


class ValidationIssue(BaseModel):
    """One violation found by :meth:`izcli.config.ConfigStore.validate`."""

    field: str
    message: str


class ResolvedConfig(BaseModel):
    """The effective configuration for a single command invocation.

    Produced by :func:`izcli.resolver.resolve` and passed explicitly to
    every operation that needs it. Never persisted.

    ``sources`` records where each populated field came from (``flag``,
    ``env``, ``profile``, ``session`` or ``default``) for ``--verbose``
    diagnostics.
    """

    base_url: Optional[str] = None
    username: Optional[str] = None
    tenant: Optional[str] = None
    project: Optional[str] = None
    context: Optional[str] = None
    jwt_token: Optional[str] = None
    personal_access_token: Optional[str] = None
    personal_access_token_username: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    client_keys: dict[str, TenantClientKeys] = Field(default_factory=dict)
    auth_method: Optional[AuthMethod] = None
    insecure_skip_verify: bool = False
    timeout: int = 30
    verbose: bool = False
    output_format: str = "table"
    color: str = "auto"
    profile_name: Optional[str] = None
    session_name: Optional[str] = None
    sources: dict[str, str] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        """Return a redacted view suitable for ``--verbose`` logging."""
        data = self.model_dump(mode="json", exclude={"sources", "client_keys", "warnings"})
        for key in ("jwt_token", "personal_access_token", "client_secret"):
            if data.get(key):
                data[key] = "<redacted>"
        return data
