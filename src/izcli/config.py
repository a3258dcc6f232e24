"""Config document store: profiles, the active profile marker, and global settings.

This module handles all persistent configuration for ``iz``:

* **Global settings** -- ``timeout``, ``verbose``, ``output-format`` and
  ``color`` at the top level of ``config.yaml``. Read and written with
  :meth:`ConfigStore.get`, :meth:`ConfigStore.set` and
  :meth:`ConfigStore.unset`; checked with :meth:`ConfigStore.validate`.
* **Profiles** -- the ``profiles:`` mapping plus the ``active_profile``
  scalar. Managed via :meth:`ConfigStore.add_profile`,
  :meth:`ConfigStore.set_active_profile` and friends.
* **URL matching** -- :meth:`ConfigStore.find_profile_by_base_url` compares
  *effective* URLs, following a profile's session reference when the
  profile has no URL of its own.

Every mutation is a whole-document read-modify-write. Writes go through
:func:`atomic_write` (temp file, fsync, rename) so a crash mid-write leaves
the previous file intact. There is no inter-process locking: two concurrent
writers race and the later one wins.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from izcli.exceptions import (
    ConfigError,
    ConfigValidationError,
    InvalidUsageError,
    PersistenceError,
    ProfileNotFoundError,
)
from izcli.models import (
    COLOR_MODES,
    OUTPUT_FORMATS,
    ConfigDocument,
    ConfigValue,
    Profile,
    ValidationIssue,
)
from izcli.paths import PathProvider

if TYPE_CHECKING:
    from izcli.models import SessionDocument


GLOBAL_DEFAULTS: dict[str, Any] = {
    "timeout": 30,
    "verbose": False,
    "output-format": "table",
    "color": "auto",
}
"""Built-in defaults for the global keys, applied by the resolver."""

GLOBAL_KEYS = tuple(GLOBAL_DEFAULTS)

PROFILE_KEYS = frozenset(
    {
        "base-url",
        "leader-url",
        "tenant",
        "project",
        "context",
        "session",
        "username",
        "jwt-token",
        "personal-access-token",
        "personal-access-token-username",
        "client-keys",
        "client-id",
        "client-secret",
        "insecure-skip-verify",
    }
)
"""Keys that belong to a profile and are rejected by ``iz config set``."""

SENSITIVE_KEYS = frozenset(
    {"jwt-token", "personal-access-token", "client-secret", "client-keys"}
)

_ATTRS = {
    "timeout": "timeout",
    "verbose": "verbose",
    "output-format": "output_format",
    "color": "color",
}

_TRUE = ("true", "1", "yes", "on")
_FALSE = ("false", "0", "no", "off")

_SAMPLE_CONFIG = """\
# Izanami CLI configuration
#
# Global settings apply to every profile.
timeout: 30
verbose: false
output-format: table
color: auto

# Profiles are created by 'iz login' or 'iz profiles add'. Example:
#
# active_profile: sandbox
# profiles:
#   sandbox:
#     base-url: "http://localhost:9000"
#     tenant: "sandbox-tenant"
#     project: "test"
#   prod:
#     # Reference a login session (JWT auth) ...
#     session: "prod-admin-session"
#     # ... or use a personal access token.
#     # personal-access-token-username: "admin"
#     # personal-access-token: "your-pat"
#     tenant: "production"
"""

_GITIGNORE = """\
# Izanami CLI - do not commit credentials
config.yaml
*.yaml
"""


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: int = 0o600) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    Permissions are restricted to *mode* before any content is written, so
    secrets are never world-readable, even momentarily. On any failure the
    temp file is cleaned up.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close in finally
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


def read_yaml_mapping(path: Path) -> dict[str, Any]:
    """Read *path* as a YAML mapping; an absent or empty file yields ``{}``.

    Raises:
        ConfigError: If the file is not valid YAML or its top level is not
            a mapping.
    """
    if not path.is_file():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid document at {path}: expected a mapping")
    return data


def normalize_url(url: str) -> str:
    """Normalise a URL for comparison: drop the scheme and trailing slashes, lowercase.

    Example::

        >>> normalize_url("HTTPS://Izanami.example.com/")
        'izanami.example.com'
    """
    value = url.strip()
    lowered = value.lower()
    for prefix in ("https://", "http://"):
        if lowered.startswith(prefix):
            value = value[len(prefix):]
            break
    return value.rstrip("/").lower()


def _env_var_for(key: str) -> str:
    return "IZ_" + key.upper().replace("-", "_")


def _check_value(key: str, value: Any) -> Optional[str]:
    """Return the validation message for *value* under *key*, or ``None`` if it is valid."""
    if key == "timeout":
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            return "Timeout must be a positive number"
    elif key == "verbose":
        if not isinstance(value, bool):
            return "Verbose must be 'true' or 'false'"
    elif key == "output-format":
        if value not in OUTPUT_FORMATS:
            return "Output format must be 'table' or 'json'"
    elif key == "color":
        if value not in COLOR_MODES:
            return "Color must be 'auto', 'always', or 'never'"
    return None


def _coerce(key: str, raw: str) -> Any:
    """Convert the command-line string *raw* to the type stored under *key*."""
    if key == "timeout":
        try:
            return int(raw)
        except ValueError:
            raise InvalidUsageError("Timeout must be a positive number") from None
    if key == "verbose":
        lowered = raw.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise InvalidUsageError("Verbose must be 'true' or 'false'")
    return raw.strip().lower()


class ConfigStore:
    """Read/write access to ``config.yaml``.

    Args:
        paths: Where the config document lives.

    Example::

        store = ConfigStore(default_paths())
        store.set("output-format", "json")
        store.get("output-format").source   # "file"
    """

    def __init__(self, paths: PathProvider) -> None:
        self._paths = paths

    @property
    def path(self) -> Path:
        """The filesystem path of the config document."""
        return self._paths.config_path()

    @property
    def directory(self) -> Path:
        """The directory holding the config document."""
        return self._paths.config_dir()

    def exists(self) -> bool:
        """Check whether the config document exists on disk."""
        return self.path.is_file()

    # ------------------------------------------------------------------ #
    # Whole-document access
    # ------------------------------------------------------------------ #

    def load(self) -> ConfigDocument:
        """Load the config document.

        Returns:
            The parsed document, or an empty one (no profiles, no active
            profile, no global settings) when the file does not exist.

        Raises:
            ConfigError: If the file exists but is not valid YAML or does
                not match the expected shape.
        """
        data = read_yaml_mapping(self.path)
        try:
            return ConfigDocument.model_validate(data)
        except PydanticValidationError as exc:
            raise ConfigError(f"Invalid config at {self.path}: {exc}") from exc

    def save(self, doc: ConfigDocument) -> None:
        """Persist *doc* atomically with ``0o600`` permissions (directory ``0o700``).

        Raises:
            PersistenceError: If the file cannot be written.
        """
        data = doc.model_dump(mode="json", by_alias=True, exclude_none=True)
        if not data.get("profiles"):
            data.pop("profiles", None)
        else:
            for profile in data["profiles"].values():
                if not profile.get("client-keys"):
                    profile.pop("client-keys", None)
        text = yaml.safe_dump(data, sort_keys=False, default_flow_style=False)
        try:
            self._ensure_directory()
            atomic_write(self.path, text)
        except OSError as exc:
            raise PersistenceError(f"Failed to write config file {self.path}: {exc}") from exc

    def init(self, defaults: bool = False) -> Path:
        """Create the config document.

        Args:
            defaults: Write only the default global settings instead of the
                commented sample.

        Returns:
            The path of the created file.

        Raises:
            ConfigError: If the file already exists.
        """
        if self.exists():
            raise ConfigError(f"config file already exists at {self.path}")
        if defaults:
            text = yaml.safe_dump(dict(GLOBAL_DEFAULTS), sort_keys=False)
        else:
            text = _SAMPLE_CONFIG
        try:
            self._ensure_directory()
            atomic_write(self.path, text)
            gitignore = self.directory / ".gitignore"
            if not gitignore.exists():
                atomic_write(gitignore, _GITIGNORE, mode=0o644)
        except OSError as exc:
            raise PersistenceError(f"Failed to write config file {self.path}: {exc}") from exc
        return self.path

    def reset(self) -> None:
        """Delete the config document.

        Raises:
            ConfigError: If there is no config document.
        """
        if not self.exists():
            raise ConfigError("config file does not exist")
        try:
            self.path.unlink()
        except OSError as exc:
            raise PersistenceError(f"Failed to delete config file: {exc}") from exc

    def _ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        os.chmod(self.directory, 0o700)

    # ------------------------------------------------------------------ #
    # Global settings
    # ------------------------------------------------------------------ #

    @staticmethod
    def _check_global_key(key: str) -> None:
        if key in _ATTRS:
            return
        if key in PROFILE_KEYS:
            raise InvalidUsageError(
                f"'{key}' is a profile-specific setting. "
                f"Use 'iz profiles set {key} <value>' instead"
            )
        raise InvalidUsageError(f"invalid config key: {key}")

    def get(self, key: str, environ: Optional[Mapping[str, str]] = None) -> ConfigValue:
        """Return a global setting with the place it came from.

        The environment wins over the file. A key present in neither is
        reported as ``not set``; its built-in default is carried in
        :attr:`ConfigValue.default` for display.

        Args:
            key: One of :data:`GLOBAL_KEYS`.
            environ: Environment to consult (``os.environ`` when ``None``).

        Raises:
            InvalidUsageError: For profile-scoped or unknown keys.
        """
        self._check_global_key(key)
        env = os.environ if environ is None else environ
        default = _display(GLOBAL_DEFAULTS[key])

        env_value = env.get(_env_var_for(key), "")
        if env_value:
            return ConfigValue(value=env_value, source="env", default=default)

        stored = getattr(self.load(), _ATTRS[key])
        if stored is not None:
            return ConfigValue(value=_display(stored), source="file", default=default)
        return ConfigValue(value=None, source="not set", default=default)

    def set(self, key: str, value: str) -> Any:
        """Store a global setting after coercing and validating it.

        Returns:
            The coerced value that was written.

        Raises:
            InvalidUsageError: For profile-scoped or unknown keys, or a
                value outside the allowed set.
        """
        self._check_global_key(key)
        coerced = _coerce(key, value)
        message = _check_value(key, coerced)
        if message is not None:
            raise InvalidUsageError(message)
        doc = self.load()
        setattr(doc, _ATTRS[key], coerced)
        self.save(doc)
        return coerced

    def unset(self, key: str) -> None:
        """Remove a global setting from the file.

        Raises:
            InvalidUsageError: For profile-scoped or unknown keys.
            ConfigError: If there is no config document.
        """
        self._check_global_key(key)
        if not self.exists():
            raise ConfigError("config file does not exist")
        doc = self.load()
        setattr(doc, _ATTRS[key], None)
        self.save(doc)

    def check(self) -> list[ValidationIssue]:
        """Return every violation in the stored global settings (empty when valid).

        Works on the raw YAML mapping so that values of the wrong type are
        reported as violations rather than parse failures.
        """
        data = read_yaml_mapping(self.path)
        issues: list[ValidationIssue] = []
        for key in GLOBAL_KEYS:
            if key not in data or data[key] is None:
                continue
            message = _check_value(key, data[key])
            if message is not None:
                issues.append(ValidationIssue(field=key, message=message))
        active = data.get("active_profile")
        profiles = data.get("profiles") or {}
        if active and isinstance(profiles, dict) and active not in profiles:
            issues.append(
                ValidationIssue(
                    field="active_profile",
                    message=f"Active profile '{active}' does not exist",
                )
            )
        return issues

    def validate(self) -> None:
        """Validate the stored global settings.

        Raises:
            ConfigValidationError: Listing every violation, not just the first.
        """
        issues = self.check()
        if issues:
            raise ConfigValidationError(issues)

    # ------------------------------------------------------------------ #
    # Profiles
    # ------------------------------------------------------------------ #

    def list_profiles(self) -> dict[str, Profile]:
        """Return all profiles keyed by name, sorted alphabetically."""
        profiles = self.load().profiles
        return {name: profiles[name] for name in sorted(profiles)}

    def get_profile(self, name: str) -> Profile:
        """Return the profile called *name*.

        Raises:
            ProfileNotFoundError: If there is no such profile.
        """
        profiles = self.load().profiles
        if name not in profiles:
            raise ProfileNotFoundError(f"profile '{name}' not found")
        return profiles[name]

    def has_profile(self, name: str) -> bool:
        return name in self.load().profiles

    def add_profile(self, name: str, profile: Profile) -> None:
        """Insert or overwrite the profile called *name*."""
        if not name:
            raise InvalidUsageError("profile name cannot be empty")
        doc = self.load()
        doc.profiles[name] = profile
        self.save(doc)

    def delete_profile(self, name: str) -> None:
        """Remove a profile, clearing ``active_profile`` if it pointed at it.

        Raises:
            ProfileNotFoundError: If there is no such profile.
        """
        doc = self.load()
        if name not in doc.profiles:
            raise ProfileNotFoundError(f"profile '{name}' not found")
        del doc.profiles[name]
        if doc.active_profile == name:
            doc.active_profile = None
        self.save(doc)

    def set_active_profile(self, name: str) -> None:
        """Mark *name* as the active profile.

        Raises:
            ProfileNotFoundError: If there is no such profile.
        """
        doc = self.load()
        if name not in doc.profiles:
            raise ProfileNotFoundError(f"profile '{name}' not found")
        doc.active_profile = name
        self.save(doc)

    def get_active_profile_name(self) -> Optional[str]:
        """Return the active profile name, or ``None`` when none is selected."""
        return self.load().active_profile or None

    @staticmethod
    def effective_url(profile: Profile, sessions: SessionDocument) -> Optional[str]:
        """Return the profile's own URL, else its linked session's URL, else ``None``."""
        if profile.base_url:
            return profile.base_url
        if profile.session:
            linked = sessions.sessions.get(profile.session)
            if linked is not None and linked.url:
                return linked.url
        return None

    def find_profile_by_base_url(
        self, url: str, sessions: SessionDocument
    ) -> Optional[str]:
        """Return the name of a profile whose effective URL matches *url*.

        The active profile wins when it matches; otherwise the first match
        in name order is returned.

        Args:
            url: Target server URL; compared with :func:`normalize_url`.
            sessions: Session document used to resolve profiles that only
                reference a session.

        Returns:
            The matching profile name, or ``None``.
        """
        doc = self.load()
        target = normalize_url(url)

        def _matches(name: str) -> bool:
            effective = self.effective_url(doc.profiles[name], sessions)
            return effective is not None and normalize_url(effective) == target

        if doc.active_profile and doc.active_profile in doc.profiles:
            if _matches(doc.active_profile):
                return doc.active_profile
        for name in sorted(doc.profiles):
            if _matches(name):
                return name
        return None


def _display(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
