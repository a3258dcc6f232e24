"""Session document store.

Sessions live in ``~/.izsessions`` (see :mod:`izcli.paths`), outside the
config directory, as a YAML mapping::

    sessions:
      local-admin-session:
        url: http://localhost:9000
        username: admin
        jwtToken: eyJhbGciOi...
        auth_method: password
        created_at: '2026-01-04T09:12:44+00:00'

The file is written atomically with ``0o600`` permissions. A session is
keyed by name, but its logical identity is the ``(url, username)`` pair:
several names may point at the same identity, and
:meth:`SessionStore.find_by_identity` returns all of them so that a
re-login can refresh every alias.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from izcli.config import atomic_write, normalize_url, read_yaml_mapping
from izcli.exceptions import ConfigError, PersistenceError, SessionNotFoundError
from izcli.models import AuthMethod, Session, SessionDocument
from izcli.paths import PathProvider


class SessionStore:
    """Read/write access to the session document.

    Args:
        paths: Where the session document lives.

    Example::

        store = SessionStore(default_paths())
        store.add_session("local-admin-session", Session(url=url, username="admin"))
        store.find_by_identity(url, "admin")   # ["local-admin-session"]
    """

    def __init__(self, paths: PathProvider) -> None:
        self._paths = paths

    @property
    def path(self) -> Path:
        """The filesystem path of the session document."""
        return self._paths.sessions_path()

    def load(self) -> SessionDocument:
        """Load the session document.

        Returns:
            The parsed document, or an empty one if the file does not exist.

        Raises:
            ConfigError: If the file exists but cannot be parsed.
        """
        data = read_yaml_mapping(self.path)
        if data.get("sessions") is None:
            data["sessions"] = {}
        try:
            return SessionDocument.model_validate(data)
        except PydanticValidationError as exc:
            raise ConfigError(f"Invalid sessions file at {self.path}: {exc}") from exc

    def save(self, doc: SessionDocument) -> None:
        """Persist *doc* atomically with ``0o600`` permissions.

        Raises:
            PersistenceError: If the file cannot be written.
        """
        data = doc.model_dump(mode="json", by_alias=True, exclude_none=True)
        text = yaml.safe_dump(data, sort_keys=False, default_flow_style=False)
        try:
            atomic_write(self.path, text)
        except OSError as exc:
            raise PersistenceError(f"Failed to save sessions to {self.path}: {exc}") from exc

    def add_session(self, name: str, session: Session) -> None:
        """Insert or overwrite the session called *name*."""
        doc = self.load()
        doc.sessions[name] = session
        self.save(doc)

    def get_session(self, name: str) -> Session:
        """Return the session called *name*.

        Raises:
            SessionNotFoundError: If there is no such session.
        """
        session = self.load().sessions.get(name)
        if session is None:
            raise SessionNotFoundError(f"session '{name}' not found")
        return session

    def delete_session(self, name: str) -> None:
        """Remove the session called *name*.

        Raises:
            SessionNotFoundError: If there is no such session.
        """
        doc = self.load()
        if name not in doc.sessions:
            raise SessionNotFoundError(f"session '{name}' not found")
        del doc.sessions[name]
        self.save(doc)

    def find_by_identity(self, url: str, username: str) -> list[str]:
        """Return the names of all sessions for the ``(url, username)`` identity.

        URLs are compared with :func:`~izcli.config.normalize_url`, so a
        trailing slash or scheme case does not split an identity.
        """
        return find_identity(self.load(), url, username)

    def refresh_identity(
        self, url: str, username: str, token: str, method: Optional[AuthMethod] = None
    ) -> list[str]:
        """Refresh the token of every session for ``(url, username)`` and save.

        Returns:
            The refreshed session names (empty when the identity is unknown,
            in which case nothing is written).
        """
        doc = self.load()
        names = refresh_identity(doc, url, username, token, method)
        if names:
            self.save(doc)
        return names


def find_identity(doc: SessionDocument, url: str, username: str) -> list[str]:
    """Names of sessions in *doc* matching ``(url, username)``, in name order."""
    target = normalize_url(url)
    return sorted(
        name
        for name, session in doc.sessions.items()
        if session.username == username and normalize_url(session.url) == target
    )


def refresh_identity(
    doc: SessionDocument,
    url: str,
    username: str,
    token: str,
    method: Optional[AuthMethod] = None,
    now: Optional[datetime] = None,
) -> list[str]:
    """Give every session of the ``(url, username)`` identity in *doc* a new token.

    The auth method and creation time are updated too; names, URLs and
    usernames are left alone. Sessions of other identities are untouched.

    Returns:
        The refreshed session names, in name order.
    """
    stamp = now or datetime.now(timezone.utc)
    names = find_identity(doc, url, username)
    for name in names:
        session = doc.sessions[name]
        session.jwt_token = token
        session.created_at = stamp
        if method is not None:
            session.auth_method = method
    return names
