"""Tests for izcli.sessions -- the session document and identity refresh."""

from __future__ import annotations

import os
import stat
from datetime import datetime, timedelta, timezone

import pytest
import yaml

from izcli.exceptions import ConfigError, SessionNotFoundError
from izcli.models import AuthMethod, Session, SessionDocument
from izcli.sessions import SessionStore, find_identity, refresh_identity


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _session(url: str, username: str, token: str = "old", **kwargs: object) -> Session:
    return Session(url=url, username=username, jwt_token=token, created_at=_T0, **kwargs)


class TestSessionStore:
    def test_missing_file_is_empty(self, session_store: SessionStore) -> None:
        assert session_store.load().sessions == {}

    def test_null_sessions_key(self, session_store: SessionStore) -> None:
        session_store.path.write_text("sessions:\n")
        assert session_store.load().sessions == {}

    def test_add_and_get(self, session_store: SessionStore) -> None:
        session_store.add_session("s", _session("http://x", "admin", token="jwt"))
        got = session_store.get_session("s")
        assert (got.url, got.username, got.jwt_token) == ("http://x", "admin", "jwt")

    def test_on_disk_format(self, session_store: SessionStore) -> None:
        session_store.add_session(
            "s", _session("http://x", "admin", token="jwt", auth_method=AuthMethod.OIDC)
        )
        raw = yaml.safe_load(session_store.path.read_text())
        assert raw["sessions"]["s"]["jwtToken"] == "jwt"
        assert raw["sessions"]["s"]["auth_method"] == "oidc"
        if os.name == "posix":
            assert stat.S_IMODE(session_store.path.stat().st_mode) == 0o600

    def test_old_sessions_default_to_password(self, session_store: SessionStore) -> None:
        session_store.path.write_text(
            "sessions:\n  s:\n    url: http://x\n    username: admin\n    jwtToken: t\n"
        )
        session = session_store.get_session("s")
        assert session.auth_method is None
        assert session.effective_auth_method == AuthMethod.PASSWORD

    def test_get_missing(self, session_store: SessionStore) -> None:
        with pytest.raises(SessionNotFoundError, match="session 'nope' not found"):
            session_store.get_session("nope")

    def test_delete(self, session_store: SessionStore) -> None:
        session_store.add_session("s", _session("http://x", "admin"))
        session_store.delete_session("s")
        assert session_store.load().sessions == {}
        with pytest.raises(SessionNotFoundError):
            session_store.delete_session("s")

    def test_invalid_content(self, session_store: SessionStore) -> None:
        session_store.path.write_text("sessions: [1, 2]\n")
        with pytest.raises(ConfigError):
            session_store.load()

    def test_find_by_identity(self, session_store: SessionStore) -> None:
        session_store.add_session("b", _session("http://x/", "admin"))
        session_store.add_session("a", _session("HTTP://X", "admin"))
        session_store.add_session("c", _session("http://x", "other"))
        assert session_store.find_by_identity("http://x", "admin") == ["a", "b"]


class TestRefreshIdentity:
    def test_refreshes_every_alias_and_nothing_else(self) -> None:
        doc = SessionDocument(
            sessions={
                "a": _session("U", "alice"),
                "b": _session("U", "alice"),
                "c": _session("U", "bob"),
            }
        )
        now = _T0 + timedelta(days=1)

        names = refresh_identity(doc, "U", "alice", "new", AuthMethod.PASSWORD, now)

        assert names == ["a", "b"]
        assert doc.sessions["a"].jwt_token == "new"
        assert doc.sessions["b"].jwt_token == "new"
        assert doc.sessions["a"].created_at == now
        assert doc.sessions["c"].jwt_token == "old"
        assert doc.sessions["c"].created_at == _T0

    def test_updates_auth_method(self) -> None:
        doc = SessionDocument(sessions={"a": _session("U", "alice")})
        refresh_identity(doc, "U", "alice", "new", AuthMethod.OIDC)
        assert doc.sessions["a"].auth_method == AuthMethod.OIDC

    def test_unknown_identity(self, session_store: SessionStore) -> None:
        assert session_store.refresh_identity("http://x", "ghost", "t") == []
        assert not session_store.path.exists()

    def test_store_persists(self, session_store: SessionStore) -> None:
        session_store.add_session("a", _session("http://x", "alice"))
        assert session_store.refresh_identity("http://x", "alice", "fresh") == ["a"]
        assert session_store.get_session("a").jwt_token == "fresh"

    def test_find_identity_ignores_trailing_slash(self) -> None:
        doc = SessionDocument(sessions={"a": _session("https://x.example.com/", "u")})
        assert find_identity(doc, "https://x.example.com", "u") == ["a"]


class TestSessionExpiry:
    def test_fresh_session(self) -> None:
        assert not Session(url="u", username="x").is_expired()

    def test_old_session(self) -> None:
        old = datetime.now(timezone.utc) - timedelta(hours=25)
        assert Session(url="u", username="x", created_at=old).is_expired()

    def test_naive_timestamp_treated_as_utc(self) -> None:
        old = (datetime.now(timezone.utc) - timedelta(hours=30)).replace(tzinfo=None)
        assert Session(url="u", username="x", created_at=old).is_expired()
