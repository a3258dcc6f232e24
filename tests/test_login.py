"""Tests for izcli.login -- target resolution, profile choice, persistence, linking."""

from __future__ import annotations

import base64
import json
from typing import Optional

import pytest

from izcli.config import ConfigStore
from izcli.exceptions import AuthError, ConnectionError_, PersistenceError, ResolutionError
from izcli.exit_codes import EXIT_AUTH_FAILURE, EXIT_CONNECTION_ERROR
from izcli.login import (
    LoginFlow,
    LoginRequest,
    LoginTarget,
    decode_jwt_username,
    logout,
    session_name_for,
    suggest_profile_name,
)
from izcli.models import AuthMethod, Profile, Session
from izcli.resolver import CliFlags
from izcli.sessions import SessionStore

URL = "https://izanami.example.com"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _jwt(claims: dict) -> str:
    def _part(data: dict) -> str:
        return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip("=")

    return f"{_part({'alg': 'none'})}.{_part(claims)}.signature"


class Recorder:
    """Scripted stand-in for the interactive callbacks and the login call."""

    def __init__(
        self,
        answers: Optional[list[str]] = None,
        secret: str = "",
        token: str = "jwt-token",
        error: Optional[Exception] = None,
    ) -> None:
        self.answers = list(answers or [])
        self.secret = secret
        self.token = token
        self.error = error
        self.prompts: list[tuple[str, str]] = []
        self.secret_prompts: list[str] = []
        self.logins: list[tuple[str, str, str]] = []
        self.opened: list[str] = []

    def prompt(self, text: str, default: str) -> str:
        self.prompts.append((text, default))
        return self.answers.pop(0) if self.answers else ""

    def read_secret(self, text: str) -> str:
        self.secret_prompts.append(text)
        return self.secret

    def authenticate(
        self, url: str, username: str, password: str, timeout: float, verify: bool
    ) -> str:
        self.logins.append((url, username, password))
        if self.error is not None:
            raise self.error
        return self.token

    def open_browser(self, url: str) -> bool:
        self.opened.append(url)
        return True


def _flow(
    config_store: ConfigStore,
    session_store: SessionStore,
    recorder: Recorder,
    environ: Optional[dict] = None,
    flags: Optional[CliFlags] = None,
) -> LoginFlow:
    return LoginFlow(
        config_store,
        session_store,
        flags=flags,
        prompt=recorder.prompt,
        read_secret=recorder.read_secret,
        open_browser=recorder.open_browser,
        authenticator=recorder.authenticate,
        environ=environ or {},
    )


def _active_profile_with_session(
    config_store: ConfigStore,
    session_store: SessionStore,
    method: Optional[AuthMethod] = None,
) -> None:
    session_store.add_session(
        "work-session",
        Session(url=URL, username="admin", jwt_token="old", auth_method=method),
    )
    config_store.add_profile("work", Profile(session="work-session"))
    config_store.set_active_profile("work")


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://izanami.example.com:8443/admin", "izanami-example-com"),
            ("http://localhost:9000", "default"),
            ("http://127.0.0.1:9000", "default"),
            ("izanami.example.com", "izanami-example-com"),
        ],
    )
    def test_suggest_profile_name(self, url: str, expected: str) -> None:
        assert suggest_profile_name(url) == expected

    def test_session_name(self) -> None:
        assert session_name_for("prod", "alice", AuthMethod.PASSWORD) == "prod-alice-session"
        assert session_name_for("prod", "alice", AuthMethod.OIDC) == "prod-alice-oidc"

    @pytest.mark.parametrize(
        "claims,expected",
        [
            ({"username": "u", "name": "n", "sub": "s"}, "u"),
            ({"name": "Jane Doe", "sub": "s"}, "Jane Doe"),
            ({"sub": "subject-1"}, "subject-1"),
            ({"email": "jane@example.com"}, "jane"),
            ({"aud": "izanami"}, "oidc-user"),
        ],
    )
    def test_decode_jwt_username(self, claims: dict, expected: str) -> None:
        assert decode_jwt_username(_jwt(claims)) == expected

    @pytest.mark.parametrize("token", ["not-a-jwt", "a.!!!.c", "a.bm90IGpzb24.c"])
    def test_decode_malformed(self, token: str) -> None:
        assert decode_jwt_username(token) == "oidc-user"


# ---------------------------------------------------------------------------
# ResolveTarget
# ---------------------------------------------------------------------------


class TestResolveTarget:
    def test_url_and_username(self, config_store: ConfigStore, session_store: SessionStore) -> None:
        target = _flow(config_store, session_store, Recorder()).resolve_target(
            LoginRequest(args=[URL, "alice"])
        )
        assert (target.url, target.username, target.method) == (URL, "alice", AuthMethod.PASSWORD)

    def test_url_only_uses_session_username(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        _active_profile_with_session(config_store, session_store)
        target = _flow(config_store, session_store, Recorder()).resolve_target(
            LoginRequest(args=["https://other.example.com"])
        )
        assert (target.url, target.username) == ("https://other.example.com", "admin")

    def test_url_only_without_username(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        flow = _flow(config_store, session_store, Recorder())
        with pytest.raises(ResolutionError) as exc_info:
            flow.resolve_target(LoginRequest(args=[URL]))
        assert str(exc_info.value) == f"no username available for login (use: iz login {URL} <username>)"

    def test_username_only_uses_env_url(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        flow = _flow(config_store, session_store, Recorder(), environ={"IZ_BASE_URL": URL})
        target = flow.resolve_target(LoginRequest(args=["bob"]))
        assert (target.url, target.username) == (URL, "bob")

    def test_username_only_uses_url_flag(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        flow = _flow(
            config_store,
            session_store,
            Recorder(),
            environ={"IZ_BASE_URL": "https://env.example.com"},
            flags=CliFlags(url=URL),
        )
        assert flow.resolve_target(LoginRequest(args=["bob"])).url == URL

    def test_username_only_without_url(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        flow = _flow(config_store, session_store, Recorder())
        with pytest.raises(ResolutionError) as exc_info:
            flow.resolve_target(LoginRequest(args=["bob"]))
        assert str(exc_info.value) == "no base URL available for login (use: iz login <url> bob)"

    def test_no_args_from_active_profile(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        _active_profile_with_session(config_store, session_store)
        target = _flow(config_store, session_store, Recorder()).resolve_target(LoginRequest())
        assert (target.url, target.username) == (URL, "admin")

    def test_no_args_nothing_available(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        flow = _flow(config_store, session_store, Recorder())
        with pytest.raises(ResolutionError, match="no URL or username available"):
            flow.resolve_target(LoginRequest())

    def test_too_many_arguments(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        flow = _flow(config_store, session_store, Recorder())
        with pytest.raises(ResolutionError, match="too many arguments"):
            flow.resolve_target(LoginRequest(args=[URL, "a", "b"]))

    def test_prior_oidc_session_switches_flow(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        _active_profile_with_session(config_store, session_store, AuthMethod.OIDC)
        target = _flow(config_store, session_store, Recorder()).resolve_target(LoginRequest())
        assert target.method == AuthMethod.OIDC

    def test_username_argument_follows_prior_oidc(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        _active_profile_with_session(config_store, session_store, AuthMethod.OIDC)
        target = _flow(config_store, session_store, Recorder()).resolve_target(
            LoginRequest(args=["admin"])
        )
        assert (target.url, target.method) == (URL, AuthMethod.OIDC)

    def test_url_and_username_follow_prior_oidc(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        session_store.add_session(
            "p-alice-oidc",
            Session(
                url="http://h:9000", username="alice", jwt_token="t", auth_method=AuthMethod.OIDC
            ),
        )
        target = _flow(config_store, session_store, Recorder()).resolve_target(
            LoginRequest(args=["http://h:9000", "alice"])
        )
        assert target.method == AuthMethod.OIDC

    def test_other_username_keeps_password_flow(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        _active_profile_with_session(config_store, session_store, AuthMethod.OIDC)
        target = _flow(config_store, session_store, Recorder()).resolve_target(
            LoginRequest(args=["bob"])
        )
        assert target.method == AuthMethod.PASSWORD

    def test_password_flag_keeps_password_flow(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        _active_profile_with_session(config_store, session_store, AuthMethod.OIDC)
        target = _flow(config_store, session_store, Recorder()).resolve_target(
            LoginRequest(password="pw")
        )
        assert target.method == AuthMethod.PASSWORD

    def test_oidc_requires_url(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        flow = _flow(config_store, session_store, Recorder())
        with pytest.raises(ResolutionError, match="base URL is required"):
            flow.resolve_target(LoginRequest(oidc=True))


# ---------------------------------------------------------------------------
# DetermineProfile
# ---------------------------------------------------------------------------


class TestDetermineProfile:
    def test_no_profiles_prompts_with_suggestion(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        recorder = Recorder(answers=["mine"])
        name, created = _flow(config_store, session_store, recorder).determine_profile_name(URL)
        assert (name, created) == ("mine", True)
        assert recorder.prompts == [("Enter profile name", "izanami-example-com")]

    def test_blank_answer_takes_suggestion(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        name, _ = _flow(config_store, session_store, Recorder()).determine_profile_name(URL)
        assert name == "izanami-example-com"

    def test_active_profile_wins(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        for name in ("b", "c"):
            config_store.add_profile(name, Profile(base_url=URL + "/"))
        config_store.set_active_profile("c")
        name, created = _flow(config_store, session_store, Recorder()).determine_profile_name(URL)
        assert (name, created) == ("c", False)

    def test_first_match_by_name(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        config_store.add_profile("a", Profile(base_url="https://elsewhere.example.com"))
        config_store.add_profile("c", Profile(base_url=URL))
        config_store.add_profile("b", Profile(base_url=URL))
        config_store.set_active_profile("a")
        name, _ = _flow(config_store, session_store, Recorder()).determine_profile_name(URL)
        assert name == "b"

    def test_match_through_session_url(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        _active_profile_with_session(config_store, session_store)
        name, _ = _flow(config_store, session_store, Recorder()).determine_profile_name(URL)
        assert name == "work"

    def test_no_match_prompts(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        config_store.add_profile("a", Profile(base_url="https://elsewhere.example.com"))
        recorder = Recorder(answers=["new-one"])
        name, created = _flow(config_store, session_store, recorder).determine_profile_name(URL)
        assert (name, created) == ("new-one", True)


# ---------------------------------------------------------------------------
# Password login end to end
# ---------------------------------------------------------------------------


class TestPasswordLogin:
    def test_first_login_creates_active_profile(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        recorder = Recorder(answers=["prod"])
        result = _flow(config_store, session_store, recorder).run(
            LoginRequest(args=[URL, "alice"], password="pw")
        )

        assert recorder.logins == [(URL, "alice", "pw")]
        assert result.session_name == "prod-alice-session"
        assert result.profile_created and result.profile_activated
        assert result.active_profile == "prod"

        session = session_store.get_session("prod-alice-session")
        assert (session.url, session.username, session.jwt_token) == (URL, "alice", "jwt-token")
        assert session.auth_method == AuthMethod.PASSWORD
        profile = config_store.get_profile("prod")
        assert (profile.session, profile.username) == ("prod-alice-session", "alice")

    def test_password_prompted_when_missing(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        recorder = Recorder(answers=["prod"], secret="typed")
        _flow(config_store, session_store, recorder).run(LoginRequest(args=[URL, "alice"]))
        assert recorder.secret_prompts == ["Password"]
        assert recorder.logins[0][2] == "typed"

    def test_empty_password(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        recorder = Recorder(secret="")
        with pytest.raises(AuthError, match="password cannot be empty"):
            _flow(config_store, session_store, recorder).run(LoginRequest(args=[URL, "alice"]))
        assert recorder.logins == []

    def test_failure_persists_nothing(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        recorder = Recorder(error=ConnectionError_("cannot reach server"))
        with pytest.raises(AuthError) as exc_info:
            _flow(config_store, session_store, recorder).run(
                LoginRequest(args=[URL, "alice"], password="pw")
            )
        assert str(exc_info.value) == "login failed: cannot reach server"
        assert exc_info.value.exit_code == EXIT_CONNECTION_ERROR
        assert not config_store.exists()
        assert not session_store.path.exists()

    def test_rejected_credentials_prefixed_once(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        recorder = Recorder(error=AuthError("status 401: invalid credentials"))
        with pytest.raises(AuthError) as exc_info:
            _flow(config_store, session_store, recorder).run(
                LoginRequest(args=[URL, "alice"], password="pw")
            )
        assert str(exc_info.value) == "login failed: status 401: invalid credentials"
        assert exc_info.value.exit_code == EXIT_AUTH_FAILURE

    def test_url_without_scheme_reports_login_failure(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        flow = LoginFlow(config_store, session_store, environ={})
        with pytest.raises(AuthError, match="^login failed: cannot reach") as exc_info:
            flow.run(LoginRequest(args=["localhost:9000", "admin"], password="pw"))
        assert exc_info.value.exit_code == EXIT_CONNECTION_ERROR
        assert not config_store.exists()
        assert not session_store.path.exists()

    def test_target_without_username(
        self,
        config_store: ConfigStore,
        session_store: SessionStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        recorder = Recorder()
        flow = _flow(config_store, session_store, recorder)
        monkeypatch.setattr(
            flow,
            "resolve_target",
            lambda request: LoginTarget(url=URL, username=None, method=AuthMethod.PASSWORD),
        )
        with pytest.raises(ResolutionError, match="no username available for login"):
            flow.run(LoginRequest(password="pw"))
        assert recorder.logins == []

    def test_profile_link_failure_keeps_session(
        self,
        config_store: ConfigStore,
        session_store: SessionStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def _fail(self: ConfigStore, doc: object) -> None:
            raise PersistenceError("disk full")

        monkeypatch.setattr(ConfigStore, "save", _fail)
        result = _flow(config_store, session_store, Recorder(answers=["prod"])).run(
            LoginRequest(args=[URL, "alice"], password="pw")
        )

        assert result.link_error is not None and "disk full" in result.link_error
        assert not result.profile_created
        assert session_store.get_session("prod-alice-session").jwt_token == "jwt-token"
        assert not config_store.exists()

    def test_custom_session_name(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        result = _flow(config_store, session_store, Recorder(answers=["prod"])).run(
            LoginRequest(args=[URL, "alice"], password="pw", name="mine")
        )
        assert result.session_name == "mine"
        assert config_store.get_profile("prod").session == "mine"

    def test_relogin_updates_existing_profile(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        _active_profile_with_session(config_store, session_store)
        result = _flow(config_store, session_store, Recorder(token="fresh")).run(
            LoginRequest(args=[URL, "admin"], password="pw")
        )
        assert result.profile_name == "work"
        assert not result.profile_created
        assert not result.profile_activated
        assert result.session_name == "work-admin-session"
        assert result.removed_sessions == ["work-session"]
        assert set(session_store.load().sessions) == {"work-admin-session"}
        assert config_store.get_profile("work").session == "work-admin-session"

    def test_existing_profile_activated_when_none_active(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        config_store.add_profile("work", Profile(base_url=URL))
        result = _flow(config_store, session_store, Recorder()).run(
            LoginRequest(args=[URL, "admin"], password="pw")
        )
        assert result.profile_activated
        assert config_store.get_active_profile_name() == "work"

    def test_existing_profile_not_activated_over_another(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        config_store.add_profile("other", Profile(base_url="https://elsewhere.example.com"))
        config_store.add_profile("work", Profile(base_url=URL))
        config_store.set_active_profile("other")
        result = _flow(config_store, session_store, Recorder()).run(
            LoginRequest(args=[URL, "admin"], password="pw")
        )
        assert result.profile_name == "work"
        assert not result.profile_activated
        assert config_store.get_active_profile_name() == "other"


class TestPersistSession:
    def test_aliases_refreshed_shared_sessions_kept(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        for name in ("a", "b", "shared"):
            session_store.add_session(name, Session(url=URL, username="admin", jwt_token="old"))
        session_store.add_session("c", Session(url=URL, username="bob", jwt_token="old"))
        config_store.add_profile("work", Profile(session="a"))
        config_store.add_profile("x", Profile(session="shared"))
        config_store.add_profile("y", Profile(session="shared"))

        flow = _flow(config_store, session_store, Recorder())
        refreshed, removed = flow.persist_session(
            URL, "admin", "new", AuthMethod.PASSWORD, "work-admin-session", "work"
        )

        assert removed == ["a"]
        assert sorted(refreshed) == ["b", "shared"]
        sessions = session_store.load().sessions
        assert sessions["b"].jwt_token == "new"
        assert sessions["shared"].jwt_token == "new"
        assert sessions["c"].jwt_token == "old"
        assert sessions["work-admin-session"].jwt_token == "new"

    def test_existing_canonical_name_removes_nothing(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        session_store.add_session("a", Session(url=URL, username="admin", jwt_token="old"))
        session_store.add_session("b", Session(url=URL, username="admin", jwt_token="old"))
        config_store.add_profile("work", Profile(session="b"))

        flow = _flow(config_store, session_store, Recorder())
        refreshed, removed = flow.persist_session(
            URL, "admin", "new", AuthMethod.PASSWORD, "a", "work"
        )
        assert (refreshed, removed) == (["b"], [])


# ---------------------------------------------------------------------------
# OIDC
# ---------------------------------------------------------------------------


class TestOidcLogin:
    def test_token_flag_skips_browser(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        recorder = Recorder(answers=["prod"])
        token = _jwt({"email": "jane@example.com"})
        result = _flow(config_store, session_store, recorder).run(
            LoginRequest(args=[URL], token=token)
        )
        assert recorder.opened == []
        assert recorder.secret_prompts == []
        assert result.username == "jane"
        assert result.session_name == "prod-jane-oidc"
        session = session_store.get_session("prod-jane-oidc")
        assert session.auth_method == AuthMethod.OIDC
        assert session.jwt_token == token

    def test_browser_then_pasted_token(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        recorder = Recorder(answers=["prod"], secret=_jwt({"sub": "svc"}))
        result = _flow(config_store, session_store, recorder).run(
            LoginRequest(args=[URL], oidc=True)
        )
        assert recorder.opened == [URL + "/api/admin/openid-connect"]
        assert result.username == "svc"

    def test_no_browser(self, config_store: ConfigStore, session_store: SessionStore) -> None:
        recorder = Recorder(answers=["prod"], secret=_jwt({"sub": "svc"}))
        _flow(config_store, session_store, recorder).run(
            LoginRequest(args=[URL], oidc=True, no_browser=True)
        )
        assert recorder.opened == []

    def test_begin_writes_nothing(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        pending = _flow(config_store, session_store, Recorder()).begin_oidc(URL + "/")
        assert pending.authorization_url == URL + "/api/admin/openid-connect"
        assert not config_store.exists()
        assert not session_store.path.exists()

    def test_empty_token(self, config_store: ConfigStore, session_store: SessionStore) -> None:
        flow = _flow(config_store, session_store, Recorder())
        pending = flow.begin_oidc(URL)
        with pytest.raises(AuthError, match="no token provided"):
            flow.complete_oidc(pending, "   ")
        assert not session_store.path.exists()


# ---------------------------------------------------------------------------
# Logout
# ---------------------------------------------------------------------------


class TestLogout:
    def test_clears_token_only(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        _active_profile_with_session(config_store, session_store)
        assert logout(config_store, session_store, environ={}) == "work-session"

        session = session_store.get_session("work-session")
        assert session.jwt_token == ""
        assert (session.url, session.username) == (URL, "admin")
        assert config_store.get_profile("work").session == "work-session"

    def test_already_logged_out(
        self, config_store: ConfigStore, session_store: SessionStore
    ) -> None:
        _active_profile_with_session(config_store, session_store)
        logout(config_store, session_store, environ={})
        with pytest.raises(ResolutionError, match="no active session"):
            logout(config_store, session_store, environ={})

    def test_no_profile(self, config_store: ConfigStore, session_store: SessionStore) -> None:
        with pytest.raises(ResolutionError):
            logout(config_store, session_store, environ={})
