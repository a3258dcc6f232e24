"""Login flow: authenticate, pick a profile, persist the session, link the two.

:class:`LoginFlow` runs the states of ``iz login`` in order::

    ResolveTarget -> Authenticate -> DetermineProfile -> PersistSession -> LinkProfile -> Done

* **ResolveTarget** (:meth:`LoginFlow.resolve_target`) -- work out the
  server URL and username from 0, 1 or 2 positional arguments, the
  ``--url`` flag, ``IZ_BASE_URL`` and the active profile/session, and
  choose between password and OIDC.
* **Authenticate** -- password: :meth:`LoginFlow.authenticate_password`.
  OIDC is two-phase: :meth:`LoginFlow.begin_oidc` returns a
  :class:`PendingOidcLogin` carrying the authorization URL, and
  :meth:`LoginFlow.complete_oidc` consumes the token obtained out of band.
* **DetermineProfile** (:meth:`LoginFlow.determine_profile_name`) -- the
  active profile if its effective URL matches, else the first profile that
  matches, else a new one named interactively.
* **PersistSession** (:meth:`LoginFlow.persist_session`) -- refresh every
  session of the same ``(url, username)`` identity and write the canonical
  one.
* **LinkProfile** (:meth:`LoginFlow.link_profile`) -- point the profile at
  the session; new profiles become active, existing ones only when no
  profile is active.

Nothing is written before PersistSession, so a failed authentication leaves
both documents untouched. A failure in LinkProfile is reported on the
result rather than raised: the session is already usable.
"""

from __future__ import annotations

import base64
import binascii
import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional, Sequence
from urllib.parse import urlsplit

from izcli.client import AdminLoginClient, oidc_authorization_url
from izcli.config import ConfigStore, normalize_url
from izcli.exceptions import AuthError, IzError, ResolutionError
from izcli.models import AuthMethod, Profile, Session
from izcli.output import debug, info, warning
from izcli.resolver import ENV_BASE_URL, ENV_LEGACY_BASE_URL, CliFlags, select_profile
from izcli.sessions import SessionStore, refresh_identity

PROFILE_NAME_SUGGESTIONS = ("local", "sandbox", "build", "prod")
OIDC_FALLBACK_USERNAME = "oidc-user"

Authenticator = Callable[[str, str, str, float, bool], str]
"""``(url, username, password, timeout, verify) -> token``."""


# --- Pure helpers ---


def is_url(value: str) -> bool:
    """Return ``True`` when *value* is an ``http``/``https`` URL with a host."""
    parts = urlsplit(value)
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def suggest_profile_name(url: str) -> str:
    """Derive a profile name from a server URL.

    Scheme, port and path are dropped; localhost-like hosts become
    ``default`` and dots become dashes.

    Example::

        >>> suggest_profile_name("https://izanami.example.com:8443/admin")
        'izanami-example-com'
        >>> suggest_profile_name("http://localhost:9000")
        'default'
    """
    host = urlsplit(url if "://" in url else f"//{url}").hostname or ""
    if host in ("", "localhost", "127.0.0.1", "::1"):
        return "default"
    return host.replace(".", "-")


def session_name_for(profile_name: str, username: str, method: AuthMethod) -> str:
    """Deterministic session name for a profile/username pair."""
    suffix = "oidc" if method == AuthMethod.OIDC else "session"
    return f"{profile_name}-{username}-{suffix}"


def decode_jwt_username(token: str) -> str:
    """Read a display username from a JWT payload without verifying it.

    Claims are tried in order: ``username``, ``name``, ``sub``, then the
    local part of ``email``. A malformed token or one with none of these
    claims yields ``"oidc-user"``. The token only labels the local session;
    the server validates it on first use.
    """
    parts = token.split(".")
    if len(parts) < 2:
        return OIDC_FALLBACK_USERNAME
    payload = parts[1]
    payload += "=" * (-len(payload) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload.encode("ascii")))
    except (binascii.Error, ValueError, UnicodeError):
        return OIDC_FALLBACK_USERNAME
    if not isinstance(claims, dict):
        return OIDC_FALLBACK_USERNAME

    for claim in ("username", "name", "sub"):
        value = claims.get(claim)
        if isinstance(value, str) and value:
            return value
    email = claims.get("email")
    if isinstance(email, str) and "@" in email:
        local = email.split("@", 1)[0]
        if local:
            return local
    return OIDC_FALLBACK_USERNAME


def password_login(url: str, username: str, password: str, timeout: float, verify: bool) -> str:
    """Authenticate against the admin login endpoint and return the JWT."""
    with AdminLoginClient(url, timeout=timeout, verify=verify) as client:
        return client.login(username, password)


# --- Flow data ---


@dataclass
class LoginRequest:
    """Everything the user supplied to ``iz login``."""

    args: Sequence[str] = ()
    password: Optional[str] = None
    name: Optional[str] = None
    oidc: bool = False
    token: Optional[str] = None
    no_browser: bool = False


@dataclass
class LoginTarget:
    """Outcome of ResolveTarget: who to authenticate as, where, and how."""

    url: str
    username: Optional[str]
    method: AuthMethod


@dataclass
class PendingOidcLogin:
    """Phase-one result of an OIDC login, waiting for a token."""

    url: str
    authorization_url: str
    session_name: Optional[str] = None


@dataclass
class LoginResult:
    """What a completed login changed."""

    url: str
    username: str
    method: AuthMethod
    session_name: str
    profile_name: str
    profile_created: bool = False
    profile_activated: bool = False
    active_profile: Optional[str] = None
    refreshed_sessions: list[str] = field(default_factory=list)
    removed_sessions: list[str] = field(default_factory=list)
    link_error: Optional[str] = None


# --- Flow ---


class LoginFlow:
    """Orchestrates ``iz login`` against injected stores and interaction callbacks.

    Args:
        config_store: Profile storage.
        session_store: Session storage.
        flags: Global CLI flags (``--url`` is used as a login default).
        prompt: ``(text, default) -> answer`` for visible prompts.
        read_secret: ``(text) -> answer`` for hidden input (password, token).
        open_browser: ``(url) -> opened`` used by OIDC; may raise.
        authenticator: Password login call; defaults to :func:`password_login`.
        environ: Environment to consult (``os.environ`` when ``None``).
        timeout: Login request timeout in seconds.
        verify: Verify TLS certificates.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        session_store: SessionStore,
        flags: Optional[CliFlags] = None,
        prompt: Optional[Callable[[str, str], str]] = None,
        read_secret: Optional[Callable[[str], str]] = None,
        open_browser: Optional[Callable[[str], bool]] = None,
        authenticator: Optional[Authenticator] = None,
        environ: Optional[Mapping[str, str]] = None,
        timeout: float = 30,
        verify: bool = True,
    ) -> None:
        self._config = config_store
        self._sessions = session_store
        self._flags = flags or CliFlags()
        self._prompt = prompt or _no_prompt
        self._read_secret = read_secret or _no_secret
        self._open_browser = open_browser
        self._authenticate = authenticator or password_login
        self._environ = os.environ if environ is None else environ
        self._timeout = timeout
        self._verify = verify

    # ------------------------------------------------------------------ #
    # Orchestration
    # ------------------------------------------------------------------ #

    def run(self, request: LoginRequest) -> LoginResult:
        """Run the whole flow for *request*.

        Raises:
            ResolutionError: If the URL or username cannot be determined.
            AuthError: If authentication fails; nothing is persisted.
        """
        target = self.resolve_target(request)
        if target.method == AuthMethod.OIDC:
            pending = self.begin_oidc(target.url, session_name=request.name)
            token = request.token
            if token:
                debug("Token provided via --token, skipping browser flow")
            else:
                self._present_authorization_url(pending, request.no_browser)
                token = self._read_secret("Paste the token from the browser")
            return self.complete_oidc(pending, token)

        username = _require_username(target)
        token = self.authenticate_password(target, request.password)
        return self._finish(target.url, username, token, AuthMethod.PASSWORD, request.name)

    # ------------------------------------------------------------------ #
    # ResolveTarget
    # ------------------------------------------------------------------ #

    def _defaults(self) -> tuple[Optional[str], Optional[str], Optional[Session]]:
        """Default URL, username and prior session from flag, env and active profile."""
        url = self._flags.url or self._environ.get(ENV_BASE_URL) or self._environ.get(
            ENV_LEGACY_BASE_URL
        )
        username: Optional[str] = None
        session: Optional[Session] = None
        try:
            active = select_profile(self._flags, self._config, self._sessions, self._environ)
        except IzError as exc:
            debug(f"Could not load config for defaults: {exc}")
            return url or None, None, None
        if active.profile is not None:
            session = active.session
            if not url:
                url = active.profile.base_url or (session.url if session else None)
            if session is not None and session.username:
                username = session.username
            elif active.profile.username:
                username = active.profile.username
        return url or None, username, session

    def _prior_method(
        self, url: str, username: Optional[str], active_session: Optional[Session]
    ) -> Optional[AuthMethod]:
        """Auth method recorded by the most recent session for this identity."""
        if active_session is not None and normalize_url(active_session.url) == normalize_url(url):
            if username is None or active_session.username == username:
                return active_session.auth_method
        doc = self._sessions.load()
        candidates = [
            s
            for s in doc.sessions.values()
            if normalize_url(s.url) == normalize_url(url)
            and (username is None or s.username == username)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda s: _aware(s.created_at)).auth_method

    def resolve_target(self, request: LoginRequest) -> LoginTarget:
        """Determine URL, username and method from arguments and stored defaults.

        Rules by argument count:

        * 2 args -- URL and username.
        * 1 URL arg -- username from the active profile's session.
        * 1 other arg -- it is the username; URL from flag, env or profile.
        * 0 args -- both from flag, env or profile.

        A prior OIDC session for the identity switches to OIDC unless a
        password was given.

        Raises:
            ResolutionError: Naming whichever value is missing and the
                command form that supplies it.
        """
        args = list(request.args)
        if len(args) > 2:
            raise ResolutionError("too many arguments (use: iz login [url] [username])")
        default_url, default_user, prior = self._defaults()

        if len(args) == 2:
            url, username = args[0], args[1]
        elif len(args) == 1 and is_url(args[0]):
            url, username = args[0], default_user
        elif len(args) == 1:
            url, username = default_url, args[0]
        else:
            url, username = default_url, default_user

        if request.oidc or request.token:
            if not url:
                raise ResolutionError(
                    "base URL is required (use --url flag, provide as argument, "
                    "or set IZ_BASE_URL)"
                )
            return LoginTarget(url=url, username=username, method=AuthMethod.OIDC)

        if url and request.password is None:
            if self._prior_method(url, username, prior) == AuthMethod.OIDC:
                debug("Previous session used OIDC; switching to the OIDC flow")
                return LoginTarget(url=url, username=username, method=AuthMethod.OIDC)

        if not url and not username:
            raise ResolutionError(
                "no URL or username available for login (use: iz login <url> <username>)"
            )
        if not url:
            raise ResolutionError(
                f"no base URL available for login (use: iz login <url> {username})"
            )
        if not username:
            raise ResolutionError(
                f"no username available for login (use: iz login {url} <username>)"
            )
        return LoginTarget(url=url, username=username, method=AuthMethod.PASSWORD)

    # ------------------------------------------------------------------ #
    # Authenticate
    # ------------------------------------------------------------------ #

    def authenticate_password(self, target: LoginTarget, password: Optional[str]) -> str:
        """Obtain a JWT with the password flow.

        Raises:
            ResolutionError: If the target carries no username.
            AuthError: On an empty password or when the server call fails.
                The message is prefixed with ``login failed:``; network
                failures keep their connection exit code.
        """
        username = _require_username(target)
        if password is None:
            password = self._read_secret("Password")
        else:
            debug(f"Password: <redacted from flag> ({len(password)} chars)")
        if not password:
            raise AuthError("password cannot be empty")

        info(f"Authenticating with {target.url}...")
        try:
            return self._authenticate(
                target.url, username, password, self._timeout, self._verify
            )
        except IzError as exc:
            debug(f"Login failed: {exc}")
            raise AuthError(f"login failed: {exc}", exit_code=exc.exit_code) from exc

    def begin_oidc(self, url: str, session_name: Optional[str] = None) -> PendingOidcLogin:
        """Phase one of OIDC: build the authorization URL, write nothing."""
        pending = PendingOidcLogin(
            url=url,
            authorization_url=oidc_authorization_url(url),
            session_name=session_name,
        )
        debug(f"Login URL: {pending.authorization_url}")
        return pending

    def complete_oidc(self, pending: PendingOidcLogin, token: str) -> LoginResult:
        """Phase two of OIDC: label the token with a username and persist it.

        Raises:
            AuthError: If *token* is empty.
        """
        token = (token or "").strip()
        if not token:
            raise AuthError("no token provided")
        username = decode_jwt_username(token)
        debug(f"Decoded username from JWT: {username}")
        return self._finish(pending.url, username, token, AuthMethod.OIDC, pending.session_name)

    def _present_authorization_url(self, pending: PendingOidcLogin, no_browser: bool) -> None:
        if not no_browser and self._open_browser is not None:
            info("Opening browser for OIDC authentication...")
            try:
                opened = self._open_browser(pending.authorization_url)
            except Exception as exc:  # noqa: BLE001
                warning(f"Could not open browser: {exc}")
            else:
                if not opened:
                    warning("Could not open browser")
        info(f"\nIf the browser doesn't open, visit:\n  {pending.authorization_url}\n")
        info("After signing in, copy the token shown and paste it below.")

    # ------------------------------------------------------------------ #
    # DetermineProfile
    # ------------------------------------------------------------------ #

    def determine_profile_name(self, url: str) -> tuple[str, bool]:
        """Pick the profile a login for *url* belongs to.

        Returns:
            ``(name, created)`` where ``created`` is ``True`` when the name
            was chosen interactively for a profile that does not exist yet.
        """
        doc = self._config.load()
        if not doc.profiles:
            info("\nNo profiles exist yet. Let's create one!")
            return self.prompt_profile_name(url), True

        match = self._config.find_profile_by_base_url(url, self._sessions.load())
        if match is not None:
            return match, False
        return self.prompt_profile_name(url), True

    def prompt_profile_name(self, url: str) -> str:
        """Ask for a new profile name, offering one derived from *url*."""
        suggested = suggest_profile_name(url)
        info(f"\nProfile name suggestions: {', '.join(PROFILE_NAME_SUGGESTIONS)}")
        answer = self._prompt("Enter profile name", suggested)
        return (answer or "").strip() or suggested

    # ------------------------------------------------------------------ #
    # PersistSession
    # ------------------------------------------------------------------ #

    def persist_session(
        self,
        url: str,
        username: str,
        token: str,
        method: AuthMethod,
        session_name: str,
        profile_name: Optional[str] = None,
    ) -> tuple[list[str], list[str]]:
        """Write the session, refreshing every alias of the same identity.

        Every session sharing ``(url, username)`` gets the new token, auth
        method and timestamp in place. When *session_name* is new, other
        same-identity sessions referenced by *profile_name* alone (the
        relink would orphan them) are removed; sessions other profiles
        rely on, or that no profile references, are kept.

        Returns:
            ``(refreshed, removed)`` session names, excluding *session_name*.
        """
        doc = self._sessions.load()
        now = datetime.now(timezone.utc)
        is_new = session_name not in doc.sessions

        refreshed = [
            name
            for name in refresh_identity(doc, url, username, token, method, now)
            if name != session_name
        ]

        removed: list[str] = []
        if is_new and refreshed:
            references = self._session_references()
            for name in list(refreshed):
                holders = references.get(name, set())
                if holders == {profile_name}:
                    info(f"   Replacing existing session: {name}")
                    del doc.sessions[name]
                    refreshed.remove(name)
                    removed.append(name)

        doc.sessions[session_name] = Session(
            url=url,
            username=username,
            jwt_token=token,
            auth_method=method,
            created_at=now,
        )
        self._sessions.save(doc)
        return refreshed, removed

    def _session_references(self) -> dict[str, set[Optional[str]]]:
        references: dict[str, set[Optional[str]]] = {}
        try:
            profiles = self._config.load().profiles
        except IzError as exc:
            debug(f"Could not read profiles: {exc}")
            return references
        for name, profile in profiles.items():
            if profile.session:
                references.setdefault(profile.session, set()).add(name)
        return references

    # ------------------------------------------------------------------ #
    # LinkProfile
    # ------------------------------------------------------------------ #

    def link_profile(self, profile_name: str, session_name: str, username: str) -> tuple[bool, bool]:
        """Point *profile_name* at *session_name*, creating it if needed.

        A new profile always becomes active. An existing profile becomes
        active only when no profile is currently active.

        Returns:
            ``(created, activated)``.
        """
        doc = self._config.load()
        existing = doc.profiles.get(profile_name)
        nothing_active = not doc.active_profile or doc.active_profile not in doc.profiles

        if existing is None:
            doc.profiles[profile_name] = Profile(session=session_name, username=username)
            doc.active_profile = profile_name
            created, activated = True, True
        else:
            existing.session = session_name
            existing.username = username
            created, activated = False, nothing_active
            if activated:
                doc.active_profile = profile_name
        self._config.save(doc)
        return created, activated

    # ------------------------------------------------------------------ #
    # Shared tail
    # ------------------------------------------------------------------ #

    def _finish(
        self,
        url: str,
        username: str,
        token: str,
        method: AuthMethod,
        custom_session_name: Optional[str],
    ) -> LoginResult:
        profile_name, _ = self.determine_profile_name(url)
        session_name = custom_session_name or session_name_for(profile_name, username, method)
        debug(f"Profile: {profile_name}, session name: {session_name}")

        refreshed, removed = self.persist_session(
            url, username, token, method, session_name, profile_name
        )
        result = LoginResult(
            url=url,
            username=username,
            method=method,
            session_name=session_name,
            profile_name=profile_name,
            refreshed_sessions=refreshed,
            removed_sessions=removed,
        )
        try:
            result.profile_created, result.profile_activated = self.link_profile(
                profile_name, session_name, username
            )
            result.active_profile = self._config.get_active_profile_name()
        except (IzError, OSError) as exc:
            result.link_error = str(exc)
        return result


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _require_username(target: LoginTarget) -> str:
    if not target.username:
        raise ResolutionError(
            f"no username available for login (use: iz login {target.url} <username>)"
        )
    return target.username


def _no_prompt(text: str, default: str) -> str:
    raise ResolutionError(f"cannot prompt for '{text}' in non-interactive mode")


def _no_secret(text: str) -> str:
    raise AuthError(f"cannot read '{text}' in non-interactive mode")


def logout(
    config_store: ConfigStore,
    session_store: SessionStore,
    flags: Optional[CliFlags] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    """Clear the token of the selected profile's session, keeping the entry.

    Returns:
        The name of the session whose token was cleared.

    Raises:
        ResolutionError: If there is no active profile, it has no session,
            or the session holds no token.
    """
    active = select_profile(flags or CliFlags(), config_store, session_store, environ)
    if active.session_name is None or active.session is None or not active.session.jwt_token:
        raise ResolutionError("no active session (use 'iz login' to authenticate)")

    doc = session_store.load()
    doc.sessions[active.session_name].jwt_token = ""
    session_store.save(doc)
    return active.session_name
