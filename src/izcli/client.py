"""Admin login call against an Izanami server.

:class:`AdminLoginClient` wraps :class:`httpx.Client` for the single
request the login flow needs: ``POST {url}/api/admin/login`` with HTTP
basic credentials. The server answers with the JWT in a cookie named
``token``.

Everything else the ``iz`` commands send to the server goes through the
domain API client and is not part of this package.
"""

from __future__ import annotations

from typing import Optional

import httpx

from izcli.exceptions import AuthError, ConnectionError_
from izcli.output import get_output

LOGIN_PATH = "/api/admin/login"
TOKEN_COOKIE = "token"
OIDC_AUTHORIZE_PATH = "/api/admin/openid-connect"


class AdminLoginClient:
    """Synchronous client for the admin login endpoint.

    Must be used as a context manager so that the underlying transport is
    properly opened and closed.

    Args:
        base_url: Server URL, with or without a trailing slash.
        timeout: Request timeout in seconds.
        verify: Verify TLS certificates.
        transport: Optional custom transport (tests use
            :class:`httpx.MockTransport`).

    Example::

        with AdminLoginClient("http://localhost:9000") as client:
            token = client.login("admin", "secret")
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30,
        verify: bool = True,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._verify = verify
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    # ------------------------------------------------------------------ #
    # Context manager
    # ------------------------------------------------------------------ #

    def __enter__(self) -> AdminLoginClient:
        try:
            self._client = httpx.Client(
                base_url=self._base_url,
                timeout=self._timeout,
                verify=self._verify,
                transport=self._transport,
            )
        except httpx.InvalidURL as exc:
            raise ConnectionError_(f"cannot reach {self._base_url}: {exc}") from exc
        return self

    def __exit__(self, *args: object) -> None:
        if self._client:
            self._client.close()
            self._client = None

    # ------------------------------------------------------------------ #
    # Requests
    # ------------------------------------------------------------------ #

    def login(self, username: str, password: str) -> str:
        """Exchange a username and password for a JWT.

        Args:
            username: Admin username.
            password: Admin password.

        Returns:
            The token from the ``token`` response cookie.

        Raises:
            AuthError: If the server rejects the credentials or returns no
                token.
            ConnectionError_: When the request cannot be sent or answered
                (network, timeout, unsupported scheme, malformed URL).
        """
        assert self._client is not None, "Client not initialised -- use as context manager"

        output = get_output()
        output.debug(f"Sending POST request to {self._base_url}{LOGIN_PATH}")
        try:
            response = self._client.post(LOGIN_PATH, auth=(username, password))
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise ConnectionError_(f"cannot reach {self._base_url}: {exc}") from exc

        if response.status_code != 200:
            raise AuthError(f"status {response.status_code}: invalid credentials")

        token = response.cookies.get(TOKEN_COOKIE)
        if not token:
            raise AuthError("no JWT token in login response")
        output.debug(f"Token received: <redacted> ({len(token)} chars)")
        return token


def oidc_authorization_url(base_url: str) -> str:
    """Return the URL a browser should open to start an OIDC login."""
    return f"{base_url.rstrip('/')}{OIDC_AUTHORIZE_PATH}"
