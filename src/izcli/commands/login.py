"""Login commands -- authenticate against an Izanami server.

``iz login`` runs :class:`~izcli.login.LoginFlow` with Typer prompts and
the system browser wired in; ``iz logout`` clears the token of the active
profile's session.

Typical workflow::

    iz login http://localhost:9000 admin     # first login, names a profile
    iz login                                 # re-login with stored defaults
    iz login --oidc                          # browser-based SSO
    iz logout
"""

from __future__ import annotations

import webbrowser
from typing import List, Optional

import typer

from izcli.commands import (
    config_store,
    get_flags,
    reporting_errors,
    resolved_config,
    session_store,
)
from izcli.exceptions import IzError
from izcli.output import debug, info, success, suggest, warning


def _prompt(text: str, default: str) -> str:
    return typer.prompt(text, default=default)


def _read_secret(text: str) -> str:
    return typer.prompt(text, hide_input=True, default="", show_default=False)


def login_command(
    ctx: typer.Context,
    args: Optional[List[str]] = typer.Argument(
        None, metavar="[URL] [USERNAME]", help="Server URL and/or admin username."
    ),
    password: Optional[str] = typer.Option(
        None, "--password", help="Password (prompted when omitted)."
    ),
    name: Optional[str] = typer.Option(
        None, "--name", help="Session name (default: <profile>-<username>-session)."
    ),
    oidc: bool = typer.Option(False, "--oidc", help="Log in through OpenID Connect."),
    token: Optional[str] = typer.Option(
        None, "--token", help="JWT obtained from the OIDC login page; skips the browser."
    ),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the OIDC URL instead of opening a browser."
    ),
) -> None:
    """Log in and save the session to a profile.

    With two arguments the URL and username are explicit. A single URL
    argument reuses the active profile's username; any other single
    argument is the username for the active profile's URL. With no
    arguments both come from ``--url``, ``IZ_BASE_URL`` and the active
    profile.

    Example::

        iz login http://localhost:9000 admin
        iz login admin --password secret
        iz login https://izanami.example.com --oidc --no-browser
    """
    from izcli.login import LoginFlow, LoginRequest

    flags = get_flags(ctx)
    with reporting_errors():
        timeout, verify = 30, True
        try:
            config = resolved_config(ctx)
        except IzError as exc:
            debug(f"Using default timeout: {exc}")
        else:
            timeout, verify = config.timeout, not config.insecure_skip_verify

        flow = LoginFlow(
            config_store(ctx),
            session_store(ctx),
            flags=flags,
            prompt=_prompt,
            read_secret=_read_secret,
            open_browser=webbrowser.open,
            timeout=timeout,
            verify=verify,
        )
        result = flow.run(
            LoginRequest(
                args=args or [],
                password=password,
                name=name,
                oidc=oidc,
                token=token,
                no_browser=no_browser,
            )
        )

    success(f"Successfully logged in as {result.username}")
    info(f"   Session saved as: {result.session_name}")
    if result.refreshed_sessions:
        info(f"   Also refreshed: {', '.join(result.refreshed_sessions)}")

    if result.link_error is not None:
        warning(f"Failed to update profile '{result.profile_name}': {result.link_error}")
        suggest(f"Run 'iz profiles set session {result.session_name}' to link it manually")
        return
    if result.profile_created:
        info(f"   Profile '{result.profile_name}' created")
    else:
        info(f"   Using existing profile: {result.profile_name} (session updated)")
    if result.active_profile:
        info(f"   Active profile: {result.active_profile}")


def logout_command(ctx: typer.Context) -> None:
    """Log out of the active profile's session.

    The session entry is kept with its token cleared, so ``iz login``
    can refresh it later without re-linking the profile.
    """
    from izcli.login import logout

    with reporting_errors():
        session_name = logout(config_store(ctx), session_store(ctx), get_flags(ctx))
    success(f"Logged out of session '{session_name}'")
    suggest("Use 'iz login <url> <username>' to login again")
