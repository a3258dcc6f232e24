"""izcli -- command-line administration client for the Izanami feature-flag service.

This package holds the part of ``iz`` that every other command depends on:
deciding, for each invocation, which server URL, tenant, project and
credentials to use, and keeping named *profiles* and *sessions* consistent
across repeated logins.

Typical workflow::

    iz login https://izanami.example.com admin   # authenticate, create a profile
    iz profiles list                             # see what is configured
    iz config set output-format json             # change a global default

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models for profiles, sessions, and resolved config.
    paths: Injectable filesystem locations.
    config: Config document store (profiles and global settings).
    sessions: Session document store.
    resolver: Flag/env/profile/session precedence resolution.
    login: Login flow (password and OIDC).
    client: Admin login HTTP call.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.4.0"
