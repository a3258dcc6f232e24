"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~izcli.exceptions.IzError` subclass. Shell wrappers
can inspect the exit code to tell a missing tenant from a rejected password
without parsing stderr.

Example::

    $ iz login https://izanami.example.com admin --password wrong
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- credentials were rejected
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred, or a config/session file could not be read or written."""

EXIT_INVALID_USAGE = 2
"""Invalid arguments, or a required value could not be resolved from any source."""

EXIT_AUTH_FAILURE = 3
"""Authentication failed."""

EXIT_NOT_FOUND = 4
"""A named profile or session does not exist."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""
