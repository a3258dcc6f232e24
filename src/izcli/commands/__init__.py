"""Built-in CLI sub-commands for ``iz``.

* :mod:`~izcli.commands.login` -- ``iz login`` and ``iz logout``.
* :mod:`~izcli.commands.config` -- global settings in ``config.yaml``.
* :mod:`~izcli.commands.profiles` -- named connection profiles.
* :mod:`~izcli.commands.sessions` -- stored login sessions.

Multi-command groups export a :class:`typer.Typer` sub-application;
``login`` and ``logout`` are plain callbacks registered on the root app.

The helpers below read the per-invocation state that
:func:`izcli.app.main_callback` leaves in ``ctx.obj``: the
:class:`~izcli.paths.PathProvider` and the global
:class:`~izcli.resolver.CliFlags`.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

import typer

from izcli.config import ConfigStore
from izcli.exceptions import IzError
from izcli.models import ResolvedConfig
from izcli.output import debug, error, warning
from izcli.paths import PathProvider, default_paths
from izcli.resolver import CliFlags, describe_sources, resolve
from izcli.sessions import SessionStore


def get_paths(ctx: typer.Context) -> PathProvider:
    obj = ctx.obj or {}
    return obj.get("paths") or default_paths()


def get_flags(ctx: typer.Context) -> CliFlags:
    obj = ctx.obj or {}
    return obj.get("flags") or CliFlags()


def is_forced(ctx: typer.Context) -> bool:
    return bool(ctx.obj.get("force", False)) if ctx.obj else False


def config_store(ctx: typer.Context) -> ConfigStore:
    """A :class:`ConfigStore` over this invocation's paths."""
    return ConfigStore(get_paths(ctx))


def session_store(ctx: typer.Context) -> SessionStore:
    """A :class:`SessionStore` over this invocation's paths."""
    return SessionStore(get_paths(ctx))


def resolved_config(ctx: typer.Context) -> ResolvedConfig:
    """Resolve the effective configuration and report its warnings.

    Field provenance is logged with ``debug()`` so that ``--verbose``
    shows where every value came from.
    """
    config = resolve(get_flags(ctx), config_store(ctx), session_store(ctx))
    for line in describe_sources(config):
        debug(line)
    for message in config.warnings:
        warning(message)
    return config


@contextmanager
def reporting_errors() -> Iterator[None]:
    """Print an :class:`IzError` on stderr and exit with its code.

    Example::

        with reporting_errors():
            store.set_active_profile(name)
    """
    try:
        yield
    except IzError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
