"""Filesystem locations for the config and session documents.

:class:`PathProvider` is handed to :class:`~izcli.config.ConfigStore` and
:class:`~izcli.sessions.SessionStore` at construction time, so nothing in
the package reads a hard-coded path. Production code uses
:func:`default_paths`; tests build a provider rooted in a temporary
directory with :meth:`PathProvider.rooted_at`.

Layout:

* **Config directory** -- ``$XDG_CONFIG_HOME/iz/`` (default
  ``~/.config/iz/``) on Linux/BSD, ``%APPDATA%\\iz\\`` on Windows and
  ``~/.config/iz/`` elsewhere. Holds ``config.yaml``.
* **Session file** -- ``~/.izsessions``, outside the config directory.
* **Data directory** -- crash logs, under ``$XDG_DATA_HOME/iz/``.
"""

from __future__ import annotations

import os
import platform
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

_APP_NAME = "iz"
_CONFIG_FILENAME = "config.yaml"
_SESSIONS_FILENAME = ".izsessions"


# --- Platform helpers ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _is_windows() -> bool:
    return platform.system() == "Windows"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def _default_config_dir() -> Path:
    if _is_windows():
        appdata = os.environ.get("APPDATA", "")
        if appdata:
            return Path(appdata) / _APP_NAME
    return _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME


def _default_sessions_path() -> Path:
    return Path.home() / _SESSIONS_FILENAME


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/iz/`` (default ``~/.local/share/iz/``).
    Elsewhere: ``<config dir>/logs/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _default_config_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Provider ---


@dataclass(frozen=True)
class PathProvider:
    """Injectable source of the config directory and session file paths.

    Both locations are computed lazily through the supplied callables so
    that environment changes (``XDG_CONFIG_HOME``, ``HOME``) made before a
    store is used are honoured.

    Args:
        config_dir_fn: Returns the directory holding ``config.yaml``.
        sessions_path_fn: Returns the full path of the session file.

    Example::

        paths = PathProvider.rooted_at(tmp_path)
        store = ConfigStore(paths)
    """

    config_dir_fn: Callable[[], Path]
    sessions_path_fn: Callable[[], Path]

    def config_dir(self) -> Path:
        """Directory holding the config document (not created here)."""
        return self.config_dir_fn()

    def config_path(self) -> Path:
        """Full path of ``config.yaml``."""
        return self.config_dir() / _CONFIG_FILENAME

    def sessions_path(self) -> Path:
        """Full path of the session document."""
        return self.sessions_path_fn()

    @classmethod
    def rooted_at(cls, root: Path) -> PathProvider:
        """Build a provider that keeps everything under *root*.

        The config document lives at ``root/config/config.yaml`` and the
        session document at ``root/.izsessions``.
        """
        root = Path(root)
        return cls(
            config_dir_fn=lambda: root / "config",
            sessions_path_fn=lambda: root / _SESSIONS_FILENAME,
        )


def default_paths() -> PathProvider:
    """Return the production :class:`PathProvider` for the current user."""
    return PathProvider(
        config_dir_fn=_default_config_dir,
        sessions_path_fn=_default_sessions_path,
    )
