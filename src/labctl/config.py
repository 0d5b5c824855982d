"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for labctl:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.labctl/`` on macOS and Windows. ``LABCTL_CONFIG_DIR`` overrides the
  configuration directory outright. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **Global config** -- A single :class:`~labctl.models.GlobalConfig`
  JSON file storing the default host and OAuth application defaults.
* **Precedence resolution** -- :func:`resolve_host` picks the target host
  from the CLI flag, the ``GITLAB_HOST`` environment variable, the global
  config, and finally ``gitlab.com``.
* **Environment tokens** -- :func:`env_token` exposes ``LABCTL_TOKEN`` /
  ``GITLAB_TOKEN``, which take precedence over stored credentials.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Optional

from labctl.exceptions import ConfigError, InvalidUsageError
from labctl.models import DEFAULT_HOST, GlobalConfig

_APP_NAME = "labctl"
_CONFIG_FILENAME = "config.json"

CONFIG_DIR_ENV = "LABCTL_CONFIG_DIR"
HOST_ENV = "GITLAB_HOST"
TOKEN_ENV_VARS = ("LABCTL_TOKEN", "GITLAB_TOKEN")

_INVALID_HOST_CHARS = "/:@?#"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    ``$LABCTL_CONFIG_DIR`` wins when set. Otherwise, on Linux/BSD:
    ``$XDG_CONFIG_HOME/labctl/`` (default ``~/.config/labctl/``); on
    macOS/Windows: ``~/.labctl/``.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    override = os.environ.get(CONFIG_DIR_ENV, "")
    if override:
        path = Path(override).expanduser()
    elif _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/labctl/`` (default ``~/.local/share/labctl/``).
    On macOS/Windows: ``~/.labctl/logs/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    When *mode* is given it is applied to the temp file before any content
    is written, so secrets are never readable with looser permissions.
    On any failure the temp file is cleaned up.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Global config ---


def _global_config_path() -> Path:
    """Path to the global config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration from the config directory.

    Returns:
        The deserialised :class:`~labctl.models.GlobalConfig`. If the
        file does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = _global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Persist the global configuration atomically to disk.

    Args:
        config: The configuration to save.
    """
    data = config.model_dump(mode="json")
    atomic_write(_global_config_path(), json.dumps(data, indent=2) + "\n")


# --- Hosts ---


def validate_host(host: str) -> str:
    """Check that *host* is a bare hostname and return it.

    Values with a scheme, path, port, credentials, query or fragment are
    rejected so a crafted ``--hostname`` can never redirect tokens to a
    different origin.

    Raises:
        InvalidUsageError: If *host* is empty or contains any of ``/:@?#``.
    """
    host = host.strip()
    if not host:
        raise InvalidUsageError("hostname cannot be empty")
    if any(ch in host for ch in _INVALID_HOST_CHARS):
        raise InvalidUsageError(
            f"invalid host {host!r}: must be a plain hostname (e.g. gitlab.example.com)"
        )
    return host


def resolve_host(
    cli_host: Optional[str] = None,
    config: Optional[GlobalConfig] = None,
) -> str:
    """Resolve the target host with full precedence chain.

    Precedence (high to low):
        1. CLI flag (``--hostname``)
        2. ``GITLAB_HOST`` environment variable
        3. ``default_host`` in ``config.json``
        4. ``gitlab.com``

    Returns:
        A validated bare hostname.
    """
    if cli_host:
        return validate_host(cli_host)
    env_host = os.environ.get(HOST_ENV)
    if env_host:
        return validate_host(env_host)
    if config is None:
        config = load_global_config()
    if config.default_host:
        return validate_host(config.default_host)
    return DEFAULT_HOST


def env_token() -> tuple[Optional[str], Optional[str]]:
    """Return ``(token, variable_name)`` for the first token set in the environment.

    Returns ``(None, None)`` when none of :data:`TOKEN_ENV_VARS` is set.
    """
    for var in TOKEN_ENV_VARS:
        value = os.environ.get(var)
        if value:
            return value, var
    return None, None
