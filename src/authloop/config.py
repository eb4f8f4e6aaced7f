"""Configuration management with XDG paths, atomic writes, and normalisation.

This module handles all persistent configuration for authloop:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.authloop/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_data_dir`, :func:`get_profiles_dir`.
* **Profiles** -- One JSON file per OAuth client, each deserialised into a
  :class:`~authloop.models.Profile`. Managed via :func:`load_profile`,
  :func:`save_profile`, :func:`delete_profile`.
* **Credential resolution** -- :func:`resolve_credential` reads client ids
  and secrets from env vars, files, interactive prompts, or literals.
* **Server config** -- :func:`build_server_config` turns loose settings
  (including the deprecated ``address``/``ports`` pair) into the frozen
  :class:`~authloop.models.ServerConfig` consumed by
  :mod:`authloop.server`. Inputs are never modified.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import getpass
import json
import os
import platform
import sys
import tempfile
from pathlib import Path
from typing import Any, Optional, Sequence

from authloop.exceptions import ConfigurationError
from authloop.models import (
    DEFAULT_BIND_ADDRESS,
    DEFAULT_SUCCESS_HTML,
    Profile,
    ServerConfig,
    ServerSettings,
    TLSConfig,
)

_APP_NAME = "authloop"
_DEFAULT_DEPRECATED_HOST = "127.0.0.1"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform follows the XDG Base Directory layout (Linux/FreeBSD)."""
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

    On Linux/BSD: ``$XDG_CONFIG_HOME/authloop/`` (default ``~/.config/authloop/``).
    On macOS/Windows: ``~/.authloop/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/authloop/`` (default ``~/.local/share/authloop/``).
    On macOS/Windows: ``~/.authloop/data/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_profiles_dir() -> Path:
    """Return the profiles directory (``<config_dir>/profiles/``), creating it if necessary."""
    path = get_config_dir() / "profiles"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. Profiles may hold
    a literal client secret, so the file is created with mode 0600.
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
        os.chmod(tmp_path, 0o600)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Profiles ---


def _profile_path(name: str) -> Path:
    """Path to a named profile's JSON file."""
    if not name or "/" in name or "\\" in name or name.startswith("."):
        raise ConfigurationError(f"Invalid profile name '{name}'")
    return get_profiles_dir() / f"{name}.json"


def list_profiles() -> list[str]:
    """Return all profile names found in the profiles directory, sorted alphabetically."""
    return sorted(p.stem for p in get_profiles_dir().glob("*.json") if p.is_file())


def load_profile(name: str) -> Profile:
    """Load and validate a profile from disk.

    Raises:
        ConfigurationError: If the profile file does not exist, contains
            invalid JSON, or fails Pydantic validation.
    """
    path = _profile_path(name)
    if not path.is_file():
        raise ConfigurationError(f"Profile '{name}' not found at {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return Profile.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid profile '{name}' at {path}: {exc}") from exc


def save_profile(profile: Profile) -> Path:
    """Persist a profile atomically and return the path it was written to."""
    path = _profile_path(profile.name)
    data = profile.model_dump(mode="json")
    _atomic_write(path, json.dumps(data, indent=2) + "\n")
    return path


def delete_profile(name: str) -> None:
    """Delete a profile's JSON file from disk.

    Raises:
        ConfigurationError: If the profile does not exist.
    """
    path = _profile_path(name)
    if not path.is_file():
        raise ConfigurationError(f"Profile '{name}' not found at {path}")
    path.unlink()


def profile_exists(name: str) -> bool:
    return _profile_path(name).is_file()


def resolve_profile_name(cli_profile: Optional[str] = None) -> Optional[str]:
    """Pick the active profile name.

    Precedence (high to low): the ``--profile`` flag, the
    ``AUTHLOOP_PROFILE`` environment variable, then the only saved profile
    if exactly one exists.
    """
    if cli_profile:
        return cli_profile
    env_profile = os.environ.get("AUTHLOOP_PROFILE")
    if env_profile:
        return env_profile
    profiles = list_profiles()
    if len(profiles) == 1:
        return profiles[0]
    return None


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a credential from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - ``"prompt"`` -- prompts user interactively (requires a TTY)
        - ``"literal:VALUE"`` -- the value itself

    Raises:
        ConfigurationError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigurationError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigurationError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigurationError(f"Cannot read credential file {path}: {exc}") from exc

    if source == "prompt":
        if not sys.stdin.isatty():
            raise ConfigurationError(
                "Cannot prompt for credentials: stdin is not a TTY (source: prompt)"
            )
        return getpass.getpass("Enter credential: ")

    if source.startswith("literal:"):
        return source[8:]

    raise ConfigurationError(f"Unknown credential source format: {source}")


# --- Server configuration ---


def normalize_bind_addresses(
    bind_addresses: Sequence[str],
    address: Optional[str] = None,
    ports: Sequence[int] = (),
) -> tuple[str, ...]:
    """Merge the deprecated ``address``/``ports`` pair into the candidate list.

    Each deprecated port becomes ``<address>:<port>`` (``address`` defaults
    to ``127.0.0.1``) appended after the explicit candidates. Without
    any candidate the result is ``("127.0.0.1:0",)``. ``address`` alone is
    ignored, as it only ever qualified ``ports``.

    Example::

        >>> normalize_bind_addresses(["localhost:8000"], None, [18000])
        ('localhost:8000', '127.0.0.1:18000')
    """
    candidates = list(bind_addresses)
    if ports:
        host = address or _DEFAULT_DEPRECATED_HOST
        candidates.extend(f"{host}:{port}" for port in ports)
    if not candidates:
        candidates.append(DEFAULT_BIND_ADDRESS)
    return tuple(candidates)


def _read_success_html(path: Optional[str]) -> str:
    if not path:
        return DEFAULT_SUCCESS_HTML
    file_path = Path(path).expanduser()
    try:
        return file_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Cannot read success page {file_path}: {exc}") from exc


def build_server_config(
    settings: ServerSettings,
    *,
    middleware: Any = None,
    ready: Any = None,
) -> ServerConfig:
    """Validate *settings* and produce the immutable server configuration.

    Args:
        settings: Loose server settings from a profile or CLI flags.
        middleware: Object with ``wrap(handler) -> handler``; identity if ``None``.
        ready: ``queue.Queue`` or callable receiving the server URL.

    Raises:
        ConfigurationError: For a callback path without a leading slash, a
            non-positive shutdown grace, an unusable ready sink or
            middleware, or an unreadable success page.
    """
    if not settings.callback_path.startswith("/"):
        raise ConfigurationError(
            f"Callback path '{settings.callback_path}' must start with '/'"
        )
    if settings.shutdown_grace <= 0:
        raise ConfigurationError("Shutdown grace period must be positive")
    if ready is not None and not (hasattr(ready, "put_nowait") or callable(ready)):
        raise ConfigurationError("The ready sink must be a queue or a callable")
    if middleware is not None and not callable(getattr(middleware, "wrap", None)):
        raise ConfigurationError("Middleware must provide a wrap(handler) method")

    tls = None
    if settings.cert_file or settings.key_file:
        tls = TLSConfig(cert_file=settings.cert_file, key_file=settings.key_file)

    kwargs: dict[str, Any] = {}
    if middleware is not None:
        kwargs["middleware"] = middleware
    return ServerConfig(
        bind_addresses=normalize_bind_addresses(
            settings.bind_addresses, settings.address, settings.ports
        ),
        tls=tls,
        callback_path=settings.callback_path,
        success_html=_read_success_html(settings.success_html_file),
        ready=ready,
        shutdown_grace=settings.shutdown_grace,
        **kwargs,
    )
