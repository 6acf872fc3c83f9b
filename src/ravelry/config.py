"""Profile store and runtime settings.

This module is the only place that touches the file system:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.ravelry/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **Profile store** -- a single ``config.json`` holding every named
  profile (Basic key pair or OAuth2 client + token set) and the name of
  the current one. Written atomically with ``0o600`` permissions since it
  contains secrets.
* **Settings** -- :func:`load_settings` reads ``RAVELRY_*`` environment
  variables into a :class:`~ravelry.models.Settings`.
* **Token persistence** -- :func:`make_token_persister` returns the
  listener a :class:`~ravelry.auth.tokens.TokenStore` calls after every
  refresh, writing the new token set back into its profile.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Callable, Optional, Union

from pydantic import ValidationError

from ravelry.exceptions import ConfigError
from ravelry.models import (
    BasicProfile,
    OAuth2Profile,
    ProfileConfig,
    Settings,
    TokenSet,
)

_APP_NAME = "ravelry"
_CONFIG_FILENAME = "config.json"

ENV_PREFIX = "RAVELRY_"

AnyProfile = Union[BasicProfile, OAuth2Profile]


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    return Path.home().joinpath(*default_segments)


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/ravelry/`` (default ``~/.config/ravelry/``).
    On macOS/Windows: ``~/.ravelry/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = Path.home() / f".{_APP_NAME}"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/ravelry/`` (default ``~/.local/share/ravelry/``).
    On macOS/Windows: ``~/.ravelry/logs/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = Path.home() / f".{_APP_NAME}" / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def config_path() -> Path:
    """Path to the profile store file."""
    return get_config_dir() / _CONFIG_FILENAME


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Replace *path* with *data* atomically, readable by the owner only.

    The temporary file lives next to *path* so ``os.replace`` is a rename
    on the same file system. It is chmod-ed before any secret is written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path: Optional[str] = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        ) as fh:
            tmp_path = fh.name
            os.chmod(tmp_path, 0o600)
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Profile store ---


def load_config() -> ProfileConfig:
    """Load the profile store.

    Returns:
        The stored :class:`~ravelry.models.ProfileConfig`, or an empty one
        if the file does not exist yet.

    Raises:
        ConfigError: If the file is not valid JSON or does not validate.
    """
    path = config_path()
    if not path.is_file():
        return ProfileConfig()
    try:
        return ProfileConfig.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ConfigError(f"Invalid profile store at {path}: {exc}") from exc


def save_config(config: ProfileConfig) -> None:
    data = config.model_dump(mode="json")
    _atomic_write(config_path(), json.dumps(data, indent=2) + "\n")


def list_profiles() -> list[str]:
    return sorted(load_config().profiles)


def get_profile(name: str) -> AnyProfile:
    """Return the stored profile *name*.

    Raises:
        ConfigError: If no such profile exists.
    """
    config = load_config()
    try:
        return config.profiles[name]
    except KeyError:
        available = ", ".join(sorted(config.profiles)) or "(none)"
        raise ConfigError(
            f"Profile '{name}' not found. Available profiles: {available}"
        ) from None


def save_profile(name: str, profile: AnyProfile, make_current: bool = False) -> None:
    """Create or overwrite profile *name*.

    The first profile ever saved becomes the current profile.
    """
    config = load_config()
    config.profiles[name] = profile
    if make_current or config.current_profile is None:
        config.current_profile = name
    save_config(config)


def delete_profile(name: str) -> None:
    """Remove profile *name*, clearing ``current_profile`` if it pointed there.

    Raises:
        ConfigError: If no such profile exists.
    """
    config = load_config()
    if name not in config.profiles:
        raise ConfigError(f"Profile '{name}' not found")
    del config.profiles[name]
    if config.current_profile == name:
        config.current_profile = None
    save_config(config)


def set_current_profile(name: str) -> None:
    """Make *name* the profile used when none is given explicitly.

    Raises:
        ConfigError: If no such profile exists.
    """
    config = load_config()
    if name not in config.profiles:
        raise ConfigError(f"Profile '{name}' not found")
    config.current_profile = name
    save_config(config)


def save_token(name: str, token: TokenSet) -> None:
    """Store *token* in OAuth2 profile *name*.

    Raises:
        ConfigError: If the profile is missing or is not an OAuth2 profile.
    """
    config = load_config()
    profile = config.profiles.get(name)
    if not isinstance(profile, OAuth2Profile):
        raise ConfigError(f"Profile '{name}' is not an OAuth2 profile")
    config.profiles[name] = profile.model_copy(update={"token": token})
    save_config(config)


def make_token_persister(name: str) -> Callable[[TokenSet], None]:
    """Return a token listener that saves every new token set into profile *name*."""

    def persist(token: TokenSet) -> None:
        save_token(name, token)

    return persist


# --- Settings ---


def load_settings() -> Settings:
    """Build :class:`~ravelry.models.Settings` from ``RAVELRY_*`` environment variables.

    Recognised variables: ``RAVELRY_BASE_URL``, ``RAVELRY_TIMEOUT``,
    ``RAVELRY_REDIRECT_URI``, ``RAVELRY_CALLBACK_TIMEOUT``,
    ``RAVELRY_PROFILE``, ``RAVELRY_ACCESS_KEY`` and ``RAVELRY_PERSONAL_KEY``.

    Raises:
        ConfigError: If a value does not validate (e.g. a non-numeric timeout).
    """
    values: dict[str, str] = {}
    for field_name in Settings.model_fields:
        value = os.environ.get(f"{ENV_PREFIX}{field_name.upper()}")
        if value:
            values[field_name] = value
    try:
        return Settings.model_validate(values)
    except ValidationError as exc:
        raise ConfigError(f"Invalid {ENV_PREFIX}* environment settings: {exc}") from exc


def resolve_profile(
    settings: Settings, cli_profile: Optional[str] = None
) -> tuple[Optional[str], Optional[AnyProfile]]:
    """Pick the profile a command should use.

    Precedence (high to low):
        1. ``RAVELRY_ACCESS_KEY`` + ``RAVELRY_PERSONAL_KEY`` (an unnamed
           Basic profile)
        2. ``--profile`` flag
        3. ``RAVELRY_PROFILE``
        4. ``current_profile`` in the profile store

    Returns:
        ``(name, profile)``; both ``None`` when nothing is configured. The
        name is ``None`` for the environment key pair.

    Raises:
        ConfigError: If a named profile does not exist, or only one of the
            two key variables is set.
    """
    if settings.access_key or settings.personal_key:
        if not (settings.access_key and settings.personal_key):
            raise ConfigError(
                f"Both {ENV_PREFIX}ACCESS_KEY and {ENV_PREFIX}PERSONAL_KEY must be set"
            )
        return None, BasicProfile(
            access_key=settings.access_key, personal_key=settings.personal_key
        )

    name = cli_profile or settings.profile or load_config().current_profile
    if name is None:
        return None, None
    return name, get_profile(name)
