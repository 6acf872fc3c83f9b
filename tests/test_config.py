"""Tests for the profile store, settings loading, and profile resolution."""

from __future__ import annotations

import json
import os
import stat
from pathlib import Path

import pytest

from ravelry.config import (
    config_path,
    delete_profile,
    get_config_dir,
    get_data_dir,
    get_profile,
    list_profiles,
    load_config,
    load_settings,
    make_token_persister,
    resolve_profile,
    save_profile,
    save_token,
    set_current_profile,
)
from ravelry.exceptions import ConfigError
from ravelry.models import BasicProfile, OAuth2Profile, Settings


def _basic(key: str = "read-abc") -> BasicProfile:
    return BasicProfile(access_key=key, personal_key="pk-secret")


def _oauth() -> OAuth2Profile:
    return OAuth2Profile(client_id="cid", client_secret="csecret")


# ---------------------------------------------------------------------------
# Directories
# ---------------------------------------------------------------------------


class TestDirectories:
    def test_xdg_config_dir(self, isolated_config: Path) -> None:
        assert get_config_dir() == isolated_config / "config" / "ravelry"
        assert get_config_dir().is_dir()

    def test_xdg_data_dir(self, isolated_config: Path) -> None:
        assert get_data_dir() == isolated_config / "data" / "ravelry"

    def test_non_xdg_platform(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("ravelry.config._is_xdg_platform", lambda: False)
        monkeypatch.setattr(Path, "home", lambda: tmp_path)
        assert get_config_dir() == tmp_path / ".ravelry"
        assert get_data_dir() == tmp_path / ".ravelry" / "logs"


# ---------------------------------------------------------------------------
# Profile store
# ---------------------------------------------------------------------------


class TestProfileStore:
    def test_empty_when_missing(self, isolated_config: Path) -> None:
        config = load_config()
        assert config.profiles == {}
        assert config.current_profile is None

    def test_first_profile_becomes_current(self, isolated_config: Path) -> None:
        save_profile("personal", _basic())
        save_profile("app", _oauth())
        config = load_config()
        assert config.current_profile == "personal"
        assert list_profiles() == ["app", "personal"]

    def test_make_current(self, isolated_config: Path) -> None:
        save_profile("personal", _basic())
        save_profile("app", _oauth(), make_current=True)
        assert load_config().current_profile == "app"

    def test_round_trip_discriminates_types(self, isolated_config: Path, valid_token) -> None:
        save_profile("personal", _basic())
        save_profile("app", _oauth().model_copy(update={"token": valid_token}))

        assert isinstance(get_profile("personal"), BasicProfile)
        app = get_profile("app")
        assert isinstance(app, OAuth2Profile)
        assert app.token.access_token == "access-1"
        assert app.token.expires_at == valid_token.expires_at

    def test_file_is_owner_only(self, isolated_config: Path) -> None:
        save_profile("personal", _basic())
        mode = stat.S_IMODE(os.stat(config_path()).st_mode)
        assert mode == 0o600

    def test_no_temp_files_left(self, isolated_config: Path) -> None:
        save_profile("personal", _basic())
        save_profile("personal", _basic("read-other"))
        assert [p.name for p in config_path().parent.iterdir()] == ["config.json"]

    def test_unknown_profile_lists_available(self, isolated_config: Path) -> None:
        save_profile("personal", _basic())
        with pytest.raises(ConfigError, match="personal"):
            get_profile("missing")

    def test_invalid_json(self, isolated_config: Path) -> None:
        config_path().write_text("{not json")
        with pytest.raises(ConfigError, match="Invalid profile store"):
            load_config()

    def test_invalid_profile_type(self, isolated_config: Path) -> None:
        config_path().write_text(json.dumps({"profiles": {"x": {"type": "digest"}}}))
        with pytest.raises(ConfigError):
            load_config()

    def test_delete_clears_current(self, isolated_config: Path) -> None:
        save_profile("personal", _basic())
        delete_profile("personal")
        config = load_config()
        assert config.profiles == {}
        assert config.current_profile is None

    def test_delete_missing(self, isolated_config: Path) -> None:
        with pytest.raises(ConfigError):
            delete_profile("ghost")

    def test_set_current(self, isolated_config: Path) -> None:
        save_profile("a", _basic())
        save_profile("b", _basic())
        set_current_profile("b")
        assert load_config().current_profile == "b"
        with pytest.raises(ConfigError):
            set_current_profile("c")


# ---------------------------------------------------------------------------
# Token persistence
# ---------------------------------------------------------------------------


class TestTokenPersistence:
    def test_save_token(self, isolated_config: Path, valid_token) -> None:
        save_profile("app", _oauth())
        save_token("app", valid_token)
        assert get_profile("app").token == valid_token

    def test_save_token_rejects_basic_profile(self, isolated_config: Path, valid_token) -> None:
        save_profile("personal", _basic())
        with pytest.raises(ConfigError):
            save_token("personal", valid_token)

    def test_persister(self, isolated_config: Path, make_token) -> None:
        save_profile("app", _oauth())
        persist = make_token_persister("app")
        persist(make_token(access_token="rotated"))
        assert get_profile("app").token.access_token == "rotated"


# ---------------------------------------------------------------------------
# Settings and resolution
# ---------------------------------------------------------------------------


class TestSettings:
    def test_defaults(self, isolated_config: Path) -> None:
        settings = load_settings()
        assert settings.base_url == "https://api.ravelry.com/"
        assert settings.timeout == 30.0
        assert settings.callback_timeout == 300.0

    def test_environment_overrides(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("RAVELRY_BASE_URL", "https://staging.example.com/")
        monkeypatch.setenv("RAVELRY_TIMEOUT", "5")
        settings = load_settings()
        assert settings.base_url == "https://staging.example.com/"
        assert settings.timeout == 5.0

    def test_invalid_value(self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RAVELRY_TIMEOUT", "soon")
        with pytest.raises(ConfigError, match="RAVELRY_"):
            load_settings()

    def test_personal_key_not_in_repr(self) -> None:
        assert "pk-1" not in repr(Settings(access_key="ak", personal_key="pk-1"))


class TestResolveProfile:
    def test_nothing_configured(self, isolated_config: Path) -> None:
        assert resolve_profile(Settings()) == (None, None)

    def test_current_profile(self, isolated_config: Path) -> None:
        save_profile("personal", _basic())
        name, profile = resolve_profile(Settings())
        assert name == "personal"
        assert profile == _basic()

    def test_cli_beats_environment_profile(self, isolated_config: Path) -> None:
        save_profile("a", _basic("key-a"))
        save_profile("b", _basic("key-b"))
        name, _ = resolve_profile(Settings(profile="a"), cli_profile="b")
        assert name == "b"

    def test_environment_profile_beats_current(self, isolated_config: Path) -> None:
        save_profile("a", _basic("key-a"))
        save_profile("b", _basic("key-b"))
        name, _ = resolve_profile(Settings(profile="b"))
        assert name == "b"

    def test_environment_key_pair_wins(self, isolated_config: Path) -> None:
        save_profile("a", _basic("key-a"))
        name, profile = resolve_profile(
            Settings(access_key="env-key", personal_key="env-pk"), cli_profile="a"
        )
        assert name is None
        assert profile == BasicProfile(access_key="env-key", personal_key="env-pk")

    def test_half_key_pair(self, isolated_config: Path) -> None:
        with pytest.raises(ConfigError, match="Both"):
            resolve_profile(Settings(access_key="env-key"))

    def test_missing_named_profile(self, isolated_config: Path) -> None:
        with pytest.raises(ConfigError):
            resolve_profile(Settings(), cli_profile="ghost")
