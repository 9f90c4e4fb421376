"""Tests for settings, profile discovery and instruction selection."""

from __future__ import annotations

from pathlib import Path

import pytest

from safe_run.core.config import (
    CONFIG_FILE_NAMES,
    ConfigError,
    ConfigNotFoundError,
    InstructionFormatError,
    LaunchConfig,
    ProfileLoader,
    ProfileNotFoundError,
    parse_target_env,
    select_instructions,
    write_sample_config,
)


class TestLaunchConfig:
    """Tests for LaunchConfig defaults and env overrides."""

    def test_defaults(self, monkeypatch):
        for name in (
            "MCP_SAFE_RUN_GRACE_PERIOD",
            "MCP_SAFE_RUN_DRAIN_TIMEOUT",
            "MCP_SAFE_RUN_CONFIG_DIR",
            "MCP_SAFE_RUN_LOG_LEVEL",
        ):
            monkeypatch.delenv(name, raising=False)
        config = LaunchConfig()

        assert config.grace_period == 1.0
        assert config.drain_timeout == 2.0
        assert config.config_file_names == CONFIG_FILE_NAMES
        assert config.user_config_dir == Path.home() / ".config" / "mcp-safe-run"
        assert config.log_level == "WARNING"

    def test_env_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("MCP_SAFE_RUN_GRACE_PERIOD", "2.5")
        monkeypatch.setenv("MCP_SAFE_RUN_DRAIN_TIMEOUT", "0.5")
        monkeypatch.setenv("MCP_SAFE_RUN_CONFIG_DIR", str(tmp_path))
        monkeypatch.setenv("MCP_SAFE_RUN_LOG_LEVEL", "debug")
        config = LaunchConfig()

        assert config.grace_period == 2.5
        assert config.drain_timeout == 0.5
        assert config.user_config_dir == tmp_path
        assert config.log_level == "DEBUG"

    def test_invalid_grace_period_falls_back(self, monkeypatch):
        monkeypatch.setenv("MCP_SAFE_RUN_GRACE_PERIOD", "soon")
        assert LaunchConfig().grace_period == 1.0


class TestProfileLoader:
    """Tests for locating and parsing profile files."""

    def test_load_explicit_path(self, profile_file, settings):
        loaded = ProfileLoader(settings).load(profile_file)

        assert loaded.path == profile_file
        assert set(loaded.config.profiles) == {"github", "empty"}
        assert loaded.get_profile("github").target_env == {
            "GITHUB_TOKEN": "env:MY_API_KEY",
            "PORT": "9000",
        }
        assert loaded.get_profile("empty").target_env == {}

    def test_explicit_path_must_exist(self, tmp_path, settings):
        with pytest.raises(ConfigNotFoundError, match="not found"):
            ProfileLoader(settings).load(tmp_path / "missing.yaml")

    def test_search_prefers_first_directory(self, tmp_path, settings):
        project = tmp_path / "project"
        user = tmp_path / "user"
        project.mkdir()
        user.mkdir()
        (project / ".mcp-saferun.yml").write_text("profiles: {}\n")
        (user / ".mcp-saferun.yaml").write_text("profiles: {}\n")

        loader = ProfileLoader(settings, search_dirs=[project, user])
        assert loader.find_config_file() == project / ".mcp-saferun.yml"

    def test_search_prefers_yaml_over_yml(self, tmp_path, settings):
        (tmp_path / ".mcp-saferun.yml").write_text("profiles: {}\n")
        (tmp_path / ".mcp-saferun.yaml").write_text("profiles: {}\n")

        loader = ProfileLoader(settings, search_dirs=[tmp_path])
        assert loader.find_config_file() == tmp_path / ".mcp-saferun.yaml"

    def test_default_search_dirs(self, settings, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        loader = ProfileLoader(settings)
        assert loader.search_dirs == [tmp_path, settings.user_config_dir]

    def test_nothing_found(self, tmp_path, settings):
        loader = ProfileLoader(settings, search_dirs=[tmp_path])
        assert loader.find_config_file() is None
        with pytest.raises(ConfigNotFoundError, match="No config file"):
            loader.load()

    def test_search_does_not_create_directories(self, tmp_path, settings):
        missing = tmp_path / "does-not-exist"
        ProfileLoader(settings, search_dirs=[missing]).find_config_file()
        assert not missing.exists()

    @pytest.mark.parametrize(
        "content, message",
        [
            ("", "empty or not a mapping"),
            ("- a\n- b\n", "empty or not a mapping"),
            ("other: 1\n", '"profiles" mapping'),
            ("profiles: [1, 2]\n", '"profiles" mapping'),
            ("profiles:\n  p:\n    target-env:\n      PORT: 9000\n", "Invalid config file"),
            ("profiles: {a: [\n", "Invalid YAML"),
        ],
    )
    def test_invalid_files(self, tmp_path, settings, content, message):
        path = tmp_path / "bad.yaml"
        path.write_text(content)
        with pytest.raises(ConfigError, match=message):
            ProfileLoader(settings).load(path)

    def test_load_profile(self, profile_file, settings):
        instructions = ProfileLoader(settings).load_profile("github", profile_file)
        assert instructions == {"GITHUB_TOKEN": "env:MY_API_KEY", "PORT": "9000"}

    def test_unknown_profile(self, profile_file, settings):
        with pytest.raises(ProfileNotFoundError, match="Available: empty, github"):
            ProfileLoader(settings).load_profile("gitlab", profile_file)

    def test_tilde_in_explicit_path(self, tmp_path, settings, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        (tmp_path / "cfg.yaml").write_text("profiles:\n  p: {}\n")
        loaded = ProfileLoader(settings).load("~/cfg.yaml")
        assert loaded.path == tmp_path / "cfg.yaml"


class TestParseTargetEnv:
    """Tests for --target-env JSON parsing."""

    def test_valid_object(self):
        assert parse_target_env('{"API_KEY": "env:MY_KEY", "PORT": "9000"}') == {
            "API_KEY": "env:MY_KEY",
            "PORT": "9000",
        }

    def test_empty_object(self):
        assert parse_target_env("{}") == {}

    @pytest.mark.parametrize(
        "text, message",
        [
            ("{not json", "Invalid JSON"),
            ('["a"]', "must be a JSON object"),
            ("null", "must be a JSON object"),
            ('{"PORT": 9000}', '"PORT" must be a string'),
            ('{"A": null}', '"A" must be a string'),
        ],
    )
    def test_rejects_bad_input(self, text, message):
        with pytest.raises(InstructionFormatError, match=message):
            parse_target_env(text)


class TestSelectInstructions:
    """Tests for the profile/override selection policy."""

    def test_neither(self):
        assert select_instructions(None, None) == {}

    def test_profile_only(self):
        assert select_instructions({"A": "1"}, None) == {"A": "1"}

    def test_override_only(self):
        assert select_instructions(None, {"B": "2"}) == {"B": "2"}

    def test_override_wins_per_key(self):
        assert select_instructions({"A": "1", "B": "profile"}, {"B": "override", "C": "3"}) == {
            "A": "1",
            "B": "override",
            "C": "3",
        }


class TestWriteSampleConfig:
    """Tests for sample config creation."""

    def test_creates_directory_and_file(self, tmp_path):
        directory = tmp_path / "nested" / "config"
        path = write_sample_config(directory)

        assert path == directory / ".mcp-saferun.yaml"
        assert "profiles:" in path.read_text()

    def test_sample_config_is_loadable(self, tmp_path, settings):
        path = write_sample_config(tmp_path)
        loaded = ProfileLoader(settings).load(path)
        assert "example" in loaded.config.profiles

    def test_existing_file_untouched(self, tmp_path):
        existing = tmp_path / ".mcp-saferun.yaml"
        existing.write_text("profiles: {}\n")
        assert write_sample_config(tmp_path) is None
        assert existing.read_text() == "profiles: {}\n"
