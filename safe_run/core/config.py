"""Launcher settings and profile configuration.

Instructions reach the core from two places:

1. ``--target-env``: a JSON object given on the command line.
2. Profiles: named instruction sets in a YAML file.

Profile file format (``.mcp-saferun.yaml`` / ``.mcp-saferun.yml``):

    profiles:
      github:
        target-env:
          GITHUB_TOKEN: "keyring:github:me"
          PORT: "9000"

Search order (first found wins):
- Current working directory
- User config directory (``~/.config/mcp-safe-run`` by default)

SELECTION POLICY:
When both a profile and ``--target-env`` are given, ``--target-env`` is applied
per key on top of the profile's instructions.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import pydantic
import yaml
from pydantic import BaseModel, ConfigDict, Field, StrictStr

logger = logging.getLogger(__name__)

CONFIG_FILE_NAMES = [".mcp-saferun.yaml", ".mcp-saferun.yml"]

SAMPLE_CONFIG = """\
# mcp-safe-run profiles
# Each profile maps target environment variables to a source:
#   env:NAME                 - copy from the launcher's environment
#   file:PATH                - read and trim a file (~ is expanded)
#   keyring:SERVICE:ACCOUNT  - read from the OS credential store
#   anything else            - used literally
#
# Usage: mcp-safe-run run --profile example -- npx some-mcp-server

profiles:
  example:
    target-env:
      API_KEY: "keyring:example-service:my-account"
      # TOKEN: "file:~/.secrets/token.txt"
      # HOME_DIR: "env:HOME"
      LOG_LEVEL: "info"
"""


class ConfigError(Exception):
    """Configuration or instruction input is invalid."""

    pass


class ConfigNotFoundError(ConfigError):
    """Explicitly requested config file does not exist, or none was found."""

    pass


class ProfileNotFoundError(ConfigError):
    """Requested profile is not defined in the config file."""

    pass


class InstructionFormatError(ConfigError):
    """``--target-env`` is not a JSON object of strings."""

    pass


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


@dataclass
class LaunchConfig:
    """Launcher settings.

    Environment overrides: ``MCP_SAFE_RUN_GRACE_PERIOD``, ``MCP_SAFE_RUN_DRAIN_TIMEOUT``,
    ``MCP_SAFE_RUN_CONFIG_DIR`` and ``MCP_SAFE_RUN_LOG_LEVEL``. The config file
    names are fixed.
    """

    # Seconds between relaying a termination signal and force-killing the child
    grace_period: float = field(
        default_factory=lambda: _env_float("MCP_SAFE_RUN_GRACE_PERIOD", 1.0)
    )

    # Seconds to wait for output pumps to drain after the child exits
    drain_timeout: float = field(
        default_factory=lambda: _env_float("MCP_SAFE_RUN_DRAIN_TIMEOUT", 2.0)
    )

    config_file_names: list[str] = field(default_factory=lambda: list(CONFIG_FILE_NAMES))

    user_config_dir: Path = field(
        default_factory=lambda: Path(
            os.environ.get("MCP_SAFE_RUN_CONFIG_DIR", "~/.config/mcp-safe-run")
        ).expanduser()
    )

    log_level: str = field(
        default_factory=lambda: os.environ.get("MCP_SAFE_RUN_LOG_LEVEL", "WARNING").upper()
    )


# --- Profile file models ---


class ProfileConfig(BaseModel):
    """A single named profile."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    target_env: dict[str, StrictStr] = Field(default_factory=dict, alias="target-env")


class ConfigFile(BaseModel):
    """Top-level structure of a profile file."""

    model_config = ConfigDict(extra="ignore")

    profiles: dict[str, ProfileConfig]


@dataclass
class LoadedConfig:
    """A parsed profile file and where it came from."""

    config: ConfigFile
    path: Path

    def get_profile(self, name: str) -> ProfileConfig:
        profile = self.config.profiles.get(name)
        if profile is None:
            available = ", ".join(sorted(self.config.profiles)) or "(none)"
            raise ProfileNotFoundError(
                f"Profile '{name}' not found in {self.path}. Available: {available}"
            )
        return profile


@dataclass
class ProfileLoader:
    """Locate and parse the profile file."""

    settings: LaunchConfig = field(default_factory=LaunchConfig)

    # Directories searched in priority order
    search_dirs: list[Path] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.search_dirs:
            self.search_dirs = [Path.cwd(), self.settings.user_config_dir]

    def find_config_file(self) -> Path | None:
        """Return the first existing profile file, or None."""
        for directory in self.search_dirs:
            for file_name in self.settings.config_file_names:
                candidate = directory / file_name
                if candidate.is_file():
                    return candidate
        return None

    def load(self, config_path: str | Path | None = None) -> LoadedConfig:
        """Load the profile file.

        Args:
            config_path: Explicit file to load (``~`` expanded). When omitted,
                the search directories are scanned.

        Raises:
            ConfigNotFoundError: No file at the explicit path, or none found.
            ConfigError: File is not valid YAML or does not match the schema.
        """
        if config_path is not None:
            path = Path(config_path).expanduser()
            if not path.is_file():
                raise ConfigNotFoundError(f"Specified config file not found: {path}")
        else:
            found = self.find_config_file()
            if found is None:
                searched = ", ".join(str(d) for d in self.search_dirs)
                names = "/".join(self.settings.config_file_names)
                raise ConfigNotFoundError(f"No config file ({names}) found in: {searched}")
            path = found

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in config file {path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} is empty or not a mapping")
        if not isinstance(data.get("profiles"), dict):
            raise ConfigError(f'Config file {path} must contain a top-level "profiles" mapping')

        try:
            config = ConfigFile.model_validate(data)
        except pydantic.ValidationError as e:
            raise ConfigError(f"Invalid config file {path}: {e}") from e

        logger.info(f"Loaded configuration from {path}")
        return LoadedConfig(config=config, path=path)

    def load_profile(self, name: str, config_path: str | Path | None = None) -> dict[str, str]:
        """Return the instruction set of profile ``name``."""
        loaded = self.load(config_path)
        return dict(loaded.get_profile(name).target_env)


def parse_target_env(json_text: str) -> dict[str, str]:
    """Parse a ``--target-env`` JSON object into instructions.

    Raises:
        InstructionFormatError: Not JSON, not an object, or a non-string value.
    """
    try:
        data = json.loads(json_text)
    except json.JSONDecodeError as e:
        raise InstructionFormatError(f"Invalid JSON for --target-env: {e}") from e

    if not isinstance(data, dict):
        raise InstructionFormatError("--target-env must be a JSON object")

    for key, value in data.items():
        if not isinstance(value, str):
            raise InstructionFormatError(
                f'--target-env value for "{key}" must be a string, got {type(value).__name__}'
            )
    return data


def select_instructions(
    profile_instructions: Mapping[str, str] | None,
    override: Mapping[str, str] | None,
) -> dict[str, str]:
    """Choose the instruction set to resolve.

    The override is applied per key on top of the profile. Either may be
    absent; with neither, the result is empty and the child simply inherits
    the launcher's environment.
    """
    instructions: dict[str, str] = {}
    if profile_instructions:
        instructions.update(profile_instructions)
    if override:
        instructions.update(override)
    return instructions


def write_sample_config(directory: Path, file_name: str = CONFIG_FILE_NAMES[0]) -> Path | None:
    """Create ``directory`` and a sample profile file inside it.

    Returns:
        Path of the created file, or None if a file already existed.
    """
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / file_name
    if path.exists():
        return None
    path.write_text(SAMPLE_CONFIG, encoding="utf-8")
    return path
