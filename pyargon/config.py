"""Configuration for pyargon.

Settings are read from an optional JSON file
(``~/.config/pyargon/config.json``) and from ``PYARGON_*`` environment
variables. Environment variables take precedence over the file.
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Optional

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "PYARGON_"

SEPARATOR = "|"
"""Reserved address separator, absent from legal object names."""

CODE_EXTENSIONS = (".lua", ".luau")

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "pyargon" / "config.json"


@dataclass
class Settings:
    """Runtime settings for a sync session."""

    root_folder: str = "src"
    """Name of the synchronized root folder inside the workspace"""

    extension: str = ".lua"
    """Extension written for script files"""

    compatibility_mode: bool = False
    """Use ``init``/``init.meta`` naming instead of ``.source``/``.properties``"""

    auto_setup: bool = True
    """Create the root folder and default project manifest when missing"""

    host: str = "localhost"
    port: int = 8000

    project_file: str = "default"
    """Base name of the project manifest (``<name>.project.json``)"""

    queue_limit: int = 100_000
    """Maximum number of pending change events"""

    reserved_children: dict[str, list[str]] = field(
        default_factory=lambda: {
            "StarterPlayer": ["StarterCharacterScripts", "StarterPlayerScripts"]
        }
    )
    """Fixed children of services that are never created or removed"""

    @property
    def source(self) -> str:
        """Base name of the sentinel file holding a container's own code."""
        return "init" if self.compatibility_mode else ".source"

    @property
    def properties(self) -> str:
        """Base name of the property sidecar file."""
        return "init.meta" if self.compatibility_mode else ".properties"

    @property
    def manifest_name(self) -> str:
        return f"{self.project_file}.project.json"

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Return a copy with the given fields replaced."""
        return replace(self, **overrides)

    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        """Create settings from a dictionary, ignoring unknown keys."""
        known = {f.name: f for f in fields(cls)}
        values: dict[str, Any] = {}

        for key, value in data.items():
            if key not in known:
                logger.debug(f"Ignoring unknown setting: {key}")
                continue
            values[key] = value

        try:
            settings = cls(**values)
        except TypeError as e:
            raise ConfigError(f"Invalid settings: {e}") from e

        settings.validate()
        return settings

    def validate(self) -> None:
        """Check setting values.

        Raises:
            ConfigError: If a value is out of range
        """
        if not self.root_folder or SEPARATOR in self.root_folder:
            raise ConfigError(f"Invalid root folder: {self.root_folder!r}")
        if self.extension not in CODE_EXTENSIONS:
            raise ConfigError(
                f"Unsupported script extension: {self.extension!r}"
            )
        if not 0 < int(self.port) < 65536:
            raise ConfigError(f"Invalid port: {self.port}")
        if self.queue_limit <= 0:
            raise ConfigError("queue_limit must be positive")


def _coerce(value: str, default: Any) -> Any:
    """Convert an environment string to the type of the default value."""
    if isinstance(default, bool):
        return value.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        try:
            return int(value)
        except ValueError as e:
            raise ConfigError(f"Expected an integer, got {value!r}") from e
    if isinstance(default, dict):
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Expected a JSON object, got {value!r}") from e
    return value


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[dict[str, str]] = None,
) -> Settings:
    """Load settings from the config file and environment.

    Args:
        config_path: JSON config file (defaults to ~/.config/pyargon/config.json)
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated Settings

    Raises:
        ConfigError: If the config file is unreadable or a value is invalid
    """
    config_path = config_path or DEFAULT_CONFIG_PATH
    environ = os.environ if environ is None else environ
    data: dict[str, Any] = {}

    if config_path.is_file():
        try:
            with open(config_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to read config: {e}", str(config_path)) from e

        if not isinstance(data, dict):
            raise ConfigError("Config file must contain an object", str(config_path))

        logger.debug(f"Loaded settings from {config_path}")

    defaults = Settings()
    for f in fields(Settings):
        env_value = environ.get(ENV_PREFIX + f.name.upper())
        if env_value is not None:
            data[f.name] = _coerce(env_value, getattr(defaults, f.name))

    return Settings.from_dict(data)
