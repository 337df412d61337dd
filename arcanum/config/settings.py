"""
Arcanum configuration management using Pydantic Settings.

Configuration can be provided via:
1. arcanum.yaml config file
2. ARCANUM_* env vars (nested settings use ``__``: ARCANUM_ENGINE__MAX_NESTING_DEPTH)
3. .env file
4. Direct instantiation

Priority (highest wins): init kwargs > arcanum.yaml > env vars > .env > defaults

Example arcanum.yaml:
    log_level: DEBUG
    protocol_dir: .opencode/protocol
    state_dir: .opencode/state
    engine:
      max_nesting_depth: 5
      transition_log_max_entries: 500

A few flat shortcuts are also accepted at the top level
(``max_nesting_depth``, ``transition_log_max_entries``, ``snippets_dir``)
and are folded into ``engine``.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Tuple, Type

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "ARCANUM_CONFIG"
CONFIG_FILENAMES = ("arcanum.yaml", "arcanum.yml")


class EngineConfig(BaseModel):
    """Execution limits and locations used by the engine."""

    max_nesting_depth: int = Field(default=10, ge=1)
    transition_log_max_entries: int = Field(default=1000, ge=1)
    # Relative to the protocol directory
    snippets_dir: str = "snippets"


class YamlConfigSource(PydanticBaseSettingsSource):
    """Custom settings source that reads from an arcanum.yaml config file.

    Discovers config at:
    1. Explicit path passed via _config_path init kwarg
    2. $ARCANUM_CONFIG env var
    3. ./arcanum.yaml
    4. ./arcanum.yml
    """

    _ENGINE_SHORTCUTS = frozenset(EngineConfig.model_fields)

    def __init__(
        self, settings_cls: Type[BaseSettings], config_path: Optional[str] = None
    ):
        super().__init__(settings_cls)
        self._config_path = config_path
        self._yaml_data: Optional[Dict[str, Any]] = None
        self._load()

    def _discover_config_file(self) -> Optional[Path]:
        """Find the config file to load."""
        if self._config_path:
            p = Path(self._config_path)
            return p if p.is_file() else None

        env_path = os.environ.get(CONFIG_ENV_VAR)
        if env_path:
            p = Path(env_path)
            return p if p.is_file() else None

        for name in CONFIG_FILENAMES:
            p = Path(name)
            if p.is_file():
                return p

        return None

    def _load(self) -> None:
        """Load and parse the YAML config file."""
        path = self._discover_config_file()
        if path is None:
            self._yaml_data = {}
            return

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
            self._yaml_data = data if isinstance(data, dict) else {}
            logger.debug(f"Loaded config from {path}")
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            self._yaml_data = {}

    def _map_to_settings(self) -> Dict[str, Any]:
        """Fold flat engine shortcuts into the nested ``engine`` section."""
        if not self._yaml_data:
            return {}

        result: Dict[str, Any] = {}
        engine: Dict[str, Any] = {}
        for key, value in self._yaml_data.items():
            if key in self._ENGINE_SHORTCUTS:
                engine[key] = value
            elif key == "engine" and isinstance(value, dict):
                engine.update(value)
            else:
                result[key] = value

        if engine:
            result["engine"] = engine
        return result

    def get_field_value(self, field: Any, field_name: str) -> Tuple[Any, str, bool]:
        mapped = self._map_to_settings()
        value = mapped.get(field_name)
        return value, field_name, value is not None

    def __call__(self) -> Dict[str, Any]:
        return self._map_to_settings()


class ArcanumSettings(BaseSettings):
    """
    Main Arcanum configuration.

    All settings can be overridden via environment variables with ARCANUM_ prefix.
    Pass _config_path to override the config file location.
    """

    model_config = SettingsConfigDict(
        env_prefix="ARCANUM_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Path to arcanum.yaml (set via _config_path kwarg, not a real setting field)
    _config_path: Optional[str] = None

    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Relative paths are resolved against the project directory
    protocol_dir: str = ".opencode/protocol"
    state_dir: str = ".opencode/state"

    engine: EngineConfig = Field(default_factory=EngineConfig)

    def __init__(self, _config_path: Optional[str] = None, **kwargs: Any):
        # Sources are built from the class, so the path is only set while
        # this instance is being constructed
        cls = self.__class__
        cls._config_path = _config_path
        try:
            super().__init__(**kwargs)
        finally:
            cls._config_path = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """Insert YAML config source before env vars.

        Priority (highest first): init > yaml > env > dotenv > file_secret
        """
        yaml_source = YamlConfigSource(settings_cls, config_path=cls._config_path)
        return (
            init_settings,
            yaml_source,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    def resolve_protocol_dir(self, project_dir: Path) -> Path:
        path = Path(self.protocol_dir)
        return path if path.is_absolute() else Path(project_dir) / path

    def resolve_state_dir(self, project_dir: Path) -> Path:
        path = Path(self.state_dir)
        return path if path.is_absolute() else Path(project_dir) / path
