"""Configuration management for Arcanum."""

from arcanum.config.settings import (
    ArcanumSettings,
    EngineConfig,
    YamlConfigSource,
)

__all__ = [
    "ArcanumSettings",
    "EngineConfig",
    "YamlConfigSource",
]
