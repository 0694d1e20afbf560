"""
Configuration for Rungscope.

Settings are read from a YAML file; anything not present keeps its default.
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

logger = logging.getLogger(__name__)

DEFAULT_MAX_INPUT_BYTES = 64 * 1024 * 1024


@dataclass
class HealthOptions:
    """Options for health scoring and unused-tag detection."""
    naming_enabled: bool = False
    include_member_references: bool = False


@dataclass
class RungscopeConfig:
    """Runtime limits and analysis options."""
    max_input_bytes: int = DEFAULT_MAX_INPUT_BYTES
    parse_timeout_seconds: Optional[float] = 120.0
    parse_workers: int = 4
    extract_workers: int = 1
    diff_concurrency: int = 4
    health: HealthOptions = field(default_factory=HealthOptions)
    naming_rule_sets: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RungscopeConfig":
        """Build a config from a plain mapping (e.g. parsed YAML)."""
        config = cls()
        if not data:
            return config

        known = {f.name for f in fields(cls)} - {"health", "naming_rule_sets"}
        for key, value in data.items():
            if key in known:
                setattr(config, key, value)
            elif key == "health":
                config.health = _health_from_dict(value or {})
            elif key == "naming":
                config.naming_rule_sets = list((value or {}).get("rule_sets", []))
            else:
                logger.warning(f"Ignoring unknown configuration key: {key}")

        if config.parse_workers < 1 or config.diff_concurrency < 1 or config.extract_workers < 1:
            raise ValueError("worker and concurrency settings must be at least 1")
        return config


def _health_from_dict(data: Dict[str, Any]) -> HealthOptions:
    options = HealthOptions()
    for key, value in data.items():
        if hasattr(options, key):
            setattr(options, key, bool(value))
        else:
            logger.warning(f"Ignoring unknown health option: {key}")
    return options


def load_config(config_path: Optional[Union[str, Path]] = None) -> RungscopeConfig:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML file. ``None`` returns the defaults.

    Returns:
        RungscopeConfig instance
    """
    if config_path is None:
        return RungscopeConfig()

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.warning(f"Could not load config from {config_path}: {e}")
        return RungscopeConfig()

    if not isinstance(config_data, dict):
        logger.warning(f"Config file {config_path} does not contain a mapping; using defaults")
        return RungscopeConfig()

    logger.info(f"Loaded configuration from {config_path}")
    return RungscopeConfig.from_dict(config_data)
