import json
import logging
import os
import re
import tomllib
from typing import Any, Callable, Dict, IO

import yaml

from demo_trading_simulator.models import AppConfig

logger = logging.getLogger(__name__)

ENV_VAR_PATTERN = re.compile(r'\$\{([^}:]+)(?::-([^}]*))?\}')


class ConfigHandler:
    """Reads simulator configuration files into an AppConfig."""

    # extension -> (open mode, parser)
    LOADERS: Dict[str, tuple[str, Callable[[IO], Any]]] = {
        '.json': ('r', json.load),
        '.yaml': ('r', yaml.safe_load),
        '.yml': ('r', yaml.safe_load),
        '.toml': ('rb', tomllib.load),
    }

    @staticmethod
    def load_config(config_path: str) -> Dict[str, Any]:
        """
        Parse a JSON, YAML or TOML file and expand ${VAR} / ${VAR:-default}
        placeholders in its string values.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the format is unsupported, the file cannot be parsed
                or its root is not a mapping
        """
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        extension = os.path.splitext(config_path)[1].lower()
        if extension not in ConfigHandler.LOADERS:
            raise ValueError(
                f"Unsupported file format: {extension}. "
                f"Supported formats: {', '.join(ConfigHandler.LOADERS)}"
            )

        mode, parse = ConfigHandler.LOADERS[extension]
        logger.info(f"Loading {extension.lstrip('.').upper()} configuration from {config_path}")
        try:
            with open(config_path, mode) as f:
                config = parse(f)
        except (json.JSONDecodeError, yaml.YAMLError, tomllib.TOMLDecodeError) as e:
            logger.error(f"Error parsing configuration file {config_path}: {e}")
            raise ValueError(f"Error parsing configuration file: {e}") from e

        config = ConfigHandler._expand(config if config is not None else {})
        if not isinstance(config, dict):
            raise ValueError(f"Configuration file must contain a mapping at root level, got {type(config).__name__}")
        return config

    @staticmethod
    def load_app_config(config_path: str) -> AppConfig:
        """Load and validate a file into an AppConfig."""
        return AppConfig.model_validate(ConfigHandler.load_config(config_path))

    @staticmethod
    def _expand(obj: Any) -> Any:
        if isinstance(obj, dict):
            return {key: ConfigHandler._expand(value) for key, value in obj.items()}
        if isinstance(obj, list):
            return [ConfigHandler._expand(item) for item in obj]
        if isinstance(obj, str):
            return ENV_VAR_PATTERN.sub(ConfigHandler._env_value, obj)
        return obj

    @staticmethod
    def _env_value(match: re.Match) -> str:
        name, default = match.group(1).strip(), match.group(2)
        value = os.getenv(name)
        if value is not None:
            return value
        if default is not None:
            return default.strip()
        logger.warning(f"Environment variable '{name}' not found, keeping placeholder")
        return match.group(0)
