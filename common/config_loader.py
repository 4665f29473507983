# common/config_loader.py
# -*- coding: utf-8 -*-
"""
Configuration loader for the GTFS editor.

Handles loading settings from Pydantic model defaults, environment variables
and an optional YAML file, applying a specific order of precedence:
1. Pydantic Model Defaults
2. Environment Variables (via Pydantic's BaseSettings initialization)
3. YAML Configuration File
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .config_models import EditorSettings

module_logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "gtfs_editor.yaml"


def _deep_update(
    source: Dict[str, Any], overrides: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Recursively update `source` with values from `overrides`.

    Nested dictionaries are merged key by key. A None override never replaces
    an existing value.

    Args:
        source: The dictionary to be updated. Modified in place.
        overrides: The dictionary containing values to update or add.

    Returns:
        The updated `source` dictionary.
    """
    for key, value in overrides.items():
        if (
            isinstance(value, dict)
            and key in source
            and isinstance(source[key], dict)
        ):
            source[key] = _deep_update(source[key], value)
        elif value is not None:
            source[key] = value
        elif key not in source:
            source[key] = value
    return source


def load_editor_settings(
    config_file_path: Union[str, Path, None] = DEFAULT_CONFIG_FILE,
    current_logger: Optional[logging.Logger] = None,
) -> EditorSettings:
    """
    Load editor settings: defaults, then environment, then the YAML file.

    Args:
        config_file_path: Path to the YAML configuration file. None skips the
            file entirely.
        current_logger: Optional logger to use instead of the module logger.

    Returns:
        A validated EditorSettings instance.

    Raises:
        pydantic.ValidationError: If the merged configuration is invalid.
    """
    logger_to_use = current_logger if current_logger else module_logger

    settings_after_env_and_defaults = EditorSettings()
    current_values_dict = settings_after_env_and_defaults.model_dump()
    # The password is excluded from dumps; carry it over explicitly.
    current_values_dict["pg"]["password"] = (
        settings_after_env_and_defaults.pg.password
    )

    if config_file_path is not None:
        yaml_config_path = Path(config_file_path)
        if yaml_config_path.is_file():
            try:
                with open(yaml_config_path, "r", encoding="utf-8") as f:
                    yaml_data = yaml.safe_load(f)
                if yaml_data and isinstance(yaml_data, dict):
                    current_values_dict = _deep_update(
                        current_values_dict, yaml_data
                    )
                    logger_to_use.info(
                        f"Loaded editor configuration from {yaml_config_path}"
                    )
                elif yaml_data is not None:
                    logger_to_use.warning(
                        f"Config file '{yaml_config_path}' does not contain a valid YAML dictionary. Ignoring."
                    )
            except yaml.YAMLError as e:
                logger_to_use.warning(
                    f"Could not parse YAML config file '{yaml_config_path}': {e}. Using defaults and environment variables."
                )
            except IOError as e:
                logger_to_use.warning(
                    f"Could not read config file '{yaml_config_path}': {e}. Using defaults and environment variables."
                )
        else:
            logger_to_use.info(
                f"Configuration file '{yaml_config_path}' not found. Using defaults and environment variables."
            )

    try:
        final_settings = EditorSettings(**current_values_dict)
    except Exception as e:
        logger_to_use.error(f"Configuration validation failed: {e}")
        raise

    logger_to_use.debug(
        f"Editor settings resolved: namespace={final_settings.namespace}, "
        f"insert_batch_size={final_settings.insert_batch_size}"
    )
    return final_settings
