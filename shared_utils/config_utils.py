"""
YAML configuration loading for the soil carbon stages.

A component ships its default ``config.yaml`` inside its package directory.
An explicit path wins; otherwise the component default, a ``config.yaml`` in
the working directory and the file named by ``SOIL_CARBON_CONFIG`` are tried
in that order.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import yaml


CONFIG_ENV_VAR = 'SOIL_CARBON_CONFIG'

logger = logging.getLogger('soil_carbon.config')


def config_search_paths(config_path: Optional[Union[str, Path]] = None,
                        component_name: Optional[str] = None,
                        default_config_name: str = "config.yaml") -> List[Path]:
    """Candidate configuration files in lookup order."""
    paths = []
    if config_path:
        paths.append(Path(config_path))
    if component_name:
        repo_root = Path(__file__).resolve().parent.parent
        paths.append(repo_root / component_name / default_config_name)
    paths.append(Path.cwd() / default_config_name)
    if os.environ.get(CONFIG_ENV_VAR):
        paths.append(Path(os.environ[CONFIG_ENV_VAR]))
    return paths


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    component_name: Optional[str] = None,
    default_config_name: str = "config.yaml"
) -> Dict[str, Any]:
    """
    Load the first configuration file found.

    An explicit config_path that does not exist is an error rather than a
    silent fallback to the defaults.

    Args:
        config_path: Explicit configuration file
        component_name: Package directory holding the default config.yaml
        default_config_name: File name searched for

    Returns:
        dict: Parsed mapping with a '_meta' entry (config_file, component_name)

    Raises:
        FileNotFoundError: If no candidate exists
        ValueError: If the file is not valid YAML or not a mapping
    """
    if config_path and not Path(config_path).exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    candidates = config_search_paths(config_path, component_name, default_config_name)
    config_file = next((p for p in candidates if p.is_file()), None)
    if config_file is None:
        raise FileNotFoundError(
            f"Configuration file not found. Searched: {[str(p) for p in candidates]}"
        )

    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_file}: {e}") from e

    if not isinstance(config, dict):
        raise ValueError(f"Configuration file {config_file} does not contain a mapping")

    config['_meta'] = {
        'config_file': str(config_file.resolve()),
        'component_name': component_name,
    }
    logger.info(f"Loaded configuration from: {config_file}")
    return config


def validate_config(config: Dict[str, Any], required_sections: Optional[Iterable[str]] = None) -> bool:
    """
    Check that every required top-level section is present and not empty.

    Raises:
        ValueError: If the configuration is not a mapping or a section is
            missing or null
    """
    if not isinstance(config, dict):
        raise ValueError("Configuration must be a mapping")

    missing = [s for s in (required_sections or []) if config.get(s) is None]
    if missing:
        raise ValueError(f"Missing required configuration sections: {missing}")
    return True
