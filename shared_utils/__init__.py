"""
Shared utilities for the soil carbon stages: logging, configuration loading
and path handling.
"""

from .logging_utils import setup_logging, get_logger, log_pipeline_start, log_pipeline_end, log_section
from .config_utils import load_config, validate_config
from .path_utils import atomic_output, ensure_directory, validate_file_exists

__version__ = "1.0.0"

__all__ = [
    "setup_logging",
    "get_logger",
    "log_pipeline_start",
    "log_pipeline_end",
    "log_section",
    "load_config",
    "validate_config",
    "atomic_output",
    "ensure_directory",
    "validate_file_exists",
]
