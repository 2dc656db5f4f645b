"""
Logging for the soil carbon stages.

All stage loggers live under the ``soil_carbon`` namespace. ``setup_logging``
attaches console (and optional file) handlers to that namespace only, so
repeated pipeline construction in one process replaces its own handlers
instead of stacking them, and handlers installed elsewhere are left alone.
"""

import logging
import sys
from pathlib import Path
from typing import Mapping, Optional, Union


ROOT_LOGGER_NAME = 'soil_carbon'

LOG_FORMATS = {
    'standard': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    'detailed': '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s',
    'simple': '%(levelname)s: %(message)s',
}

# Marks handlers owned by setup_logging
_OWNED = '_soil_carbon_handler'


def setup_logging(
    level: Union[str, int] = 'INFO',
    component_name: Optional[str] = None,
    log_file: Optional[Union[str, Path]] = None,
    format_style: str = 'standard'
) -> logging.Logger:
    """
    Configure the soil_carbon logger tree for a stage.

    Args:
        level: Logging level name or number
        component_name: Stage name appended to the logger name
        log_file: Optional log file; parent directories are created
        format_style: One of LOG_FORMATS

    Returns:
        logging.Logger: Stage logger (soil_carbon.<component_name>)
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown logging level: {level}")

    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(package_logger.handlers):
        if getattr(handler, _OWNED, False):
            package_logger.removeHandler(handler)
            handler.close()
    package_logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMATS.get(format_style, LOG_FORMATS['standard']),
                                  datefmt='%Y-%m-%d %H:%M:%S')
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding='utf-8'))

    for handler in handlers:
        handler.setFormatter(formatter)
        setattr(handler, _OWNED, True)
        package_logger.addHandler(handler)

    return get_logger(component_name) if component_name else package_logger


def get_logger(component_name: str) -> logging.Logger:
    """Logger soil_carbon.<component_name>, e.g. get_logger('soil_carbon_model.bootstrap')."""
    return logging.getLogger(f'{ROOT_LOGGER_NAME}.{component_name}')


def format_elapsed(seconds: float) -> str:
    """HH:MM:SS for an elapsed time in seconds."""
    seconds = int(round(seconds))
    return f"{seconds // 3600:02d}:{(seconds % 3600) // 60:02d}:{seconds % 60:02d}"


def log_pipeline_start(logger: logging.Logger, pipeline_name: str,
                       parameters: Optional[Mapping] = None) -> None:
    """Banner with the stage name and its key parameters."""
    logger.info("=" * 80)
    logger.info(f"STARTING STAGE: {pipeline_name.upper()}")
    logger.info("=" * 80)
    for key, value in (parameters or {}).items():
        if str(key).startswith('_'):
            continue
        if isinstance(value, Mapping):
            value = f"{len(value)} entries"
        elif isinstance(value, (list, tuple)):
            value = ', '.join(str(v) for v in value)
        logger.info(f"  {key}: {value}")


def log_pipeline_end(logger: logging.Logger, pipeline_name: str, success: bool = True,
                     elapsed_time: Optional[float] = None) -> None:
    """Closing banner with the outcome and, when given, the elapsed time."""
    logger.info("=" * 80)
    status = "COMPLETED" if success else "FAILED"
    logger.info(f"STAGE {status}: {pipeline_name.upper()}")
    if elapsed_time is not None:
        logger.info(f"Elapsed: {format_elapsed(elapsed_time)}")
    logger.info("=" * 80)


def log_section(logger: logging.Logger, section_name: str) -> None:
    logger.info(f"---- {section_name} ----")
