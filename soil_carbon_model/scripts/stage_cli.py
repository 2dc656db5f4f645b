"""
Command line plumbing shared by the stage scripts.

Every script accepts ``--config``; stage-specific flags override single
fields of the frozen configuration before the pipeline is built.
"""

import argparse
import dataclasses
import sys
from pathlib import Path
from typing import Callable, Optional

# Add repo root to path for absolute imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from soil_carbon_model.core.settings import AssessmentConfig, load_assessment_config


def base_parser(description: str, epilog: Optional[str] = None) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=description,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=epilog,
    )
    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='Path to configuration file (default: soil_carbon_model/config.yaml)'
    )
    return parser


def stage_config(config_path: Optional[str], sampling: Optional[dict] = None,
                 fusion: Optional[dict] = None, weighting: Optional[dict] = None,
                 **overrides) -> AssessmentConfig:
    """
    Load the configuration and apply command line overrides.

    None values are ignored, so unset flags keep the file's settings.
    """
    config = load_assessment_config(config_path)

    def changed(values):
        return {k: v for k, v in (values or {}).items() if v is not None}

    fusion_changes = changed(fusion)
    if changed(weighting):
        fusion_changes['field_weighting'] = dataclasses.replace(
            config.fusion.field_weighting, **changed(weighting)
        )
    if fusion_changes:
        overrides['fusion'] = dataclasses.replace(config.fusion, **fusion_changes)
    if changed(sampling):
        overrides['sampling'] = dataclasses.replace(config.sampling, **changed(sampling))

    overrides = changed(overrides)
    return dataclasses.replace(config, **overrides) if overrides else config


def run_stage(build_pipeline: Callable) -> bool:
    """Build a pipeline and run it; initialization failures return False."""
    try:
        pipeline = build_pipeline()
    except Exception as e:
        print(f"ERROR: Failed to initialize pipeline: {e}")
        return False

    try:
        return pipeline.run_full_pipeline()
    except KeyboardInterrupt:
        print("\n\nPipeline interrupted by user")
        return False
