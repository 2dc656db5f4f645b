#!/usr/bin/env python3
"""
Soil Carbon Full Pipeline Orchestrator

Runs the stages in sequence with one shared configuration:
1. Field carbon stocks (QC, harmonization, uncertainty, aggregation)
2. Bayesian fusion with remote-sensing priors (skipped with --skip-fusion)
3. Sampling design for the next field campaign

Each stage runs even if an earlier one failed; the exit code is non-zero
when any stage failed.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from soil_carbon_model.core.field_pipeline import FieldStocksPipeline
from soil_carbon_model.core.fusion_pipeline import BayesianFusionPipeline
from soil_carbon_model.core.sampling_pipeline import SamplingDesignPipeline
from soil_carbon_model.scripts.stage_cli import base_parser, run_stage, stage_config


def parse_arguments(argv=None):
    parser = base_parser("Soil carbon assessment: field stocks, fusion and sampling design")
    parser.add_argument(
        '--skip-fusion',
        action='store_true',
        help='Skip the Bayesian fusion stage (no prior rasters available)'
    )
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    args = parse_arguments(argv)
    try:
        config = stage_config(args.config)
    except Exception as e:
        print(f"ERROR: Failed to load configuration: {e}")
        return False

    stages = [FieldStocksPipeline]
    if not args.skip_fusion:
        stages.append(BayesianFusionPipeline)
    stages.append(SamplingDesignPipeline)

    results = [run_stage(lambda stage=stage: stage(args.config, config)) for stage in stages]
    return all(results)


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
