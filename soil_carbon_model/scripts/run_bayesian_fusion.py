#!/usr/bin/env python3
"""
Bayesian Fusion Pipeline Script

Fuses remote-sensing prior rasters with field-model rasters at every
standard depth and writes posterior mean, SE, conservative and information
gain rasters plus an information gain summary table.

Examples:
    python run_bayesian_fusion.py
    python run_bayesian_fusion.py --weighting kernel_density --bandwidth 500
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from soil_carbon_model.core.fusion_pipeline import BayesianFusionPipeline
from soil_carbon_model.scripts.stage_cli import base_parser, run_stage, stage_config


EPILOG = """
Inputs:
  data/raw/priors/carbon_stock_prior_{mean,se}_<depth>cm.tif
  data/processed/field_model/carbon_stock_field_{mean,se}_<depth>cm.tif

Outputs (data/results/posterior/):
  carbon_stock_posterior_{mean,se,conservative,information_gain,information_gain_class}_<depth>cm.tif
  information_gain_summary.csv, fusion_exclusions.csv

Nothing is written unless every depth fuses successfully.
"""


def parse_arguments(argv=None):
    parser = base_parser("Precision-weighted fusion of prior and field carbon stock rasters", EPILOG)
    parser.add_argument(
        '--weighting',
        choices=['uniform', 'kernel_density'],
        help='Field precision weighting (overrides fusion.field_weighting.method)'
    )
    parser.add_argument(
        '--bandwidth',
        type=float,
        help='Kernel bandwidth in prior map units'
    )
    parser.add_argument(
        '--gain-reference',
        choices=['prior', 'min_input'],
        help='SE the information gain is measured against'
    )
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    args = parse_arguments(argv)

    def build():
        config = stage_config(
            args.config,
            fusion={'information_gain_reference': args.gain_reference},
            weighting={'method': args.weighting, 'bandwidth': args.bandwidth},
        )
        return BayesianFusionPipeline(config_path=args.config, assessment_config=config)

    return run_stage(build)


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
