#!/usr/bin/env python3
"""
Sampling Design Pipeline Script

Neyman allocation of the next field campaign and spatially balanced
placement of the sample points inside the stratum polygons.

Examples:
    python run_sampling_design.py
    python run_sampling_design.py --budget 80 --min-distance 100
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from soil_carbon_model.core.sampling_pipeline import SamplingDesignPipeline
from soil_carbon_model.scripts.stage_cli import base_parser, run_stage, stage_config


EPILOG = """
Outputs (data/results/sampling_design/):
  neyman_allocation.csv     stratum, area, CV, class, neyman_n, buffered_n, required_n
  sample_locations.csv      point_id, stratum, x, y, crs
  placement_summary.csv     target, placed and shortfall per stratum
"""


def parse_arguments(argv=None):
    parser = base_parser("Neyman sample allocation and spatially balanced placement", EPILOG)
    parser.add_argument(
        '--budget',
        type=int,
        help='Total number of samples (overrides sampling.total_budget)'
    )
    parser.add_argument(
        '--method',
        choices=['neyman', 'proportional', 'equal'],
        help='Allocation method'
    )
    parser.add_argument(
        '--min-distance',
        type=float,
        help='Minimum distance between sample points in map units'
    )
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    args = parse_arguments(argv)

    def build():
        config = stage_config(args.config, sampling={
            'total_budget': args.budget,
            'allocation_method': args.method,
            'min_distance': args.min_distance,
        })
        return SamplingDesignPipeline(config_path=args.config, assessment_config=config)

    return run_stage(build)


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
