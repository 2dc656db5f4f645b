#!/usr/bin/env python3
"""
Field Carbon Stock Pipeline Script

Quality control of field records, depth harmonization with bootstrap
confidence intervals, and layer, core and stratum carbon stocks.

Examples:
    python run_field_stocks.py
    python run_field_stocks.py --config custom_config.yaml --bootstrap-iterations 1000
    python run_field_stocks.py --method linear
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from soil_carbon_model.core.field_pipeline import FieldStocksPipeline
from soil_carbon_model.scripts.stage_cli import base_parser, run_stage, stage_config


EPILOG = """
Output Structure:
  data/processed/harmonized/
    harmonized_profiles.csv        core_id, standard_depth, value, CI bounds, flags
    harmonization_diagnostics.csv  RMSE, MAE, bias, R2, leave-one-out RMSE per core
    field_qc_exclusions.csv        excluded records/cores by reason with examples
  data/results/carbon_stocks/
    layer_stocks.csv               stock per core and standard layer
    core_stocks.csv                total stock per core
    interval_stocks.csv            measured stock per reporting interval
    stratum_stocks.csv             mean/sd/min/max/conservative stock per stratum

Notes:
  - Cores with fewer than 3 distinct intervals use linear interpolation
  - Cores with a single interval are excluded as insufficient data
"""


def parse_arguments(argv=None):
    parser = base_parser("Field record QC, depth harmonization and carbon stock aggregation", EPILOG)
    parser.add_argument(
        '--bootstrap-iterations',
        type=int,
        help='Bootstrap replicates per core (overrides uncertainty.bootstrap_iterations)'
    )
    parser.add_argument(
        '--method',
        choices=['equal_area_spline', 'linear'],
        help='Harmonization method (overrides harmonization.method)'
    )
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    args = parse_arguments(argv)

    def build():
        config = stage_config(
            args.config,
            bootstrap_iterations=args.bootstrap_iterations,
            harmonization_method=args.method,
        )
        return FieldStocksPipeline(config_path=args.config, assessment_config=config)

    return run_stage(build)


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
