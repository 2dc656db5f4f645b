"""
Executable scripts for the soil carbon component.

Scripts:
    run_field_stocks.py: Field QC, harmonization and carbon stocks
    run_bayesian_fusion.py: Prior and field raster fusion
    run_sampling_design.py: Neyman allocation and sample placement
    run_full_pipeline.py: All stages in sequence
"""

from .run_field_stocks import main as run_field_stocks
from .run_bayesian_fusion import main as run_bayesian_fusion
from .run_sampling_design import main as run_sampling_design
from .run_full_pipeline import main as run_full_pipeline

__all__ = [
    "run_field_stocks",
    "run_bayesian_fusion",
    "run_sampling_design",
    "run_full_pipeline",
]
