"""
Soil Carbon Model Component

Depth-resolved soil and sediment carbon stock assessment:

- Field record quality control and bulk density defaults
- Mass-preserving depth harmonization with bootstrap uncertainty
- Unit-consistent carbon stock aggregation with conservative estimates
- Bayesian fusion of remote-sensing priors with field-model rasters
- Neyman allocation and placement of the next field samples

Components:
    core/: Core processing modules
    scripts/: Executable entry points
    config.yaml: Component configuration
"""

from .core.settings import AssessmentConfig, StratumRegistry, load_assessment_config
from .core.depth_harmonization import DepthProfileHarmonizer
from .core.bootstrap import UncertaintyEstimator
from .core.carbon_stocks import CarbonStockAggregator
from .core.bayesian_fusion import BayesianFusionEngine
from .core.sampling_design import NeymanAllocator

__version__ = "1.0.0"
__component__ = "soil_carbon_model"

__all__ = [
    "AssessmentConfig",
    "StratumRegistry",
    "load_assessment_config",
    "DepthProfileHarmonizer",
    "UncertaintyEstimator",
    "CarbonStockAggregator",
    "BayesianFusionEngine",
    "NeymanAllocator"
]
