"""
Core soil carbon modules.

This package contains the processing logic of the assessment:
- Settings: immutable AssessmentConfig and StratumRegistry
- Field data: record model, quality control, bulk density defaults
- DepthProfileHarmonizer / UncertaintyEstimator: harmonized profiles with intervals
- CarbonStockAggregator: layer, core and stratum stocks
- BayesianFusionEngine: prior and field raster fusion
- NeymanAllocator: sample allocation and placement
- Stage pipelines for the field, fusion and sampling stages
"""

from .errors import (
    CarbonAssessmentError,
    ValidationError,
    InsufficientDataError,
    AlignmentError,
    UnitError,
    AllocationError,
    ExclusionReport
)
from .settings import AssessmentConfig, StratumRegistry, StratumSpec, load_assessment_config
from .units import UnitConverter
from .field_data import Core, DepthSample, FieldDataValidator
from .depth_harmonization import (
    DepthProfile,
    DepthProfileHarmonizer,
    HarmonizedProfile,
    EqualAreaSplineStrategy,
    LinearInterpolationStrategy
)
from .bootstrap import UncertaintyEstimator
from .carbon_stocks import CarbonStockAggregator
from .bayesian_fusion import (
    BayesianFusionEngine,
    UniformFieldWeighting,
    KernelDensityFieldWeighting,
    classify_information_gain
)
from .sampling_design import NeymanAllocator, AllocationPlan, largest_remainder

# Stage pipelines
from .field_pipeline import FieldStocksPipeline
from .fusion_pipeline import BayesianFusionPipeline
from .sampling_pipeline import SamplingDesignPipeline

__all__ = [
    # Errors
    "CarbonAssessmentError",
    "ValidationError",
    "InsufficientDataError",
    "AlignmentError",
    "UnitError",
    "AllocationError",
    "ExclusionReport",

    # Configuration
    "AssessmentConfig",
    "StratumRegistry",
    "StratumSpec",
    "load_assessment_config",
    "UnitConverter",

    # Engines
    "Core",
    "DepthSample",
    "FieldDataValidator",
    "DepthProfile",
    "DepthProfileHarmonizer",
    "HarmonizedProfile",
    "EqualAreaSplineStrategy",
    "LinearInterpolationStrategy",
    "UncertaintyEstimator",
    "CarbonStockAggregator",
    "BayesianFusionEngine",
    "UniformFieldWeighting",
    "KernelDensityFieldWeighting",
    "classify_information_gain",
    "NeymanAllocator",
    "AllocationPlan",
    "largest_remainder",

    # Pipelines
    "FieldStocksPipeline",
    "BayesianFusionPipeline",
    "SamplingDesignPipeline",
]
