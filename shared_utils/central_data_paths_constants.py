"""
Central Data Paths - Constants

Centralized path management for the soil carbon assessment workflow.
All stages import paths from this module instead of defining their own.

Usage:
    from shared_utils.central_data_paths_constants import FIELD_RECORDS_FILE

    records = pd.read_csv(FIELD_RECORDS_FILE)

Paths are relative to the working directory the stages are run from.
"""

from pathlib import Path

# Root directories
DATA_ROOT = Path("data")

RAW_DIR = DATA_ROOT / "raw"
PROCESSED_DIR = DATA_ROOT / "processed"
RESULTS_DIR = DATA_ROOT / "results"

# Field cores
FIELD_RECORDS_FILE = RAW_DIR / "core_samples.csv"

# Stratum inputs
STRATA_DIR = RAW_DIR / "strata"
STRATUM_AREAS_FILE = STRATA_DIR / "stratum_areas.csv"
STRATUM_POLYGONS_FILE = STRATA_DIR / "strata.gpkg"
STRATUM_RASTERS_DIR = STRATA_DIR / "rasters"

# Remote-sensing priors (one mean/SE raster pair per standard depth)
PRIOR_DIR = RAW_DIR / "priors"

# Field-model rasters from kriging / random forest
FIELD_MODEL_DIR = PROCESSED_DIR / "field_model"

# Harmonization outputs
HARMONIZED_DIR = PROCESSED_DIR / "harmonized"
HARMONIZED_PROFILES_FILE = HARMONIZED_DIR / "harmonized_profiles.csv"
HARMONIZATION_DIAGNOSTICS_FILE = HARMONIZED_DIR / "harmonization_diagnostics.csv"
FIELD_QC_REPORT_FILE = HARMONIZED_DIR / "field_qc_exclusions.csv"

# Carbon stock outputs
CARBON_STOCKS_DIR = RESULTS_DIR / "carbon_stocks"
CORE_STOCKS_FILE = CARBON_STOCKS_DIR / "core_stocks.csv"
LAYER_STOCKS_FILE = CARBON_STOCKS_DIR / "layer_stocks.csv"
INTERVAL_STOCKS_FILE = CARBON_STOCKS_DIR / "interval_stocks.csv"
STRATUM_STOCKS_FILE = CARBON_STOCKS_DIR / "stratum_stocks.csv"

# Posterior outputs
POSTERIOR_DIR = RESULTS_DIR / "posterior"
INFORMATION_GAIN_FILE = POSTERIOR_DIR / "information_gain_summary.csv"
FUSION_EXCLUSIONS_FILE = POSTERIOR_DIR / "fusion_exclusions.csv"

# Sampling design outputs
SAMPLING_DIR = RESULTS_DIR / "sampling_design"
ALLOCATION_FILE = SAMPLING_DIR / "neyman_allocation.csv"
SAMPLE_LOCATIONS_FILE = SAMPLING_DIR / "sample_locations.csv"
SAMPLE_PLACEMENT_FILE = SAMPLING_DIR / "placement_summary.csv"


def prior_raster_file(statistic: str, depth_cm: float) -> Path:
    """Prior raster for a statistic ('mean' or 'se') at a standard depth."""
    return PRIOR_DIR / f"carbon_stock_prior_{statistic}_{depth_cm:.1f}cm.tif"


def field_model_raster_file(statistic: str, depth_cm: float) -> Path:
    """Field-model raster for a statistic ('mean' or 'se') at a standard depth."""
    return FIELD_MODEL_DIR / f"carbon_stock_field_{statistic}_{depth_cm:.1f}cm.tif"


def posterior_raster_file(statistic: str, depth_cm: float) -> Path:
    """Posterior raster for a statistic ('mean', 'se', 'conservative', 'information_gain')."""
    return POSTERIOR_DIR / f"carbon_stock_posterior_{statistic}_{depth_cm:.1f}cm.tif"
