"""
Sampling Design Pipeline

Plans the next field campaign: stratum area and CV are read from the
stratum table or derived from the prior rasters and stratum masks, samples
are allocated with Neyman allocation and placed inside the stratum polygons.
"""

import time
from pathlib import Path
from typing import Optional, Union

import pandas as pd
from rasterio.enums import Resampling

from shared_utils import setup_logging, load_config, log_pipeline_start, log_pipeline_end, log_section
from shared_utils.central_data_paths_constants import *

from .errors import CarbonAssessmentError, InsufficientDataError
from .io_utils import RasterManager, cell_area_ha
from .sampling_design import AllocationPlan, NeymanAllocator, strata_from_rasters
from .settings import AssessmentConfig


class SamplingDesignPipeline:
    """
    Sampling design stage: allocation table and sample locations.
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None,
                 assessment_config: Optional[AssessmentConfig] = None):
        self.raw_config = load_config(config_path, component_name='soil_carbon_model')
        self.logger = setup_logging(
            level=self.raw_config.get('logging', {}).get('level', 'INFO'),
            component_name='sampling_design',
            log_file=self.raw_config.get('logging', {}).get('log_file')
        )
        self.config = assessment_config or AssessmentConfig.from_dict(self.raw_config)
        self.allocator = NeymanAllocator(self.config)
        self.raster_manager = RasterManager(self.raw_config)

        self.logger.info("Initialized SamplingDesignPipeline")

    def strata_from_priors(self, depth_cm: Optional[float] = None) -> pd.DataFrame:
        """
        Stratum area and mean CV from the prior rasters at one depth.

        Each stratum mask is looked up through the stratum registry and
        resampled (nearest) onto the prior grid; cells with a positive mask
        value belong to the stratum.
        """
        depth_cm = self.config.standard_depths[0] if depth_cm is None else depth_cm
        rm = self.raster_manager
        prior_mean = rm.load_raster(prior_raster_file('mean', depth_cm), "prior mean")
        prior_se = rm.load_optional_raster(prior_raster_file('se', depth_cm), "prior SE")
        if prior_se is None:
            prior_se = prior_mean * self.config.fusion.default_prior_cv

        mean, se = {}, {}
        for spec in self.config.strata:
            mask_file = STRATUM_RASTERS_DIR / self.config.strata.raster_filename(spec.name)
            if not mask_file.exists():
                self.logger.warning(f"No raster for stratum '{spec.name}': {mask_file}")
                continue
            mask = rm.load_raster(mask_file, f"{spec.name} mask")
            mask = mask.rio.reproject_match(prior_mean, resampling=Resampling.nearest)
            mask = mask.assign_coords({
                prior_mean.rio.x_dim: prior_mean[prior_mean.rio.x_dim],
                prior_mean.rio.y_dim: prior_mean[prior_mean.rio.y_dim],
            })
            inside = (mask > 0).values
            mean[spec.name] = prior_mean.values[inside]
            se[spec.name] = prior_se.values[inside]

        if not mean:
            raise InsufficientDataError("No stratum rasters found to derive areas and CVs")
        return strata_from_rasters(mean, se, cell_area_ha(prior_mean))

    def load_strata(self) -> pd.DataFrame:
        if STRATUM_AREAS_FILE.exists():
            table = self.raster_manager.load_table(STRATUM_AREAS_FILE, "stratum areas")
            if 'mean_cv' in table.columns:
                return table
            self.logger.info("Stratum table has no mean_cv column; deriving CVs from priors")
        return self.strata_from_priors()

    def save_results(self, plan: AllocationPlan) -> None:
        rm = self.raster_manager
        rm.save_table(plan.allocation, ALLOCATION_FILE)
        if plan.samples is not None:
            rm.save_sample_locations(plan.samples, SAMPLE_LOCATIONS_FILE)
            rm.save_table(plan.placement, SAMPLE_PLACEMENT_FILE)

    def run_full_pipeline(self) -> bool:
        """
        Run allocation and sample placement.

        Returns:
            bool: True if the allocation was produced (placement shortfalls
                are reported but do not fail the stage)
        """
        start_time = time.time()
        settings = self.config.sampling
        log_pipeline_start(self.logger, "Sampling Design", {
            'total_budget': settings.total_budget,
            'buffer_multiplier': settings.buffer_multiplier,
            'allocation_method': settings.allocation_method,
            'min_distance': settings.min_distance,
        })

        try:
            log_section(self.logger, "Stratum statistics")
            strata = self.load_strata()

            polygons = None
            if STRATUM_POLYGONS_FILE.exists():
                polygons = self.raster_manager.load_polygons(STRATUM_POLYGONS_FILE)
            else:
                self.logger.warning(f"No stratum polygons at {STRATUM_POLYGONS_FILE}; skipping placement")

            log_section(self.logger, "Allocation and placement")
            plan = self.allocator.plan(strata, polygons)
            if plan.samples is not None and not plan.placement_complete:
                self.logger.warning("Sample placement incomplete for some strata; see placement summary")
            self.save_results(plan)
            success = True
        except (CarbonAssessmentError, FileNotFoundError, ValueError) as e:
            self.logger.error(f"Sampling design failed: {e}")
            success = False

        log_pipeline_end(self.logger, "Sampling Design", success, time.time() - start_time)
        return success
