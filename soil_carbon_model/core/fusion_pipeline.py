"""
Bayesian Fusion Pipeline

Fuses prior (remote sensing) and field-model mean/SE rasters for every
standard depth and writes posterior mean, SE, conservative and information
gain rasters plus a per-depth information gain summary.

All depths are fused in memory before anything is written, so an alignment
failure at any depth leaves no partial output.
"""

import time
from pathlib import Path
from typing import List, Optional, Union

import numpy as np

from shared_utils import setup_logging, load_config, log_pipeline_start, log_pipeline_end, log_section
from shared_utils.central_data_paths_constants import *

from .bayesian_fusion import BayesianFusionEngine, FusionResult, UniformFieldWeighting, summaries_to_frame
from .errors import CarbonAssessmentError, ExclusionReport
from .io_utils import RasterManager, core_coordinates
from .settings import AssessmentConfig


class BayesianFusionPipeline:
    """
    Fusion stage over all standard depths.
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None,
                 assessment_config: Optional[AssessmentConfig] = None):
        self.raw_config = load_config(config_path, component_name='soil_carbon_model')
        self.logger = setup_logging(
            level=self.raw_config.get('logging', {}).get('level', 'INFO'),
            component_name='bayesian_fusion',
            log_file=self.raw_config.get('logging', {}).get('log_file')
        )
        self.config = assessment_config or AssessmentConfig.from_dict(self.raw_config)
        self.engine = BayesianFusionEngine(self.config)
        self.raster_manager = RasterManager(self.raw_config)

        self.logger.info("Initialized BayesianFusionPipeline")

    def field_points(self, crs) -> Optional[np.ndarray]:
        """Core locations in the prior CRS, when density weighting needs them."""
        if isinstance(self.engine.weighting, UniformFieldWeighting):
            return None
        source = CORE_STOCKS_FILE if CORE_STOCKS_FILE.exists() else FIELD_RECORDS_FILE
        cores = self.raster_manager.load_table(source, "core locations")
        points = core_coordinates(cores, crs)
        self.logger.info(f"Field weighting uses {len(points)} core locations")
        return points

    def fuse_depth(self, depth_cm: float, points_cache: dict) -> FusionResult:
        rm = self.raster_manager
        prior_mean = rm.load_raster(prior_raster_file('mean', depth_cm), f"prior mean {depth_cm} cm")
        prior_se = rm.load_optional_raster(prior_raster_file('se', depth_cm), f"prior SE {depth_cm} cm")
        field_mean = rm.load_raster(field_model_raster_file('mean', depth_cm), f"field mean {depth_cm} cm")
        field_se = rm.load_raster(field_model_raster_file('se', depth_cm), f"field SE {depth_cm} cm")

        crs_key = prior_mean.rio.crs.to_string()
        if crs_key not in points_cache:
            points_cache[crs_key] = self.field_points(prior_mean.rio.crs)

        return self.engine.fuse(
            prior_mean, prior_se, field_mean, field_se, depth_cm, field_points=points_cache[crs_key]
        )

    def save_results(self, results: List[FusionResult]) -> None:
        rm = self.raster_manager
        for result in results:
            depth = result.depth_cm
            rm.save_raster(result.posterior_mean, posterior_raster_file('mean', depth), depth)
            rm.save_raster(result.posterior_se, posterior_raster_file('se', depth), depth)
            rm.save_raster(result.conservative, posterior_raster_file('conservative', depth), depth)
            rm.save_raster(result.information_gain, posterior_raster_file('information_gain', depth), depth)
            rm.save_raster(result.gain_class, posterior_raster_file('information_gain_class', depth), depth)

        rm.save_table(summaries_to_frame(results), INFORMATION_GAIN_FILE)

        report = ExclusionReport('fusion')
        for result in results:
            report.merge(result.report)
        rm.save_table(report.to_frame(), FUSION_EXCLUSIONS_FILE)

    def run_full_pipeline(self) -> bool:
        """
        Run fusion for every standard depth.

        Returns:
            bool: True if all depths were fused and written
        """
        start_time = time.time()
        log_pipeline_start(self.logger, "Bayesian Fusion", {
            'standard_depths': self.config.standard_depths,
            'field_weighting': self.engine.weighting.name,
            'prior_se_inflation': self.engine.prior_se_inflation,
            'information_gain_reference': self.engine.gain_reference,
        })

        try:
            results = []
            points_cache = {}
            for depth in self.config.standard_depths:
                log_section(self.logger, f"Depth {depth} cm")
                results.append(self.fuse_depth(depth, points_cache))

            summary = summaries_to_frame(results)
            for row in summary.itertuples(index=False):
                self.logger.info(
                    f"{row.depth_cm} cm: information gain {row.information_gain_pct:.1f}% "
                    f"({row.information_gain_class})"
                )
            self.save_results(results)
            success = True
        except (CarbonAssessmentError, FileNotFoundError, ValueError) as e:
            self.logger.error(f"Bayesian fusion failed, no outputs written: {e}")
            success = False

        log_pipeline_end(self.logger, "Bayesian Fusion", success, time.time() - start_time)
        return success
