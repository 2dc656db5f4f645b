"""
Field Carbon Stock Pipeline

Field records -> quality control -> depth harmonization with bootstrap
intervals -> layer, core and stratum carbon stocks.

Invalid records and cores are excluded and reported; they never stop the
rest of the batch. Missing inputs or an empty batch abort the stage before
anything is written.
"""

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple, Union

import pandas as pd
from tqdm import tqdm

from shared_utils import setup_logging, load_config, log_pipeline_start, log_pipeline_end, log_section
from shared_utils.central_data_paths_constants import *

from .bootstrap import UncertaintyEstimator
from .carbon_stocks import CarbonStockAggregator
from .depth_harmonization import (
    DepthProfile, DepthProfileHarmonizer, HarmonizedProfile, profiles_to_frame
)
from .errors import CarbonAssessmentError, ExclusionReport, ValidationError
from .field_data import Core, FieldDataValidator
from .io_utils import RasterManager
from .settings import AssessmentConfig


CORE_INFO_COLUMNS = ['core_id', 'stratum', 'scenario_type', 'monitoring_year', 'longitude', 'latitude']


@dataclass
class FieldStockResults:
    """Tables produced by the field stage."""
    valid_records: pd.DataFrame
    harmonized: pd.DataFrame
    harmonized_bd: pd.DataFrame
    diagnostics: pd.DataFrame
    sample_stocks: pd.DataFrame
    layer_stocks: pd.DataFrame
    core_stocks: pd.DataFrame
    interval_stocks: pd.DataFrame
    stratum_stocks: pd.DataFrame
    qc_report: ExclusionReport
    harmonization_report: ExclusionReport
    n_fallback: int = 0
    n_unusual: int = 0

    def exclusions(self) -> pd.DataFrame:
        return pd.concat(
            [self.qc_report.to_frame(), self.harmonization_report.to_frame()], ignore_index=True
        )


@dataclass
class _CoreHarmonization:
    soc: List[HarmonizedProfile] = field(default_factory=list)
    bd: List[HarmonizedProfile] = field(default_factory=list)
    diagnostics: List[dict] = field(default_factory=list)
    report: ExclusionReport = field(default_factory=lambda: ExclusionReport('harmonization'))
    n_fallback: int = 0
    n_unusual: int = 0


class FieldStocksPipeline:
    """
    Field stage: QC, harmonization, uncertainty and stock aggregation.
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None,
                 assessment_config: Optional[AssessmentConfig] = None):
        """
        Initialize the field stocks pipeline.

        Args:
            config_path: Path to configuration file
            assessment_config: Prebuilt configuration (skips file loading of
                engine settings; logging still uses the YAML file)
        """
        self.raw_config = load_config(config_path, component_name='soil_carbon_model')
        self.logger = setup_logging(
            level=self.raw_config.get('logging', {}).get('level', 'INFO'),
            component_name='field_stocks',
            log_file=self.raw_config.get('logging', {}).get('log_file')
        )
        self.config = assessment_config or AssessmentConfig.from_dict(self.raw_config)

        self.validator = FieldDataValidator(self.config)
        self.harmonizer = DepthProfileHarmonizer(self.config)
        self.estimator = UncertaintyEstimator(self.config, self.harmonizer)
        self.aggregator = CarbonStockAggregator(self.config)
        self.raster_manager = RasterManager(self.raw_config)

        self.logger.info("Initialized FieldStocksPipeline")

    def harmonize_cores(self, cores: List[Core]) -> _CoreHarmonization:
        """Harmonize SOC and bulk density of every core and attach bootstrap intervals."""
        out = _CoreHarmonization()
        primary = self.harmonizer.strategy

        for core in tqdm(cores, desc="Harmonizing cores", unit="core"):
            samples = core.sorted_samples()
            try:
                soc_profile = DepthProfile.from_samples(core.core_id, samples)
                soc_profile.merged()
            except ValidationError as e:
                self.logger.warning(f"Core {core.core_id} excluded: {e}")
                out.report.add('invalid_profile', core.core_id)
                continue

            harmonized = self.harmonizer.harmonize_with_fallback(soc_profile)
            if not harmonized.sufficient:
                out.report.add('insufficient_data', core.core_id)
                continue
            if harmonized.method != primary.name:
                out.n_fallback += 1

            harmonized = self.estimator.estimate(soc_profile, harmonized)
            if harmonized.unusual_shape:
                out.n_unusual += 1
                self.logger.debug(
                    f"Core {core.core_id}: SOC increases with depth "
                    f"(max +{harmonized.max_increase_pct:.1f}%)"
                )
            out.soc.append(harmonized)

            strategy = self.harmonizer.strategy_for(harmonized.method)
            bd_profile = DepthProfile.from_intervals(
                core.core_id,
                [s.depth_top for s in samples],
                [s.depth_bottom for s in samples],
                [s.bulk_density for s in samples],
            )
            out.bd.append(self.harmonizer.harmonize(bd_profile, strategy=strategy))

            diagnostics = self.harmonizer.diagnostics(soc_profile, strategy)
            diagnostics['stratum'] = core.stratum
            out.diagnostics.append(diagnostics)

        if out.n_fallback:
            self.logger.warning(f"{out.n_fallback} cores harmonized with the {self.harmonizer.fallback.name} fallback")
        if out.n_unusual:
            self.logger.warning(f"{out.n_unusual} cores flagged with unusual depth profiles")
        out.report.log_summary(self.logger)
        return out

    def process(self, records: pd.DataFrame, stratum_areas: Optional[pd.DataFrame] = None) -> FieldStockResults:
        """
        Run the field stage on in-memory records.

        Args:
            records: Flat field records
            stratum_areas: Optional table with stratum and area_ha

        Returns:
            FieldStockResults: All field stage tables

        Raises:
            InsufficientDataError: If no record or core survives
            ValidationError: If required columns are missing
        """
        log_section(self.logger, "Field data quality control")
        cores, valid, qc_report = self.validator.prepare(records)

        log_section(self.logger, "Depth harmonization")
        harmonization = self.harmonize_cores(cores)
        soc_frame = profiles_to_frame(harmonization.soc)
        bd_frame = profiles_to_frame(harmonization.bd)
        diagnostics = pd.DataFrame(harmonization.diagnostics)

        log_section(self.logger, "Carbon stocks")
        core_info = valid[[c for c in CORE_INFO_COLUMNS if c in valid.columns]].drop_duplicates('core_id')

        sample_stocks = self.aggregator.sample_stocks(valid)
        layer_stocks = self.aggregator.layer_stocks(soc_frame, bd_frame)
        core_stocks = self.aggregator.core_totals(layer_stocks, core_info)
        interval_stocks = self.aggregator.interval_stocks(sample_stocks)
        stratum_stocks = self.aggregator.stratum_summary(core_stocks, stratum_areas)

        return FieldStockResults(
            valid_records=valid,
            harmonized=soc_frame,
            harmonized_bd=bd_frame,
            diagnostics=diagnostics,
            sample_stocks=sample_stocks,
            layer_stocks=layer_stocks,
            core_stocks=core_stocks,
            interval_stocks=interval_stocks,
            stratum_stocks=stratum_stocks,
            qc_report=qc_report,
            harmonization_report=harmonization.report,
            n_fallback=harmonization.n_fallback,
            n_unusual=harmonization.n_unusual,
        )

    def load_inputs(self) -> Tuple[pd.DataFrame, Optional[pd.DataFrame]]:
        records = self.raster_manager.load_table(FIELD_RECORDS_FILE, "field records")
        areas = None
        if STRATUM_AREAS_FILE.exists():
            areas = self.raster_manager.load_table(STRATUM_AREAS_FILE, "stratum areas")
        return records, areas

    def save_results(self, results: FieldStockResults) -> None:
        rm = self.raster_manager
        rm.save_table(results.harmonized, HARMONIZED_PROFILES_FILE)
        rm.save_table(results.diagnostics, HARMONIZATION_DIAGNOSTICS_FILE)
        rm.save_table(results.exclusions(), FIELD_QC_REPORT_FILE)
        rm.save_table(results.layer_stocks, LAYER_STOCKS_FILE)
        rm.save_table(results.core_stocks, CORE_STOCKS_FILE)
        rm.save_table(results.interval_stocks, INTERVAL_STOCKS_FILE)
        rm.save_table(results.stratum_stocks, STRATUM_STOCKS_FILE)

    def run_full_pipeline(self) -> bool:
        """
        Run the complete field stage from the central input paths.

        Returns:
            bool: True if the stage completed successfully
        """
        start_time = time.time()
        log_pipeline_start(self.logger, "Field Carbon Stocks", {
            'standard_depths': self.config.standard_depths,
            'harmonization': self.harmonizer.strategy.name,
            'bootstrap_iterations': self.config.bootstrap_iterations,
            'confidence_level': self.config.confidence_level,
        })

        try:
            records, areas = self.load_inputs()
            results = self.process(records, areas)
            self.save_results(results)
            self.logger.info(
                f"Field stage: {results.core_stocks['core_id'].nunique()} cores, "
                f"{len(results.stratum_stocks)} stratum groups"
            )
            success = True
        except (CarbonAssessmentError, FileNotFoundError, ValueError) as e:
            self.logger.error(f"Field stocks pipeline failed: {e}")
            success = False

        log_pipeline_end(self.logger, "Field Carbon Stocks", success, time.time() - start_time)
        return success
