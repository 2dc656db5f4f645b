"""
Field record model and quality control.

Flat field records (one row per measured depth interval) are validated
against the configured domain bounds, completed with stratum bulk-density
defaults and grouped into Core objects for harmonization and stock
aggregation. Invalid rows are excluded and tallied; they never abort the
batch.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from shared_utils import get_logger

from .errors import ExclusionReport, InsufficientDataError, ValidationError
from .settings import AssessmentConfig


REQUIRED_COLUMNS = ['core_id', 'depth_top_cm', 'depth_bottom_cm', 'soc_g_kg']
OPTIONAL_COLUMNS = [
    'bulk_density_g_cm3', 'stratum', 'longitude', 'latitude',
    'scenario_type', 'monitoring_year'
]


@dataclass
class DepthSample:
    """One measured depth interval of a core."""
    core_id: str
    depth_top: float
    depth_bottom: float
    soc: float
    bulk_density: Optional[float] = None
    bd_estimated: bool = False

    @property
    def depth_mid(self) -> float:
        return (self.depth_top + self.depth_bottom) / 2.0

    @property
    def thickness(self) -> float:
        return self.depth_bottom - self.depth_top


@dataclass
class Core:
    """A sampled core with its location, stratum and ordered samples."""
    core_id: str
    stratum: str
    longitude: float = np.nan
    latitude: float = np.nan
    scenario: Optional[str] = None
    monitoring_year: Optional[int] = None
    samples: List[DepthSample] = field(default_factory=list)

    def sorted_samples(self) -> List[DepthSample]:
        return sorted(self.samples, key=lambda s: (s.depth_top, s.depth_bottom))

    @property
    def n_samples(self) -> int:
        return len(self.samples)


def _sample_label(row) -> str:
    return f"{row['core_id']}@{row['depth_top_cm']}-{row['depth_bottom_cm']}"


class FieldDataValidator:
    """
    Quality control for flat field records.

    Applies depth, SOC, bulk density, stratum and coordinate checks row by
    row and reports excluded rows with example identifiers.
    """

    def __init__(self, config: AssessmentConfig):
        self.config = config
        self.logger = get_logger('soil_carbon_model.field_data')

    def check_structure(self, records: pd.DataFrame) -> None:
        """
        Pre-conditions that abort the run before any computation.

        Raises:
            InsufficientDataError: If there are no records
            ValidationError: If required columns are missing
        """
        if records is None or len(records) == 0:
            raise InsufficientDataError("No field records supplied")

        missing = [c for c in REQUIRED_COLUMNS + ['stratum'] if c not in records.columns]
        if missing:
            raise ValidationError(f"Field records are missing required columns: {missing}", missing)

    def validate(self, records: pd.DataFrame) -> Tuple[pd.DataFrame, ExclusionReport]:
        """
        Validate field records and drop rows that fail any check.

        Args:
            records: Flat field records

        Returns:
            tuple: (valid records with derived columns, exclusion report)
        """
        self.check_structure(records)
        cfg = self.config
        report = ExclusionReport('field_qc')

        df = records.copy()
        df['core_id'] = df['core_id'].astype(str).str.strip()
        for column in ['depth_top_cm', 'depth_bottom_cm', 'soc_g_kg']:
            df[column] = pd.to_numeric(df[column], errors='coerce')
        if 'bulk_density_g_cm3' not in df.columns:
            df['bulk_density_g_cm3'] = np.nan
        df['bulk_density_g_cm3'] = pd.to_numeric(df['bulk_density_g_cm3'], errors='coerce')

        top, bottom = df['depth_top_cm'], df['depth_bottom_cm']
        soc, bd = df['soc_g_kg'], df['bulk_density_g_cm3']

        checks = [
            ('missing_core_id', df['core_id'].isin(['', 'nan', 'None'])),
            ('invalid_depth', ~(
                (top >= 0) & (top < bottom) & (bottom <= cfg.max_core_depth)
            )),
            ('soc_out_of_range', ~((soc >= cfg.soc_min) & (soc <= cfg.soc_max))),
            ('bd_out_of_range', bd.notna() & ~((bd >= cfg.bd_min) & (bd <= cfg.bd_max))),
            ('unknown_stratum', ~df['stratum'].isin(cfg.strata.names)),
        ]
        if 'longitude' in df.columns and 'latitude' in df.columns:
            lon = pd.to_numeric(df['longitude'], errors='coerce')
            lat = pd.to_numeric(df['latitude'], errors='coerce')
            checks.append(('invalid_coordinates', ~(
                lon.between(-180, 180) & lat.between(-90, 90)
            )))

        excluded = pd.Series(False, index=df.index)
        for reason, failed in checks:
            failed = failed & ~excluded
            for _, row in df[failed].iterrows():
                report.add(reason, _sample_label(row))
            excluded |= failed

        valid = df[~excluded].copy()
        valid = self._exclude_inconsistent_cores(valid, report)

        valid['depth_mid_cm'] = (valid['depth_top_cm'] + valid['depth_bottom_cm']) / 2.0
        valid['thickness_cm'] = valid['depth_bottom_cm'] - valid['depth_top_cm']

        self.logger.info(
            f"Field QC: {len(valid)} of {len(df)} records passed "
            f"({valid['core_id'].nunique()} cores)"
        )
        report.log_summary(self.logger)
        return valid.reset_index(drop=True), report

    def _exclude_inconsistent_cores(self, df: pd.DataFrame, report: ExclusionReport) -> pd.DataFrame:
        """Drop cores whose rows disagree on stratum."""
        strata_per_core = df.groupby('core_id')['stratum'].nunique()
        inconsistent = strata_per_core[strata_per_core > 1].index
        for core_id in inconsistent:
            report.add('inconsistent_core_stratum', core_id, int((df['core_id'] == core_id).sum()))
        return df[~df['core_id'].isin(inconsistent)]

    def assign_bd_defaults(self, df: pd.DataFrame) -> pd.DataFrame:
        """Fill missing bulk density with the stratum default and flag the rows."""
        df = df.copy()
        missing = df['bulk_density_g_cm3'].isna()
        df['bd_estimated'] = missing
        if missing.any():
            defaults = df.loc[missing, 'stratum'].map(self.config.strata.bd_default)
            df.loc[missing, 'bulk_density_g_cm3'] = defaults
            self.logger.info(f"Assigned stratum bulk density defaults to {int(missing.sum())} records")
        return df

    def build_cores(self, df: pd.DataFrame) -> List[Core]:
        """Group validated records into Core objects ordered by core_id."""
        cores: Dict[str, Core] = {}
        for core_id, rows in df.groupby('core_id', sort=True):
            first = rows.iloc[0]
            year = first.get('monitoring_year') if 'monitoring_year' in rows.columns else None
            core = Core(
                core_id=str(core_id),
                stratum=str(first['stratum']),
                longitude=float(first['longitude']) if 'longitude' in rows.columns else np.nan,
                latitude=float(first['latitude']) if 'latitude' in rows.columns else np.nan,
                scenario=first.get('scenario_type') if 'scenario_type' in rows.columns else None,
                monitoring_year=int(year) if year is not None and pd.notna(year) else None,
            )
            for _, row in rows.iterrows():
                bd = row.get('bulk_density_g_cm3')
                core.samples.append(DepthSample(
                    core_id=core.core_id,
                    depth_top=float(row['depth_top_cm']),
                    depth_bottom=float(row['depth_bottom_cm']),
                    soc=float(row['soc_g_kg']),
                    bulk_density=float(bd) if bd is not None and pd.notna(bd) else None,
                    bd_estimated=bool(row.get('bd_estimated', False)),
                ))
            cores[core.core_id] = core
        return list(cores.values())

    def prepare(self, records: pd.DataFrame) -> Tuple[List[Core], pd.DataFrame, ExclusionReport]:
        """Validate, fill bulk density defaults and build cores in one call."""
        valid, report = self.validate(records)
        if valid.empty:
            raise InsufficientDataError("No field records passed quality control")
        valid = self.assign_bd_defaults(valid)
        return self.build_cores(valid), valid, report
