"""
Carbon Stock Aggregation

Converts SOC concentration and bulk density into areal carbon stocks per
sample, per standard layer and per core, and summarizes core totals by
scenario, monitoring year and stratum with conservative lower bounds.

    stock = SOC x bulk density x thickness x unit factor

The unit factor comes from the unit table for the declared input and output
units and is resolved when the aggregator is built, so an unknown or
mismatched unit fails before any table is touched.
"""

from typing import Dict, Mapping, Optional, Union

import numpy as np
import pandas as pd

from shared_utils import get_logger

from .errors import InsufficientDataError
from .settings import AssessmentConfig
from .units import UnitConverter


GROUP_COLUMNS = ['scenario_type', 'monitoring_year', 'stratum']


class CarbonStockAggregator:
    """
    Unit-consistent stock calculation and stratum summaries.
    """

    def __init__(self, config: AssessmentConfig, converter: Optional[UnitConverter] = None):
        self.config = config
        self.logger = get_logger('soil_carbon_model.carbon_stocks')
        self.converter = converter or config.unit_converter()

        self.stock_factor = self.converter.stock_factor(
            config.soc_unit, config.bd_unit, config.depth_unit, config.stock_unit
        )
        self.z_value = config.z_value
        self.stock_unit = config.stock_unit

        self.logger.info(
            f"CarbonStockAggregator initialized: {config.soc_unit} x {config.bd_unit} x "
            f"{config.depth_unit} -> {config.stock_unit} (factor {self.stock_factor:g}), "
            f"z={self.z_value:.3f}"
        )

    def compute_stock(self, soc, bulk_density, thickness):
        """Stock for arrays or scalars in the declared units."""
        return soc * bulk_density * thickness * self.stock_factor

    def sample_stocks(self, records: pd.DataFrame) -> pd.DataFrame:
        """
        Stock of every measured interval.

        Args:
            records: Validated records with soc_g_kg, bulk_density_g_cm3 and
                thickness_cm (or the depth bounds)

        Returns:
            pd.DataFrame: Records with a carbon_stock column
        """
        df = records.copy()
        if 'thickness_cm' not in df.columns:
            df['thickness_cm'] = df['depth_bottom_cm'] - df['depth_top_cm']
        df['carbon_stock'] = self.compute_stock(
            df['soc_g_kg'], df['bulk_density_g_cm3'], df['thickness_cm']
        )
        return df

    def layer_stocks(self, soc_profiles: pd.DataFrame, bd_profiles: pd.DataFrame) -> pd.DataFrame:
        """
        Stocks of the standard layers from harmonized SOC and bulk density.

        Args:
            soc_profiles: Harmonized SOC rows (core_id, standard_depth, value,
                lower_ci, upper_ci)
            bd_profiles: Harmonized bulk density rows (core_id, standard_depth, value)

        Returns:
            pd.DataFrame: One row per core and layer with carbon_stock and
                interval bounds propagated from the SOC interval
        """
        layers = pd.DataFrame(
            [(d, top, bottom) for d, (top, bottom)
             in zip(self.config.standard_depths, self.config.standard_layers)],
            columns=['standard_depth', 'layer_top', 'layer_bottom']
        )

        soc = soc_profiles[['core_id', 'standard_depth', 'value', 'lower_ci', 'upper_ci']].rename(
            columns={'value': 'soc', 'lower_ci': 'soc_lower', 'upper_ci': 'soc_upper'}
        )
        bd = bd_profiles[['core_id', 'standard_depth', 'value']].rename(columns={'value': 'bulk_density'})

        df = soc.merge(bd, on=['core_id', 'standard_depth'], how='inner')
        missing_bd = set(soc['core_id']) - set(df['core_id'])
        if missing_bd:
            self.logger.warning(f"No harmonized bulk density for {len(missing_bd)} cores; their layers are skipped")

        df = df.merge(layers, on='standard_depth', how='inner')
        df['thickness'] = df['layer_bottom'] - df['layer_top']
        df['carbon_stock'] = self.compute_stock(df['soc'], df['bulk_density'], df['thickness'])
        df['stock_lower'] = self.compute_stock(df['soc_lower'], df['bulk_density'], df['thickness'])
        df['stock_upper'] = self.compute_stock(df['soc_upper'], df['bulk_density'], df['thickness'])
        return df.sort_values(['core_id', 'standard_depth']).reset_index(drop=True)

    def core_totals(self, stocks: pd.DataFrame, core_info: Optional[pd.DataFrame] = None) -> pd.DataFrame:
        """
        Sum sample or layer stocks into one total per core.

        Args:
            stocks: Rows with core_id and carbon_stock
            core_info: Optional per-core attributes (core_id plus stratum,
                scenario_type, monitoring_year) merged into the result

        Returns:
            pd.DataFrame: core_id, total_stock, n_intervals and core attributes
        """
        totals = (
            stocks.groupby('core_id', sort=True)
            .agg(total_stock=('carbon_stock', 'sum'), n_intervals=('carbon_stock', 'size'))
            .reset_index()
        )
        if core_info is not None:
            info = core_info.drop_duplicates('core_id')
            totals = totals.merge(info, on='core_id', how='left')
        return totals

    def interval_stocks(self, samples: pd.DataFrame,
                        intervals: Optional[Mapping[str, tuple]] = None) -> pd.DataFrame:
        """
        Split per-sample stocks over reporting intervals by thickness overlap.

        Args:
            samples: Output of sample_stocks
            intervals: {name: (top, bottom)}; defaults to the configured
                reporting intervals

        Returns:
            pd.DataFrame: core_id, interval, interval_top, interval_bottom,
                carbon_stock, coverage (fraction of the interval measured)
        """
        intervals = dict(intervals if intervals is not None else self.config.reporting_intervals)
        rows = []
        top = samples['depth_top_cm'].to_numpy()
        bottom = samples['depth_bottom_cm'].to_numpy()
        thickness = bottom - top
        stock = samples['carbon_stock'].to_numpy()

        for name, (i_top, i_bottom) in intervals.items():
            overlap = np.clip(np.minimum(bottom, i_bottom) - np.maximum(top, i_top), 0.0, None)
            part = pd.DataFrame({
                'core_id': samples['core_id'].to_numpy(),
                'carbon_stock': stock * overlap / thickness,
                'covered': overlap,
            })
            grouped = part.groupby('core_id', sort=True).sum().reset_index()
            grouped['interval'] = name
            grouped['interval_top'] = i_top
            grouped['interval_bottom'] = i_bottom
            grouped['coverage'] = grouped.pop('covered') / (i_bottom - i_top)
            rows.append(grouped)

        if not rows:
            return pd.DataFrame(columns=['core_id', 'interval', 'interval_top', 'interval_bottom',
                                         'carbon_stock', 'coverage'])
        return pd.concat(rows, ignore_index=True)[
            ['core_id', 'interval', 'interval_top', 'interval_bottom', 'carbon_stock', 'coverage']
        ]

    def stratum_summary(self, core_stocks: pd.DataFrame,
                        stratum_areas: Optional[Union[pd.DataFrame, Dict[str, float]]] = None,
                        value_column: str = 'total_stock') -> pd.DataFrame:
        """
        Summarize core totals by scenario, monitoring year and stratum.

        Args:
            core_stocks: One row per core with stratum and value_column
            stratum_areas: Optional stratum areas in hectares (DataFrame with
                stratum, area_ha or a mapping)
            value_column: Column holding the per-core stock

        Returns:
            pd.DataFrame: n_cores, mean/sd/min/max/se stock, conservative
                stock, z value and, with areas, area_ha, total_stock and
                conservative_total

        Raises:
            InsufficientDataError: If there are no cores
        """
        if core_stocks is None or core_stocks.empty:
            raise InsufficientDataError("No core stocks to aggregate")

        keys = [c for c in GROUP_COLUMNS if c in core_stocks.columns]
        summary = (
            core_stocks.groupby(keys, dropna=False, sort=True)[value_column]
            .agg(n_cores='count', mean_stock='mean', sd_stock='std', min_stock='min', max_stock='max')
            .reset_index()
        )
        summary['se_stock'] = summary['sd_stock'] / np.sqrt(summary['n_cores'])
        summary['conservative_stock'] = np.maximum(
            summary['mean_stock'] - self.z_value * summary['se_stock'], 0.0
        )
        summary['z_value'] = self.z_value
        summary['stock_unit'] = self.stock_unit

        single = summary[summary['n_cores'] == 1]
        if not single.empty:
            self.logger.warning(
                f"{len(single)} strata have a single core; sd and conservative stock are undefined: "
                f"{list(single['stratum'])[:5]}"
            )

        if stratum_areas is not None:
            summary = self._add_totals(summary, stratum_areas)

        self.logger.info(f"Stratum summary: {len(summary)} groups from {len(core_stocks)} cores")
        return summary

    def _add_totals(self, summary: pd.DataFrame, stratum_areas) -> pd.DataFrame:
        """Stratum totals (Mg) from mean stocks and areas in hectares."""
        if isinstance(stratum_areas, pd.DataFrame):
            areas = stratum_areas.set_index('stratum')['area_ha']
        else:
            areas = pd.Series(stratum_areas, dtype=float)

        per_ha = self.converter.factor(self.stock_unit, 'Mg/ha')
        summary = summary.copy()
        summary['area_ha'] = summary['stratum'].map(areas)
        summary['total_stock_Mg'] = summary['mean_stock'] * per_ha * summary['area_ha']
        summary['conservative_total_Mg'] = summary['conservative_stock'] * per_ha * summary['area_ha']

        unmatched = summary.loc[summary['area_ha'].isna(), 'stratum'].unique()
        if len(unmatched):
            self.logger.warning(f"No area for strata: {list(unmatched)}")
        return summary
