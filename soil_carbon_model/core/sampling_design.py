"""
Sampling Design: Neyman Allocation and Sample Placement

Plans the next round of field sampling from per-stratum area and
coefficient of variation (CV, percent):

- Neyman allocation, n_h proportional to area_h x CV_h, integerized with the
  largest-remainder rule so the counts sum exactly to the budget.
- A buffered allocation (budget x buffer multiplier, rounded up) for field
  contingency, integerized independently.
- Uncertainty classes (low / medium / high CV) and the sample size required
  for a target relative precision.
- Spatially balanced sample locations inside each stratum polygon from a
  scrambled Halton sequence, subject to a minimum distance between points.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd
import shapely
from scipy.spatial import cKDTree
from scipy.stats import qmc

from shared_utils import get_logger

from .errors import AllocationError, ExclusionReport
from .settings import AssessmentConfig


ALLOCATION_METHODS = ('neyman', 'proportional', 'equal')


def largest_remainder(weights, total: int, minimum: int = 0) -> np.ndarray:
    """
    Integer allocation of `total` proportional to `weights`.

    Each entry first receives `minimum`; the rest is split by weight, floors
    are taken and the leftover units go to the largest remainders (ties by
    position). The result always sums to `total`.

    Raises:
        AllocationError: If the total is not positive, the floor exceeds the
            total, or no weight is positive
    """
    weights = np.asarray(weights, dtype=float)
    n = len(weights)
    if n == 0:
        raise AllocationError("No strata to allocate")
    if total <= 0:
        raise AllocationError(f"Sample budget must be positive, got {total}")
    if minimum * n > total:
        raise AllocationError(f"Minimum of {minimum} per stratum over {n} strata exceeds the budget of {total}")
    if np.any(weights < 0) or not np.all(np.isfinite(weights)):
        raise AllocationError("Allocation weights must be finite and non-negative")
    if weights.sum() <= 0:
        raise AllocationError("Allocation weights sum to zero")

    remaining = total - minimum * n
    quotas = remaining * weights / weights.sum()
    base = np.floor(quotas)
    remainders = np.round(quotas - base, 9)
    leftover = int(round(remaining - base.sum()))

    order = np.argsort(-remainders, kind='stable')
    base[order[:leftover]] += 1
    return (base + minimum).astype(int)


def buffered_total(budget: int, multiplier: float) -> int:
    """Budget scaled by the buffer multiplier, rounded up."""
    return int(math.ceil(round(budget * multiplier, 9)))


def cv_class(cv: float, low: float = 10.0, high: float = 30.0) -> str:
    """Uncertainty class with closed lower bounds: low < low_t <= medium < high_t <= high."""
    if cv < low:
        return 'low'
    if cv < high:
        return 'medium'
    return 'high'


def required_sample_size(cv: float, target_precision: float, z_value: float) -> int:
    """Samples needed for a relative error of target_precision percent at z."""
    if cv <= 0:
        return 1
    return int(math.ceil(round((z_value * cv / target_precision) ** 2, 9)))


@dataclass
class AllocationPlan:
    """Allocation table plus generated sample locations."""
    allocation: pd.DataFrame
    samples: Optional[gpd.GeoDataFrame] = None
    placement: Optional[pd.DataFrame] = None
    report: ExclusionReport = field(default_factory=lambda: ExclusionReport('allocation'))

    @property
    def placement_complete(self) -> bool:
        return self.placement is not None and bool(self.placement['placement_complete'].all())


class NeymanAllocator:
    """
    Allocate a sample budget across strata and place sample points.
    """

    def __init__(self, config: AssessmentConfig):
        self.config = config
        self.settings = config.sampling
        self.logger = get_logger('soil_carbon_model.sampling_design')
        self.z_value = config.z_value

        if self.settings.allocation_method not in ALLOCATION_METHODS:
            raise AllocationError(f"Unknown allocation method '{self.settings.allocation_method}'")

        self.logger.info(
            f"NeymanAllocator initialized: method={self.settings.allocation_method}, "
            f"budget={self.settings.total_budget}, buffer x{self.settings.buffer_multiplier}"
        )

    def _validate_strata(self, strata: pd.DataFrame, report: ExclusionReport) -> pd.DataFrame:
        """Drop strata with missing or negative area or CV."""
        if strata is None or strata.empty:
            raise AllocationError("No strata supplied for allocation")
        missing = [c for c in ('stratum', 'area_ha', 'mean_cv') if c not in strata.columns]
        if missing:
            raise AllocationError(f"Stratum table is missing columns: {missing}")

        df = strata.copy()
        df['area_ha'] = pd.to_numeric(df['area_ha'], errors='coerce')
        df['mean_cv'] = pd.to_numeric(df['mean_cv'], errors='coerce')

        bad_area = ~(df['area_ha'] >= 0)
        bad_cv = ~(df['mean_cv'] >= 0) & ~bad_area
        for stratum in df.loc[bad_area, 'stratum']:
            report.add('invalid_area', stratum)
        for stratum in df.loc[bad_cv, 'stratum']:
            report.add('invalid_cv', stratum)

        df = df[~(bad_area | bad_cv)].reset_index(drop=True)
        if df.empty:
            raise AllocationError("No stratum has a valid area and CV")
        return df

    def allocation_weights(self, df: pd.DataFrame, method: Optional[str] = None) -> np.ndarray:
        """Raw weights for the method; Neyman falls back to area when all weights are zero."""
        method = method or self.settings.allocation_method
        if method == 'equal':
            return np.ones(len(df))
        if method == 'proportional':
            weights = df['area_ha'].to_numpy(dtype=float)
        else:
            weights = (df['area_ha'] * df['mean_cv']).to_numpy(dtype=float)
            if weights.sum() <= 0:
                self.logger.warning("All Neyman weights are zero; allocating proportionally to area")
                weights = df['area_ha'].to_numpy(dtype=float)
        if weights.sum() <= 0:
            raise AllocationError("All stratum areas are zero")
        return weights

    def allocate(self, strata: pd.DataFrame, total_budget: Optional[int] = None,
                 method: Optional[str] = None) -> AllocationPlan:
        """
        Allocate the sample budget across strata.

        Args:
            strata: Table with stratum, area_ha and mean_cv (percent)
            total_budget: Defaults to the configured budget
            method: 'neyman', 'proportional' or 'equal'

        Returns:
            AllocationPlan: allocation table with stratum, area_ha, mean_cv,
                cv_class, weight, neyman_n, buffered_n, required_n

        Raises:
            AllocationError: If the budget is not positive or no stratum is usable
        """
        settings = self.settings
        budget = settings.total_budget if total_budget is None else int(total_budget)
        if budget <= 0:
            raise AllocationError(f"Sample budget must be positive, got {budget}")

        report = ExclusionReport('allocation')
        df = self._validate_strata(strata, report)
        weights = self.allocation_weights(df, method)

        buffered_budget = buffered_total(budget, settings.buffer_multiplier)
        df['weight'] = weights
        df['cv_class'] = [
            cv_class(cv, settings.cv_low_threshold, settings.cv_high_threshold) for cv in df['mean_cv']
        ]
        df['neyman_n'] = largest_remainder(weights, budget, settings.min_per_stratum)
        df['buffered_n'] = largest_remainder(weights, buffered_budget, settings.min_per_stratum)
        df['required_n'] = [
            required_sample_size(cv, settings.target_precision, self.z_value) for cv in df['mean_cv']
        ]

        self.logger.info(
            f"Allocated {budget} samples ({buffered_budget} buffered) over {len(df)} strata: "
            f"{dict(zip(df['stratum'], df['neyman_n']))}"
        )
        report.log_summary(self.logger)

        columns = ['stratum', 'area_ha', 'mean_cv', 'cv_class', 'weight',
                   'neyman_n', 'buffered_n', 'required_n']
        extra = [c for c in df.columns if c not in columns]
        return AllocationPlan(allocation=df[columns + extra], report=report)

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------

    def _stratum_seed(self, stratum: str, position: int) -> int:
        names = self.config.strata.names
        index = names.index(stratum) if stratum in names else position
        return self.settings.random_seed + index

    def _stratum_code(self, stratum: str) -> str:
        if stratum in self.config.strata:
            return self.config.strata.get(stratum).code
        return str(stratum).lower().replace(' ', '_')

    def place_stratum(self, geometry, target: int, seed: int,
                      accepted: list) -> Tuple[np.ndarray, int]:
        """
        Place up to `target` points inside one stratum geometry.

        Args:
            geometry: Shapely geometry of the stratum
            target: Number of points wanted
            seed: Seed of the scrambled Halton sequence
            accepted: Points already accepted (all strata); extended in place

        Returns:
            tuple: (placed points as (k, 2) array, candidates examined)
        """
        if target <= 0 or geometry is None or geometry.is_empty:
            return np.empty((0, 2)), 0

        min_distance = self.settings.min_distance
        max_candidates = self.settings.max_attempts_per_point * target
        minx, miny, maxx, maxy = geometry.bounds
        sampler = qmc.Halton(d=2, scramble=True, seed=seed)

        placed = []
        examined = 0
        tree = cKDTree(np.asarray(accepted)) if accepted else None
        batch_size = max(4 * target, 64)

        while len(placed) < target and examined < max_candidates:
            n = min(batch_size, max_candidates - examined)
            candidates = qmc.scale(sampler.random(n), [minx, miny], [maxx, maxy])
            inside = candidates[shapely.contains_xy(geometry, candidates[:, 0], candidates[:, 1])]
            examined += n

            # Points accepted in this batch are checked directly; the tree covers earlier ones
            if min_distance > 0 and tree is not None and len(inside):
                inside = inside[tree.query(inside)[0] >= min_distance]
            batch = np.empty((target - len(placed), 2))
            k = 0
            for point in inside:
                if min_distance > 0 and k and np.hypot(*(batch[:k] - point).T).min() < min_distance:
                    continue
                batch[k] = point
                k += 1
                if k == len(batch):
                    break

            if k:
                placed.extend(batch[:k])
                accepted.extend(batch[:k])
                tree = cKDTree(np.asarray(accepted))

        return np.asarray(placed).reshape(-1, 2), examined

    def place_samples(self, allocation: pd.DataFrame, polygons: gpd.GeoDataFrame,
                      count_column: str = 'neyman_n') -> Tuple[gpd.GeoDataFrame, pd.DataFrame]:
        """
        Generate sample locations for every stratum in the allocation.

        Args:
            allocation: Allocation table (stratum and count_column)
            polygons: Stratum polygons with a 'stratum' column
            count_column: Allocation column giving the target counts

        Returns:
            tuple: (GeoDataFrame of point_id, stratum, x, y, geometry;
                placement table with target_n, placed_n, placement_complete)
        """
        crs = self.settings.crs
        if crs is not None and polygons.crs is not None and polygons.crs != crs:
            polygons = polygons.to_crs(crs)
        dissolved = polygons.dissolve(by='stratum')

        accepted = []
        records = []
        placement = []
        for position, row in enumerate(allocation.itertuples(index=False)):
            stratum = row.stratum
            target = int(getattr(row, count_column))
            geometry = dissolved.geometry.get(stratum)
            if geometry is None:
                self.logger.warning(f"No polygon for stratum '{stratum}'; {target} samples not placed")

            seed = self._stratum_seed(stratum, position)
            points, examined = self.place_stratum(geometry, target, seed, accepted)
            code = self._stratum_code(stratum)
            for k, (x, y) in enumerate(points, start=1):
                records.append({'point_id': f"{code}_{k:03d}", 'stratum': stratum, 'x': x, 'y': y})

            complete = len(points) == target
            if not complete:
                self.logger.warning(
                    f"Stratum '{stratum}': placed {len(points)} of {target} samples "
                    f"after {examined} candidates (min distance {self.settings.min_distance})"
                )
            placement.append({
                'stratum': stratum,
                'target_n': target,
                'placed_n': len(points),
                'shortfall': target - len(points),
                'placement_complete': complete,
                'candidates_examined': examined,
            })

        frame = pd.DataFrame(records, columns=['point_id', 'stratum', 'x', 'y'])
        samples = gpd.GeoDataFrame(
            frame, geometry=gpd.points_from_xy(frame['x'], frame['y']), crs=polygons.crs
        )
        placement = pd.DataFrame(placement)
        self.logger.info(
            f"Placed {len(samples)} of {int(placement['target_n'].sum())} samples "
            f"in {len(placement)} strata"
        )
        return samples, placement

    def plan(self, strata: pd.DataFrame, polygons: Optional[gpd.GeoDataFrame] = None,
             count_column: str = 'neyman_n') -> AllocationPlan:
        """Allocate and, when polygons are given, place samples."""
        plan = self.allocate(strata)
        if polygons is not None:
            plan.samples, plan.placement = self.place_samples(plan.allocation, polygons, count_column)
            plan.allocation = plan.allocation.merge(
                plan.placement[['stratum', 'placed_n', 'placement_complete']], on='stratum', how='left'
            )
        return plan


def strata_from_rasters(mean: Dict[str, np.ndarray], se: Dict[str, np.ndarray],
                        cell_area_ha: float) -> pd.DataFrame:
    """
    Stratum area and mean CV from per-stratum mean and SE cell values.

    Args:
        mean: {stratum: mean cell values}
        se: {stratum: SE cell values}
        cell_area_ha: Area of one cell in hectares

    Returns:
        pd.DataFrame: stratum, area_ha, mean_cv (percent), n_cells
    """
    rows = []
    for stratum, values in mean.items():
        values = np.asarray(values, dtype=float)
        errors = np.asarray(se[stratum], dtype=float)
        valid = np.isfinite(values) & np.isfinite(errors) & (values > 0)
        cv = 100.0 * errors[valid] / values[valid]
        rows.append({
            'stratum': stratum,
            'area_ha': float(valid.sum()) * cell_area_ha,
            'mean_cv': float(cv.mean()) if valid.any() else np.nan,
            'n_cells': int(valid.sum()),
        })
    return pd.DataFrame(rows)
