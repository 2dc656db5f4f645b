"""
Depth Profile Harmonization

Harmonizes sparse core profiles onto the configured standard depths.

The primary method is a mass-preserving spline: the cumulative mass
(concentration x thickness) is known exactly at every measured interval
boundary, so a monotone piecewise cubic (PCHIP) through those cumulative
values has a derivative whose integral over each measured interval equals
that interval's observed mass. The derivative is the harmonized
concentration curve; PCHIP keeps the cumulative curve monotone, so the
concentration never goes negative. Gaps between measured intervals are
bridged with the mean of the neighbouring concentrations.

The fallback method is piecewise-linear interpolation between measured
midpoints with boundary clamping, used when a profile is too sparse for the
spline or when the spline routine is not available.

Which method is primary is decided once, when the harmonizer is built.
"""

import importlib.util
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from shared_utils import get_logger

from .errors import InsufficientDataError, ValidationError
from .settings import AssessmentConfig


SPLINE_METHOD = 'equal_area_spline'
LINEAR_METHOD = 'linear'

STATUS_OK = 'ok'
STATUS_INSUFFICIENT = 'insufficient_data'

_DEPTH_TOLERANCE = 1e-9


@dataclass(frozen=True)
class DepthProfile:
    """
    Measured depth intervals and values for one core.

    depths holds the measured depth of each value (interval midpoints unless
    the profile was built from midpoints); tops/bottoms hold the intervals
    over which each value is a mean concentration.
    """
    core_id: str
    tops: np.ndarray
    bottoms: np.ndarray
    values: np.ndarray
    depths: np.ndarray

    def __post_init__(self):
        n = len(self.values)
        if not (len(self.tops) == len(self.bottoms) == len(self.depths) == n):
            raise ValidationError(f"Profile arrays of core {self.core_id} differ in length", [self.core_id])
        if n and np.any(self.bottoms <= self.tops):
            raise ValidationError(f"Core {self.core_id} has intervals with top >= bottom", [self.core_id])
        if not np.all(np.isfinite(self.values)):
            raise ValidationError(f"Core {self.core_id} has non-finite values", [self.core_id])

    @classmethod
    def from_intervals(cls, core_id: str, tops: Sequence[float], bottoms: Sequence[float],
                       values: Sequence[float]) -> 'DepthProfile':
        tops = np.asarray(tops, dtype=float)
        bottoms = np.asarray(bottoms, dtype=float)
        return cls(
            core_id=str(core_id),
            tops=tops,
            bottoms=bottoms,
            values=np.asarray(values, dtype=float),
            depths=(tops + bottoms) / 2.0,
        )

    @classmethod
    def from_samples(cls, core_id: str, samples: Iterable) -> 'DepthProfile':
        """Build from DepthSample objects (SOC values)."""
        samples = list(samples)
        return cls.from_intervals(
            core_id,
            [s.depth_top for s in samples],
            [s.depth_bottom for s in samples],
            [s.soc for s in samples],
        )

    @classmethod
    def from_midpoints(cls, core_id: str, depths: Sequence[float], values: Sequence[float]) -> 'DepthProfile':
        """
        Build from (depth, value) pairs, reconstructing contiguous intervals.

        Interior boundaries lie halfway between neighbouring depths; the
        outer intervals are extended symmetrically and the top is clamped
        at the surface.
        """
        depths = np.asarray(depths, dtype=float)
        values = np.asarray(values, dtype=float)
        order = np.argsort(depths, kind='stable')
        depths, values = depths[order], values[order]

        unique_depths = np.unique(depths)
        if len(unique_depths) == 1:
            half = 0.5
            edges = np.array([max(0.0, unique_depths[0] - half), unique_depths[0] + half])
        else:
            interior = (unique_depths[:-1] + unique_depths[1:]) / 2.0
            first = max(0.0, unique_depths[0] - (interior[0] - unique_depths[0]))
            last = unique_depths[-1] + (unique_depths[-1] - interior[-1])
            edges = np.concatenate([[first], interior, [last]])

        index = np.searchsorted(unique_depths, depths)
        return cls(
            core_id=str(core_id),
            tops=edges[index],
            bottoms=edges[index + 1],
            values=values,
            depths=depths,
        )

    def __len__(self) -> int:
        return len(self.values)

    @property
    def thickness(self) -> np.ndarray:
        return self.bottoms - self.tops

    @property
    def masses(self) -> np.ndarray:
        """Observed mass of each interval (value x thickness)."""
        return self.values * self.thickness

    @property
    def n_distinct(self) -> int:
        """Number of distinct measured intervals."""
        if len(self) == 0:
            return 0
        return len(np.unique(np.column_stack([self.tops, self.bottoms]), axis=0))

    def take(self, indices: np.ndarray) -> 'DepthProfile':
        indices = np.asarray(indices)
        return DepthProfile(
            core_id=self.core_id,
            tops=self.tops[indices],
            bottoms=self.bottoms[indices],
            values=self.values[indices],
            depths=self.depths[indices],
        )

    def merged(self) -> 'DepthProfile':
        """
        Sort intervals and merge repeated ones by averaging their values.

        Raises:
            ValidationError: If distinct intervals overlap
        """
        frame = pd.DataFrame({
            'top': self.tops, 'bottom': self.bottoms,
            'value': self.values, 'depth': self.depths,
        })
        merged = frame.groupby(['top', 'bottom'], as_index=False, sort=True).mean()
        tops = merged['top'].to_numpy()
        bottoms = merged['bottom'].to_numpy()
        if np.any(tops[1:] < bottoms[:-1] - _DEPTH_TOLERANCE):
            raise ValidationError(f"Core {self.core_id} has overlapping depth intervals", [self.core_id])
        return DepthProfile(
            core_id=self.core_id,
            tops=tops,
            bottoms=bottoms,
            values=merged['value'].to_numpy(),
            depths=merged['depth'].to_numpy(),
        )


class ProfileCurve:
    """A fitted concentration-versus-depth curve with a validity domain."""

    method: str = ''

    def __init__(self, domain_top: float, domain_bottom: float):
        self.domain_top = float(domain_top)
        self.domain_bottom = float(domain_bottom)

    def _evaluate(self, depths: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def __call__(self, depths) -> np.ndarray:
        """Evaluate at depths, clamping outside the domain and clipping negatives to zero."""
        depths = np.atleast_1d(np.asarray(depths, dtype=float))
        clamped = np.clip(depths, self.domain_top, self.domain_bottom)
        return np.clip(self._evaluate(clamped), 0.0, None)

    def is_extrapolated(self, depths) -> np.ndarray:
        depths = np.atleast_1d(np.asarray(depths, dtype=float))
        return (depths < self.domain_top - _DEPTH_TOLERANCE) | (depths > self.domain_bottom + _DEPTH_TOLERANCE)


class EqualAreaSplineCurve(ProfileCurve):
    """Derivative of a monotone cubic through cumulative interval masses."""

    method = SPLINE_METHOD

    def __init__(self, knots: np.ndarray, cumulative_mass: np.ndarray, interpolator_cls):
        super().__init__(knots[0], knots[-1])
        self.knots = knots
        self.cumulative_mass = cumulative_mass
        self._cumulative = interpolator_cls(knots, cumulative_mass, extrapolate=False)
        self._density = self._cumulative.derivative()

    def _evaluate(self, depths: np.ndarray) -> np.ndarray:
        return self._density(depths)

    def integrate(self, top: float, bottom: float) -> float:
        """Integral of the concentration curve over [top, bottom] inside the domain."""
        top = min(max(top, self.domain_top), self.domain_bottom)
        bottom = min(max(bottom, self.domain_top), self.domain_bottom)
        return float(self._cumulative(bottom) - self._cumulative(top))


class LinearProfileCurve(ProfileCurve):
    """Piecewise-linear interpolation between measured depths."""

    method = LINEAR_METHOD

    def __init__(self, depths: np.ndarray, values: np.ndarray):
        super().__init__(depths[0], depths[-1])
        self.depths = depths
        self.values = values

    def _evaluate(self, depths: np.ndarray) -> np.ndarray:
        return np.interp(depths, self.depths, self.values)


class HarmonizationStrategy:
    """Fits a ProfileCurve to a merged, sorted DepthProfile."""

    name: str = ''
    min_points: int = 1

    def fit(self, profile: DepthProfile) -> ProfileCurve:
        raise NotImplementedError


class EqualAreaSplineStrategy(HarmonizationStrategy):
    """Mass-preserving spline; needs at least three distinct intervals."""

    name = SPLINE_METHOD
    min_points = 3

    def __init__(self):
        from scipy.interpolate import PchipInterpolator
        self._interpolator_cls = PchipInterpolator

    def fit(self, profile: DepthProfile) -> EqualAreaSplineCurve:
        tops, bottoms, values = profile.tops, profile.bottoms, profile.values

        knots = [tops[0]]
        cumulative = [0.0]
        for i in range(len(values)):
            if i > 0 and tops[i] > bottoms[i - 1] + _DEPTH_TOLERANCE:
                gap_mass = (tops[i] - bottoms[i - 1]) * 0.5 * (values[i - 1] + values[i])
                knots.append(tops[i])
                cumulative.append(cumulative[-1] + gap_mass)
            knots.append(bottoms[i])
            cumulative.append(cumulative[-1] + values[i] * (bottoms[i] - tops[i]))

        return EqualAreaSplineCurve(
            np.asarray(knots, dtype=float),
            np.asarray(cumulative, dtype=float),
            self._interpolator_cls,
        )


class LinearInterpolationStrategy(HarmonizationStrategy):
    """Piecewise-linear fallback; needs at least two distinct depths."""

    name = LINEAR_METHOD
    min_points = 2

    def fit(self, profile: DepthProfile) -> LinearProfileCurve:
        return LinearProfileCurve(profile.depths.astype(float), profile.values.astype(float))


def spline_routine_available() -> bool:
    """True when SciPy's interpolation package can be imported."""
    return importlib.util.find_spec('scipy') is not None


def select_strategy(method: str, logger=None) -> HarmonizationStrategy:
    """
    Pick the primary harmonization strategy once, by capability detection.

    Args:
        method: Configured method ('equal_area_spline' or 'linear')
        logger: Optional logger for the downgrade warning

    Returns:
        HarmonizationStrategy: Strategy used for every profile
    """
    logger = logger or get_logger('soil_carbon_model.harmonization')
    if method == SPLINE_METHOD:
        if spline_routine_available():
            return EqualAreaSplineStrategy()
        logger.warning("Spline routine not available - harmonizing with linear interpolation")
    return LinearInterpolationStrategy()


@dataclass
class HarmonizedProfile:
    """Harmonized values of one core at the standard depths."""
    core_id: str
    status: str
    method: Optional[str]
    standard_depths: np.ndarray
    values: Optional[np.ndarray] = None
    extrapolated: Optional[np.ndarray] = None
    unusual_shape: bool = False
    max_increase_pct: float = 0.0
    lower_ci: Optional[np.ndarray] = None
    upper_ci: Optional[np.ndarray] = None
    se: Optional[np.ndarray] = None
    se_combined: Optional[np.ndarray] = None
    n_boot_valid: int = 0

    @property
    def sufficient(self) -> bool:
        return self.status == STATUS_OK

    def to_frame(self) -> pd.DataFrame:
        """Flat rows (core_id, standard_depth, value, CI bounds, flags)."""
        if not self.sufficient:
            return pd.DataFrame()
        n = len(self.standard_depths)
        nan = np.full(n, np.nan)
        return pd.DataFrame({
            'core_id': self.core_id,
            'standard_depth': self.standard_depths,
            'value': self.values,
            'lower_ci': self.lower_ci if self.lower_ci is not None else nan,
            'upper_ci': self.upper_ci if self.upper_ci is not None else nan,
            'se': self.se if self.se is not None else nan,
            'se_combined': self.se_combined if self.se_combined is not None else nan,
            'extrapolated': self.extrapolated,
            'unusual_shape': self.unusual_shape,
            'method': self.method,
            'n_boot_valid': self.n_boot_valid,
        })


def shape_flags(values: np.ndarray):
    """
    Increases of value with depth between consecutive standard depths.

    Returns:
        tuple: (unusual_shape flag, largest relative increase in percent)
    """
    values = np.asarray(values, dtype=float)
    if len(values) < 2:
        return False, 0.0
    steps = np.diff(values)
    unusual = bool(np.any(steps > _DEPTH_TOLERANCE * np.maximum(1.0, np.abs(values[:-1]))))
    with np.errstate(divide='ignore', invalid='ignore'):
        relative = np.where(values[:-1] > 0, steps / values[:-1] * 100.0, 0.0)
    return unusual, float(max(0.0, relative.max()))


class DepthProfileHarmonizer:
    """
    Harmonize core profiles onto standard depths.

    The primary strategy is selected once from the configuration; the linear
    strategy is kept as the fallback for profiles too sparse for the primary.
    """

    def __init__(self, config: AssessmentConfig, strategy: Optional[HarmonizationStrategy] = None):
        self.config = config
        self.logger = get_logger('soil_carbon_model.harmonization')
        self.strategy = strategy or select_strategy(config.harmonization_method, self.logger)
        self.fallback = LinearInterpolationStrategy()
        self.standard_depths = np.asarray(config.standard_depths, dtype=float)

        self.logger.info(
            f"DepthProfileHarmonizer initialized: primary={self.strategy.name}, "
            f"fallback={self.fallback.name}, targets={list(self.standard_depths)}"
        )

    def strategy_for(self, method: str) -> HarmonizationStrategy:
        if method == self.strategy.name:
            return self.strategy
        if method == self.fallback.name:
            return self.fallback
        raise ValidationError(f"Unknown harmonization method '{method}'")

    def fit(self, profile: DepthProfile, strategy: Optional[HarmonizationStrategy] = None) -> ProfileCurve:
        """
        Fit a curve to a profile.

        Raises:
            InsufficientDataError: If the profile has too few distinct points
            ValidationError: If intervals overlap
        """
        strategy = strategy or self.strategy
        merged = profile.merged()
        if len(merged) < strategy.min_points:
            raise InsufficientDataError(
                f"Core {profile.core_id}: {len(merged)} distinct points, "
                f"{strategy.name} needs {strategy.min_points}"
            )
        return strategy.fit(merged)

    def harmonize(self, profile: DepthProfile, target_depths: Optional[Sequence[float]] = None,
                  strategy: Optional[HarmonizationStrategy] = None) -> HarmonizedProfile:
        """
        Harmonize one profile with a single strategy (the primary by default).

        A profile with too few distinct points yields an 'insufficient_data'
        result carrying no values; no fit is attempted.
        """
        strategy = strategy or self.strategy
        targets = self.standard_depths if target_depths is None else np.asarray(target_depths, dtype=float)

        merged = profile.merged()
        if len(merged) < strategy.min_points:
            return HarmonizedProfile(
                core_id=profile.core_id,
                status=STATUS_INSUFFICIENT,
                method=strategy.name,
                standard_depths=targets,
            )

        curve = strategy.fit(merged)
        values = curve(targets)
        unusual, max_increase = shape_flags(values)
        return HarmonizedProfile(
            core_id=profile.core_id,
            status=STATUS_OK,
            method=strategy.name,
            standard_depths=targets,
            values=values,
            extrapolated=curve.is_extrapolated(targets),
            unusual_shape=unusual,
            max_increase_pct=max_increase,
        )

    def harmonize_with_fallback(self, profile: DepthProfile,
                                target_depths: Optional[Sequence[float]] = None) -> HarmonizedProfile:
        """Harmonize with the primary strategy, falling back to linear interpolation."""
        result = self.harmonize(profile, target_depths)
        if result.sufficient or self.strategy is self.fallback:
            return result
        self.logger.debug(
            f"Core {profile.core_id}: insufficient points for {self.strategy.name}, using {self.fallback.name}"
        )
        return self.harmonize(profile, target_depths, strategy=self.fallback)

    def diagnostics(self, profile: DepthProfile, strategy: Optional[HarmonizationStrategy] = None) -> Dict:
        """
        Goodness of fit at the measured depths plus leave-one-out RMSE.

        Returns:
            dict: rmse, mae, mean_bias, r2, loo_rmse, n_samples, depth_range
        """
        strategy = strategy or self.strategy
        merged = profile.merged()
        curve = self.fit(merged, strategy)
        observed = merged.values
        residuals = observed - curve(merged.depths)

        total_ss = float(np.sum((observed - observed.mean()) ** 2))
        r2 = 1.0 - float(np.sum(residuals ** 2)) / total_ss if total_ss > 0 else np.nan

        loo_rmse = np.nan
        if len(merged) >= 4 and len(merged) - 1 >= strategy.min_points:
            errors = []
            for i in range(len(merged)):
                keep = np.delete(np.arange(len(merged)), i)
                loo_curve = strategy.fit(merged.take(keep))
                errors.append(observed[i] - loo_curve(merged.depths[i])[0])
            loo_rmse = float(np.sqrt(np.mean(np.square(errors))))

        return {
            'core_id': profile.core_id,
            'method': strategy.name,
            'rmse': float(np.sqrt(np.mean(residuals ** 2))),
            'mae': float(np.mean(np.abs(residuals))),
            'mean_bias': float(np.mean(residuals)),
            'r2': r2,
            'loo_rmse': loo_rmse,
            'n_samples': len(merged),
            'depth_range': float(merged.bottoms.max() - merged.tops.min()),
        }


def profiles_to_frame(profiles: List[HarmonizedProfile]) -> pd.DataFrame:
    """Concatenate the rows of all sufficient profiles."""
    frames = [p.to_frame() for p in profiles if p.sufficient]
    if not frames:
        return pd.DataFrame(columns=[
            'core_id', 'standard_depth', 'value', 'lower_ci', 'upper_ci', 'se',
            'se_combined', 'extrapolated', 'unusual_shape', 'method', 'n_boot_valid'
        ])
    return pd.concat(frames, ignore_index=True)
