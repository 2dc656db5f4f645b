"""
Bayesian Fusion of Prior and Field Carbon Stock Rasters

Combines a remote-sensing prior (mean, SE) with a field-model estimate
(mean, SE) cell by cell using precision weighting:

    precision = 1 / SE^2
    posterior_mean = (p_prior * mean_prior + p_field * mean_field) / (p_prior + p_field)
    posterior_se = sqrt(1 / (p_prior + p_field))

The field raster is resampled (bilinear) onto the prior grid when the grids
differ. Field precision can be scaled by a weighting strategy, e.g. by the
local density of field cores, so that cells close to clustered cores lean
further on the field estimate. All operations are elementwise on xarray objects and work unchanged on
dask-backed arrays.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np
import pandas as pd
import xarray as xr
import rioxarray  # noqa: F401  registers the .rio accessor
from rasterio.enums import Resampling
from rasterio.warp import transform_bounds
from scipy.spatial import cKDTree

from shared_utils import get_logger

from .errors import AlignmentError, ExclusionReport, InsufficientDataError
from .settings import AssessmentConfig, FieldWeightingSettings


GAIN_HIGH = 3
GAIN_MEDIUM = 2
GAIN_LOW = 1
GAIN_LABELS = {GAIN_HIGH: 'High', GAIN_MEDIUM: 'Medium', GAIN_LOW: 'Low'}


def information_gain_codes(gain_pct, high: float = 30.0, medium: float = 20.0):
    """
    Numeric class codes (3 High, 2 Medium, 1 Low, NaN without data).

    Lower bounds are closed and values are rounded to 1e-9 percent first,
    so 30.0 is High and 20.0 is Medium.
    """
    pct = np.round(np.asarray(gain_pct, dtype=float), 9)
    codes = np.where(pct >= high, GAIN_HIGH, np.where(pct >= medium, GAIN_MEDIUM, GAIN_LOW)).astype(float)
    return np.where(np.isnan(pct), np.nan, codes)


def classify_information_gain(gain_pct, high: float = 30.0, medium: float = 20.0):
    """
    Label an information gain percentage (scalar or array) as High/Medium/Low.

    Returns None (or None entries) where the gain is NaN.
    """
    codes = information_gain_codes(gain_pct, high, medium)
    if codes.ndim == 0:
        return None if np.isnan(codes) else GAIN_LABELS[int(codes)]
    labels = np.empty(codes.shape, dtype=object)
    for code, label in GAIN_LABELS.items():
        labels[codes == code] = label
    return labels


class FieldWeighting:
    """Strategy producing a multiplier for field precision on the prior grid."""

    name = ''

    def weights(self, template: xr.DataArray, points: Optional[np.ndarray] = None) -> xr.DataArray:
        raise NotImplementedError


class UniformFieldWeighting(FieldWeighting):
    """Every cell keeps the full field precision."""

    name = 'uniform'

    def weights(self, template: xr.DataArray, points: Optional[np.ndarray] = None) -> xr.DataArray:
        return xr.ones_like(template, dtype=float)


class KernelDensityFieldWeighting(FieldWeighting):
    """
    Weight field precision by Gaussian kernel density of field sample locations.

    weight = 1 + (max_boost - 1) * (1 - exp(-density / saturation))

    where density is the sum of exp(-d^2 / (2 bandwidth^2)) over field points
    within three bandwidths of the cell centre. Far from every point the
    weight is 1 and the field SE is used as is; near clustered points field
    precision is boosted towards max_boost times its nominal value. Weights
    never fall below 1, so the posterior SE never exceeds the field SE.
    """

    name = 'kernel_density'

    def __init__(self, bandwidth: float, max_boost: float = 2.0, saturation: float = 1.0):
        if bandwidth <= 0:
            raise ValueError(f"Kernel bandwidth must be positive, got {bandwidth}")
        if not np.isfinite(max_boost) or max_boost < 1.0:
            raise ValueError(f"Maximum precision boost must be finite and at least 1, got {max_boost}")
        if saturation <= 0:
            raise ValueError(f"Saturation must be positive, got {saturation}")
        self.bandwidth = float(bandwidth)
        self.max_boost = float(max_boost)
        self.saturation = float(saturation)

    def density(self, template: xr.DataArray, points: np.ndarray) -> np.ndarray:
        """Kernel density at every cell centre of the template grid."""
        xs = template[template.rio.x_dim].values
        ys = template[template.rio.y_dim].values
        grid_x, grid_y = np.meshgrid(xs, ys)
        centres = np.column_stack([grid_x.ravel(), grid_y.ravel()])

        cell_tree = cKDTree(centres)
        point_tree = cKDTree(np.asarray(points, dtype=float))
        pairs = cell_tree.sparse_distance_matrix(
            point_tree, max_distance=3.0 * self.bandwidth, output_type='ndarray'
        )
        kernel = np.exp(-0.5 * (pairs['v'] / self.bandwidth) ** 2)
        density = np.bincount(pairs['i'], weights=kernel, minlength=len(centres))
        return density.reshape(grid_y.shape)

    def weights(self, template: xr.DataArray, points: Optional[np.ndarray] = None) -> xr.DataArray:
        if points is None or len(points) == 0:
            return xr.ones_like(template, dtype=float)
        density = self.density(template, points)
        weight = 1.0 + (self.max_boost - 1.0) * (1.0 - np.exp(-density / self.saturation))
        return xr.DataArray(
            weight,
            coords={template.rio.y_dim: template[template.rio.y_dim],
                    template.rio.x_dim: template[template.rio.x_dim]},
            dims=(template.rio.y_dim, template.rio.x_dim),
        )


def build_field_weighting(settings: FieldWeightingSettings) -> FieldWeighting:
    """Create the configured field weighting strategy."""
    if settings.method == 'uniform':
        return UniformFieldWeighting()
    if settings.method == 'kernel_density':
        return KernelDensityFieldWeighting(settings.bandwidth, settings.max_boost, settings.saturation)
    raise ValueError(f"Unknown field weighting method '{settings.method}'")


@dataclass
class FusionResult:
    """Posterior rasters and accounting for one depth."""
    depth_cm: float
    posterior_mean: xr.DataArray
    posterior_se: xr.DataArray
    conservative: xr.DataArray
    information_gain: xr.DataArray
    gain_class: xr.DataArray
    summary: Dict = field(default_factory=dict)
    report: Optional[ExclusionReport] = None

    def to_dataset(self) -> xr.Dataset:
        return xr.Dataset({
            'posterior_mean': self.posterior_mean,
            'posterior_se': self.posterior_se,
            'conservative': self.conservative,
            'information_gain_pct': self.information_gain,
            'information_gain_class': self.gain_class,
        })


class BayesianFusionEngine:
    """
    Precision-weighted fusion of prior and field-model rasters.
    """

    def __init__(self, config: AssessmentConfig, weighting: Optional[FieldWeighting] = None):
        self.config = config
        self.logger = get_logger('soil_carbon_model.bayesian_fusion')
        settings = config.fusion

        self.prior_se_inflation = settings.prior_se_inflation
        self.default_prior_cv = settings.default_prior_cv
        self.gain_reference = settings.information_gain_reference
        self.gain_high = settings.gain_high_threshold
        self.gain_medium = settings.gain_medium_threshold
        self.z_value = config.z_value
        self.weighting = weighting or build_field_weighting(settings.field_weighting)

        self.logger.info(
            f"BayesianFusionEngine initialized: weighting={self.weighting.name}, "
            f"prior SE inflation={self.prior_se_inflation}, gain reference={self.gain_reference}"
        )

    # ------------------------------------------------------------------
    # Alignment
    # ------------------------------------------------------------------

    @staticmethod
    def same_grid(reference: xr.DataArray, other: xr.DataArray) -> bool:
        if reference.rio.crs != other.rio.crs or reference.rio.shape != other.rio.shape:
            return False
        return np.allclose(
            tuple(reference.rio.transform())[:6], tuple(other.rio.transform())[:6]
        )

    def align_to_prior(self, prior: xr.DataArray, other: xr.DataArray, name: str = 'field') -> xr.DataArray:
        """
        Resample a raster onto the prior grid (bilinear) when the grids differ.

        Raises:
            AlignmentError: If a CRS is missing, the extents are disjoint or
                nothing of the raster lands on the prior grid
        """
        if prior.rio.crs is None or other.rio.crs is None:
            raise AlignmentError(f"Prior and {name} rasters must both carry a CRS")
        if self.same_grid(prior, other):
            return other

        left, bottom, right, top = transform_bounds(other.rio.crs, prior.rio.crs, *other.rio.bounds())
        p_left, p_bottom, p_right, p_top = prior.rio.bounds()
        if left >= p_right or right <= p_left or bottom >= p_top or top <= p_bottom:
            raise AlignmentError(f"The {name} raster does not overlap the prior extent")

        self.logger.info(f"Resampling {name} raster onto the prior grid (bilinear)")
        source = other.astype('float64').rio.write_nodata(np.nan)
        aligned = source.rio.reproject_match(prior, resampling=Resampling.bilinear)
        # Coordinates must equal the prior's exactly for cellwise arithmetic
        aligned = aligned.assign_coords({
            prior.rio.x_dim: prior[prior.rio.x_dim],
            prior.rio.y_dim: prior[prior.rio.y_dim],
        })

        if bool(aligned.isnull().all()):
            raise AlignmentError(f"No {name} cells remain after resampling onto the prior grid")
        return aligned

    # ------------------------------------------------------------------
    # Fusion
    # ------------------------------------------------------------------

    def prepare_prior_se(self, prior_mean: xr.DataArray, prior_se: Optional[xr.DataArray]) -> xr.DataArray:
        """Inflate the prior SE; derive it from the default CV when absent."""
        if prior_se is None:
            self.logger.warning(
                f"No prior SE raster; using {self.default_prior_cv:.0%} of the prior mean"
            )
            prior_se = self.default_prior_cv * abs(prior_mean)
        return prior_se * self.prior_se_inflation

    def fuse_arrays(self, prior_mean, prior_se, field_mean, field_se, weight=1.0) -> Dict[str, xr.DataArray]:
        """
        Cellwise precision-weighted fusion on aligned arrays.

        A side is usable where its mean is finite and its SE is positive
        (SE = inf contributes zero precision). Where only one side is usable
        the posterior equals that side unchanged; where neither is, NaN.
        The weight multiplies field precision only where both sides are usable.

        Returns:
            dict: posterior_mean, posterior_se, effective_field_se, prior_ok,
                field_ok
        """
        prior_ok = np.isfinite(prior_mean) & (prior_se > 0)
        field_ok = np.isfinite(field_mean) & (field_se > 0)
        both = prior_ok & field_ok

        with np.errstate(divide='ignore', invalid='ignore'):
            prior_precision = xr.where(prior_ok, 1.0 / xr.where(prior_ok, prior_se, 1.0) ** 2, 0.0)
            field_precision = xr.where(field_ok, 1.0 / xr.where(field_ok, field_se, 1.0) ** 2, 0.0)
            field_precision = xr.where(both, field_precision * weight, field_precision)

            total = prior_precision + field_precision
            weighted = (xr.where(prior_ok, prior_precision * xr.where(prior_ok, prior_mean, 0.0), 0.0)
                        + xr.where(field_ok, field_precision * xr.where(field_ok, field_mean, 0.0), 0.0))

            usable = total > 0
            safe_total = xr.where(usable, total, 1.0)
            posterior_mean = xr.where(usable, weighted / safe_total, np.nan)
            posterior_se = xr.where(usable, np.sqrt(1.0 / safe_total), np.nan)

            # A single usable side with infinite SE carries zero precision
            prior_alone = prior_ok & ~field_ok & ~usable
            field_alone = field_ok & ~prior_ok & ~usable
            posterior_mean = xr.where(prior_alone, prior_mean, xr.where(field_alone, field_mean, posterior_mean))
            posterior_se = xr.where(prior_alone, prior_se, xr.where(field_alone, field_se, posterior_se))

            has_precision = field_precision > 0
            effective_field_se = xr.where(
                has_precision, np.sqrt(1.0 / xr.where(has_precision, field_precision, 1.0)), np.inf
            )
            effective_field_se = xr.where(field_ok, effective_field_se, np.nan)

        return {
            'posterior_mean': posterior_mean,
            'posterior_se': posterior_se,
            'effective_field_se': effective_field_se,
            'prior_ok': prior_ok,
            'field_ok': field_ok,
        }

    def information_gain(self, prior_se, field_se, posterior_se):
        """Percent reduction of SE relative to the configured reference."""
        if self.gain_reference == 'prior':
            reference = prior_se
        else:
            reference = xr.where(field_se < prior_se, field_se, prior_se)
        reference = reference.where((reference > 0) & np.isfinite(reference))
        return 100.0 * (1.0 - posterior_se / reference)

    def conservative(self, posterior_mean, posterior_se):
        """Posterior mean minus z x SE, floored at zero."""
        return np.maximum(posterior_mean - self.z_value * posterior_se, 0.0)

    def fuse(self, prior_mean: xr.DataArray, prior_se: Optional[xr.DataArray],
             field_mean: xr.DataArray, field_se: xr.DataArray, depth_cm: float,
             field_points: Optional[np.ndarray] = None) -> FusionResult:
        """
        Fuse prior and field-model rasters for one depth.

        Args:
            prior_mean, prior_se: Prior rasters (the reference grid); prior_se
                may be None
            field_mean, field_se: Field-model rasters on any overlapping grid
            depth_cm: Depth tag of the rasters
            field_points: Optional (n, 2) field core coordinates in the prior CRS
                for density weighting

        Returns:
            FusionResult: Posterior rasters, information gain and accounting

        Raises:
            AlignmentError: If the field rasters cannot be placed on the prior grid
            InsufficientDataError: If no cell has a usable input
        """
        self.logger.info(f"Fusing prior and field rasters at {depth_cm} cm")

        field_mean = self.align_to_prior(prior_mean, field_mean, 'field mean')
        field_se = self.align_to_prior(prior_mean, field_se, 'field SE')
        if prior_se is not None:
            prior_se = self.align_to_prior(prior_mean, prior_se, 'prior SE')
        prior_se = self.prepare_prior_se(prior_mean, prior_se)

        weight = self.weighting.weights(prior_mean, field_points)
        fused = self.fuse_arrays(prior_mean, prior_se, field_mean, field_se, weight)
        posterior_mean, posterior_se = fused['posterior_mean'], fused['posterior_se']

        gain = self.information_gain(prior_se, fused['effective_field_se'], posterior_se)
        gain = gain.where(fused['prior_ok'] & fused['field_ok'])
        gain_class = xr.apply_ufunc(
            information_gain_codes, gain,
            kwargs={'high': self.gain_high, 'medium': self.gain_medium},
            dask='parallelized', output_dtypes=[float],
        )
        conservative = self.conservative(posterior_mean, posterior_se)

        report = ExclusionReport('fusion')
        n_cells = int(np.prod(prior_mean.shape))
        n_both = int((fused['prior_ok'] & fused['field_ok']).sum())
        n_prior_only = int((fused['prior_ok'] & ~fused['field_ok']).sum())
        n_field_only = int((fused['field_ok'] & ~fused['prior_ok']).sum())
        n_neither = n_cells - n_both - n_prior_only - n_field_only
        if n_neither:
            report.add('no_usable_input', f"depth_{depth_cm}cm", count=n_neither)
        if n_both + n_prior_only + n_field_only == 0:
            raise InsufficientDataError(f"No cell at {depth_cm} cm has a usable prior or field value")

        self.logger.info(
            f"Depth {depth_cm} cm: {n_both} fused, {n_prior_only} prior only, "
            f"{n_field_only} field only, {n_neither} without data"
        )
        report.log_summary(self.logger)

        result = FusionResult(
            depth_cm=float(depth_cm),
            posterior_mean=posterior_mean.rename('posterior_mean'),
            posterior_se=posterior_se.rename('posterior_se'),
            conservative=conservative.rename('conservative'),
            information_gain=gain.rename('information_gain_pct'),
            gain_class=gain_class.rename('information_gain_class'),
            report=report,
        )
        result.summary = self.summarize(result, prior_se, fused['effective_field_se'], n_both)
        return result

    def summarize(self, result: FusionResult, prior_se, field_se, n_fused: int) -> Dict:
        """Per-depth information gain summary row."""
        mask = np.isfinite(result.information_gain)
        mean_gain = float(result.information_gain.where(mask).mean()) if n_fused else np.nan
        shares = {}
        for code, label in GAIN_LABELS.items():
            share = float((result.gain_class == code).sum()) / n_fused if n_fused else np.nan
            shares[f"share_{label.lower()}"] = share

        return {
            'depth_cm': result.depth_cm,
            'n_cells_fused': n_fused,
            'mean_prior_se': float(prior_se.where(mask).mean()) if n_fused else np.nan,
            'mean_field_se': float(field_se.where(mask).mean()) if n_fused else np.nan,
            'mean_posterior_se': float(result.posterior_se.where(mask).mean()) if n_fused else np.nan,
            'mean_posterior': float(result.posterior_mean.mean()),
            'information_gain_pct': mean_gain,
            'information_gain_class': classify_information_gain(mean_gain, self.gain_high, self.gain_medium),
            **shares,
        }


def summaries_to_frame(results) -> pd.DataFrame:
    """Information gain summary table from fusion results."""
    return pd.DataFrame([r.summary for r in results])
