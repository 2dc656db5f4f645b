"""
Bootstrap uncertainty for harmonized depth profiles.

Each profile is resampled with replacement and re-harmonized with the same
strategy that produced its point estimate. Replicate values at the standard
depths are summarized into a mean, a standard error and a quantile interval
at the configured confidence level.

Every core draws from its own generator seeded with the configured bootstrap
seed and a checksum of the core id, so the summaries for a core do not
depend on which other cores are processed or in which order.
"""

import zlib
from dataclasses import dataclass, replace
from typing import Optional, Sequence

import numpy as np

from shared_utils import get_logger

from .depth_harmonization import (
    DepthProfile, DepthProfileHarmonizer, HarmonizationStrategy, HarmonizedProfile
)
from .settings import AssessmentConfig


@dataclass
class BootstrapSummary:
    """Per-depth bootstrap statistics for one profile."""
    core_id: str
    standard_depths: np.ndarray
    mean: np.ndarray
    se: np.ndarray
    lower: np.ndarray
    upper: np.ndarray
    n_valid: int
    n_failed: int
    replicates: np.ndarray


def measurement_cv(values: np.ndarray) -> float:
    """Coefficient of variation (fraction) of the observed profile values."""
    values = np.asarray(values, dtype=float)
    if len(values) < 2:
        return 0.0
    mean = values.mean()
    if mean <= 0:
        return 0.0
    return float(values.std(ddof=1) / mean)


class UncertaintyEstimator:
    """
    Bootstrap estimator of per-depth confidence intervals.
    """

    def __init__(self, config: AssessmentConfig, harmonizer: Optional[DepthProfileHarmonizer] = None):
        self.config = config
        self.logger = get_logger('soil_carbon_model.bootstrap')
        self.harmonizer = harmonizer or DepthProfileHarmonizer(config)

        self.n_iterations = config.bootstrap_iterations
        self.seed = config.bootstrap_seed
        self.min_points = config.min_bootstrap_points
        self.min_valid_replicates = config.min_valid_replicates
        self.alpha = 1.0 - config.confidence_level

        self.logger.info(
            f"UncertaintyEstimator initialized with {self.n_iterations} iterations, "
            f"seed {self.seed}, confidence {config.confidence_level}"
        )

    def generator_for(self, core_id: str) -> np.random.Generator:
        """Independent generator for one core."""
        sequence = np.random.SeedSequence([self.seed, zlib.crc32(str(core_id).encode('utf-8'))])
        return np.random.default_rng(sequence)

    def bootstrap(self, profile: DepthProfile, strategy: HarmonizationStrategy,
                  target_depths: Optional[Sequence[float]] = None,
                  rng: Optional[np.random.Generator] = None) -> BootstrapSummary:
        """
        Resample a profile and collect harmonized values at the target depths.

        Args:
            profile: Observed profile
            strategy: Strategy used for the point estimate
            target_depths: Defaults to the configured standard depths
            rng: Defaults to the per-core generator

        Returns:
            BootstrapSummary: Statistics over the valid replicates
        """
        targets = (self.harmonizer.standard_depths if target_depths is None
                   else np.asarray(target_depths, dtype=float))
        rng = rng or self.generator_for(profile.core_id)
        n = len(profile)

        replicates = np.full((self.n_iterations, len(targets)), np.nan)
        for b in range(self.n_iterations):
            indices = rng.integers(0, n, size=n)
            result = self.harmonizer.harmonize(profile.take(indices), targets, strategy=strategy)
            if result.sufficient:
                replicates[b] = result.values

        valid = replicates[~np.isnan(replicates).any(axis=1)]
        n_valid = len(valid)
        n_failed = self.n_iterations - n_valid

        if n_valid == 0:
            nan = np.full(len(targets), np.nan)
            mean = se = lower = upper = nan
        else:
            mean = valid.mean(axis=0)
            se = valid.std(axis=0, ddof=1) if n_valid > 1 else np.zeros(len(targets))
            lower = np.quantile(valid, self.alpha / 2.0, axis=0)
            upper = np.quantile(valid, 1.0 - self.alpha / 2.0, axis=0)

        if n_failed:
            self.logger.debug(f"Core {profile.core_id}: {n_failed} of {self.n_iterations} replicates insufficient")

        return BootstrapSummary(
            core_id=profile.core_id,
            standard_depths=targets,
            mean=mean,
            se=se,
            lower=lower,
            upper=upper,
            n_valid=n_valid,
            n_failed=n_failed,
            replicates=replicates,
        )

    def is_degenerate(self, summary: BootstrapSummary, profile: DepthProfile) -> bool:
        """
        True when the replicates cannot support an interval.

        That is the case with fewer valid replicates than configured, or when
        every valid replicate reproduces the same curve although the observed
        values vary (resamples that keep enough distinct depths to refit are
        then just the original profile again).
        """
        if summary.n_valid < max(self.min_valid_replicates, 2):
            return True
        valid = summary.replicates[~np.isnan(summary.replicates).any(axis=1)]
        spread = np.ptp(valid, axis=0)
        scale = np.maximum(np.abs(summary.mean), 1.0)
        observed = np.asarray(profile.values, dtype=float)
        return bool(np.all(spread <= 1e-9 * scale) and np.ptp(observed) > 0)

    def estimate(self, profile: DepthProfile, harmonized: HarmonizedProfile) -> HarmonizedProfile:
        """
        Attach bootstrap intervals to a harmonized profile.

        Insufficient profiles are returned unchanged; profiles with fewer than
        the minimum bootstrap points keep NaN interval columns. A degenerate
        bootstrap gives NaN intervals rather than a zero-width one.
        """
        if not harmonized.sufficient:
            return harmonized
        if profile.merged().n_distinct < self.min_points:
            self.logger.debug(f"Core {profile.core_id}: too few points for bootstrap")
            return harmonized

        strategy = self.harmonizer.strategy_for(harmonized.method)
        summary = self.bootstrap(profile, strategy, harmonized.standard_depths)

        if self.is_degenerate(summary, profile):
            self.logger.warning(
                f"Core {profile.core_id}: bootstrap degenerate ({summary.n_valid} valid of "
                f"{self.n_iterations}); intervals left undefined"
            )
            nan = np.full(len(harmonized.values), np.nan)
            return replace(harmonized, lower_ci=nan, upper_ci=nan, se=nan, se_combined=nan,
                           n_boot_valid=summary.n_valid)

        cv = measurement_cv(profile.values)
        se_combined = np.sqrt(summary.se ** 2 + (harmonized.values * cv) ** 2)

        return replace(
            harmonized,
            lower_ci=summary.lower,
            upper_ci=summary.upper,
            se=summary.se,
            se_combined=se_combined,
            n_boot_valid=summary.n_valid,
        )
