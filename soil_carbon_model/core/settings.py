"""
Immutable workflow configuration and stratum registry.

The YAML configuration loaded by shared_utils is converted once into an
AssessmentConfig. Every engine receives that object in its constructor and
never reads configuration from anywhere else.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from scipy.stats import norm

from shared_utils import load_config, validate_config

from .errors import ValidationError
from .units import UnitConverter


REQUIRED_SECTIONS = ['strata', 'depths', 'quality_control', 'uncertainty', 'units']


@dataclass(frozen=True)
class StratumSpec:
    """Declared metadata for one stratum."""
    name: str
    code: str
    bd_default: Optional[float] = None
    raster: Optional[str] = None


class StratumRegistry:
    """
    Closed set of strata built once from the declared stratum metadata.

    Answers membership, default bulk density and expected raster filename
    queries by stratum name.
    """

    def __init__(self, strata: Tuple[StratumSpec, ...], generic_bd_default: float = 1.0):
        if not strata:
            raise ValidationError("No strata configured")
        self._by_name: Dict[str, StratumSpec] = {}
        self._by_code: Dict[str, StratumSpec] = {}
        for spec in strata:
            if spec.name in self._by_name:
                raise ValidationError(f"Duplicate stratum name '{spec.name}'", [spec.name])
            if spec.code in self._by_code:
                raise ValidationError(f"Duplicate stratum code '{spec.code}'", [spec.code])
            self._by_name[spec.name] = spec
            self._by_code[spec.code] = spec
        self._raster_files = {
            spec.name: spec.raster or f"{spec.code}.tif" for spec in strata
        }
        self.generic_bd_default = float(generic_bd_default)

    def __contains__(self, name) -> bool:
        return name in self._by_name

    def __iter__(self):
        return iter(self._by_name.values())

    def __len__(self) -> int:
        return len(self._by_name)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(self._by_name)

    def get(self, name: str) -> StratumSpec:
        try:
            return self._by_name[name]
        except KeyError:
            raise ValidationError(f"Unknown stratum '{name}'", [name]) from None

    def by_code(self, code: str) -> StratumSpec:
        try:
            return self._by_code[code]
        except KeyError:
            raise ValidationError(f"Unknown stratum code '{code}'", [code]) from None

    def bd_default(self, name: str) -> float:
        spec = self.get(name)
        return spec.bd_default if spec.bd_default is not None else self.generic_bd_default

    def raster_filename(self, name: str) -> str:
        self.get(name)
        return self._raster_files[name]


def _slug(name: str) -> str:
    return re.sub(r'[^0-9a-z]+', '_', name.lower()).strip('_')


def layers_from_depths(depths: Tuple[float, ...], max_depth: float) -> Tuple[Tuple[float, float], ...]:
    """
    Layer bounds around standard depths when none are declared.

    Interior bounds lie halfway between depths; the outer bounds are
    extended symmetrically and clamped to [0, max_depth].
    """
    if len(depths) == 1:
        half = min(depths[0], max_depth - depths[0])
        return ((depths[0] - half, depths[0] + half),)
    interior = [(a + b) / 2.0 for a, b in zip(depths, depths[1:])]
    first = max(0.0, depths[0] - (interior[0] - depths[0]))
    last = min(max_depth, depths[-1] + (depths[-1] - interior[-1]))
    edges = [first] + interior + [last]
    return tuple((edges[i], edges[i + 1]) for i in range(len(depths)))


@dataclass(frozen=True)
class FieldWeightingSettings:
    method: str = 'uniform'
    bandwidth: float = 250.0
    max_boost: float = 2.0
    saturation: float = 1.0


@dataclass(frozen=True)
class FusionSettings:
    prior_se_inflation: float = 1.0
    default_prior_cv: float = 0.20
    information_gain_reference: str = 'prior'
    gain_high_threshold: float = 30.0
    gain_medium_threshold: float = 20.0
    field_weighting: FieldWeightingSettings = field(default_factory=FieldWeightingSettings)


@dataclass(frozen=True)
class SamplingSettings:
    total_budget: int = 50
    buffer_multiplier: float = 1.2
    allocation_method: str = 'neyman'
    min_per_stratum: int = 0
    cv_low_threshold: float = 10.0
    cv_high_threshold: float = 30.0
    target_precision: float = 20.0
    min_distance: float = 0.0
    random_seed: int = 42
    max_attempts_per_point: int = 200
    crs: Optional[str] = None


@dataclass(frozen=True)
class AssessmentConfig:
    """Read-only configuration value passed to every engine."""
    strata: StratumRegistry
    standard_depths: Tuple[float, ...]
    reporting_intervals: Mapping[str, Tuple[float, float]]
    max_core_depth: float
    soc_min: float
    soc_max: float
    bd_min: float
    bd_max: float
    standard_layers: Tuple[Tuple[float, float], ...] = ()
    confidence_level: float = 0.95
    bootstrap_iterations: int = 100
    bootstrap_seed: int = 42
    min_bootstrap_points: int = 5
    min_valid_replicates: int = 10
    harmonization_method: str = 'equal_area_spline'
    soc_unit: str = 'g/kg'
    bd_unit: str = 'g/cm3'
    depth_unit: str = 'cm'
    stock_unit: str = 'Mg/ha'
    extra_units: Mapping[str, Tuple[str, float]] = field(default_factory=lambda: MappingProxyType({}))
    fusion: FusionSettings = field(default_factory=FusionSettings)
    sampling: SamplingSettings = field(default_factory=SamplingSettings)
    project_name: str = 'soil_carbon_project'

    def __post_init__(self):
        depths = self.standard_depths
        if not depths:
            raise ValidationError("At least one standard depth is required")
        if any(b <= a for a, b in zip(depths, depths[1:])):
            raise ValidationError(f"Standard depths must be strictly increasing: {depths}")
        if not self.standard_layers:
            object.__setattr__(self, 'standard_layers', layers_from_depths(depths, self.max_core_depth))
        if len(self.standard_layers) != len(depths):
            raise ValidationError("One standard layer is required per standard depth")
        for depth, (top, bottom) in zip(depths, self.standard_layers):
            if not top <= depth <= bottom or top >= bottom:
                raise ValidationError(f"Standard depth {depth} is not inside its layer [{top}, {bottom}]")
        if not 0.0 < self.confidence_level < 1.0:
            raise ValidationError(f"Confidence level must be in (0, 1): {self.confidence_level}")
        if self.bootstrap_iterations < 1:
            raise ValidationError("Bootstrap iterations must be positive")
        if self.harmonization_method not in ('equal_area_spline', 'linear'):
            raise ValidationError(f"Unknown harmonization method '{self.harmonization_method}'")
        if self.soc_min >= self.soc_max or self.bd_min >= self.bd_max:
            raise ValidationError("Quality control bounds must satisfy min < max")
        sampling = self.sampling
        if sampling.cv_low_threshold >= sampling.cv_high_threshold:
            raise ValidationError("CV low threshold must be below the high threshold")
        if sampling.buffer_multiplier < 1.0:
            raise ValidationError("Buffer multiplier must be at least 1.0")
        fusion = self.fusion
        if fusion.gain_medium_threshold >= fusion.gain_high_threshold:
            raise ValidationError("Information gain medium threshold must be below the high threshold")
        if fusion.information_gain_reference not in ('prior', 'min_input'):
            raise ValidationError(
                f"Unknown information gain reference '{fusion.information_gain_reference}'"
            )

    @property
    def z_value(self) -> float:
        """Two-sided z score for the configured confidence level (1.96 at 95%)."""
        return float(norm.ppf((1.0 + self.confidence_level) / 2.0))

    def unit_converter(self) -> UnitConverter:
        return UnitConverter(self.extra_units)

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'AssessmentConfig':
        """
        Build the immutable configuration from a parsed YAML mapping.

        Args:
            config: Mapping as returned by shared_utils.load_config

        Returns:
            AssessmentConfig: Frozen configuration value

        Raises:
            ValueError: If required sections are missing
            ValidationError: If values are inconsistent
        """
        validate_config(config, REQUIRED_SECTIONS)

        strata = tuple(
            StratumSpec(
                name=str(entry['name']),
                code=str(entry.get('code') or _slug(entry['name'])),
                bd_default=float(entry['bd_default']) if entry.get('bd_default') is not None else None,
                raster=entry.get('raster'),
            )
            for entry in config['strata'] or []
        )
        registry = StratumRegistry(strata, config.get('generic_bd_default', 1.0))

        depths = config['depths']
        qc = config['quality_control']
        uncertainty = config['uncertainty']
        units = config['units']
        harmonization = config.get('harmonization', {})
        fusion_cfg = config.get('fusion', {})
        weighting_cfg = fusion_cfg.get('field_weighting', {})
        gain_thresholds = fusion_cfg.get('information_gain_thresholds', {})
        sampling_cfg = config.get('sampling', {})
        cv_thresholds = sampling_cfg.get('cv_thresholds', {})

        reporting = {
            str(name): (float(bounds[0]), float(bounds[1]))
            for name, bounds in (depths.get('reporting_intervals') or {}).items()
        }
        layers = tuple(
            (float(bounds[0]), float(bounds[1]))
            for bounds in (depths.get('standard_layers') or [])
        )
        extra_units = {
            str(unit): (str(row[0]), float(row[1]))
            for unit, row in (units.get('extra') or {}).items()
        }

        return cls(
            strata=registry,
            standard_depths=tuple(float(d) for d in depths['standard_depths']),
            reporting_intervals=MappingProxyType(reporting),
            standard_layers=layers,
            max_core_depth=float(depths.get('max_core_depth', 100.0)),
            soc_min=float(qc.get('soc_min', 0.0)),
            soc_max=float(qc.get('soc_max', 500.0)),
            bd_min=float(qc.get('bd_min', 0.1)),
            bd_max=float(qc.get('bd_max', 3.0)),
            confidence_level=float(uncertainty.get('confidence_level', 0.95)),
            bootstrap_iterations=int(uncertainty.get('bootstrap_iterations', 100)),
            bootstrap_seed=int(uncertainty.get('bootstrap_seed', 42)),
            min_bootstrap_points=int(uncertainty.get('min_bootstrap_points', 5)),
            min_valid_replicates=int(uncertainty.get('min_valid_replicates', 10)),
            harmonization_method=str(harmonization.get('method', 'equal_area_spline')),
            soc_unit=str(units.get('soc', 'g/kg')),
            bd_unit=str(units.get('bulk_density', 'g/cm3')),
            depth_unit=str(units.get('depth', 'cm')),
            stock_unit=str(units.get('stock', 'Mg/ha')),
            extra_units=MappingProxyType(extra_units),
            fusion=FusionSettings(
                prior_se_inflation=float(fusion_cfg.get('prior_se_inflation', 1.0)),
                default_prior_cv=float(fusion_cfg.get('default_prior_cv', 0.20)),
                information_gain_reference=str(fusion_cfg.get('information_gain_reference', 'prior')),
                gain_high_threshold=float(gain_thresholds.get('high', 30.0)),
                gain_medium_threshold=float(gain_thresholds.get('medium', 20.0)),
                field_weighting=FieldWeightingSettings(
                    method=str(weighting_cfg.get('method', 'uniform')),
                    bandwidth=float(weighting_cfg.get('bandwidth', 250.0)),
                    max_boost=float(weighting_cfg.get('max_boost', 2.0)),
                    saturation=float(weighting_cfg.get('saturation', 1.0)),
                ),
            ),
            sampling=SamplingSettings(
                total_budget=int(sampling_cfg.get('total_budget', 50)),
                buffer_multiplier=float(sampling_cfg.get('buffer_multiplier', 1.2)),
                allocation_method=str(sampling_cfg.get('allocation_method', 'neyman')),
                min_per_stratum=int(sampling_cfg.get('min_per_stratum', 0)),
                cv_low_threshold=float(cv_thresholds.get('low', 10.0)),
                cv_high_threshold=float(cv_thresholds.get('high', 30.0)),
                target_precision=float(sampling_cfg.get('target_precision', 20.0)),
                min_distance=float(sampling_cfg.get('min_distance', 0.0)),
                random_seed=int(sampling_cfg.get('random_seed', 42)),
                max_attempts_per_point=int(sampling_cfg.get('max_attempts_per_point', 200)),
                crs=sampling_cfg.get('crs'),
            ),
            project_name=str(config.get('project', {}).get('name', 'soil_carbon_project')),
        )


def load_assessment_config(config_path: Optional[Union[str, Path]] = None) -> AssessmentConfig:
    """Load the component YAML configuration and freeze it."""
    return AssessmentConfig.from_dict(load_config(config_path, component_name='soil_carbon_model'))
