"""Tests for AssessmentConfig and the stratum registry."""

import dataclasses

import pytest

from soil_carbon_model.core.errors import ValidationError
from soil_carbon_model.core.settings import (
    AssessmentConfig, StratumRegistry, StratumSpec, layers_from_depths
)


def test_from_dict_reads_component_config(config_dict):
    config = AssessmentConfig.from_dict(config_dict)

    assert config.standard_depths == (7.5, 22.5, 40.0, 75.0)
    assert config.standard_layers == ((0.0, 15.0), (15.0, 30.0), (30.0, 50.0), (50.0, 100.0))
    assert config.reporting_intervals['surface'] == (0.0, 30.0)
    assert 'Mid Marsh' in config.strata
    assert config.z_value == pytest.approx(1.959964, abs=1e-6)
    assert config.sampling.buffer_multiplier == pytest.approx(1.2)
    assert config.fusion.information_gain_reference == 'prior'
    assert config.min_bootstrap_points == 5
    assert config.min_valid_replicates == 10
    assert config.fusion.field_weighting.max_boost == 2.0


def test_config_is_frozen(config):
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.confidence_level = 0.9


def test_missing_section_raises_value_error(config_dict):
    del config_dict['uncertainty']
    with pytest.raises(ValueError, match='uncertainty'):
        AssessmentConfig.from_dict(config_dict)


@pytest.mark.parametrize('section, key, value', [
    ('depths', 'standard_depths', [30, 10]),
    ('uncertainty', 'confidence_level', 1.5),
    ('harmonization', 'method', 'kriging'),
])
def test_inconsistent_values_raise_validation_error(config_dict, section, key, value):
    config_dict[section][key] = value
    if section == 'depths':
        config_dict['depths'].pop('standard_layers')
    with pytest.raises(ValidationError):
        AssessmentConfig.from_dict(config_dict)


def test_cv_thresholds_must_be_ordered(config_dict):
    config_dict['sampling']['cv_thresholds'] = {'low': 30, 'high': 10}
    with pytest.raises(ValidationError):
        AssessmentConfig.from_dict(config_dict)


def test_layers_derived_when_not_declared():
    assert layers_from_depths((5.0, 15.0, 30.0), 100.0) == ((0.0, 10.0), (10.0, 22.5), (22.5, 37.5))


def test_registry_lookups(config):
    registry = config.strata
    assert registry.bd_default('Lower Marsh') == pytest.approx(1.2)
    assert registry.raster_filename('Upper Marsh') == 'upper_marsh.tif'
    assert registry.by_code('open_water').name == 'Open Water'
    with pytest.raises(ValidationError):
        registry.get('Salt Flat')


def test_registry_generic_default_and_explicit_raster():
    registry = StratumRegistry(
        (StratumSpec('Seagrass', 'seagrass', raster='sg_mask.tif'), StratumSpec('Mudflat', 'mudflat', 0.7)),
        generic_bd_default=1.1,
    )
    assert registry.bd_default('Seagrass') == pytest.approx(1.1)
    assert registry.bd_default('Mudflat') == pytest.approx(0.7)
    assert registry.raster_filename('Seagrass') == 'sg_mask.tif'
    assert registry.names == ('Seagrass', 'Mudflat')


def test_registry_rejects_duplicates_and_empty():
    with pytest.raises(ValidationError):
        StratumRegistry((StratumSpec('A', 'a'), StratumSpec('A', 'b')))
    with pytest.raises(ValidationError):
        StratumRegistry(())
