"""Tests for command line configuration overrides."""

from soil_carbon_model.scripts.run_field_stocks import parse_arguments as parse_field_arguments
from soil_carbon_model.scripts.run_sampling_design import parse_arguments as parse_sampling_arguments
from soil_carbon_model.scripts.stage_cli import stage_config


def test_unset_flags_keep_file_settings():
    config = stage_config(None, sampling={'total_budget': None}, bootstrap_iterations=None)
    assert config.sampling.total_budget == 50
    assert config.bootstrap_iterations == 100


def test_overrides_replace_single_fields():
    config = stage_config(
        None,
        sampling={'total_budget': 80, 'min_distance': 100.0},
        fusion={'information_gain_reference': 'min_input'},
        weighting={'method': 'kernel_density', 'bandwidth': None},
        harmonization_method='linear',
    )

    assert config.sampling.total_budget == 80
    assert config.sampling.min_distance == 100.0
    assert config.sampling.buffer_multiplier == 1.2
    assert config.fusion.information_gain_reference == 'min_input'
    assert config.fusion.field_weighting.method == 'kernel_density'
    assert config.fusion.field_weighting.bandwidth == 250.0
    assert config.harmonization_method == 'linear'


def test_arguments_are_parsed():
    args = parse_field_arguments(['--bootstrap-iterations', '500', '--method', 'linear'])
    assert args.bootstrap_iterations == 500 and args.method == 'linear'

    args = parse_sampling_arguments(['--budget', '30'])
    assert args.budget == 30 and args.config is None
