"""Tests for the shared logging, configuration and path helpers."""

import logging

import pytest

from shared_utils import atomic_output, load_config, setup_logging, validate_config, validate_file_exists
from shared_utils.logging_utils import ROOT_LOGGER_NAME, format_elapsed


def test_atomic_output_replaces_on_success(tmp_path):
    target = tmp_path / 'out' / 'table.csv'
    with atomic_output(target) as tmp:
        tmp.write_text('a,b\n1,2\n')

    assert target.read_text() == 'a,b\n1,2\n'
    assert list(target.parent.iterdir()) == [target]


def test_atomic_output_keeps_previous_file_on_error(tmp_path):
    target = tmp_path / 'table.csv'
    target.write_text('old')

    with pytest.raises(RuntimeError):
        with atomic_output(target) as tmp:
            tmp.write_text('partial')
            raise RuntimeError('write failed')

    assert target.read_text() == 'old'
    assert list(tmp_path.iterdir()) == [target]


def test_validate_file_exists(tmp_path):
    with pytest.raises(FileNotFoundError):
        validate_file_exists(tmp_path / 'missing.csv', 'field records')
    with pytest.raises(ValueError):
        validate_file_exists(tmp_path)


def test_component_config_is_found():
    config = load_config(component_name='soil_carbon_model')
    assert 'strata' in config
    assert config['_meta']['component_name'] == 'soil_carbon_model'


def test_explicit_missing_config_is_an_error(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / 'nope.yaml', component_name='soil_carbon_model')


def test_invalid_yaml_is_a_value_error(tmp_path):
    bad = tmp_path / 'bad.yaml'
    bad.write_text('depths: [1, 2\n')
    with pytest.raises(ValueError):
        load_config(bad)


def test_validate_config_reports_missing_sections():
    with pytest.raises(ValueError, match='units'):
        validate_config({'depths': {}, 'units': None}, ['depths', 'units'])
    assert validate_config({'depths': {}}, ['depths'])


def test_setup_logging_does_not_stack_handlers():
    setup_logging('INFO', 'first')
    logger = setup_logging('DEBUG', 'second')
    package_logger = logging.getLogger(ROOT_LOGGER_NAME)

    assert logger.name == f'{ROOT_LOGGER_NAME}.second'
    assert len(package_logger.handlers) == 1
    assert package_logger.level == logging.DEBUG


def test_format_elapsed():
    assert format_elapsed(3725.2) == '01:02:05'
