"""Tests for table-driven unit conversion."""

import numpy as np
import pytest

from soil_carbon_model.core.errors import UnitError
from soil_carbon_model.core.units import UnitConverter, normalize_unit


@pytest.fixture
def converter():
    return UnitConverter()


def test_concentration_factors(converter):
    assert converter.factor('g/kg', '%') == pytest.approx(0.1)
    assert converter.factor('%', 'g/kg') == pytest.approx(10.0)
    assert converter.factor('mg/g', 'g/kg') == pytest.approx(1.0)


def test_areal_stock_factors(converter):
    assert converter.factor('kg/m2', 'Mg/ha') == pytest.approx(10.0)
    assert converter.factor('Mg/ha', 't/ha') == pytest.approx(1.0)


def test_round_trip_every_supported_pair(converter):
    x = np.array([0.0, 1e-3, 1.0, 42.5, 1e4])
    for a, b in converter.supported_pairs():
        back = converter.convert(converter.convert(x, a, b), b, a)
        np.testing.assert_allclose(back, x, rtol=1e-12, err_msg=f"{a} -> {b}")


def test_unknown_unit_fails_before_touching_data(converter):
    # The payload cannot be converted to floats; a UnitError proves the
    # factor lookup happens first.
    with pytest.raises(UnitError):
        converter.convert(['not-a-number'], 'g/kg', 'furlong')


def test_mismatched_quantities(converter):
    with pytest.raises(UnitError):
        converter.factor('g/kg', 'Mg/ha')


def test_stock_factor_for_field_units(converter):
    assert converter.stock_factor('g/kg', 'g/cm3', 'cm', 'Mg/ha') == pytest.approx(0.1)
    assert converter.stock_factor('%', 'g/cm3', 'cm', 'Mg/ha') == pytest.approx(100.0)
    assert converter.stock_factor('g/kg', 'kg/m3', 'm', 'kg/m2') == pytest.approx(1e-3 * 1e-3 * 100 / 0.1)


def test_stock_factor_rejects_wrong_quantity(converter):
    with pytest.raises(UnitError):
        converter.stock_factor('g/cm3', 'g/cm3', 'cm', 'Mg/ha')


def test_unit_spelling_is_normalized(converter):
    assert normalize_unit('g/cm³') == 'g/cm3'
    assert converter.factor(' Mg / m³ ', 'g/cm3') == pytest.approx(1.0)


def test_extra_units_extend_the_table():
    converter = UnitConverter({'lb/ac': ('areal_stock', 453.59237 / 4046.8564224 * 1e-4)})
    assert converter.factor('lb/ac', 'g/m2') == pytest.approx(453.59237 / 4046.8564224)


def test_extra_units_need_positive_factor():
    with pytest.raises(UnitError):
        UnitConverter({'bad': ('depth', 0.0)})
