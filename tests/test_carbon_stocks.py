"""Tests for carbon stock aggregation."""

import dataclasses

import numpy as np
import pandas as pd
import pytest

from soil_carbon_model.core.carbon_stocks import CarbonStockAggregator
from soil_carbon_model.core.errors import InsufficientDataError, UnitError


@pytest.fixture
def aggregator(config):
    return CarbonStockAggregator(config)


def core_frame(stocks_by_stratum):
    rows = []
    for stratum, stocks in stocks_by_stratum.items():
        for i, stock in enumerate(stocks):
            rows.append({
                'core_id': f"{stratum[:2].upper()}{i:02d}", 'stratum': stratum,
                'scenario_type': 'PROJECT', 'monitoring_year': 2024, 'total_stock': stock,
            })
    return pd.DataFrame(rows)


def test_field_units_give_factor_one_tenth(aggregator):
    assert aggregator.stock_factor == pytest.approx(0.1)
    # 50 g/kg x 1.0 g/cm3 x 10 cm
    assert aggregator.compute_stock(50.0, 1.0, 10.0) == pytest.approx(50.0)


def test_unknown_stock_unit_fails_at_construction(config):
    with pytest.raises(UnitError):
        CarbonStockAggregator(dataclasses.replace(config, stock_unit='furlong'))


def test_mismatched_units_fail_at_construction(config):
    with pytest.raises(UnitError):
        CarbonStockAggregator(dataclasses.replace(config, bd_unit='cm'))


def test_other_output_unit_scales(config):
    aggregator = CarbonStockAggregator(dataclasses.replace(config, stock_unit='kg/m2'))
    assert aggregator.compute_stock(50.0, 1.0, 10.0) == pytest.approx(5.0)


def test_sample_stocks_use_interval_thickness(aggregator):
    records = pd.DataFrame({
        'core_id': ['A', 'A'],
        'depth_top_cm': [0.0, 10.0],
        'depth_bottom_cm': [10.0, 30.0],
        'soc_g_kg': [50.0, 30.0],
        'bulk_density_g_cm3': [1.0, 1.2],
    })
    stocks = aggregator.sample_stocks(records)

    np.testing.assert_allclose(stocks['carbon_stock'], [50.0, 72.0])
    assert 'carbon_stock' not in records.columns


def test_layer_stocks_from_harmonized_profiles(aggregator):
    depths = [7.5, 22.5, 40.0, 75.0]
    soc = pd.DataFrame({
        'core_id': 'A', 'standard_depth': depths, 'value': [50.0, 40.0, 30.0, 20.0],
        'lower_ci': [45.0, 35.0, 25.0, 15.0], 'upper_ci': [55.0, 45.0, 35.0, 25.0],
    })
    bd = pd.DataFrame({'core_id': 'A', 'standard_depth': depths, 'value': [1.0, 1.0, 1.0, 1.0]})

    layers = aggregator.layer_stocks(soc, bd)

    np.testing.assert_allclose(layers['thickness'], [15, 15, 20, 50])
    np.testing.assert_allclose(layers['carbon_stock'], [75.0, 60.0, 60.0, 100.0])
    assert np.all(layers['stock_lower'] <= layers['carbon_stock'])
    assert np.all(layers['carbon_stock'] <= layers['stock_upper'])


def test_layer_stocks_skip_cores_without_bulk_density(aggregator):
    soc = pd.DataFrame({
        'core_id': ['A', 'B'], 'standard_depth': [7.5, 7.5], 'value': [50.0, 40.0],
        'lower_ci': np.nan, 'upper_ci': np.nan,
    })
    bd = pd.DataFrame({'core_id': ['A'], 'standard_depth': [7.5], 'value': [1.0]})

    layers = aggregator.layer_stocks(soc, bd)
    assert list(layers['core_id']) == ['A']
    assert layers['stock_lower'].isna().all()


def test_core_totals(aggregator):
    stocks = pd.DataFrame({'core_id': ['A', 'A', 'B'], 'carbon_stock': [10.0, 5.0, 7.0]})
    info = pd.DataFrame({'core_id': ['A', 'A', 'B'], 'stratum': ['Mid Marsh', 'Mid Marsh', 'Upper Marsh']})

    totals = aggregator.core_totals(stocks, info)

    assert list(totals['total_stock']) == [15.0, 7.0]
    assert list(totals['n_intervals']) == [2, 1]
    assert list(totals['stratum']) == ['Mid Marsh', 'Upper Marsh']


def test_interval_stocks_split_by_overlap(aggregator):
    samples = pd.DataFrame({
        'core_id': ['A', 'A'],
        'depth_top_cm': [0.0, 20.0],
        'depth_bottom_cm': [20.0, 40.0],
        'carbon_stock': [40.0, 20.0],
    })
    result = aggregator.interval_stocks(samples).set_index('interval')

    # surface 0-30 takes all of the first sample and half of the second
    assert result.loc['surface', 'carbon_stock'] == pytest.approx(50.0)
    assert result.loc['surface', 'coverage'] == pytest.approx(1.0)
    assert result.loc['subsurface', 'carbon_stock'] == pytest.approx(10.0)
    assert result.loc['subsurface', 'coverage'] == pytest.approx(10.0 / 70.0)


def test_stratum_summary_statistics(aggregator):
    summary = aggregator.stratum_summary(core_frame({'Mid Marsh': [100.0, 120.0, 110.0]}))
    row = summary.iloc[0]

    assert row['n_cores'] == 3
    assert row['mean_stock'] == pytest.approx(110.0)
    assert row['sd_stock'] == pytest.approx(10.0)
    assert row['se_stock'] == pytest.approx(10.0 / np.sqrt(3))
    assert row['conservative_stock'] == pytest.approx(110.0 - aggregator.z_value * 10.0 / np.sqrt(3))
    assert row['min_stock'] == 100.0 and row['max_stock'] == 120.0
    assert row['stock_unit'] == 'Mg/ha'


def test_conservative_stock_is_floored_at_zero(aggregator):
    summary = aggregator.stratum_summary(core_frame({'Mid Marsh': [1.0, 50.0]}))
    assert summary.iloc[0]['conservative_stock'] == 0.0


def test_single_core_stratum_has_undefined_spread(aggregator):
    summary = aggregator.stratum_summary(core_frame({'Mid Marsh': [100.0, 120.0], 'Upper Marsh': [80.0]}))
    single = summary.set_index('stratum').loc['Upper Marsh']

    assert single['n_cores'] == 1
    assert single['mean_stock'] == 80.0
    assert np.isnan(single['sd_stock'])
    assert np.isnan(single['conservative_stock'])


def test_stratum_totals_with_areas(aggregator):
    cores = core_frame({'Mid Marsh': [100.0, 120.0], 'Upper Marsh': [80.0, 90.0]})
    summary = aggregator.stratum_summary(cores, {'Mid Marsh': 10.0}).set_index('stratum')

    assert summary.loc['Mid Marsh', 'total_stock_Mg'] == pytest.approx(1100.0)
    assert summary.loc['Mid Marsh', 'conservative_total_Mg'] == pytest.approx(
        summary.loc['Mid Marsh', 'conservative_stock'] * 10.0
    )
    assert np.isnan(summary.loc['Upper Marsh', 'total_stock_Mg'])


def test_empty_core_table_is_rejected(aggregator):
    with pytest.raises(InsufficientDataError):
        aggregator.stratum_summary(pd.DataFrame(columns=['core_id', 'stratum', 'total_stock']))
