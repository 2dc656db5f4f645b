"""End-to-end tests of the field stage on in-memory records."""

import numpy as np
import pandas as pd
import pytest

from soil_carbon_model.core import field_pipeline
from soil_carbon_model.core.field_pipeline import FieldStocksPipeline


OUTPUT_CONSTANTS = [
    'HARMONIZED_PROFILES_FILE', 'HARMONIZATION_DIAGNOSTICS_FILE', 'FIELD_QC_REPORT_FILE',
    'LAYER_STOCKS_FILE', 'CORE_STOCKS_FILE', 'INTERVAL_STOCKS_FILE', 'STRATUM_STOCKS_FILE',
]


@pytest.fixture
def pipeline(config):
    return FieldStocksPipeline(assessment_config=config)


@pytest.fixture
def redirected_paths(tmp_path, monkeypatch):
    for name in OUTPUT_CONSTANTS + ['FIELD_RECORDS_FILE', 'STRATUM_AREAS_FILE']:
        monkeypatch.setattr(field_pipeline, name, tmp_path / f"{name.lower()}.csv")
    return tmp_path


def test_process_builds_every_table(pipeline, field_records):
    results = pipeline.process(field_records)

    assert set(results.core_stocks['core_id']) == {'LM01', 'MM01', 'MM02', 'UM01'}
    assert results.n_fallback == 1
    assert len(results.layer_stocks) == 4 * len(pipeline.config.standard_depths)
    assert np.all(results.layer_stocks['carbon_stock'] >= 0)
    assert list(results.exclusions().columns) == list(results.qc_report.to_frame().columns)

    by_stratum = results.stratum_stocks.set_index('stratum')
    assert by_stratum.loc['Mid Marsh', 'n_cores'] == 2
    assert np.isfinite(by_stratum.loc['Mid Marsh', 'conservative_stock'])
    assert np.isnan(by_stratum.loc['Upper Marsh', 'conservative_stock'])


def test_fallback_core_has_no_bootstrap_interval(pipeline, field_records):
    harmonized = pipeline.process(field_records).harmonized

    sparse = harmonized[harmonized['core_id'] == 'LM01']
    assert set(sparse['method']) == {'linear'}
    assert sparse['lower_ci'].isna().all()

    full = harmonized[harmonized['core_id'] == 'MM01']
    assert full['lower_ci'].notna().all()
    assert np.all(full['lower_ci'] <= full['upper_ci'])


def test_single_interval_core_is_reported(pipeline, field_records):
    single = pd.DataFrame([{
        **field_records.iloc[0].to_dict(), 'core_id': 'MM09', 'depth_top_cm': 0, 'depth_bottom_cm': 10,
    }])
    results = pipeline.process(pd.concat([field_records, single], ignore_index=True))

    assert 'MM09' not in set(results.core_stocks['core_id'])
    assert results.harmonization_report.count('insufficient_data') == 1


def test_stratum_totals_with_areas(pipeline, field_records):
    areas = pd.DataFrame({'stratum': ['Mid Marsh', 'Upper Marsh', 'Lower Marsh'],
                          'area_ha': [100.0, 50.0, 25.0]})
    summary = pipeline.process(field_records, areas).stratum_stocks.set_index('stratum')

    assert summary.loc['Mid Marsh', 'total_stock_Mg'] == pytest.approx(
        summary.loc['Mid Marsh', 'mean_stock'] * 100.0
    )


def test_run_full_pipeline_writes_outputs(pipeline, field_records, redirected_paths):
    field_records.to_csv(field_pipeline.FIELD_RECORDS_FILE, index=False)

    assert pipeline.run_full_pipeline()
    for name in OUTPUT_CONSTANTS:
        assert getattr(field_pipeline, name).exists()
    stocks = pd.read_csv(field_pipeline.STRATUM_STOCKS_FILE)
    assert set(stocks['stratum']) == {'Mid Marsh', 'Upper Marsh', 'Lower Marsh'}


def test_run_full_pipeline_without_records_writes_nothing(pipeline, redirected_paths):
    assert not pipeline.run_full_pipeline()
    for name in OUTPUT_CONSTANTS:
        assert not getattr(field_pipeline, name).exists()
