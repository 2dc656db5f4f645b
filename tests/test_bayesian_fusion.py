"""Tests for precision-weighted fusion of prior and field rasters."""

import dataclasses

import numpy as np
import pytest
import xarray as xr

from soil_carbon_model.core.bayesian_fusion import (
    BayesianFusionEngine,
    GAIN_HIGH,
    KernelDensityFieldWeighting,
    UniformFieldWeighting,
    build_field_weighting,
    classify_information_gain,
    information_gain_codes,
    summaries_to_frame,
)
from soil_carbon_model.core.errors import AlignmentError, InsufficientDataError
from soil_carbon_model.core.settings import FieldWeightingSettings


@pytest.fixture
def engine(config):
    return BayesianFusionEngine(config)


def constant(raster_factory, value, shape=(2, 2), **kwargs):
    return raster_factory(np.full(shape, value), **kwargs)


def test_reference_scenario(engine, raster_factory):
    result = engine.fuse(
        constant(raster_factory, 45.2), constant(raster_factory, 8.3),
        constant(raster_factory, 52.1), constant(raster_factory, 6.1), depth_cm=7.5,
    )

    np.testing.assert_allclose(result.posterior_mean, 49.8, atol=0.15)
    np.testing.assert_allclose(result.posterior_se, 4.9, atol=0.05)
    np.testing.assert_allclose(result.information_gain, 40.7, atol=0.2)
    assert (result.gain_class == GAIN_HIGH).all()
    assert result.summary['information_gain_class'] == 'High'
    assert result.summary['n_cells_fused'] == 4
    assert result.summary['share_high'] == pytest.approx(1.0)


def test_posterior_se_never_exceeds_either_input(engine, raster_factory):
    rng = np.random.default_rng(3)
    shape = (20, 20)
    prior_se = rng.uniform(0.5, 20.0, shape)
    field_se = rng.uniform(0.5, 20.0, shape)

    result = engine.fuse(
        raster_factory(rng.uniform(0, 200, shape)), raster_factory(prior_se),
        raster_factory(rng.uniform(0, 200, shape)), raster_factory(field_se), depth_cm=22.5,
    )

    assert np.all(result.posterior_se.values <= np.minimum(prior_se, field_se) + 1e-12)
    assert np.all(result.conservative.values >= 0)


def test_single_usable_side_passes_through(engine, raster_factory):
    prior_mean = raster_factory([[40.0, np.nan], [40.0, np.nan]])
    prior_se = raster_factory([[5.0, 5.0], [5.0, 5.0]])
    field_mean = raster_factory([[np.nan, 60.0], [55.0, np.nan]])
    field_se = raster_factory([[4.0, 4.0], [np.inf, 4.0]])

    result = engine.fuse(prior_mean, prior_se, field_mean, field_se, depth_cm=40)
    mean = result.posterior_mean.values
    se = result.posterior_se.values

    # prior only
    assert mean[0, 0] == pytest.approx(40.0) and se[0, 0] == pytest.approx(5.0)
    # field only
    assert mean[0, 1] == pytest.approx(60.0) and se[0, 1] == pytest.approx(4.0)
    # infinite field SE carries no information
    assert mean[1, 0] == pytest.approx(40.0) and se[1, 0] == pytest.approx(5.0)
    # neither side
    assert np.isnan(mean[1, 1]) and np.isnan(se[1, 1])
    assert result.report.count('no_usable_input') == 1
    assert result.report.total == 1
    assert np.isnan(result.information_gain.values[0, 0])


def test_no_usable_cell_raises(engine, raster_factory):
    empty = constant(raster_factory, np.nan)
    with pytest.raises(InsufficientDataError):
        engine.fuse(empty, constant(raster_factory, 5.0), empty, constant(raster_factory, 5.0), depth_cm=75)


def test_missing_prior_se_uses_default_cv(engine, raster_factory):
    result = engine.fuse(
        constant(raster_factory, 50.0), None,
        constant(raster_factory, 50.0), constant(raster_factory, 10.0), depth_cm=7.5,
    )
    # default CV 20% of 50 -> 10; two equal precisions halve the variance
    np.testing.assert_allclose(result.posterior_se, 10.0 / np.sqrt(2.0))


def test_prior_se_inflation(config, raster_factory):
    inflated = dataclasses.replace(config, fusion=dataclasses.replace(config.fusion, prior_se_inflation=2.0))
    engine = BayesianFusionEngine(inflated)
    result = engine.fuse(
        constant(raster_factory, 50.0), constant(raster_factory, 5.0),
        constant(raster_factory, 50.0), constant(raster_factory, 10.0), depth_cm=7.5,
    )
    np.testing.assert_allclose(result.posterior_se, 10.0 / np.sqrt(2.0))


def test_field_raster_is_resampled_onto_prior_grid(engine, raster_factory):
    prior_mean = constant(raster_factory, 40.0, shape=(4, 4))
    prior_se = constant(raster_factory, 8.0, shape=(4, 4))
    field_mean = constant(raster_factory, 60.0, shape=(2, 2), res=200.0)
    field_se = constant(raster_factory, 8.0, shape=(2, 2), res=200.0)

    result = engine.fuse(prior_mean, prior_se, field_mean, field_se, depth_cm=7.5)

    assert result.posterior_mean.shape == (4, 4)
    np.testing.assert_array_equal(result.posterior_mean['x'].values, prior_mean['x'].values)
    fused = result.posterior_mean.values[np.isfinite(result.posterior_mean.values)]
    assert len(fused) > 0
    np.testing.assert_allclose(fused[fused != 40.0], 50.0)


def test_disjoint_extents_raise(engine, raster_factory):
    prior = constant(raster_factory, 40.0)
    far_away = constant(raster_factory, 60.0, x0=900000.0)
    with pytest.raises(AlignmentError):
        engine.fuse(prior, constant(raster_factory, 8.0), far_away, far_away, depth_cm=7.5)


def test_missing_crs_raises(engine, raster_factory):
    prior = constant(raster_factory, 40.0)
    bare = xr.DataArray(np.full((2, 2), 60.0), coords={'y': prior['y'].values, 'x': prior['x'].values},
                        dims=('y', 'x'))
    with pytest.raises(AlignmentError):
        engine.align_to_prior(prior, bare)


def test_dask_backed_rasters_match_in_memory(engine, raster_factory):
    rng = np.random.default_rng(5)
    arrays = [rng.uniform(1, 100, (6, 6)) for _ in range(4)]
    in_memory = engine.fuse(*[raster_factory(a) for a in arrays], depth_cm=7.5)
    chunked = engine.fuse(*[raster_factory(a).chunk({'x': 3, 'y': 3}) for a in arrays], depth_cm=7.5)

    np.testing.assert_allclose(chunked.posterior_mean.compute(), in_memory.posterior_mean)
    np.testing.assert_allclose(chunked.gain_class.compute(), in_memory.gain_class)


def test_min_input_gain_reference(config, raster_factory):
    settings = dataclasses.replace(config.fusion, information_gain_reference='min_input')
    engine = BayesianFusionEngine(dataclasses.replace(config, fusion=settings))
    result = engine.fuse(
        constant(raster_factory, 45.2), constant(raster_factory, 8.3),
        constant(raster_factory, 52.1), constant(raster_factory, 6.1), depth_cm=7.5,
    )
    expected = 100.0 * (1.0 - 4.915 / 6.1)
    np.testing.assert_allclose(result.information_gain, expected, atol=0.1)


@pytest.mark.parametrize('gain, label', [
    (30.0, 'High'),
    (29.9999999999, 'High'),
    (29.99, 'Medium'),
    (20.0, 'Medium'),
    (19.99, 'Low'),
    (-5.0, 'Low'),
])
def test_gain_class_boundaries(gain, label):
    assert classify_information_gain(gain) == label


def test_gain_class_arrays_and_missing():
    labels = classify_information_gain(np.array([35.0, np.nan, 10.0]))
    assert labels.tolist() == ['High', None, 'Low']
    assert classify_information_gain(np.nan) is None
    assert np.isnan(information_gain_codes(np.nan))


def test_kernel_weights_grow_towards_cores(raster_factory):
    template = constant(raster_factory, 1.0, shape=(10, 10))
    weighting = KernelDensityFieldWeighting(bandwidth=150.0, max_boost=3.0)
    points = np.array([[500050.0, 4999950.0]])

    weights = weighting.weights(template, points).values

    assert weights.min() >= 1.0
    assert weights.max() <= 3.0
    assert weights[0, 0] > weights[5, 5]
    assert weights[9, 9] == pytest.approx(1.0)


def test_kernel_weights_without_points(raster_factory):
    template = constant(raster_factory, 1.0)
    weights = KernelDensityFieldWeighting(bandwidth=100.0, max_boost=4.0).weights(template, None)
    np.testing.assert_allclose(weights, 1.0)


def test_kernel_weighted_fusion_leans_on_field_near_cores(config, raster_factory):
    engine = BayesianFusionEngine(config, KernelDensityFieldWeighting(bandwidth=150.0))
    shape = (10, 10)
    result = engine.fuse(
        constant(raster_factory, 40.0, shape), constant(raster_factory, 8.0, shape),
        constant(raster_factory, 60.0, shape), constant(raster_factory, 8.0, shape),
        depth_cm=7.5, field_points=np.array([[500050.0, 4999950.0]]),
    )
    mean = result.posterior_mean.values

    assert mean[0, 0] > mean[9, 9]
    assert mean[9, 9] == pytest.approx(50.0)
    assert np.all(result.posterior_se.values <= 8.0 / np.sqrt(2.0) + 1e-12)


def test_kernel_weighted_posterior_se_stays_below_both_inputs(config, raster_factory):
    weighting = KernelDensityFieldWeighting(bandwidth=1.0, max_boost=5.0)
    engine = BayesianFusionEngine(config, weighting)
    shape = (6, 6)
    # one core right at a cell centre, one far outside the grid
    points = np.array([[500050.0, 4999950.0], [900000.0, 9000000.0]])

    result = engine.fuse(
        constant(raster_factory, 45.2, shape), constant(raster_factory, 8.3, shape),
        constant(raster_factory, 52.1, shape), constant(raster_factory, 6.1, shape),
        depth_cm=7.5, field_points=points,
    )
    se = result.posterior_se.values

    assert np.all(se <= min(8.3, 6.1) + 1e-12)
    # away from cores the nominal field precision is used
    assert se[5, 5] == pytest.approx(4.915, abs=1e-3)
    assert se[0, 0] < se[5, 5]


@pytest.mark.parametrize('kwargs', [
    {'bandwidth': 0.0},
    {'bandwidth': 10.0, 'max_boost': 0.5},
    {'bandwidth': 10.0, 'saturation': 0.0},
])
def test_kernel_parameters_are_validated(kwargs):
    with pytest.raises(ValueError):
        KernelDensityFieldWeighting(**kwargs)


def test_weighting_from_settings():
    assert isinstance(build_field_weighting(FieldWeightingSettings()), UniformFieldWeighting)
    kernel = build_field_weighting(FieldWeightingSettings(method='kernel_density', bandwidth=80.0))
    assert isinstance(kernel, KernelDensityFieldWeighting)
    assert kernel.bandwidth == 80.0


def test_summary_frame_and_dataset(engine, raster_factory):
    results = [
        engine.fuse(constant(raster_factory, 45.2), constant(raster_factory, 8.3),
                    constant(raster_factory, 52.1), constant(raster_factory, 6.1), depth_cm=d)
        for d in (7.5, 22.5)
    ]
    frame = summaries_to_frame(results)

    assert list(frame['depth_cm']) == [7.5, 22.5]
    assert set(results[0].to_dataset().data_vars) == {
        'posterior_mean', 'posterior_se', 'conservative', 'information_gain_pct', 'information_gain_class'
    }
