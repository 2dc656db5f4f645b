"""Shared fixtures for the soil carbon test suite."""

import copy
import dataclasses
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
import rioxarray  # noqa: F401
import xarray as xr
import yaml

from soil_carbon_model.core.settings import AssessmentConfig


CONFIG_FILE = Path(__file__).resolve().parent.parent / 'soil_carbon_model' / 'config.yaml'


@pytest.fixture(scope='session')
def raw_config():
    with open(CONFIG_FILE, 'r') as f:
        return yaml.safe_load(f)


@pytest.fixture
def config_dict(raw_config):
    return copy.deepcopy(raw_config)


@pytest.fixture
def config(raw_config):
    base = AssessmentConfig.from_dict(copy.deepcopy(raw_config))
    return dataclasses.replace(base, bootstrap_iterations=60)


@pytest.fixture
def field_records():
    """Four cores: two Mid Marsh, one Upper Marsh, one sparse Lower Marsh core."""
    rows = []
    intervals = [(0, 10), (10, 20), (20, 40), (40, 70), (70, 100)]
    cores = {
        'MM01': ('Mid Marsh', [50, 45, 38, 28, 22], [0.9, 1.0, 1.1, None, 1.2]),
        'MM02': ('Mid Marsh', [60, 52, 40, 30, 25], [0.8, 0.9, 1.0, 1.1, 1.2]),
        'UM01': ('Upper Marsh', [80, 70, 55, 40, 30], [None, None, None, None, None]),
    }
    for core_id, (stratum, soc, bd) in cores.items():
        for (top, bottom), s, b in zip(intervals, soc, bd):
            rows.append({
                'core_id': core_id, 'stratum': stratum,
                'depth_top_cm': top, 'depth_bottom_cm': bottom,
                'soc_g_kg': s, 'bulk_density_g_cm3': b,
                'longitude': -63.5, 'latitude': 44.6,
                'scenario_type': 'PROJECT', 'monitoring_year': 2024,
            })
    for top, bottom, s in [(0, 15, 35.0), (15, 30, 30.0)]:
        rows.append({
            'core_id': 'LM01', 'stratum': 'Lower Marsh',
            'depth_top_cm': top, 'depth_bottom_cm': bottom,
            'soc_g_kg': s, 'bulk_density_g_cm3': 1.3,
            'longitude': -63.6, 'latitude': 44.7,
            'scenario_type': 'PROJECT', 'monitoring_year': 2024,
        })
    return pd.DataFrame(rows)


def make_raster(values, x0=500000.0, y0=5000000.0, res=100.0, crs='EPSG:3347'):
    """Single-band DataArray on a north-up grid with its CRS written."""
    values = np.asarray(values, dtype=float)
    ny, nx = values.shape
    x = x0 + res * (np.arange(nx) + 0.5)
    y = y0 - res * (np.arange(ny) + 0.5)
    data = xr.DataArray(values, coords={'y': y, 'x': x}, dims=('y', 'x'))
    return data.rio.write_crs(crs)


@pytest.fixture
def raster_factory():
    return make_raster
