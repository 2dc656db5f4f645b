"""
I/O Utilities for Soil Carbon Assessment

Reads field records, stratum tables and single-band GeoTIFFs, and writes
result tables and rasters. Rasters are opened lazily with rioxarray (dask
chunks, nodata masked to NaN); outputs are written to a temporary file and
moved into place so a failed stage never leaves a partial raster behind.
"""

from pathlib import Path
from typing import Dict, Optional, Union

import geopandas as gpd
import numpy as np
import pandas as pd
import rioxarray
import xarray as xr

from shared_utils import atomic_output, get_logger, validate_file_exists

from .errors import ValidationError


class RasterManager:
    """
    Raster and table I/O for the soil carbon stages.
    """

    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize the raster manager.

        Args:
            config: Parsed YAML configuration (compute and output sections)
        """
        config = config or {}
        self.logger = get_logger('soil_carbon_model.io')
        self.chunk_size = config.get('compute', {}).get('chunk_size', 1024)
        geotiff = dict(config.get('output', {}).get('geotiff', {}))
        self.nodata_value = float(geotiff.pop('nodata_value', -9999.0))
        self.geotiff_options = geotiff or {'compress': 'lzw'}

    # ------------------------------------------------------------------
    # Rasters
    # ------------------------------------------------------------------

    def load_raster(self, filepath: Union[str, Path], description: str = "raster") -> xr.DataArray:
        """
        Open a single-band raster as a masked, chunked DataArray.

        Raises:
            FileNotFoundError: If the file does not exist
            ValidationError: If the raster has more than one band or no CRS
        """
        filepath = validate_file_exists(filepath, description)
        data = rioxarray.open_rasterio(
            filepath, masked=True, chunks={'x': self.chunk_size, 'y': self.chunk_size}
        )
        if 'band' in data.dims:
            if data.sizes['band'] != 1:
                raise ValidationError(f"{description} must have a single band: {filepath}", [str(filepath)])
            data = data.squeeze('band', drop=True)
        if data.rio.crs is None:
            raise ValidationError(f"{description} has no coordinate reference system: {filepath}", [str(filepath)])

        self.logger.debug(f"Loaded {description}: {filepath} {dict(data.sizes)} {data.rio.crs}")
        return data

    def load_optional_raster(self, filepath: Union[str, Path], description: str = "raster") -> Optional[xr.DataArray]:
        if not Path(filepath).exists():
            self.logger.warning(f"{description} not found: {filepath}")
            return None
        return self.load_raster(filepath, description)

    def save_raster(self, data: xr.DataArray, output_path: Union[str, Path],
                    depth_cm: Optional[float] = None) -> Path:
        """
        Write a DataArray as a single-band GeoTIFF with the configured options.

        NaN cells are encoded with the configured nodata value. The depth tag
        is stored in the raster metadata.
        """
        output_path = Path(output_path)
        out = data.astype('float32')
        out = out.rio.write_nodata(self.nodata_value, encoded=True)
        if depth_cm is not None:
            out.attrs['depth_cm'] = float(depth_cm)

        with atomic_output(output_path) as tmp_path:
            out.rio.to_raster(tmp_path, driver='GTiff', **self.geotiff_options)

        self.logger.debug(f"Saved raster: {output_path}")
        return output_path

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    def load_table(self, filepath: Union[str, Path], description: str = "table") -> pd.DataFrame:
        filepath = validate_file_exists(filepath, description)
        table = pd.read_csv(filepath)
        self.logger.info(f"Loaded {description}: {len(table)} rows from {filepath}")
        return table

    def save_table(self, table: pd.DataFrame, output_path: Union[str, Path]) -> Path:
        output_path = Path(output_path)
        with atomic_output(output_path) as tmp_path:
            table.to_csv(tmp_path, index=False)
        self.logger.info(f"Saved {len(table)} rows to {output_path}")
        return output_path

    def load_polygons(self, filepath: Union[str, Path]) -> gpd.GeoDataFrame:
        """
        Read stratum polygons with a 'stratum' column.

        Raises:
            ValidationError: If the layer has no 'stratum' column or no CRS
        """
        filepath = validate_file_exists(filepath, "stratum polygons")
        polygons = gpd.read_file(filepath)
        if 'stratum' not in polygons.columns:
            raise ValidationError(f"Stratum polygons need a 'stratum' column: {filepath}")
        if polygons.crs is None:
            raise ValidationError(f"Stratum polygons have no CRS: {filepath}")
        return polygons

    def save_sample_locations(self, samples: gpd.GeoDataFrame, output_path: Union[str, Path]) -> Path:
        """Write sample points as CSV (point_id, stratum, x, y, crs)."""
        table = pd.DataFrame(samples.drop(columns='geometry'))
        table['crs'] = samples.crs.to_string() if samples.crs is not None else ''
        return self.save_table(table, output_path)


def cell_area_ha(data: xr.DataArray) -> float:
    """Area of one raster cell in hectares (projected CRS in metres)."""
    x_res, y_res = data.rio.resolution()
    return abs(x_res * y_res) / 1e4


def core_coordinates(cores: pd.DataFrame, crs) -> np.ndarray:
    """Core longitude/latitude projected to `crs` as an (n, 2) array."""
    located = cores.dropna(subset=['longitude', 'latitude']).drop_duplicates('core_id')
    if located.empty:
        return np.empty((0, 2))
    points = gpd.GeoSeries(
        gpd.points_from_xy(located['longitude'], located['latitude']), crs='EPSG:4326'
    ).to_crs(crs)
    return np.column_stack([points.x.to_numpy(), points.y.to_numpy()])
