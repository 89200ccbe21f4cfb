# tests/conftest.py

import pytest
import numpy as np
import rasterio
from rasterio.crs import CRS
from rasterio.transform import from_bounds

from rasterpyramid.sector import Sector
from rasterpyramid.raster import Raster, RasterCache, SampleKind

@pytest.fixture
def raster_factory():
    """
    Fixture: Builds in-memory rasters over a (min_lat, max_lat, min_lon, max_lon) sector.
    Without explicit data the samples form a west-east gradient.
    """
    def _create(
        bounds=(10.0, 20.0, 30.0, 40.0),
        width=20,
        height=20,
        kind=SampleKind.SCALAR_GRID,
        bands=1,
        dtype="float32",
        data=None,
        missing_value=None,
        resampling=None
    ):
        if data is None:
            gradient = np.linspace(0, 100, width * height).reshape(height, width)
            data = np.stack([gradient + 10 * b for b in range(bands)]).astype(dtype)
        return Raster(
            data,
            Sector(*bounds),
            kind,
            missing_value=missing_value,
            resampling=resampling
        )

    return _create

@pytest.fixture
def geotiff_factory(tmp_path):
    """
    Fixture: Writes a GeoTIFF with rasterio and returns its path.
    Bounds are given as (left, bottom, right, top) in the units of the CRS.
    """
    def _create(
        filename="source.tif",
        bounds=(30.0, 10.0, 40.0, 20.0),
        width=20,
        height=20,
        count=1,
        dtype="float32",
        crs="EPSG:4326",
        nodata=None,
        data=None
    ):
        path = tmp_path / filename
        if data is None:
            gradient = np.linspace(0, 100, width * height).reshape(height, width)
            data = np.stack([gradient] * count).astype(dtype)

        profile = {
            'driver': 'GTiff',
            'height': height,
            'width': width,
            'count': count,
            'dtype': dtype,
            'crs': CRS.from_string(crs) if crs else None,
            'transform': from_bounds(*bounds, width, height),
            'nodata': nodata
        }
        with rasterio.open(path, 'w', **profile) as dst:
            dst.write(data)
        return path

    return _create

@pytest.fixture
def cache():
    """A raster cache large enough for every test dataset."""
    return RasterCache(capacity_bytes=256 * 1024**2)

@pytest.fixture
def store_root(tmp_path):
    root = tmp_path / "store"
    root.mkdir()
    return root
