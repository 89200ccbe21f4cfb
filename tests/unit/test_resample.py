# tests/unit/test_resample.py

import pytest
import numpy as np
from rasterio.enums import Resampling

from rasterpyramid.raster import resample
from rasterpyramid.sector import Sector

def test_pixel_centers_run_north_to_south():
    lats, lons = resample.pixel_centers(Sector(0.0, 4.0, 10.0, 12.0), width=2, height=4)

    assert lats.tolist() == [3.5, 2.5, 1.5, 0.5]
    assert lons.tolist() == [10.5, 11.5]

def test_overlap_indices_none_for_disjoint():
    assert resample.overlap_indices(Sector(0.0, 1.0, 0.0, 1.0), Sector(5.0, 6.0, 5.0, 6.0), 4, 4) is None

def test_overlap_indices_offsets_from_north_west():
    rows, cols, lat_off, lon_off = resample.overlap_indices(
        Sector(0.0, 2.0, 0.0, 2.0),
        Sector(0.0, 4.0, 0.0, 4.0),
        dest_width=4,
        dest_height=4
    )

    assert rows.tolist() == [2, 3]
    assert cols.tolist() == [0, 1]
    assert lat_off.tolist() == [0.5, 1.5]
    assert lon_off.tolist() == [0.5, 1.5]

def test_sample_rejects_unsupported_method():
    data = np.zeros((1, 2, 2))
    with pytest.raises(ValueError):
        resample.sample(data, np.ones((2, 2), bool), np.zeros(1), np.zeros(1), Resampling.cubic)

def test_bilinear_sample_midpoint():
    data = np.array([[[0.0, 10.0], [20.0, 30.0]]])
    values, valid = resample.sample(
        data, np.ones((2, 2), bool), np.array([0.5]), np.array([0.5]), Resampling.bilinear
    )

    assert valid.all()
    assert values[0, 0, 0] == pytest.approx(15.0)

def test_cast_samples_rounds_and_clips_integers():
    values = np.array([-3.2, 1.6, 300.4])

    assert resample.cast_samples(values, np.uint8).tolist() == [0, 2, 255]

def test_block_mean_averages_valid_samples_only():
    data = np.array([[
        [1.0, 3.0, 5.0, 5.0],
        [5.0, 7.0, 5.0, 5.0],
        [-1.0, -1.0, 2.0, -1.0],
        [-1.0, -1.0, -1.0, -1.0]
    ]])
    valid = data[0] != -1.0

    reduced, reduced_valid = resample.block_mean(data, valid, np.float32, missing_value=-1.0)

    assert reduced_valid.tolist() == [[True, True], [False, True]]
    assert reduced[0].tolist() == [[4.0, 5.0], [-1.0, 2.0]]

def test_block_mean_requires_even_dimensions():
    with pytest.raises(ValueError):
        resample.block_mean(np.zeros((1, 3, 4)), np.ones((3, 4), bool), np.float32)
