import math

import geopandas as gpd
import numpy as np
import pytest
from shapely.geometry import Point

from tair_mapping.aggregate import (buffer_stations, circle_kernel, extract_training_features,
                                    focal_mean, pixel_coverage)
from tair_mapping.raster import PredictorStack

from conftest import CRS, make_grid, pixel_center


def _stations(grid, cells):
    pts = [Point(*pixel_center(grid, r, c)) for r, c in cells]
    return gpd.GeoDataFrame({"ID": list(range(len(pts)))}, geometry=pts, crs=CRS)


def test_buffer_records_radius(grid):
    buf = buffer_stations(_stations(grid, [(5, 5)]), 100.0)
    assert buf["buffer"].iloc[0] == 100.0
    assert buf.geometry.iloc[0].area == pytest.approx(math.pi * 100.0 ** 2, rel=0.01)


def test_circle_kernel_area():
    k = circle_kernel(100.0, (30.0, 30.0))
    assert k.shape[0] % 2 == 1 and k.shape == k.T.shape
    assert k.sum() * 900.0 == pytest.approx(math.pi * 100.0 ** 2, rel=0.01)
    assert k[k.shape[0] // 2, k.shape[1] // 2] == pytest.approx(1.0)


def test_pixel_coverage_outside_grid(grid):
    far = Point(0.0, 0.0).buffer(10.0)
    window, frac = pixel_coverage(far, grid)
    assert window is None and frac.size == 0


def test_point_and_raster_mode_agree_at_station_pixel(grid):
    rng = np.random.default_rng(0)
    data = rng.normal(size=(2,) + grid.shape)
    data[0, 9, 11] = np.nan
    stack = PredictorStack(["a", "b"], data, grid)
    feats = extract_training_features(stack, _stations(grid, [(10, 10), (1, 1)]), 100.0)
    smooth = focal_mean(stack, 100.0)
    for name in ("a", "b"):
        assert feats[name].iloc[0] == pytest.approx(smooth.band(name)[10, 10], rel=1e-9, abs=1e-9)
        # also at the grid edge, where both modes drop outside cells
        assert feats[name].iloc[1] == pytest.approx(smooth.band(name)[1, 1], rel=1e-9, abs=1e-9)


def test_constant_band_mean_and_missing_excluded(grid):
    data = np.full((1,) + grid.shape, 4.0)
    data[0, 10, 10] = np.nan
    stack = PredictorStack(["elevation"], data, grid)
    feats = extract_training_features(stack, _stations(grid, [(10, 10)]), 100.0)
    assert feats["elevation"].iloc[0] == pytest.approx(4.0)


def test_all_missing_buffer_gives_missing(grid):
    stack = PredictorStack.empty(["elevation"], grid)
    feats = extract_training_features(stack, _stations(grid, [(10, 10)]), 100.0)
    assert np.isnan(feats["elevation"].iloc[0])


def test_batching_does_not_change_result(grid):
    rng = np.random.default_rng(1)
    stack = PredictorStack(["a"], rng.normal(size=grid.shape), grid)
    st = _stations(grid, [(3, 4), (10, 10), (15, 2), (7, 18)])
    one = extract_training_features(stack, st, 100.0, batch_size=1)
    many = extract_training_features(stack, st, 100.0, batch_size=64)
    np.testing.assert_array_equal(one["a"].to_numpy(), many["a"].to_numpy())
    assert one["ID"].tolist() == [0, 1, 2, 3]


def test_stations_reprojected_to_stack_crs(grid):
    stack = PredictorStack(["a"], np.full(grid.shape, 2.0), grid)
    st = _stations(grid, [(10, 10)]).to_crs("EPSG:4326")
    feats = extract_training_features(stack, st, 100.0)
    assert feats["a"].iloc[0] == pytest.approx(2.0)


def test_focal_mean_keeps_missing_only_without_neighbours(grid):
    data = np.full(grid.shape, np.nan)
    data[10, 10] = 5.0
    smooth = focal_mean(PredictorStack(["a"], data, grid), 100.0).band("a")
    assert smooth[10, 11] == pytest.approx(5.0)
    assert np.isnan(smooth[0, 0])
