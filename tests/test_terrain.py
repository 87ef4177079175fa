import numpy as np
import pytest

from tair_mapping.terrain import (distance_to_coast, merge_elevation, ruggedness, slope,
                                  terrain_stack)

from conftest import make_grid


def test_ruggedness_flat_is_zero():
    r = ruggedness(np.full((6, 7), 250.0), size=3)
    assert np.all(r[1:-1, 1:-1] == 0.0)


def test_ruggedness_border_is_missing():
    r = ruggedness(np.full((5, 5), 1.0), size=3)
    assert np.isnan(r[0]).all() and np.isnan(r[:, -1]).all()


def test_ruggedness_single_bump():
    z = np.zeros((5, 5))
    z[2, 2] = 1.0
    r = ruggedness(z, size=3)
    assert r[2, 2] == pytest.approx(np.sqrt(8.0))
    # a direct neighbour only differs from the bump
    assert r[1, 2] == pytest.approx(1.0)


def test_ruggedness_missing_neighbour_propagates():
    z = np.ones((5, 5))
    z[2, 3] = np.nan
    r = ruggedness(z)
    assert np.isnan(r[2, 2])
    assert r[3, 1] == 0.0


@pytest.mark.parametrize("size", [0, 2, 4, -3])
def test_ruggedness_rejects_even_window(size):
    with pytest.raises(ValueError):
        ruggedness(np.zeros((4, 4)), size=size)


def test_merge_elevation_fills_only_gaps():
    primary = np.array([[1.0, np.nan], [3.0, np.nan]])
    fallback = np.array([[9.0, 2.0], [9.0, np.nan]])
    out = merge_elevation(primary, fallback)
    assert out[0, 0] == 1.0 and out[0, 1] == 2.0 and out[1, 0] == 3.0
    assert np.isnan(out[1, 1])


def test_slope_flat_and_plane():
    grid = make_grid(rows=5, cols=6, scale=30.0)
    assert np.all(slope(np.full(grid.shape, 10.0), grid) == 0.0)
    # rises one pixel size per pixel eastwards -> 45 degrees
    plane = np.tile(np.arange(6) * 30.0, (5, 1))
    assert np.allclose(slope(plane, grid), 45.0)


def test_distance_to_coast_km():
    grid = make_grid(rows=3, cols=5, scale=30.0)
    lc = np.full(grid.shape, 10.0)
    lc[:, 0] = 255
    d = distance_to_coast(lc, grid)
    assert np.isfinite(d).all()
    assert d[1, 0] == 0.0
    assert d[1, 3] == pytest.approx(0.09)


def test_distance_to_coast_ignores_inland_water():
    grid = make_grid(rows=3, cols=5, scale=30.0)
    lc = np.full(grid.shape, 10.0)
    lc[:, 0] = 60
    lc[:, 4] = 255
    d = distance_to_coast(lc, grid)
    assert d[1, 0] == pytest.approx(0.12)
    assert d[1, 4] == 0.0


def test_distance_to_coast_without_water_is_missing():
    grid = make_grid(rows=3, cols=3)
    assert np.isnan(distance_to_coast(np.full(grid.shape, 10.0), grid)).all()


def test_terrain_stack_bands():
    grid = make_grid(rows=4, cols=4)
    st = terrain_stack(np.full(grid.shape, 5.0), None, grid)
    assert st.names == ["elevation", "slope", "elev_rugged"]
    assert st.band("elevation")[0, 0] == 5.0
