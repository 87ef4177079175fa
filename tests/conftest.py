from __future__ import annotations

import datetime as dt

import geopandas as gpd
import numpy as np
import pytest
from shapely.geometry import Point

from tair_mapping.config import PipelineConfig
from tair_mapping.raster import Grid
from tair_mapping.scenes import CLOUD_PROPERTY, Scene, SceneCollection
from tair_mapping.sources import DataSource

CRS = "EPSG:32632"
X0, Y0 = 500000.0, 6650000.0
SCALE = 30.0


def make_grid(rows=20, cols=20, scale=SCALE) -> Grid:
    return Grid.from_bounds((X0, Y0 - rows * scale, X0 + cols * scale, Y0), scale, CRS)


def pixel_center(grid: Grid, row: int, col: int):
    return grid.transform * (col + 0.5, row + 0.5)


def s2_scene(grid: Grid, when, qa=0.0, value=None, **props) -> Scene:
    value = value or {"B2": 500.0, "B3": 700.0, "B4": 1000.0, "B8": 3000.0, "B11": 2000.0, "B12": 1500.0}
    bands = {k: np.full(grid.shape, v) for k, v in value.items()}
    bands["QA60"] = np.full(grid.shape, qa)
    props.setdefault(CLOUD_PROPERTY, 5.0)
    return Scene(when, bands, grid, props)


class FakeSource(DataSource):
    """In-memory inputs on one grid: constant terrain, constant S2, given stations."""

    def __init__(self, grid: Grid, stations: gpd.GeoDataFrame, landcover=None, scenes=None):
        self.grid = grid
        self._stations = stations
        self._landcover = landcover if landcover is not None else np.full(grid.shape, 10.0)
        self._scenes = scenes

    def stations(self):
        return self._stations

    def elevation(self, grid):
        primary = np.full(grid.shape, 120.0)
        primary[:3, :3] = np.nan
        return primary, np.full(grid.shape, 120.0)

    def landcover(self, grid):
        return self._landcover

    def scenes(self, grid, start, end, max_cloud):
        if self._scenes is not None:
            return self._scenes
        return SceneCollection([
            s2_scene(grid, dt.datetime(2018, 1, 5, 10, 44), **{"system:index": "a"}),
            s2_scene(grid, dt.datetime(2018, 1, 5, 10, 45), **{"system:index": "b"}),
            s2_scene(grid, dt.datetime(2018, 1, 12, 10, 50), **{"system:index": "c"}),
        ])


@pytest.fixture
def grid():
    return make_grid()


@pytest.fixture
def stations(grid):
    cells = [(6, 6), (10, 12), (14, 8)]
    pts = [Point(*pixel_center(grid, r, c)) for r, c in cells]
    return gpd.GeoDataFrame({"ID": ["s1", "s2", "s3"], "ta": [8.0, 9.0, 9.5]}, geometry=pts, crs=CRS)


@pytest.fixture
def config(grid):
    return PipelineConfig(extent=grid.bounds, crs=CRS, scale=SCALE, export_scale=SCALE,
                          buffer_radius=100.0, neighborhood_radius=100.0, n_trees=50)
