# -*- coding: utf-8 -*-
"""
Earth Engine backed DataSource.

Builds the terrain, GlobeLand30 and Sentinel-2 SR sources server-side,
downloads them for the working grid with geedim and reads the GeoTIFFs
back through `read_aligned`. Downloads are cached under paths.cache_dir.

Auth:
  export EE_SERVICE_ACCOUNT_FILE=/path/to/your-service-account.json
  # or run once `earthengine authenticate` (cached OAuth)
"""

from __future__ import annotations

import datetime as dt
import hashlib
import logging
import os
from pathlib import Path

import ee
import geedim  # noqa: F401  registers .gd on ee.Image / ee.ImageCollection
import geopandas as gpd
import numpy as np
from google.oauth2 import service_account
from rasterio.enums import Resampling
from rasterio.warp import transform_bounds

from .config import PipelineConfig
from .raster import Grid
from .scenes import CLOUD_PROPERTY, Scene, SceneCollection
from .sources import DataSource, read_aligned, read_single, read_stations

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/earthengine",
    "https://www.googleapis.com/auth/drive",
]

SRTM_ID        = "USGS/SRTMGL1_003"
GMTED_ID       = "USGS/GMTED2010"
GLOBELAND30_ID = "users/cgmorton/GlobeLand30"
S2_SR_ID       = "COPERNICUS/S2_SR"

EXPORT_DTYPE        = "float32"
EXPORT_NODATA       = -9999.0
GEEDIM_TILE_MB      = 16   # must be < 32
GEEDIM_MAX_REQUESTS = 16


def ee_init():
    sa_file = os.getenv("EE_SERVICE_ACCOUNT_FILE")
    if sa_file:
        if not os.path.isfile(sa_file):
            raise FileNotFoundError(f"EE_SERVICE_ACCOUNT_FILE points to a missing file: {sa_file}")
        credentials = service_account.Credentials.from_service_account_file(sa_file, scopes=SCOPES)
        ee.Initialize(credentials)
        logger.info(f"[EE AUTH] Initialized from EE_SERVICE_ACCOUNT_FILE={sa_file}")
        return
    ee.Initialize()
    logger.info("[EE AUTH] Initialized from cached credentials")


def grid_key(grid: Grid) -> str:
    """Short stable tag of a grid's bounds, CRS and pixel size for cache file names."""
    xmin, ymin, xmax, ymax = grid.bounds
    dx, dy = grid.pixel_size
    text = f"{grid.crs.to_string()}|{xmin:.3f},{ymin:.3f},{xmax:.3f},{ymax:.3f}|{dx:.6f},{dy:.6f}"
    return hashlib.sha1(text.encode("utf-8")).hexdigest()[:10]


class EarthEngineSource(DataSource):

    def __init__(self, config: PipelineConfig, overwrite: bool = False):
        self.config = config
        self.overwrite = overwrite
        self.cache_dir = Path(config.paths.cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        ee_init()

    def _region(self, grid: Grid) -> ee.Geometry:
        xmin, ymin, xmax, ymax = transform_bounds(grid.crs, "EPSG:4326", *grid.bounds)
        return ee.Geometry.Rectangle([xmin, ymin, xmax, ymax], geodesic=False)

    def _cache_path(self, name: str, grid: Grid) -> Path:
        return self.cache_dir / f"{name}_{grid_key(grid)}.tif"

    def _download(self, image: ee.Image, name: str, grid: Grid) -> Path:
        fpath = self._cache_path(name, grid)
        if fpath.exists() and not self.overwrite:
            logger.info(f"[EE] Reusing: {fpath}")
            return fpath
        region = self._region(grid)
        prepared = image.clip(region).gd.prepareForExport(
            region=region, crs=grid.crs.to_string(), scale=grid.pixel_size[0], dtype=EXPORT_DTYPE)
        prepared.gd.toGeoTIFF(str(fpath), overwrite=True, nodata=EXPORT_NODATA,
                              max_tile_size=GEEDIM_TILE_MB, max_requests=GEEDIM_MAX_REQUESTS)
        logger.info(f"[EE] Saved: {fpath}")
        return fpath

    def stations(self) -> gpd.GeoDataFrame:
        if self.config.paths.stations is None:
            raise ValueError("paths.stations is not set in the config")
        return read_stations(self.config.paths.stations, self.config.id_field,
                             self.config.response, crs=self.config.crs)

    def elevation(self, grid: Grid):
        srtm = ee.Image(SRTM_ID).select([0]).rename("elevation")
        gmted = ee.Image(GMTED_ID).select([0]).rename("elevation")
        primary = read_single(self._download(srtm, "srtm", grid), grid)
        fallback = read_single(self._download(gmted, "gmted", grid), grid)
        return primary, fallback

    def landcover(self, grid: Grid) -> np.ndarray:
        glc = ee.Image(ee.ImageCollection(GLOBELAND30_ID).mosaic()).select([0]).rename("landcover")
        return read_single(self._download(glc, "globeland30", grid), grid, Resampling.nearest)

    def scenes(self, grid: Grid, start: str, end: str, max_cloud: float) -> SceneCollection:
        bands = list(self.config.s2_bands) + [self.config.qa_band]
        coll = (ee.ImageCollection(S2_SR_ID)
                .filterDate(start, end)
                .filterBounds(self._region(grid))
                .filterMetadata(CLOUD_PROPERTY, "less_than", max_cloud)
                .sort("system:time_start"))
        n = coll.size().getInfo()
        lst = coll.toList(n)
        logger.info(f"[EE] {n} Sentinel-2 scenes in [{start}, {end}) below {max_cloud:g}% cloud")
        out = []
        for i in range(n):
            img = ee.Image(lst.get(i))
            info = img.toDictionary([CLOUD_PROPERTY]).combine(
                {"system:index": img.get("system:index"),
                 "system:time_start": img.get("system:time_start")}).getInfo()
            fpath = self._download(img.select(bands), f"s2_{info['system:index']}", grid)
            when = dt.datetime.fromtimestamp(info["system:time_start"] / 1000.0, tz=dt.timezone.utc)
            out.append(Scene(when, read_aligned(fpath, grid, Resampling.nearest), grid, info))
        return SceneCollection(out)
