# -*- coding: utf-8 -*-
"""
Data access: stations, elevation, land cover and the Sentinel-2 scene archive.

Every raster comes back reprojected onto the working Grid so that stacked
bands share one alignment. Errors from the underlying readers propagate
unchanged.
"""

from __future__ import annotations

import datetime as dt
import glob
import json
import logging
import os
import re
from pathlib import Path
from typing import Dict, Optional, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd
import rasterio
from rasterio.enums import Resampling
from rasterio.warp import transform_bounds

from .config import PipelineConfig
from .export import band_map
from .raster import Grid, warp_to_grid
from .scenes import CLOUD_PROPERTY, Scene, SceneCollection, as_datetime
from .spectral import cloud_fraction

logger = logging.getLogger(__name__)

LON_CANDIDATES = ("lon", "longitude", "x", "Lon", "Longitude")
LAT_CANDIDATES = ("lat", "latitude", "y", "Lat", "Latitude")


class DataSource:
    """Interface the pipeline reads its inputs through."""

    def stations(self) -> gpd.GeoDataFrame:
        raise NotImplementedError

    def elevation(self, grid: Grid) -> Tuple[np.ndarray, Optional[np.ndarray]]:
        """(primary, fallback) elevation on `grid`; fallback may be None."""
        raise NotImplementedError

    def landcover(self, grid: Grid) -> np.ndarray:
        raise NotImplementedError

    def scenes(self, grid: Grid, start: str, end: str, max_cloud: float) -> SceneCollection:
        raise NotImplementedError


# ------------------ Readers ------------------
def read_aligned(path, grid: Grid, resampling: Resampling = Resampling.bilinear) -> Dict[str, np.ndarray]:
    """Read every band of a raster onto `grid`; nodata -> NaN. Keys are band descriptions."""
    with rasterio.open(path) as ds:
        data = ds.read().astype(np.float64)
        if ds.nodata is not None and np.isfinite(ds.nodata):
            data[data == ds.nodata] = np.nan
        bm = band_map(ds)
        names = {i: n for n, i in bm.items()}
        src_transform, src_crs = ds.transform, ds.crs
    aligned = warp_to_grid(data, src_transform, src_crs, grid, resampling)
    return {names.get(i, f"b{i + 1}"): aligned[i] for i in range(aligned.shape[0])}


def read_single(path, grid: Grid, resampling: Resampling = Resampling.bilinear) -> np.ndarray:
    return next(iter(read_aligned(path, grid, resampling).values()))


def _pick(columns, candidates) -> Optional[str]:
    for c in candidates:
        if c in columns:
            return c
    return None


def read_stations(path, id_field: str, response: str, crs=None) -> gpd.GeoDataFrame:
    """
    Stations from a CSV with lon/lat columns (EPSG:4326) or any vector file
    geopandas can read. Reprojected to `crs` when given.
    """
    path = Path(path)
    if path.suffix.lower() in (".csv", ".txt"):
        df = pd.read_csv(path)
        lon, lat = _pick(df.columns, LON_CANDIDATES), _pick(df.columns, LAT_CANDIDATES)
        if lon is None or lat is None:
            raise ValueError(f"{path}: need lon/lat columns, found {list(df.columns)}")
        gdf = gpd.GeoDataFrame(df, geometry=gpd.points_from_xy(df[lon], df[lat]), crs="EPSG:4326")
    else:
        gdf = gpd.read_file(path)
    for col in (id_field, response):
        if col not in gdf.columns:
            raise KeyError(f"Station field '{col}' not in {path} (columns: {list(gdf.columns)})")
    if crs is not None:
        gdf = gdf.to_crs(crs)
    logger.info(f"[STATIONS] {len(gdf)} rows, {gdf[id_field].nunique()} unique {id_field}s from {path}")
    return gdf


def parse_scene_time(text: str) -> Optional[dt.datetime]:
    """
    Acquisition time from a scene filename. Supports Sentinel-2 style
    20180105T104431, plus YYYY-MM-DD / YYYY_MM_DD / YYYYMMDD (midnight).
    """
    m = re.search(r"(\d{4})(\d{2})(\d{2})T(\d{2})(\d{2})(\d{2})", text)
    if m:
        y, mo, d, H, M, S = map(int, m.groups())
    else:
        m = re.search(r"(\d{4})[-_](\d{2})[-_](\d{2})", text) or re.search(r"(\d{4})(\d{2})(\d{2})", text)
        if not m:
            return None
        y, mo, d = map(int, m.groups())
        H = M = S = 0
    try:
        return dt.datetime(y, mo, d, H, M, S)
    except ValueError:
        return None


def _overlaps(path, grid: Grid) -> bool:
    """Footprint of the raster file intersects the grid (checked in the grid CRS)."""
    with rasterio.open(path) as src:
        sx0, sy0, sx1, sy1 = transform_bounds(src.crs, grid.crs, *src.bounds)
    xmin, ymin, xmax, ymax = grid.bounds
    return sx0 < xmax and sx1 > xmin and sy0 < ymax and sy1 > ymin


# ------------------ Local files ------------------
class LocalSource(DataSource):
    """GeoTIFF / vector files named in `config.paths`."""

    def __init__(self, config: PipelineConfig):
        self.config = config
        self.paths = config.paths

    def _require(self, attr: str) -> Path:
        p = getattr(self.paths, attr)
        if p is None:
            raise ValueError(f"paths.{attr} is not set in the config")
        return p

    def stations(self) -> gpd.GeoDataFrame:
        return read_stations(self._require("stations"), self.config.id_field,
                             self.config.response, crs=self.config.crs)

    def elevation(self, grid: Grid):
        primary = read_single(self._require("elevation_primary"), grid)
        fb_path = self.paths.elevation_fallback
        fallback = read_single(fb_path, grid) if fb_path is not None else None
        return primary, fallback

    def landcover(self, grid: Grid) -> np.ndarray:
        return read_single(self._require("landcover"), grid, Resampling.nearest)

    def scenes(self, grid: Grid, start: str, end: str, max_cloud: float) -> SceneCollection:
        scenes_dir = self._require("scenes_dir")
        files = sorted(glob.glob(os.path.join(str(scenes_dir), "*.tif")))
        logger.info(f"[DISCOVERY] {len(files)} scene files in {scenes_dir}")
        ds, de = as_datetime(start), as_datetime(end)
        out = []
        for fp in files:
            when = parse_scene_time(os.path.basename(fp))
            if when is None:
                logger.warning(f"[DISCOVERY] No acquisition time in {os.path.basename(fp)}; skipped")
                continue
            if not ds <= when < de:
                continue
            if not _overlaps(fp, grid):
                logger.debug(f"[DISCOVERY] {os.path.basename(fp)} outside the working grid; skipped")
                continue
            props = {"system:index": Path(fp).stem}
            sidecar = Path(fp).with_suffix(".json")
            if sidecar.exists():
                with open(sidecar, "r") as f:
                    props.update(json.load(f))
            # QA is categorical: keep it on nearest resampling
            bands = read_aligned(fp, grid, Resampling.nearest)
            if CLOUD_PROPERTY not in props and self.config.qa_band in bands:
                props[CLOUD_PROPERTY] = cloud_fraction(bands[self.config.qa_band])
            out.append(Scene(when, bands, grid, props))
        coll = SceneCollection(out).filter_cloud(max_cloud)
        logger.info(f"[DISCOVERY] {len(coll)} scenes in [{start}, {end}) below {max_cloud:g}% cloud")
        return coll
