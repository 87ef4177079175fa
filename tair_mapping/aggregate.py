# -*- coding: utf-8 -*-
"""
Area-weighted spatial means of predictor bands.

Point mode: mean inside each station buffer (training features).
Raster mode: moving-window mean over a circle of the same radius at every
pixel (prediction input). Both weight a pixel by the fraction of its area
inside the circle and skip missing pixels, so the two agree at a pixel
whose centre coincides with a station.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence, Tuple

import geopandas as gpd
import numpy as np
import shapely
from joblib import Parallel, delayed
from scipy import ndimage
from shapely.geometry import Point

from .raster import Grid, PredictorStack

logger = logging.getLogger(__name__)

BUFFER_RESOLUTION = 16   # segments per quarter circle, shared by both modes

Window = Tuple[int, int, int, int]   # row0, row1, col0, col1


def buffer_stations(stations: gpd.GeoDataFrame, radius: float) -> gpd.GeoDataFrame:
    out = stations.copy()
    out["geometry"] = stations.geometry.buffer(radius, resolution=BUFFER_RESOLUTION)
    out["buffer"] = radius
    return out


def pixel_coverage(polygon, grid: Grid) -> Tuple[Optional[Window], np.ndarray]:
    """Pixel window around `polygon` and the covered fraction of each pixel in it."""
    rows, cols = grid.shape
    inv = ~grid.transform
    minx, miny, maxx, maxy = polygon.bounds
    c_a, r_a = inv * (minx, maxy)
    c_b, r_b = inv * (maxx, miny)
    r0 = max(0, int(math.floor(min(r_a, r_b))))
    r1 = min(rows, int(math.ceil(max(r_a, r_b))))
    c0 = max(0, int(math.floor(min(c_a, c_b))))
    c1 = min(cols, int(math.ceil(max(c_a, c_b))))
    if r0 >= r1 or c0 >= c1:
        return None, np.empty((0, 0))

    rr, cc = np.mgrid[r0:r1, c0:c1]
    t = grid.transform
    x0, y0 = t.a * cc + t.b * rr + t.c, t.d * cc + t.e * rr + t.f
    x1, y1 = x0 + t.a + t.b, y0 + t.d + t.e
    boxes = shapely.box(np.minimum(x0, x1), np.minimum(y0, y1), np.maximum(x0, x1), np.maximum(y0, y1))
    dx, dy = grid.pixel_size
    frac = shapely.area(shapely.intersection(boxes, polygon)) / (dx * dy)
    return (r0, r1, c0, c1), frac


def _weighted_means(data: np.ndarray, window: Optional[Window], frac: np.ndarray) -> np.ndarray:
    if window is None:
        return np.full(data.shape[0], np.nan)
    r0, r1, c0, c1 = window
    vals = data[:, r0:r1, c0:c1]
    valid = np.isfinite(vals)
    w = frac[np.newaxis] * valid
    tot = w.sum(axis=(1, 2))
    num = (w * np.where(valid, vals, 0.0)).sum(axis=(1, 2))
    out = np.full(data.shape[0], np.nan)
    ok = tot > 0
    out[ok] = num[ok] / tot[ok]
    return out


def _extract_batch(data: np.ndarray, grid: Grid, polygons: Sequence) -> List[np.ndarray]:
    return [_weighted_means(data, *pixel_coverage(p, grid)) for p in polygons]


def extract_training_features(stack: PredictorStack, stations: gpd.GeoDataFrame, radius: float,
                              batch_size: int = 64, n_jobs: int = 1) -> gpd.GeoDataFrame:
    """
    One row per station: station attributes + buffer mean of every stack band.

    Stations are split into batches of `batch_size` and the batches evaluated
    (optionally in parallel); output rows keep the input order.
    """
    if stations.crs is not None and stack.grid.crs is not None and stations.crs != stack.grid.crs:
        stations = stations.to_crs(stack.grid.crs)
    buffers = buffer_stations(stations, radius)
    polys = list(buffers.geometry)
    batches = [polys[i:i + batch_size] for i in range(0, len(polys), batch_size)]
    logger.info(f"[TRAIN] Extracting {len(stack)} bands for {len(polys)} stations "
                f"in {len(batches)} batch(es), buffer={radius:g}")

    results = Parallel(n_jobs=n_jobs)(delayed(_extract_batch)(stack.data, stack.grid, b) for b in batches)
    means = [m for batch in results for m in batch]
    values = np.vstack(means) if means else np.empty((0, len(stack)))

    feats = stations.copy()
    feats["buffer"] = radius
    for i, name in enumerate(stack.names):
        feats[name] = values[:, i]
    return feats


def circle_kernel(radius: float, pixel_size: Tuple[float, float]) -> np.ndarray:
    """Weights = fraction of each pixel covered by a circle centred on the middle pixel."""
    dx, dy = pixel_size
    nx = int(math.ceil(radius / dx + 0.5))
    ny = int(math.ceil(radius / dy + 0.5))
    circle = Point(0.0, 0.0).buffer(radius, resolution=BUFFER_RESOLUTION)
    jj, ii = np.meshgrid(np.arange(-nx, nx + 1), np.arange(-ny, ny + 1))
    boxes = shapely.box(jj * dx - dx / 2, -ii * dy - dy / 2, jj * dx + dx / 2, -ii * dy + dy / 2)
    return shapely.area(shapely.intersection(boxes, circle)) / (dx * dy)


def _focal_band(band: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    valid = np.isfinite(band)
    num = ndimage.correlate(np.where(valid, band, 0.0), kernel, mode="constant", cval=0.0)
    den = ndimage.correlate(valid.astype(np.float64), kernel, mode="constant", cval=0.0)
    out = np.full(band.shape, np.nan)
    ok = den > 1e-12
    out[ok] = num[ok] / den[ok]
    return out


def focal_mean(stack: PredictorStack, radius: float, n_jobs: int = 1) -> PredictorStack:
    """Circular moving-window mean of every band, same grid as the input."""
    kernel = circle_kernel(radius, stack.grid.pixel_size)
    logger.info(f"[PREDICT] Focal mean r={radius:g} (kernel {kernel.shape[0]}x{kernel.shape[1]}) "
                f"on {len(stack)} bands")
    bands = Parallel(n_jobs=n_jobs)(delayed(_focal_band)(b, kernel) for b in stack.data)
    data = np.stack(bands) if bands else stack.data.copy()
    return stack.with_data(data)
