# -*- coding: utf-8 -*-
"""
Terrain predictors: merged elevation, slope, ruggedness and (optional)
distance to coast. Arrays are (rows, cols) floats with NaN for missing.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
from scipy import ndimage

from .config import COAST_CODE
from .raster import Grid, PredictorStack

logger = logging.getLogger(__name__)

M_PER_DEG = 111_320.0


def merge_elevation(primary: np.ndarray, fallback: Optional[np.ndarray]) -> np.ndarray:
    """Primary elevation, filled from `fallback` only where primary is undefined."""
    primary = np.asarray(primary, dtype=np.float64)
    if fallback is None:
        return primary.copy()
    return np.where(np.isfinite(primary), primary, np.asarray(fallback, dtype=np.float64))


def _pixel_size_m(grid: Grid):
    """(dx per row, dy) in metres; geographic grids use the row-centre latitude."""
    dx, dy = grid.pixel_size
    rows = grid.shape[0]
    if grid.crs is not None and grid.crs.is_geographic:
        lat = np.array([(grid.transform * (0.5, r + 0.5))[1] for r in range(rows)])
        return dx * M_PER_DEG * np.cos(np.radians(lat)), dy * M_PER_DEG
    return np.full(rows, dx), dy


def slope(elevation: np.ndarray, grid: Grid) -> np.ndarray:
    """Slope in degrees from central differences of the 4 direct neighbours."""
    z = np.asarray(elevation, dtype=np.float64)
    dx_rows, dy = _pixel_size_m(grid)
    gx = np.gradient(z, axis=1) / dx_rows[:, None] if z.shape[1] > 1 else np.zeros_like(z)
    gy = np.gradient(z, axis=0) / dy if z.shape[0] > 1 else np.zeros_like(z)
    return np.degrees(np.arctan(np.hypot(gx, gy)))


def ruggedness(elevation: np.ndarray, size: int = 3) -> np.ndarray:
    """
    Roughness index: sqrt of the summed squared differences between each
    pixel and every cell of its size x size neighbourhood. A neighbourhood
    that runs off the grid or holds a missing cell gives a missing pixel.
    """
    if size < 1 or size % 2 == 0:
        raise ValueError(f"Ruggedness window must be a positive odd size, got {size}")
    z = np.asarray(elevation, dtype=np.float64)
    r = size // 2
    padded = np.pad(z, r, mode="constant", constant_values=np.nan)
    rows, cols = z.shape
    acc = np.zeros_like(z)
    for oy in range(size):
        for ox in range(size):
            d = z - padded[oy:oy + rows, ox:ox + cols]
            acc += d * d
    return np.sqrt(acc)


def distance_to_coast(landcover: np.ndarray, grid: Grid, coast_code: int = COAST_CODE) -> np.ndarray:
    """Euclidean distance (km) to the nearest `coast_code` (ocean) pixel; all-missing without one."""
    lc = np.asarray(landcover)
    sea = np.isfinite(lc) & (lc == coast_code)
    if not sea.any():
        logger.warning(f"[TERRAIN] No land cover pixels coded {coast_code}; distCoast left empty")
        return np.full(lc.shape, np.nan)
    dx, dy = grid.pixel_size
    if grid.crs is not None and grid.crs.is_geographic:
        dx_rows, dy = _pixel_size_m(grid)
        dx = float(np.mean(dx_rows))
    dist = ndimage.distance_transform_edt(~sea, sampling=(dy, dx))
    return dist / 1000.0


def terrain_stack(primary: np.ndarray, fallback: Optional[np.ndarray], grid: Grid,
                  ruggedness_size: int = 3) -> PredictorStack:
    """Stack with bands elevation, slope, elev_rugged."""
    elev = merge_elevation(primary, fallback)
    filled = np.isfinite(elev).mean() if elev.size else 0.0
    logger.info(f"[TERRAIN] Elevation coverage after fallback merge: {filled:.1%}")
    return PredictorStack(
        ["elevation", "slope", "elev_rugged"],
        np.stack([elev, slope(elev, grid), ruggedness(elev, ruggedness_size)]),
        grid,
    )
