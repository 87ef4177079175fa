# -*- coding: utf-8 -*-
"""
In-memory raster model: a Grid (transform + crs + shape) and a PredictorStack
of uniquely named float bands on that grid. Missing pixels are NaN.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from affine import Affine
from rasterio.crs import CRS
from rasterio.enums import Resampling
from rasterio.transform import from_origin
from rasterio.warp import reproject

PREDICTION_BAND = "prediction"


def _same_crs(a, b) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return CRS.from_user_input(a) == CRS.from_user_input(b)


@dataclass(frozen=True)
class Grid:
    transform: Affine
    crs: Optional[CRS]
    shape: Tuple[int, int]   # rows, cols

    def __post_init__(self):
        if self.crs is not None and not isinstance(self.crs, CRS):
            object.__setattr__(self, "crs", CRS.from_user_input(self.crs))
        rows, cols = self.shape
        if rows < 1 or cols < 1:
            raise ValueError(f"Empty grid shape: {self.shape}")

    @classmethod
    def from_bounds(cls, bounds, scale: float, crs) -> "Grid":
        """North-up grid snapped to `scale` covering (xmin, ymin, xmax, ymax)."""
        xmin, ymin, xmax, ymax = map(float, bounds)
        cols = max(1, int(math.ceil((xmax - xmin) / scale)))
        rows = max(1, int(math.ceil((ymax - ymin) / scale)))
        return cls(from_origin(xmin, ymax, scale, scale), crs, (rows, cols))

    @property
    def pixel_size(self) -> Tuple[float, float]:
        return abs(self.transform.a), abs(self.transform.e)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        rows, cols = self.shape
        return _bounds(self.transform, rows, cols)

    def matches(self, other: "Grid") -> bool:
        return (self.shape == other.shape
                and self.transform.almost_equals(other.transform)
                and _same_crs(self.crs, other.crs))

    def rescaled(self, scale: float) -> "Grid":
        return Grid.from_bounds(self.bounds, scale, self.crs)


def _bounds(transform: Affine, rows: int, cols: int) -> Tuple[float, float, float, float]:
    xs, ys = zip(*(transform * (c, r) for c, r in ((0, 0), (cols, 0), (0, rows), (cols, rows))))
    return min(xs), min(ys), max(xs), max(ys)


class PredictorStack:
    """Ordered set of uniquely named bands sharing one grid."""

    def __init__(self, names: Sequence[str], data: np.ndarray, grid: Grid):
        names = list(names)
        data = np.asarray(data, dtype=np.float64)
        if data.ndim == 2:
            data = data[np.newaxis]
        if data.ndim != 3:
            raise ValueError(f"Stack data must be (bands, rows, cols), got {data.shape}")
        if len(names) != data.shape[0]:
            raise ValueError(f"{len(names)} names for {data.shape[0]} bands")
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"Duplicate band names: {dupes}")
        if tuple(data.shape[1:]) != tuple(grid.shape):
            raise ValueError(f"Band shape {data.shape[1:]} does not match grid {grid.shape}")
        self.names: List[str] = names
        self.data = data
        self.grid = grid

    @classmethod
    def from_bands(cls, bands: Dict[str, np.ndarray], grid: Grid) -> "PredictorStack":
        names = list(bands)
        if not names:
            return cls([], np.empty((0,) + tuple(grid.shape)), grid)
        return cls(names, np.stack([np.asarray(bands[n], dtype=np.float64) for n in names]), grid)

    @classmethod
    def empty(cls, names: Iterable[str], grid: Grid) -> "PredictorStack":
        names = list(names)
        return cls(names, np.full((len(names),) + tuple(grid.shape), np.nan), grid)

    def __len__(self) -> int:
        return len(self.names)

    def __repr__(self) -> str:
        return f"PredictorStack(names={self.names}, shape={self.grid.shape})"

    @property
    def shape(self) -> Tuple[int, int]:
        return self.grid.shape

    def band(self, name: str) -> np.ndarray:
        try:
            return self.data[self.names.index(name)]
        except ValueError:
            raise KeyError(f"Band '{name}' not in stack {self.names}") from None

    def select(self, names: Sequence[str]) -> "PredictorStack":
        return PredictorStack(list(names), np.stack([self.band(n) for n in names]) if names
                              else np.empty((0,) + tuple(self.shape)), self.grid)

    def rename(self, names: Sequence[str]) -> "PredictorStack":
        return PredictorStack(names, self.data.copy(), self.grid)

    def add_bands(self, other: "PredictorStack") -> "PredictorStack":
        if not self.grid.matches(other.grid):
            raise ValueError("Cannot stack bands on different grids; align them first.")
        return PredictorStack(self.names + other.names,
                              np.concatenate([self.data, other.data], axis=0), self.grid)

    def with_data(self, data: np.ndarray) -> "PredictorStack":
        return PredictorStack(self.names, data, self.grid)


def warp_to_grid(src: np.ndarray, src_transform: Affine, src_crs, grid: Grid,
                 resampling: Resampling = Resampling.bilinear) -> np.ndarray:
    """Reproject a (rows, cols) or (bands, rows, cols) array onto `grid`; NaN in, NaN out."""
    src = np.asarray(src, dtype=np.float64)
    single = src.ndim == 2
    if single:
        src = src[np.newaxis]
    dst = np.full((src.shape[0],) + tuple(grid.shape), np.nan, dtype=np.float64)
    for i in range(src.shape[0]):
        reproject(
            source=src[i], destination=dst[i],
            src_transform=src_transform, src_crs=src_crs,
            dst_transform=grid.transform, dst_crs=grid.crs,
            src_nodata=np.nan, dst_nodata=np.nan,
            resampling=resampling,
        )
    return dst[0] if single else dst


def resample_stack(stack: PredictorStack, scale: float,
                   resampling: Resampling = Resampling.average) -> PredictorStack:
    """Return `stack` on a grid of the same extent at a new resolution."""
    if math.isclose(scale, stack.grid.pixel_size[0]) and math.isclose(scale, stack.grid.pixel_size[1]):
        return stack
    grid = stack.grid.rescaled(scale)
    data = warp_to_grid(stack.data, stack.grid.transform, stack.grid.crs, grid, resampling)
    return PredictorStack(stack.names, data, grid)
