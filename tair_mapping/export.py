# -*- coding: utf-8 -*-
"""GeoTIFF export / re-read of the prediction surface."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

import numpy as np
import rasterio

from .config import NODATA_OUT
from .raster import Grid, PredictorStack, resample_stack

logger = logging.getLogger(__name__)

EXPORT_DTYPE = "float32"


def band_map(ds) -> Dict[str, int]:
    """Map band name -> zero-based index using Rasterio band descriptions."""
    desc = list(ds.descriptions or [])
    return {desc[i]: i for i in range(ds.count) if i < len(desc) and desc[i]}


def write_surface(surface: PredictorStack, path, scale: Optional[float] = None,
                  nodata: float = NODATA_OUT) -> Path:
    """Write all bands (NaN -> nodata) as float32 GeoTIFF, optionally at another resolution."""
    path = Path(path)
    if scale is not None:
        surface = resample_stack(surface, scale)
    rows, cols = surface.shape
    prof = dict(driver="GTiff", height=rows, width=cols, count=len(surface),
                dtype=EXPORT_DTYPE, crs=surface.grid.crs, transform=surface.grid.transform,
                nodata=nodata, compress="deflate", predictor=3, tiled=True)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = np.where(np.isfinite(surface.data), surface.data, nodata).astype(EXPORT_DTYPE)
    with rasterio.open(path, "w", **prof) as dst:
        dst.write(data)
        for i, name in enumerate(surface.names, start=1):
            dst.set_band_description(i, name)
    logger.info(f"[EXPORT] Saved: {path} ({rows}x{cols}, scale={surface.grid.pixel_size[0]:g})")
    return path


def read_surface(path) -> PredictorStack:
    """Read a GeoTIFF back into a stack; nodata -> NaN, names from band descriptions."""
    with rasterio.open(path) as ds:
        bm = band_map(ds)
        names = [None] * ds.count
        for name, i in bm.items():
            names[i] = name
        names = [n or f"b{i + 1}" for i, n in enumerate(names)]
        data = ds.read().astype(np.float64)
        if ds.nodata is not None and np.isfinite(ds.nodata):
            data[data == ds.nodata] = np.nan
        grid = Grid(ds.transform, ds.crs, (ds.height, ds.width))
    return PredictorStack(names, data, grid)
