# -*- coding: utf-8 -*-
"""Domain masking of the prediction surface."""

from __future__ import annotations

import logging
from typing import Sequence, Tuple

import numpy as np

from .config import LANDCOVER_VALID_RANGE, WATER_CODES
from .raster import PredictorStack

logger = logging.getLogger(__name__)


def valid_domain(landcover: np.ndarray, water_codes: Sequence[int] = WATER_CODES,
                 valid_range: Tuple[int, int] = LANDCOVER_VALID_RANGE) -> np.ndarray:
    """True for land pixels with a code inside the classification's valid range."""
    lc = np.asarray(landcover, dtype=np.float64)
    lo, hi = valid_range
    ok = np.isfinite(lc) & (lc >= lo) & (lc <= hi)
    for code in water_codes:
        ok &= lc != code
    return ok


def mask_water(surface: PredictorStack, landcover: np.ndarray,
               water_codes: Sequence[int] = WATER_CODES,
               valid_range: Tuple[int, int] = LANDCOVER_VALID_RANGE) -> PredictorStack:
    """Set water and out-of-scheme pixels to missing; everything else untouched."""
    lc = np.asarray(landcover)
    if lc.shape != tuple(surface.shape):
        raise ValueError(f"Land cover shape {lc.shape} != surface shape {surface.shape}")
    keep = valid_domain(lc, water_codes, valid_range)
    data = np.where(keep[np.newaxis], surface.data, np.nan)
    logger.info(f"[MASK] Masked {int((~keep).sum())} water / no-data pixels")
    return surface.with_data(data)
