# -*- coding: utf-8 -*-
"""Sentinel-2 scene cleaning: QA cloud/cirrus masking, band selection, indices."""

from __future__ import annotations

import logging
from typing import Dict

import numpy as np

from .config import CIRRUS_BIT, CLOUD_BIT, QA_BAND, S2_BANDS
from .scenes import Scene

logger = logging.getLogger(__name__)


def cloud_mask(qa: np.ndarray, cloud_bit: int = CLOUD_BIT, cirrus_bit: int = CIRRUS_BIT) -> np.ndarray:
    """True where QA is defined and both the cloud and cirrus bits are clear."""
    qa = np.asarray(qa, dtype=np.float64)
    defined = np.isfinite(qa)
    q = np.where(defined, qa, 0).astype(np.int64)
    clear = ((q >> cloud_bit) & 1 == 0) & ((q >> cirrus_bit) & 1 == 0)
    return defined & clear


def cloud_fraction(qa: np.ndarray) -> float:
    """Percentage of defined QA pixels flagged cloud or cirrus."""
    qa = np.asarray(qa, dtype=np.float64)
    defined = np.isfinite(qa)
    if not defined.any():
        return 100.0
    return float(100.0 * (~cloud_mask(qa))[defined].mean())


def mask_clouds(scene: Scene, qa_band: str = QA_BAND) -> Scene:
    """Set every band to missing where the QA band flags cloud or cirrus."""
    if qa_band not in scene.bands:
        logger.warning(f"[SENTINEL] {qa_band} missing on scene {scene.acquired:%Y-%m-%d}; fully masked")
        valid = np.zeros(scene.grid.shape, dtype=bool)
    else:
        valid = cloud_mask(scene.bands[qa_band])
    return scene.with_bands({k: np.where(valid, v, np.nan) for k, v in scene.bands.items()})


def select_bands(scene: Scene, mapping: Dict[str, str] = S2_BANDS) -> Scene:
    """Select + rename bands; an absent source band becomes an all-missing band."""
    out = {}
    for src, dst in mapping.items():
        if src in scene.bands:
            out[dst] = scene.bands[src]
        else:
            logger.warning(f"[SENTINEL] Band {src} absent on scene {scene.acquired:%Y-%m-%d}; '{dst}' is empty")
            out[dst] = np.full(scene.grid.shape, np.nan)
    return scene.with_bands(out)


def normalized_difference(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """(a - b) / (a + b); missing where either input is missing or a + b == 0."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    den = a + b
    ok = np.isfinite(den) & (den != 0)
    out = np.full(den.shape, np.nan)
    out[ok] = (a[ok] - b[ok]) / den[ok]
    return out


def add_indices(scene: Scene) -> Scene:
    """Append ndvi (nir/red) and NDBI (swir1/nir)."""
    nan = np.full(scene.grid.shape, np.nan)
    b = scene.bands
    bands = dict(b)
    bands["ndvi"] = normalized_difference(b.get("nir", nan), b.get("red", nan))
    bands["NDBI"] = normalized_difference(b.get("swir1", nan), b.get("nir", nan))
    return scene.with_bands(bands)


def prepare_scene(scene: Scene, qa_band: str = QA_BAND, mapping: Dict[str, str] = S2_BANDS) -> Scene:
    """mask clouds -> select/rename -> indices, as applied to each archive scene."""
    return add_indices(select_bands(mask_clouds(scene, qa_band), mapping))
