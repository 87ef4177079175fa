# -*- coding: utf-8 -*-
"""
Temporal compositing.

Sentinel-2 granules overlap, so one acquisition day can appear as several
scenes. `daily_mosaics` collapses them to one scene per calendar day
(first valid pixel wins, first scene's properties kept); `median_composite`
then reduces the days to one band set.
"""

from __future__ import annotations

import datetime as dt
import logging
import warnings
from collections import OrderedDict
from typing import List, Optional, Sequence

import numpy as np

from .raster import Grid, PredictorStack
from .scenes import Scene, SceneCollection

logger = logging.getLogger(__name__)


def day_of(ts: dt.datetime) -> dt.datetime:
    """Timestamp with the time of day stripped (timezone kept)."""
    return ts.replace(hour=0, minute=0, second=0, microsecond=0)


def _band_union(scenes: Sequence[Scene]) -> List[str]:
    names: "OrderedDict[str, None]" = OrderedDict()
    for s in scenes:
        for n in s.band_names:
            names.setdefault(n, None)
    return list(names)


def mosaic_first_valid(scenes: Sequence[Scene]) -> dict:
    """Per band, per pixel: the first finite value across `scenes` in order."""
    grid = scenes[0].grid
    out = {}
    for name in _band_union(scenes):
        acc = np.full(grid.shape, np.nan)
        for s in scenes:
            arr = s.bands.get(name)
            if arr is None:
                continue
            fill = np.isnan(acc) & np.isfinite(arr)
            acc[fill] = arr[fill]
        out[name] = acc
    return out


def daily_mosaics(collection: SceneCollection) -> SceneCollection:
    """One scene per distinct calendar day, days ascending."""
    by_day: "OrderedDict[dt.datetime, List[Scene]]" = OrderedDict()
    for s in collection:
        by_day.setdefault(day_of(s.acquired), []).append(s)

    days = []
    for day in sorted(by_day, key=lambda d: d.replace(tzinfo=None)):
        members = by_day[day]
        first = members[0]
        props = dict(first.properties)
        props["system:time_start"] = day
        props["n_scenes"] = len(members)
        days.append(Scene(day, mosaic_first_valid(members), first.grid, props))
    logger.info(f"[SENTINEL] {len(collection)} scenes -> {len(days)} daily mosaics")
    return SceneCollection(days)


def median_composite(collection: SceneCollection, band_names: Optional[Sequence[str]] = None,
                     grid: Optional[Grid] = None) -> PredictorStack:
    """Per-pixel median across scenes ignoring missing values."""
    scenes = list(collection)
    if not scenes:
        if band_names is None or grid is None:
            raise ValueError("Empty scene collection and no band names / grid to fall back on.")
        logger.warning("[SENTINEL] No scenes left for the period; composite is fully missing")
        return PredictorStack.empty(band_names, grid)

    grid = scenes[0].grid
    names = list(band_names) if band_names is not None else _band_union(scenes)
    nan = np.full(grid.shape, np.nan)
    data = []
    for name in names:
        cube = np.stack([s.bands.get(name, nan) for s in scenes])
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=RuntimeWarning)   # all-NaN slices
            data.append(np.nanmedian(cube, axis=0))
    comp = PredictorStack(names, np.stack(data), grid)
    valid = np.isfinite(comp.data).all(axis=0).mean()
    logger.info(f"[SENTINEL] Median of {len(scenes)} days; fully valid pixels: {valid:.1%}")
    return comp
