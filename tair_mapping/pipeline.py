# -*- coding: utf-8 -*-
"""
Tair mapping pipeline

  1) Terrain predictors (elevation with fallback, slope, ruggedness)
  2) Sentinel-2: cloud mask -> bands + indices -> daily mosaics -> median
  3) Station buffer means of the stack -> training features
  4) Random Forest (regression) on the stations
  5) Focal mean of the stack with the buffer radius -> per-pixel prediction
  6) Water / no-data mask

Strictly linear: any stage error aborts the run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import geopandas as gpd
import numpy as np
import pandas as pd

from .aggregate import extract_training_features, focal_mean
from .config import PipelineConfig
from .model import TrainedModel, feature_importances, predict, train, training_metrics
from .mosaic import daily_mosaics, median_composite
from .postprocess import mask_water
from .raster import Grid, PredictorStack
from .sources import DataSource
from .spectral import prepare_scene
from .terrain import distance_to_coast, terrain_stack

logger = logging.getLogger(__name__)

INDEX_BANDS = ("ndvi", "NDBI")


@dataclass
class PipelineResult:
    surface: PredictorStack
    training_features: gpd.GeoDataFrame
    model: TrainedModel
    metrics: Dict[str, float]
    importances: pd.DataFrame
    predictors: PredictorStack


def working_grid(config: PipelineConfig, stations: gpd.GeoDataFrame) -> Grid:
    """Grid over config.extent, else over the stations padded by the buffer radius."""
    if config.extent is not None:
        return Grid.from_bounds(config.extent, config.scale, config.crs)
    if stations.empty:
        raise ValueError("No stations and no extent: cannot derive the working grid.")
    xmin, ymin, xmax, ymax = stations.to_crs(config.crs).total_bounds
    pad = config.buffer_radius + config.scale
    return Grid.from_bounds((xmin - pad, ymin - pad, xmax + pad, ymax + pad), config.scale, config.crs)


def sentinel_composite(config: PipelineConfig, source: DataSource, grid: Grid) -> PredictorStack:
    coll = source.scenes(grid, config.start_date, config.end_date, config.max_cloud)
    coll = coll.map(lambda s: prepare_scene(s, config.qa_band, config.s2_bands))
    days = daily_mosaics(coll)
    names = list(config.s2_bands.values()) + list(INDEX_BANDS)
    return median_composite(days, band_names=names, grid=grid)


def build_predictor_stack(config: PipelineConfig, source: DataSource, grid: Grid,
                          landcover: Optional[np.ndarray] = None) -> PredictorStack:
    primary, fallback = source.elevation(grid)
    stack = terrain_stack(primary, fallback, grid, config.ruggedness_size)
    if config.include_dist_coast:
        lc = landcover if landcover is not None else source.landcover(grid)
        dist = PredictorStack(["distCoast"], distance_to_coast(lc, grid, config.coast_code), grid)
        stack = stack.add_bands(dist)
    stack = stack.add_bands(sentinel_composite(config, source, grid))
    logger.info(f"[STACK] Combined predictor stack names: {stack.names}")
    return stack


def run_pipeline(config: PipelineConfig, source: DataSource) -> PipelineResult:
    config.validate()
    stations = source.stations()
    grid = working_grid(config, stations)
    logger.info(f"[GRID] {grid.shape[0]}x{grid.shape[1]} @ {config.scale:g} in {config.crs}")

    landcover = source.landcover(grid)
    stack = build_predictor_stack(config, source, grid, landcover)

    feats = extract_training_features(stack, stations, config.buffer_radius,
                                      batch_size=config.station_batch_size, n_jobs=config.n_jobs)
    model = train(feats, config.response, stack.names, n_trees=config.n_trees,
                  random_state=config.random_state, n_jobs=config.n_jobs)
    metrics = training_metrics(model, feats)
    importances = feature_importances(model)
    logger.info(f"[TRAIN] Fit on stations: {metrics}")

    smoothed = focal_mean(stack, config.neighborhood_radius, n_jobs=config.n_jobs)
    surface = predict(model, smoothed, chunk=config.chunk)
    surface = mask_water(surface, landcover, config.water_codes, config.landcover_valid_range)
    return PipelineResult(surface, feats, model, metrics, importances, smoothed)
