# -*- coding: utf-8 -*-
"""
Air temperature (Tair) mapping: station observations + terrain and
Sentinel-2 predictors -> Random Forest regression -> gridded surface.
"""

from .config import ConfigError, PipelineConfig, load_config
from .model import SchemaMismatchError, TrainedModel, predict, train
from .pipeline import PipelineResult, build_predictor_stack, run_pipeline
from .raster import Grid, PredictorStack
from .scenes import Scene, SceneCollection

__version__ = "0.1.0"

__all__ = [
    "ConfigError", "PipelineConfig", "load_config",
    "SchemaMismatchError", "TrainedModel", "predict", "train",
    "PipelineResult", "build_predictor_stack", "run_pipeline",
    "Grid", "PredictorStack", "Scene", "SceneCollection",
]
