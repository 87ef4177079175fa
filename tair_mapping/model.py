# -*- coding: utf-8 -*-
"""
Random Forest regression on station training features, applied pixel-wise.

Forest settings follow Earth Engine smileRandomForest defaults
(sqrt variables per split, half-size bags, single-sample leaves).
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Dict, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestRegressor

from .config import CHUNK_PRED, N_JOBS, N_TREES, RANDOM_STATE
from .raster import PREDICTION_BAND, PredictorStack

logger = logging.getLogger(__name__)

RF_PARAMS = dict(
    max_depth=None, min_samples_split=2, min_samples_leaf=1,
    max_features="sqrt", bootstrap=True, max_samples=0.5,
)


class SchemaMismatchError(ValueError):
    """Prediction stack bands differ from the predictors the model was trained on."""

    def __init__(self, missing: Sequence[str], unexpected: Sequence[str]):
        self.missing = sorted(missing)
        self.unexpected = sorted(unexpected)
        super().__init__(
            f"Stack bands do not match model predictors: missing={self.missing} "
            f"unexpected={self.unexpected}"
        )


@dataclass(frozen=True)
class TrainedModel:
    regressor: RandomForestRegressor
    predictors: Tuple[str, ...]
    response: str
    n_train: int


def usable_rows(features: pd.DataFrame, response: str, predictors: Sequence[str]) -> pd.DataFrame:
    """Rows with a finite response and a finite value for every predictor."""
    cols = [response] + list(predictors)
    vals = features[cols].apply(pd.to_numeric, errors="coerce").to_numpy(dtype=np.float64)
    return features.loc[np.isfinite(vals).all(axis=1)]


def train(features: pd.DataFrame, response: str, predictors: Sequence[str],
          n_trees: int = N_TREES, random_state: int = RANDOM_STATE,
          n_jobs: int = N_JOBS) -> TrainedModel:
    """
    Fit the forest on the complete rows of `features`.

    Small training sets (few stations per predictor) are accepted but give
    a degenerate model; making the set large enough is the caller's job.
    """
    predictors = tuple(predictors)
    missing_cols = [c for c in (response,) + predictors if c not in features.columns]
    if missing_cols:
        raise KeyError(f"Training features lack columns: {missing_cols}")

    rows = usable_rows(features, response, predictors)
    dropped = len(features) - len(rows)
    if dropped:
        logger.info(f"[TRAIN] Dropped {dropped}/{len(features)} stations with missing values")
    if rows.empty:
        raise ValueError("No usable training features (every station has a missing predictor or response).")
    if len(rows) < 2 * len(predictors):
        logger.warning(f"[TRAIN] Only {len(rows)} stations for {len(predictors)} predictors; "
                       "model will be weak")

    X = rows[list(predictors)].to_numpy(dtype=np.float64)
    y = rows[response].to_numpy(dtype=np.float64)
    rf = RandomForestRegressor(n_estimators=n_trees, random_state=random_state, n_jobs=n_jobs, **RF_PARAMS)
    rf.fit(X, y)
    logger.info(f"[TRAIN] RF fitted: trees={n_trees} X={X.shape}")
    return TrainedModel(rf, predictors, response, len(rows))


def check_schema(model: TrainedModel, stack: PredictorStack) -> None:
    have, want = set(stack.names), set(model.predictors)
    if have != want:
        raise SchemaMismatchError(want - have, have - want)


def predict(model: TrainedModel, stack: PredictorStack, chunk: int = CHUNK_PRED) -> PredictorStack:
    """Per-pixel prediction; a pixel missing any predictor stays missing."""
    check_schema(model, stack)
    ordered = stack.select(model.predictors)
    n_feat = len(model.predictors)
    H, W = stack.shape
    out = np.full((H, W), np.nan)
    for y0 in range(0, H, chunk):
        for x0 in range(0, W, chunk):
            h0 = min(chunk, H - y0); w0 = min(chunk, W - x0)
            block = ordered.data[:, y0:y0 + h0, x0:x0 + w0]        # (F, h0, w0)
            X = np.moveaxis(block, 0, -1).reshape(-1, n_feat)
            valid = np.isfinite(X).all(axis=1)
            pred = np.full((X.shape[0],), np.nan)
            if valid.any():
                pred[valid] = model.regressor.predict(X[valid])
            out[y0:y0 + h0, x0:x0 + w0] = pred.reshape(h0, w0)
    logger.info(f"[PREDICT] Predicted {np.isfinite(out).sum()}/{out.size} pixels")
    return PredictorStack([PREDICTION_BAND], out, stack.grid)


def feature_importances(model: TrainedModel) -> pd.DataFrame:
    imp = pd.DataFrame({"feature": list(model.predictors),
                        "importance": model.regressor.feature_importances_})
    return imp.sort_values("importance", ascending=False, ignore_index=True)


def training_metrics(model: TrainedModel, features: pd.DataFrame) -> Dict[str, float]:
    """Fit statistics of the model on its own training stations."""
    rows = usable_rows(features, model.response, model.predictors)
    if rows.empty:
        return dict(n=0, mae=np.nan, rmse=np.nan, bias=np.nan, r=np.nan, r2=np.nan)
    p = model.regressor.predict(rows[list(model.predictors)].to_numpy(dtype=np.float64))
    t = rows[model.response].to_numpy(dtype=np.float64)
    e = p - t
    mae = float(np.mean(np.abs(e)))
    rmse = float(np.sqrt(np.mean(e * e)))
    bias = float(np.mean(e))
    if len(t) < 2 or np.std(p) == 0 or np.std(t) == 0:
        r = np.nan
    else:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=RuntimeWarning)
            r = float(np.corrcoef(p, t)[0, 1])
    return dict(n=int(len(t)), mae=mae, rmse=rmse, bias=bias, r=r, r2=r * r)
