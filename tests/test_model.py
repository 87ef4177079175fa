import numpy as np
import pandas as pd
import pytest

from tair_mapping.model import (SchemaMismatchError, TrainedModel, feature_importances, predict,
                                train, training_metrics)
from tair_mapping.raster import PredictorStack

from conftest import make_grid


class ExplodingRegressor:
    def predict(self, X):
        raise AssertionError("predict must not run on a mismatched stack")


def _features(n=40, seed=0):
    rng = np.random.default_rng(seed)
    elev = rng.uniform(0, 500, n)
    ndvi = rng.uniform(0, 1, n)
    return pd.DataFrame({"ID": range(n), "elevation": elev, "ndvi": ndvi,
                         "ta": 12.0 - 0.0065 * elev + ndvi})


def test_schema_mismatch_is_fatal_before_prediction():
    grid = make_grid(rows=3, cols=3)
    model = TrainedModel(ExplodingRegressor(), ("elevation", "ndvi"), "ta", 10)
    stack = PredictorStack.from_bands({"elevation": np.ones(grid.shape), "NDBI": np.ones(grid.shape)}, grid)
    with pytest.raises(SchemaMismatchError) as exc:
        predict(model, stack)
    assert exc.value.missing == ["ndvi"] and exc.value.unexpected == ["NDBI"]


def test_extra_band_is_a_mismatch():
    grid = make_grid(rows=2, cols=2)
    model = TrainedModel(ExplodingRegressor(), ("elevation",), "ta", 10)
    stack = PredictorStack.from_bands({"elevation": np.ones(grid.shape), "slope": np.ones(grid.shape)}, grid)
    with pytest.raises(SchemaMismatchError):
        predict(model, stack)


def test_train_drops_incomplete_rows():
    feats = _features()
    feats.loc[0, "ndvi"] = np.nan
    feats.loc[1, "ta"] = np.nan
    model = train(feats, "ta", ["elevation", "ndvi"], n_trees=10)
    assert model.n_train == len(feats) - 2
    assert model.predictors == ("elevation", "ndvi")


def test_train_without_usable_rows_fails():
    feats = _features(n=3)
    feats["ndvi"] = np.nan
    with pytest.raises(ValueError):
        train(feats, "ta", ["elevation", "ndvi"])


def test_predict_band_order_and_missing_pixels():
    grid = make_grid(rows=4, cols=5)
    feats = _features()
    model = train(feats, "ta", ["elevation", "ndvi"], n_trees=20)
    elev = np.full(grid.shape, 100.0)
    elev[0, 0] = np.nan
    # band order differs from training order
    stack = PredictorStack.from_bands({"ndvi": np.full(grid.shape, 0.5), "elevation": elev}, grid)
    surf = predict(model, stack, chunk=2)
    assert surf.names == ["prediction"]
    assert np.isnan(surf.data[0, 0, 0])
    expected = model.regressor.predict(np.array([[100.0, 0.5]]))[0]
    assert surf.data[0, 3, 4] == pytest.approx(expected)


def test_training_is_deterministic():
    feats = _features()
    a = train(feats, "ta", ["elevation", "ndvi"], n_trees=15, random_state=3)
    b = train(feats, "ta", ["elevation", "ndvi"], n_trees=15, random_state=3)
    X = feats[["elevation", "ndvi"]].to_numpy()
    np.testing.assert_array_equal(a.regressor.predict(X), b.regressor.predict(X))


def test_importances_and_metrics():
    feats = _features()
    model = train(feats, "ta", ["elevation", "ndvi"], n_trees=30)
    imp = feature_importances(model)
    assert list(imp.columns) == ["feature", "importance"]
    assert imp["importance"].is_monotonic_decreasing
    m = training_metrics(model, feats)
    assert m["n"] == len(feats)
    assert m["rmse"] >= m["mae"] >= 0
