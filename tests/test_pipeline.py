import dataclasses
import datetime as dt

import numpy as np
import pytest

from tair_mapping.model import SchemaMismatchError, predict
from tair_mapping.pipeline import build_predictor_stack, run_pipeline, working_grid
from tair_mapping.scenes import SceneCollection

from conftest import FakeSource, s2_scene


def test_predictor_stack_bands(config, grid, stations):
    stack = build_predictor_stack(config, FakeSource(grid, stations), grid)
    assert stack.names == ["elevation", "slope", "elev_rugged",
                           "blue", "green", "red", "nir", "swir1", "swir2", "ndvi", "NDBI"]
    # fallback filled the primary gap
    assert np.isfinite(stack.band("elevation")).all()


def test_dist_coast_is_optional(config, grid, stations):
    lc = np.full(grid.shape, 10.0)
    lc[:, 0] = 255
    lc[:, 5] = 60
    cfg = config.with_overrides(include_dist_coast=True)
    stack = build_predictor_stack(cfg, FakeSource(grid, stations, landcover=lc), grid)
    dist = stack.band("distCoast")
    assert np.isfinite(dist).all()
    assert dist[4, 0] == 0.0 and dist[4, 5] > 0.0


def test_constant_stack_end_to_end(config, grid, stations):
    lc = np.full(grid.shape, 10.0)
    lc[15:, 15:] = 60
    res = run_pipeline(config, FakeSource(grid, stations, landcover=lc))

    assert len(res.training_features) == 3 and res.model.n_train == 3
    surf = res.surface.band("prediction")
    land = lc != 60
    assert np.isnan(surf[~land]).all()
    vals = surf[land]
    assert np.isfinite(vals).all()
    assert vals.min() >= 8.0 and vals.max() <= 9.5
    assert np.ptp(vals) < 1e-9
    assert set(res.model.predictors) == set(res.predictors.names)


def test_rerun_is_bit_identical(config, grid, stations):
    a = run_pipeline(config, FakeSource(grid, stations))
    b = run_pipeline(config, FakeSource(grid, stations))
    np.testing.assert_array_equal(a.surface.data, b.surface.data)
    cols = list(a.model.predictors)
    np.testing.assert_array_equal(a.training_features[cols].to_numpy(), b.training_features[cols].to_numpy())


def test_fully_clouded_period_leaves_no_training_rows(config, grid, stations):
    scenes = SceneCollection([s2_scene(grid, dt.datetime(2018, 1, 5), qa=float(1 << 10))])
    with pytest.raises(ValueError, match="No usable training features"):
        run_pipeline(config, FakeSource(grid, stations, scenes=scenes))


def test_schema_guard_on_prediction_stack(config, grid, stations):
    res = run_pipeline(config, FakeSource(grid, stations))
    with pytest.raises(SchemaMismatchError):
        predict(res.model, res.predictors.select(["elevation", "slope"]))


def test_working_grid_from_stations(config, stations):
    cfg = dataclasses.replace(config, extent=None)
    g = working_grid(cfg, stations)
    xmin, ymin, xmax, ymax = stations.total_bounds
    gx0, gy0, gx1, gy1 = g.bounds
    assert gx0 < xmin - cfg.buffer_radius and gx1 > xmax + cfg.buffer_radius
    assert gy0 < ymin - cfg.buffer_radius and gy1 > ymax + cfg.buffer_radius
