# -*- coding: utf-8 -*-
"""Satellite scenes and filterable scene collections (in-memory, grid-aligned)."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

import numpy as np

from .raster import Grid, PredictorStack

CLOUD_PROPERTY = "CLOUDY_PIXEL_PERCENTAGE"


def as_datetime(value) -> dt.datetime:
    if isinstance(value, dt.datetime):
        return value
    if isinstance(value, dt.date):
        return dt.datetime(value.year, value.month, value.day)
    return dt.datetime.fromisoformat(str(value))


@dataclass
class Scene:
    """One capture: acquisition time, named bands on a grid, free-form properties."""
    acquired: dt.datetime
    bands: Dict[str, np.ndarray]
    grid: Grid
    properties: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.acquired = as_datetime(self.acquired)
        self.bands = {k: np.asarray(v, dtype=np.float64) for k, v in self.bands.items()}
        for name, arr in self.bands.items():
            if arr.shape != tuple(self.grid.shape):
                raise ValueError(f"Band {name} shape {arr.shape} != grid {self.grid.shape}")

    @property
    def band_names(self) -> List[str]:
        return list(self.bands)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        return self.grid.bounds

    def with_bands(self, bands: Dict[str, np.ndarray], **properties: Any) -> "Scene":
        props = dict(self.properties)
        props.update(properties)
        return Scene(self.acquired, bands, self.grid, props)

    def to_stack(self) -> PredictorStack:
        return PredictorStack.from_bands(self.bands, self.grid)


class SceneCollection:
    """Ordered scenes with the date / bounds / cloud filters of a scene archive."""

    def __init__(self, scenes: Iterable[Scene] = ()):
        self._scenes: List[Scene] = list(scenes)

    def __iter__(self) -> Iterator[Scene]:
        return iter(self._scenes)

    def __len__(self) -> int:
        return len(self._scenes)

    def __getitem__(self, i: int) -> Scene:
        return self._scenes[i]

    def __repr__(self) -> str:
        return f"SceneCollection(n={len(self)}, days={len(self.distinct_days())})"

    def first(self) -> Optional[Scene]:
        return self._scenes[0] if self._scenes else None

    def map(self, fn: Callable[[Scene], Scene]) -> "SceneCollection":
        return SceneCollection(fn(s) for s in self._scenes)

    def filter(self, pred: Callable[[Scene], bool]) -> "SceneCollection":
        return SceneCollection(s for s in self._scenes if pred(s))

    def filter_date(self, start, end) -> "SceneCollection":
        """Keep scenes acquired in [start, end)."""
        ds, de = as_datetime(start), as_datetime(end)
        return self.filter(lambda s: ds <= s.acquired.replace(tzinfo=None) < de)

    def filter_bounds(self, bbox: Tuple[float, float, float, float]) -> "SceneCollection":
        xmin, ymin, xmax, ymax = bbox

        def _hits(s: Scene) -> bool:
            sx0, sy0, sx1, sy1 = s.bounds
            return sx0 < xmax and sx1 > xmin and sy0 < ymax and sy1 > ymin
        return self.filter(_hits)

    def filter_cloud(self, max_pct: float, prop: str = CLOUD_PROPERTY) -> "SceneCollection":
        """Keep scenes whose cloud percentage is strictly below `max_pct` (unknown -> dropped)."""
        def _ok(s: Scene) -> bool:
            v = s.properties.get(prop)
            return v is not None and float(v) < max_pct
        return self.filter(_ok)

    def distinct_days(self) -> List[dt.date]:
        return sorted({s.acquired.date() for s in self._scenes})
