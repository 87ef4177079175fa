# -*- coding: utf-8 -*-
"""
Run configuration for the Tair mapping pipeline.

Defaults live as module constants (edit here or override from YAML / CLI).
Everything a stage needs is carried by one PipelineConfig instance that is
passed explicitly from stage to stage.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from rasterio.crs import CRS
from rasterio.errors import CRSError

# ---------- STATIONS ----------
RESPONSE = "ta"          # response Tair field (annual/monthly/daily min, max or mean)
ID_FIELD = "ID"          # station id field

# ---------- PERIOD ----------
# Short windows risk cloud-contaminated composites; 2 months is a safe minimum
START_DATE = "2018-01-01"
END_DATE   = "2018-02-01"

# ---------- GRID ----------
WORK_CRS     = "EPSG:3035"   # must be projected (metres)
SCALE        = 30.0          # working resolution (m)
EXPORT_SCALE = 30.0

# ---------- AGGREGATION ----------
BUFFER_RADIUS       = 100.0   # station buffer (m)
NEIGHBORHOOD_RADIUS = 100.0   # focal mean radius (m), must equal BUFFER_RADIUS
STATION_BATCH_SIZE  = 64
RUGGEDNESS_SIZE     = 3       # odd window (pixels)

# ---------- SENTINEL-2 ----------
MAX_CLOUD = 30.0              # CLOUDY_PIXEL_PERCENTAGE upper bound
QA_BAND   = "QA60"
CLOUD_BIT, CIRRUS_BIT = 10, 11
S2_BANDS = {
    "B2": "blue", "B3": "green", "B4": "red",
    "B8": "nir", "B11": "swir1", "B12": "swir2",
}

# ---------- LAND COVER (GlobeLand30) ----------
WATER_CODES          = (60,)
COAST_CODE           = 255     # ocean, target of distCoast
LANDCOVER_VALID_RANGE = (10, 100)   # 255 = no data

# ---------- RF ----------
N_TREES      = 50
RANDOM_STATE = 7
N_JOBS       = 1

# ---------- PREDICTION / EXPORT ----------
CHUNK_PRED = 1024
NODATA_OUT = -9999.0

# min & max Tair for the area, only used for display
VIS_RANGE = (7.0, 10.0)


class ConfigError(ValueError):
    """Invalid or inconsistent run configuration."""


@dataclass(frozen=True)
class SourcePaths:
    """Local inputs for LocalSource (any field may be None for other sources)."""
    stations: Optional[Path] = None
    elevation_primary: Optional[Path] = None
    elevation_fallback: Optional[Path] = None
    landcover: Optional[Path] = None
    scenes_dir: Optional[Path] = None
    cache_dir: Path = Path("tair_cache")


@dataclass(frozen=True)
class PipelineConfig:
    response: str = RESPONSE
    id_field: str = ID_FIELD
    start_date: str = START_DATE
    end_date: str = END_DATE
    crs: str = WORK_CRS
    extent: Optional[Tuple[float, float, float, float]] = None   # xmin, ymin, xmax, ymax in crs
    scale: float = SCALE
    export_scale: Optional[float] = EXPORT_SCALE
    buffer_radius: float = BUFFER_RADIUS
    neighborhood_radius: float = NEIGHBORHOOD_RADIUS
    station_batch_size: int = STATION_BATCH_SIZE
    ruggedness_size: int = RUGGEDNESS_SIZE
    max_cloud: float = MAX_CLOUD
    qa_band: str = QA_BAND
    s2_bands: Dict[str, str] = field(default_factory=lambda: dict(S2_BANDS))
    water_codes: Tuple[int, ...] = WATER_CODES
    landcover_valid_range: Tuple[int, int] = LANDCOVER_VALID_RANGE
    include_dist_coast: bool = False
    coast_code: int = COAST_CODE
    n_trees: int = N_TREES
    random_state: int = RANDOM_STATE
    n_jobs: int = N_JOBS
    chunk: int = CHUNK_PRED
    nodata: float = NODATA_OUT
    vis_range: Tuple[float, float] = VIS_RANGE
    paths: SourcePaths = field(default_factory=SourcePaths)

    def validate(self) -> "PipelineConfig":
        try:
            crs = CRS.from_user_input(self.crs)
        except CRSError as e:
            raise ConfigError(f"Bad crs in config: {e}") from e
        if crs.is_geographic:
            raise ConfigError(f"crs must be projected (radii and scale are in CRS units): {self.crs}")
        if self.buffer_radius <= 0 or self.neighborhood_radius <= 0:
            raise ConfigError("Buffer and neighborhood radii must be positive.")
        if self.buffer_radius != self.neighborhood_radius:
            # training and prediction features must share spatial support
            raise ConfigError(
                f"buffer_radius ({self.buffer_radius}) must equal "
                f"neighborhood_radius ({self.neighborhood_radius})."
            )
        if self.scale <= 0 or (self.export_scale is not None and self.export_scale <= 0):
            raise ConfigError("scale / export_scale must be positive.")
        if self.n_trees < 1:
            raise ConfigError("n_trees must be >= 1.")
        if self.station_batch_size < 1 or self.chunk < 1:
            raise ConfigError("station_batch_size and chunk must be >= 1.")
        if self.ruggedness_size < 1 or self.ruggedness_size % 2 == 0:
            raise ConfigError("ruggedness_size must be a positive odd number.")
        try:
            start = dt.date.fromisoformat(self.start_date)
            end = dt.date.fromisoformat(self.end_date)
        except ValueError as e:
            raise ConfigError(f"Bad date in config: {e}") from e
        if end <= start:
            raise ConfigError(f"end_date must be after start_date: {self.start_date} >= {self.end_date}")
        if self.extent is not None:
            xmin, ymin, xmax, ymax = self.extent
            if xmin >= xmax or ymin >= ymax:
                raise ConfigError(f"Degenerate extent: {self.extent}")
        return self

    def with_overrides(self, **kwargs: Any) -> "PipelineConfig":
        """Copy with the non-None keyword values replaced."""
        return replace(self, **{k: v for k, v in kwargs.items() if v is not None})


def _coerce(data: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(data)
    for key in ("extent", "water_codes", "landcover_valid_range", "vis_range"):
        if out.get(key) is not None:
            out[key] = tuple(out[key])
    for key in ("start_date", "end_date"):
        if isinstance(out.get(key), dt.date):
            out[key] = out[key].isoformat()
    if "paths" in out:
        raw = out["paths"] or {}
        known = {f.name for f in fields(SourcePaths)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ConfigError(f"Unknown keys under paths: {unknown}")
        out["paths"] = SourcePaths(**{k: Path(v) for k, v in raw.items() if v is not None})
    return out


def config_from_dict(data: Dict[str, Any]) -> PipelineConfig:
    known = {f.name for f in fields(PipelineConfig)}
    unknown: List[str] = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys: {unknown}")
    return PipelineConfig(**_coerce(data)).validate()


def load_config(path: Path) -> PipelineConfig:
    """Load a YAML run config. Missing file or non-mapping content fails fast."""
    if not path.exists():
        raise SystemExit(f"Config not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise SystemExit(f"Expected YAML mapping at {path}")
    return config_from_dict(data)
