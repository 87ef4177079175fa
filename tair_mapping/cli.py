# -*- coding: utf-8 -*-
"""
Map air temperature from station observations.

CLI:
  python -m tair_mapping \
    --config tair.yaml \
    --out outputs/Tair_prediction.tif \
    --source local

  # Earth Engine inputs (stations still read from paths.stations)
  export EE_SERVICE_ACCOUNT_FILE=/secure/sa.json
  python -m tair_mapping --config tair.yaml --source ee --out Tair_prediction.tif
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import List, Optional

from .config import PipelineConfig, load_config
from .export import write_surface
from .pipeline import run_pipeline
from .sources import LocalSource


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="tair_mapping",
                                 description="Random Forest Tair mapping from stations + terrain/Sentinel-2.")
    ap.add_argument("--config", type=Path, default=None, help="Run config YAML (defaults used if omitted)")
    ap.add_argument("--out", type=Path, default=Path("Tair_prediction.tif"), help="Output GeoTIFF")
    ap.add_argument("--source", choices=("local", "ee"), default="local", help="Input data source")
    ap.add_argument("--start", default=None, help="Period start YYYY-MM-DD")
    ap.add_argument("--end", default=None, help="Period end YYYY-MM-DD (exclusive)")
    ap.add_argument("--response", default=None, help="Response Tair field")
    ap.add_argument("--id-field", default=None, help="Station id field")
    ap.add_argument("--n-trees", type=int, default=None, help="Random Forest size")
    ap.add_argument("--scale", type=float, default=None, help="Working resolution (m)")
    ap.add_argument("--export-scale", type=float, default=None, help="Output resolution (m)")
    ap.add_argument("--importances", type=Path, default=None, help="Optional feature importance CSV")
    ap.add_argument("--overwrite", action="store_true", help="Re-download cached Earth Engine inputs")
    ap.add_argument("--dry-run", action="store_true", help="Print the resolved config and exit")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return ap


def resolve_config(args: argparse.Namespace) -> PipelineConfig:
    base = load_config(args.config) if args.config is not None else PipelineConfig()
    return base.with_overrides(
        start_date=args.start, end_date=args.end, response=args.response,
        id_field=args.id_field, n_trees=args.n_trees, scale=args.scale,
        export_scale=args.export_scale,
    ).validate()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config = resolve_config(args)

    if args.dry_run:
        print("[dry-run] Resolved config:")
        print(config)
        return 0

    if args.source == "ee":
        from .earthengine import EarthEngineSource   # lazy: needs ee auth
        source = EarthEngineSource(config, overwrite=args.overwrite)
    else:
        source = LocalSource(config)

    res = run_pipeline(config, source)
    out = write_surface(res.surface, args.out, scale=config.export_scale, nodata=config.nodata)
    if args.importances is not None:
        args.importances.parent.mkdir(parents=True, exist_ok=True)
        res.importances.to_csv(args.importances, index=False)

    print(json.dumps({
        "out": str(out),
        "stations": int(len(res.training_features)),
        "stations_used": res.model.n_train,
        "predictors": list(res.model.predictors),
        "metrics": res.metrics,
    }, indent=2, default=float))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
