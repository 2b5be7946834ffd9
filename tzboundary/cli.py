"""
Build the timezone boundary release from the JSON configuration.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from tzboundary.data.loaders import DataService
from tzboundary.exceptions import TimezoneBuilderError
from tzboundary.lint import run_lint
from tzboundary.models.inputs import BuildSettings
from tzboundary.services.pipeline import BuildPipeline


logger = logging.getLogger(__name__)


def _zone_list(value: str) -> list[str]:
    return [z for z in value.split(",") if z]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tzboundary", description=__doc__)
    parser.add_argument("--included-zones", type=_zone_list, default=[], help="Comma-separated zones to build")
    parser.add_argument("--excluded-zones", type=_zone_list, default=[], help="Comma-separated zones to skip")
    parser.add_argument("--skip-download", action="store_true")
    parser.add_argument("--skip-validation", action="store_true")
    parser.add_argument("--skip-analyze-diffs", action="store_true")
    parser.add_argument(
        "--skip-analyze-osm-tz-diffs",
        action="store_true",
        help="Skip downloading and merging the raw OSM timezone relations",
    )
    parser.add_argument("--skip-shapefile", action="store_true")
    parser.add_argument("--skip-zip", action="store_true")
    parser.add_argument("--config-dir", type=Path, default=Path("."))
    parser.add_argument("--downloads-dir", type=Path, default=Path("./downloads"))
    parser.add_argument("--working-dir", type=Path, default=Path("./working"))
    parser.add_argument("--dist-dir", type=Path, default=Path("./dist"))
    parser.add_argument("--cache-file", type=Path, default=None)
    parser.add_argument("--workers", type=int, default=1)
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--lint", action="store_true", help="Only lint the configuration")
    return parser


def settings_from_args(args: argparse.Namespace) -> BuildSettings:
    return BuildSettings(
        config_dir=args.config_dir,
        downloads_dir=args.downloads_dir,
        working_dir=args.working_dir,
        dist_dir=args.dist_dir,
        cache_file=args.cache_file,
        included_zones=args.included_zones,
        excluded_zones=args.excluded_zones,
        skip_download=args.skip_download,
        skip_validation=args.skip_validation,
        skip_analyze_diffs=args.skip_analyze_diffs,
        skip_analyze_osm_tz_diffs=args.skip_analyze_osm_tz_diffs,
        skip_shapefile=args.skip_shapefile,
        skip_zip=args.skip_zip,
        workers=args.workers,
    )


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = settings_from_args(args)

    try:
        if args.lint:
            run_lint(DataService(settings.config_dir, settings.downloads_dir))
        else:
            BuildPipeline(settings).run()
    except TimezoneBuilderError as e:
        logger.error("error! %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
