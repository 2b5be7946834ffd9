"""
End-to-end build: download -> build -> validate -> oceans -> merge ->
package -> diff against the last release.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Callable, Optional

from shapely.geometry.base import BaseGeometry

from tzboundary.data.cache import FileLookupCache, fingerprint, md5_file
from tzboundary.data.downloads import (
    BoundaryDownloader,
    FetchFn,
    download_last_release,
    fetch_overpass_geojson,
    timezone_relation_name,
)
from tzboundary.data.loaders import (
    BOUNDARY_SOURCES_FILE,
    EXPECTED_OVERLAPS_FILE,
    ZONES_FILE,
    DataService,
    load_release_properties,
    load_release_zones,
    used_boundary_sources,
    zone_output_filename,
)
from tzboundary.data.sources import SourceResolver, ZoneStore
from tzboundary.data.writers import FeatureWriterStream, write_shapefile, zip_files, zone_feature
from tzboundary.exceptions import MissingSourceData, ValidationFailure
from tzboundary.geometry.ops import GeometryOps
from tzboundary.geometry.utils import geometry_to_geojson, read_geojson, write_geojson
from tzboundary.models.inputs import BuildSettings, Operation, SourceKind, ZoneVariant
from tzboundary.models.outputs import ReleaseDiff, ValidationReport, ZoneResult
from tzboundary.progress import ProgressCallback, ProgressStats
from tzboundary.services.builder import ZoneBuilder, build_zones
from tzboundary.services.diff import ReleaseDiffer, write_release_diff
from tzboundary.services.oceans import OceanFiller, select_bands
from tzboundary.services.validation import OverlapValidator


logger = logging.getLogger(__name__)

VARIANT_ORDER = [ZoneVariant.BASE, ZoneVariant.SINCE_1970, ZoneVariant.NOW]


class BuildPipeline:
    """
    Runs a whole release build from a BuildSettings.

    Args:
        settings: Run configuration
        fetch_fn: Overpass fetch function (defaults to requests against settings.overpass_url)
        release_fn: Downloads the previous release into a directory and returns its path
        progress_callback: Optional callback for progress updates
    """

    def __init__(
        self,
        settings: BuildSettings,
        fetch_fn: Optional[FetchFn] = None,
        release_fn: Callable[[Path], Path] = download_last_release,
        progress_callback: ProgressCallback = None,
    ):
        self.settings = settings
        self.ops = GeometryOps(debug_dir=settings.debug_dir)
        self.data_service = DataService(settings.config_dir, settings.downloads_dir)
        self.store = ZoneStore()
        self.resolver = SourceResolver(self.data_service, self.store)
        self.oceans: list[ZoneResult] = []
        self._fetch_fn = fetch_fn
        self._release_fn = release_fn
        self._progress_callback = progress_callback
        self._cache: Optional[FileLookupCache] = None
        self._recipes: dict[ZoneVariant, dict[str, list[Operation]]] = {}

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def run(self) -> None:
        s = self.settings
        for directory in (s.downloads_dir, s.working_dir, s.dist_dir, s.debug_dir):
            Path(directory).mkdir(parents=True, exist_ok=True)

        self.load_configuration()
        if s.skip_download:
            logger.warning("Skipping boundary downloads, using files already on disk")
        else:
            self.download_sources()

        analyze_osm_zones = not (s.skip_analyze_osm_tz_diffs or s.skip_download)
        if analyze_osm_zones:
            self.download_timezone_relations()
        else:
            logger.warning("WARNING: Skipping download of all OSM timezone relations for analysis!")

        if s.cache_file:
            self._cache = FileLookupCache(s.cache_file).load()
        try:
            for variant in VARIANT_ORDER:
                self.build_variant(variant)
        finally:
            if self._cache:
                self._cache.save()

        if s.skip_validation:
            logger.warning("WARNING: Skipping validation!")
        else:
            report = self.validate()
            if not report.ok:
                raise ValidationFailure(report)

        self.add_oceans()
        combined, combined_with_oceans = self.write_combined()
        self.write_zone_names()
        if analyze_osm_zones:
            osm_zones = self.write_osm_zones()
            if s.skip_shapefile:
                logger.warning("WARNING: Skipping OSM zone shapefile creation!")
            else:
                self.make_osm_zone_shapefile(osm_zones)

        if s.skip_zip:
            logger.warning("WARNING: Skipping zip creation!")
        else:
            self.package(combined, combined_with_oceans)
        self.clean_download_folder()
        if not s.skip_zip:
            self.zip_input_data()

        if s.skip_analyze_diffs:
            logger.warning("WARNING: Skipping analysis of changes from last release!")
        else:
            self.analyze_diffs()
        logger.info("done")

    def load_configuration(self) -> dict[ZoneVariant, dict[str, list[Operation]]]:
        """Load every variant's recipes and apply the zone filters."""
        s = self.settings
        for variant in VARIANT_ORDER:
            recipes = self.data_service.load_recipes(variant)
            self._recipes[variant] = self.data_service.filter_recipes(
                recipes, s.included_zones, s.excluded_zones
            )
        return self._recipes

    def download_sources(self) -> list[Path]:
        """Download every boundary source the selected recipes use."""
        sources = self.data_service.load_boundary_sources()
        query_ids = used_boundary_sources(*self._recipes.values())
        fetch_fn = self._fetch_fn or fetch_overpass_geojson(self.settings.overpass_url)
        downloader = BoundaryDownloader(self.settings.downloads_dir, fetch_fn, self.ops)

        progress = ProgressStats("Downloading", len(query_ids), self._progress_callback)
        paths = []
        for query_id in query_ids:
            progress.begin_task(f"getting data for {query_id}", True)
            if query_id not in sources:
                logger.warning("No boundary source defined for %s", query_id)
                continue
            paths.append(downloader.download_if_needed(query_id, sources[query_id]))
        return paths

    def download_timezone_relations(self) -> list[Path]:
        """Download the raw OSM `timezone=*` relation of every selected base zone."""
        zone_ids = list(self._recipes.get(ZoneVariant.BASE) or {})
        fetch_fn = self._fetch_fn or fetch_overpass_geojson(self.settings.overpass_url)
        downloader = BoundaryDownloader(self.settings.downloads_dir, fetch_fn, self.ops)

        progress = ProgressStats("Downloading OSM TZ boundaries", len(zone_ids), self._progress_callback)
        paths = []
        for tzid in zone_ids:
            progress.begin_task(f"getting data for {timezone_relation_name(tzid)}", True)
            paths.append(downloader.download_timezone_relation(tzid))
        return paths

    def build_variant(self, variant: ZoneVariant) -> None:
        """Build all zones of one variant, reusing cached zone files."""
        recipes = self._recipes.get(variant) or {}
        if not recipes:
            return
        logger.info("Building %d %s zones", len(recipes), variant.value)
        builder = ZoneBuilder(recipes, self.resolver, self.ops, self.store, variant)
        progress = ProgressStats(f"Zones ({variant.value})", len(recipes), self._progress_callback)
        build_zones(
            builder,
            workers=self.settings.workers,
            build_fn=lambda zone_id: self._build_zone(builder, zone_id),
            progress=progress,
        )

    def _build_zone(self, builder: ZoneBuilder, zone_id: str) -> ZoneResult:
        output_file = Path(self.settings.working_dir) / zone_output_filename(zone_id, builder.variant)
        computed: dict[str, BaseGeometry] = {}

        def compute() -> None:
            computed["geometry"] = builder.compute(zone_id)
            write_geojson(computed["geometry"], output_file)

        if self._cache is None:
            compute()
        else:
            key = self.zone_cache_key(zone_id, builder.variant, builder.recipes[zone_id])
            if self._cache.get_or_compute(key, output_file, compute):
                logger.info("%s unchanged, using cached %s", zone_id, output_file.name)
                computed["geometry"] = read_geojson(output_file)

        result = ZoneResult(zone_id=zone_id, geometry=computed["geometry"], variant=builder.variant)
        self.store.put(result)
        return result

    def zone_cache_key(self, zone_id: str, variant: ZoneVariant, ops: list[Operation]) -> str:
        """
        Fingerprint of everything a zone depends on: its recipe, the bytes of
        its fetched sources and the bytes of the zone files it references.
        """
        inputs = []
        for op in ops:
            ref = op.source
            if ref.kind == SourceKind.FETCHED:
                path = self.data_service.source_path(ref.id)
                inputs.append(md5_file(path) if path else None)
            elif ref.kind == SourceKind.DERIVED_ZONE:
                path = Path(self.settings.working_dir) / zone_output_filename(ref.id, ref.variant)
                inputs.append(md5_file(path))
        recipe = [op.model_dump(mode="json", by_alias=True) for op in ops]
        return fingerprint(zone_id, variant.value, recipe, inputs)

    def validate(self) -> ValidationReport:
        validator = OverlapValidator(
            self.ops,
            self.data_service.load_expected_overlaps(),
            self.settings.debug_dir,
        )
        report = validator.validate(self.built_zones(ZoneVariant.BASE), self._progress_callback)
        if report.ok:
            logger.info("no errors found")
        return report

    def add_oceans(self) -> list[ZoneResult]:
        s = self.settings
        filler = OceanFiller(self.ops, select_bands(s.included_zones, s.excluded_zones))
        self.oceans = filler.fill(self.built_zones(ZoneVariant.BASE), self._progress_callback)
        return self.oceans

    def built_zones(self, variant: ZoneVariant) -> dict[str, BaseGeometry]:
        """Built zones of a variant in configuration order."""
        return {
            zone_id: self.store.get(zone_id, variant).geometry
            for zone_id in self._recipes.get(variant) or {}
        }

    def variant_zones(self, variant: ZoneVariant) -> dict[str, BaseGeometry]:
        """Base zones with the variant's own zones laid over them."""
        zones = dict(self.built_zones(ZoneVariant.BASE))
        if variant != ZoneVariant.BASE:
            zones.update(self.built_zones(variant))
        return zones

    def write_combined(self) -> tuple[Path, Path]:
        """
        Stream the merged FeatureCollections.

        Returns:
            Paths of combined.json and combined-with-oceans.json
        """
        working_dir = Path(self.settings.working_dir)
        combined = working_dir / "combined.json"
        combined_with_oceans = working_dir / "combined-with-oceans.json"

        with FeatureWriterStream(combined) as regular, FeatureWriterStream(combined_with_oceans) as oceans:
            for tzid, geom in self.built_zones(ZoneVariant.BASE).items():
                feature = json.dumps(zone_feature(tzid, geometry_to_geojson(geom)))
                regular.add(feature)
                oceans.add(feature)
            for ocean in self.oceans:
                oceans.add(zone_feature(ocean.zone_id, geometry_to_geojson(ocean.geometry)))

        for variant in VARIANT_ORDER[1:]:
            if not self._recipes.get(variant):
                continue
            with FeatureWriterStream(working_dir / f"combined-{variant.value}.json") as writer:
                for tzid, geom in self.variant_zones(variant).items():
                    writer.add(zone_feature(tzid, geometry_to_geojson(geom)))

        return combined, combined_with_oceans

    def write_zone_names(self) -> Path:
        names = list(self.built_zones(ZoneVariant.BASE)) + [o.zone_id for o in self.oceans]
        path = Path(self.settings.dist_dir) / "timezone-names.json"
        path.write_text(json.dumps(names), encoding="utf-8")
        return path

    def package(self, combined: Path, combined_with_oceans: Path) -> list[Path]:
        """Zip the combined GeoJSON files and, unless skipped, the shapefiles."""
        dist_dir = Path(self.settings.dist_dir)
        working_dir = Path(self.settings.working_dir)
        artifacts = [
            zip_files(dist_dir / "timezones.geojson.zip", [combined]),
            zip_files(dist_dir / "timezones-with-oceans.geojson.zip", [combined_with_oceans]),
        ]
        if self.settings.skip_shapefile:
            logger.warning("WARNING: Skipping shapefile creation!")
            return artifacts

        for source, stem, zip_name in (
            (combined, "combined-shapefile", "timezones.shapefile.zip"),
            (combined_with_oceans, "combined-shapefile-with-oceans", "timezones-with-oceans.shapefile.zip"),
        ):
            logger.info("Creating shapefile %s", stem)
            files = write_shapefile(source, working_dir / f"{stem}.shp")
            artifacts.append(zip_files(dist_dir / zip_name, files))
        return artifacts

    def write_osm_zones(self) -> Path:
        """
        Merge the downloaded OSM timezone relations into
        combined-osm-zones.json, one feature per selected base zone.
        """
        path = Path(self.settings.working_dir) / "combined-osm-zones.json"
        with FeatureWriterStream(path) as writer:
            for tzid in self._recipes.get(ZoneVariant.BASE) or {}:
                relation_file = self.data_service.source_path(timezone_relation_name(tzid))
                if relation_file is None:
                    raise MissingSourceData(
                        f"No OSM timezone relation for {tzid} in {self.settings.downloads_dir}"
                    )
                geometry = json.loads(relation_file.read_text(encoding="utf-8"))
                writer.add(zone_feature(tzid, geometry))
        return path

    def make_osm_zone_shapefile(self, osm_zones: Path) -> list[Path]:
        logger.info("Creating shapefile combined-osm-zone-shapefile")
        return write_shapefile(osm_zones, Path(self.settings.working_dir) / "combined-osm-zone-shapefile.shp")

    def clean_download_folder(self) -> list[Path]:
        """
        Delete downloads that are not a defined boundary source: timezone
        relations, conversion problem files and sources dropped from the
        configuration. Manually fixed `<id>_fixed.json` copies are kept.

        Returns:
            The deleted paths
        """
        keep = set()
        for query_id in self.data_service.load_boundary_sources():
            keep.add(f"{query_id}.json")
            keep.add(f"{query_id}_fixed.json")

        removed = []
        for path in sorted(Path(self.settings.downloads_dir).iterdir()):
            if path.is_file() and path.name not in keep:
                path.unlink()
                removed.append(path)
        if removed:
            logger.info("Removed %d files from %s", len(removed), self.settings.downloads_dir)
        return removed

    def zip_input_data(self) -> Path:
        """Zip the used downloads together with the configuration files."""
        downloads_dir = Path(self.settings.downloads_dir)
        config_dir = Path(self.settings.config_dir)
        files = []
        for query_id in used_boundary_sources(*self._recipes.values()):
            path = self.data_service.source_path(query_id)
            if path:
                files.append(path)
        for name in (ZONES_FILE, BOUNDARY_SOURCES_FILE, EXPECTED_OVERLAPS_FILE):
            if (config_dir / name).exists():
                files.append(config_dir / name)
        logger.info("Zipping up input data from %s", downloads_dir)
        return zip_files(Path(self.settings.dist_dir) / "input-data.zip", files)

    def analyze_diffs(self) -> ReleaseDiff:
        """Diff the base zones against the last release and write the results."""
        working_dir = Path(self.settings.working_dir)
        release_file = self._release_fn(working_dir)
        previous = load_release_zones(release_file)
        previous_properties = load_release_properties(release_file)
        current = self.built_zones(ZoneVariant.BASE)

        s = self.settings
        if s.included_zones or s.excluded_zones:
            previous = {z: g for z, g in previous.items() if s.zone_selected(z)}

        diff = ReleaseDiffer(self.ops).diff(
            current, previous, self._progress_callback, previous_properties=previous_properties
        )
        write_release_diff(diff, working_dir / "additions.json", working_dir / "removals.json")
        return diff
