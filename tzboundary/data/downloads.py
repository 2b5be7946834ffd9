"""
Downloads of boundary sources and of the previous release.

Boundary sources come from an Overpass endpoint. Its OSM JSON answer is
converted to a GeoJSON FeatureCollection with osm2geojson. Requests are
spaced by a gap that doubles after every failure and halves again after a
success.
"""

from __future__ import annotations

import io
import json
import logging
import time
import zipfile
from pathlib import Path
from typing import Any, Callable, Optional

import osm2geojson
import requests
from shapely.geometry.base import BaseGeometry

from tzboundary.exceptions import DownloadError, TopologyFailure
from tzboundary.geometry.ops import GeometryOps
from tzboundary.geometry.utils import geojson_to_geometry, write_geojson
from tzboundary.models.inputs import BoundarySourceQuery


logger = logging.getLogger(__name__)

# =============================================================================
# Configuration
# =============================================================================

MIN_REQUEST_GAP = 8.0
MAX_ATTEMPTS = 8
REQUEST_TIMEOUT = 120

LATEST_RELEASE_URL = (
    "https://api.github.com/repos/evansiroky/timezone-boundary-builder/releases/latest"
)
RELEASE_ASSET_MARKER = "timezones.geojson"

# Written when a timezone relation cannot be downloaded
NULL_ISLAND = {
    "type": "Polygon",
    "coordinates": [[[-0.1, -0.1], [0.1, -0.1], [0.1, 0.1], [-0.1, 0.1], [-0.1, -0.1]]],
}

# Takes an Overpass QL query, returns a GeoJSON FeatureCollection
FetchFn = Callable[[str], dict[str, Any]]


def build_overpass_query(query: BoundarySourceQuery) -> str:
    """
    Build the Overpass QL query for a boundary source.

    Tags are emitted in reverse configuration order.
    """
    element = "way" if query.way else "relation"
    filters = "".join(f'["{k}"="{v}"]' for k, v in reversed(list(query.tags.items())))
    return f"[out:json][timeout:60];({element}{filters};);out body;>;out meta qt;"


def overpass_to_geojson(data: dict[str, Any]) -> dict[str, Any]:
    """
    Convert an Overpass JSON response (`{"elements": [...]}`) into a GeoJSON
    FeatureCollection.

    OSM tags are flattened into the feature properties, so a boundary
    relation has `properties["type"] == "boundary"`.
    """
    collection = osm2geojson.json2geojson(data)
    for feature in collection["features"]:
        properties = dict(feature.get("properties") or {})
        tags = properties.pop("tags", None) or {}
        properties.update(tags)
        feature["properties"] = properties
    return collection


def fetch_overpass_geojson(url: str) -> FetchFn:
    """Fetch function posting queries to `url` with requests."""
    def fetch(query: str) -> dict[str, Any]:
        resp = requests.post(url, data={"data": query}, timeout=REQUEST_TIMEOUT)
        resp.raise_for_status()
        return overpass_to_geojson(resp.json())
    return fetch


class BoundaryDownloader:
    """
    Downloads boundary sources and stores each as one combined geometry.

    Args:
        downloads_dir: Where `<query id>.json` files are written
        fetch_fn: Performs one Overpass query
        ops: Geometry operations used to union the boundary features
        sleep: Injected for tests
    """

    def __init__(
        self,
        downloads_dir: Path,
        fetch_fn: FetchFn,
        ops: GeometryOps,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.downloads_dir = Path(downloads_dir)
        self._fetch_fn = fetch_fn
        self._ops = ops
        self._sleep = sleep or time.sleep
        self.request_gap = MIN_REQUEST_GAP

    def download_if_needed(self, query_id: str, query: BoundarySourceQuery) -> Path:
        """
        Download a source unless it (or a manually fixed copy) is on disk.
        """
        path = self.downloads_dir / f"{query_id}.json"
        if path.exists():
            return path
        fixed = self.downloads_dir / f"{query_id}_fixed.json"
        if fixed.exists():
            logger.info("Using manually fixed file for %s", query_id)
            return fixed

        overpass_query = build_overpass_query(query)
        data = self._fetch_with_backoff(query_id, overpass_query)
        validate_overpass_result(query_id, overpass_query, data)
        combined = self.combine_boundaries(query_id, data)
        self.downloads_dir.mkdir(parents=True, exist_ok=True)
        write_geojson(combined, path)
        return path

    def download_timezone_relation(self, tzid: str) -> Path:
        """
        Download the OSM relation tagged `timezone=<tzid>` to
        `<tzid with "/" -> "-">-tz.json`.

        Many zones have no such relation, so any failure writes a small
        polygon around null island instead.
        """
        name = timezone_relation_name(tzid)
        try:
            return self.download_if_needed(name, BoundarySourceQuery(tags={"timezone": tzid}))
        except (DownloadError, TopologyFailure) as e:
            logger.warning("No usable OSM timezone relation for %s: %s", tzid, e)
            path = self.downloads_dir / f"{name}.json"
            self.downloads_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(NULL_ISLAND), encoding="utf-8")
            return path

    def _fetch_with_backoff(self, query_id: str, overpass_query: str) -> dict[str, Any]:
        last_error: Optional[Exception] = None
        for attempt in range(1, MAX_ATTEMPTS + 1):
            logger.info("Waiting %.0f seconds before querying %s", self.request_gap, query_id)
            self._sleep(self.request_gap)
            try:
                data = self._fetch_fn(overpass_query)
            except (requests.RequestException, ValueError) as e:
                last_error = e
                self.request_gap *= 2
                logger.warning(
                    "Overpass query for %s failed (attempt %d): %s; increasing request gap to %.0f s",
                    query_id, attempt, e, self.request_gap,
                )
                continue
            self.request_gap = max(MIN_REQUEST_GAP, self.request_gap / 2)
            return data
        raise DownloadError(f"Overpass query for {query_id} failed {MAX_ATTEMPTS} times: {last_error}")

    def combine_boundaries(self, query_id: str, data: dict[str, Any]) -> BaseGeometry:
        """
        Union every boundary polygon of an Overpass response into one
        geometry. Non-boundary features are skipped so enclaves are not
        swallowed.
        """
        combined = None
        for feature in reversed(data["features"]):
            geometry = feature.get("geometry") or {}
            properties = feature.get("properties") or {}
            if geometry.get("type") not in ("Polygon", "MultiPolygon"):
                continue
            if properties.get("type") != "boundary":
                continue
            try:
                geom = geojson_to_geometry(geometry)
            except (ValueError, TypeError, IndexError) as e:
                problem_file = self.downloads_dir / f"{query_id}_convert_to_geom_error.json"
                self.downloads_dir.mkdir(parents=True, exist_ok=True)
                problem_file.write_text(json.dumps(geometry, indent=2), encoding="utf-8")
                raise DownloadError(
                    f"Invalid geojson for {query_id}, saved problem file to {problem_file}"
                ) from e
            combined = geom if combined is None else self._ops.union(geom, combined, label=query_id)

        if combined is None:
            raise DownloadError(f"No boundary polygons in Overpass result for {query_id}")
        return combined


def timezone_relation_name(tzid: str) -> str:
    return f"{tzid.replace('/', '-')}-tz"


def validate_overpass_result(query_id: str, overpass_query: str, data: Any) -> None:
    if not isinstance(data, dict) or "features" not in data:
        raise DownloadError(f"Invalid geojson from overpass for query: {query_id}")
    if len(data["features"]) == 0:
        raise DownloadError(f"No data found for overpass query {query_id}: {overpass_query}")


def download_last_release(working_dir: Path, url: str = LATEST_RELEASE_URL) -> Path:
    """
    Download and unzip the combined GeoJSON of the latest published release.

    Returns:
        Path of `<working_dir>/<release name>.json`
    """
    resp = requests.get(url, timeout=30)
    resp.raise_for_status()
    release = resp.json()

    release_file = Path(working_dir) / f"{release['name']}.json"
    if release_file.exists():
        return release_file

    download_url = None
    for asset in release.get("assets", []):
        if RELEASE_ASSET_MARKER in asset.get("browser_download_url", ""):
            download_url = asset["browser_download_url"]
    if not download_url:
        raise DownloadError("geojson not found in latest release assets")

    logger.info("Downloading latest release to %s", release_file)
    resp = requests.get(download_url, timeout=300)
    resp.raise_for_status()

    with zipfile.ZipFile(io.BytesIO(resp.content)) as z:
        names = [n for n in z.namelist() if n.endswith(".json") or n.endswith(".geojson")]
        if not names:
            raise DownloadError("release zip does not contain a GeoJSON file")
        with z.open(names[0]) as src:
            release_file.parent.mkdir(parents=True, exist_ok=True)
            release_file.write_bytes(src.read())
    return release_file
