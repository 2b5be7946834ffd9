"""
Output writers: streamed FeatureCollections and release packaging.
"""

from __future__ import annotations

import json
import logging
import zipfile
from pathlib import Path
from typing import Any, Iterable, Union

import geopandas as gpd


logger = logging.getLogger(__name__)


class FeatureWriterStream:
    """
    Writes a GeoJSON FeatureCollection one feature at a time, so a whole
    release never has to be held as a single document in memory.

    Usable as a context manager.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._file = open(self.path, "w", encoding="utf-8")
        self._file.write('{"type":"FeatureCollection","features":[')
        self.num_features = 0

    def add(self, feature: Union[dict[str, Any], str]) -> None:
        if self.num_features > 0:
            self._file.write(",")
        if not isinstance(feature, str):
            feature = json.dumps(feature)
        self._file.write(feature)
        self.num_features += 1

    def end(self) -> None:
        if self._file.closed:
            return
        logger.info("Closing out file %s", self.path)
        self._file.write("]}")
        self._file.close()

    def __enter__(self) -> "FeatureWriterStream":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.end()


def zone_feature(tzid: str, geometry_geojson: dict[str, Any]) -> dict[str, Any]:
    return {"type": "Feature", "properties": {"tzid": tzid}, "geometry": geometry_geojson}


def zip_files(zip_path: Union[str, Path], files: Iterable[Union[str, Path]]) -> Path:
    """Zip files flat (like `zip -j`)."""
    zip_path = Path(zip_path)
    zip_path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for file in files:
            file = Path(file)
            zf.write(file, arcname=file.name)
    logger.info("Wrote %s", zip_path)
    return zip_path


def write_shapefile(geojson_path: Union[str, Path], shapefile_path: Union[str, Path]) -> list[Path]:
    """
    Convert a combined GeoJSON file to an ESRI shapefile.

    Returns:
        All files that make up the shapefile (.shp, .shx, .dbf, .prj, ...)
    """
    shapefile_path = Path(shapefile_path)
    for stale in shapefile_path.parent.glob(f"{shapefile_path.stem}.*"):
        stale.unlink()

    gdf = gpd.read_file(geojson_path)
    if gdf.crs is None:
        gdf = gdf.set_crs("EPSG:4326")
    gdf.to_file(shapefile_path, driver="ESRI Shapefile")
    return sorted(shapefile_path.parent.glob(f"{shapefile_path.stem}.*"))
