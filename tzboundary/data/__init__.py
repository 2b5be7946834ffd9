"""
Data package for the timezone builder.
Provides configuration loading, source resolution, downloads, caching and
output writers.
"""

from tzboundary.data.cache import FileLookupCache, ZoneCache
from tzboundary.data.loaders import (
    DataService,
    load_release_properties,
    load_release_zones,
    used_boundary_sources,
    zone_output_filename,
)
from tzboundary.data.sources import SourceResolver, ZoneStore
from tzboundary.data.writers import FeatureWriterStream, write_shapefile, zip_files

__all__ = [
    "DataService",
    "FeatureWriterStream",
    "FileLookupCache",
    "SourceResolver",
    "ZoneCache",
    "ZoneStore",
    "load_release_properties",
    "load_release_zones",
    "used_boundary_sources",
    "write_shapefile",
    "zip_files",
    "zone_output_filename",
]
