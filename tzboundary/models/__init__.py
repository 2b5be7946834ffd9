"""
Models package for the timezone builder.
Contains Pydantic models for configuration inputs and run outputs.
"""

from tzboundary.models.inputs import (
    OCEAN_BANDS,
    BoundarySourceQuery,
    BuildSettings,
    ExpectedOverlapBounds,
    ExpectedOverlaps,
    OceanBand,
    Operation,
    OperationKind,
    SourceKind,
    SourceRef,
    ZoneVariant,
    parse_boundary_sources,
    parse_expected_overlaps,
    parse_recipe,
    parse_recipes,
)

from tzboundary.models.outputs import (
    DiffFeature,
    OverlapDiagnostic,
    ReleaseDiff,
    ValidationReport,
    ZoneResult,
)

__all__ = [
    "OCEAN_BANDS",
    "BoundarySourceQuery",
    "BuildSettings",
    "ExpectedOverlapBounds",
    "ExpectedOverlaps",
    "OceanBand",
    "Operation",
    "OperationKind",
    "SourceKind",
    "SourceRef",
    "ZoneVariant",
    "parse_boundary_sources",
    "parse_expected_overlaps",
    "parse_recipe",
    "parse_recipes",
    "DiffFeature",
    "OverlapDiagnostic",
    "ReleaseDiff",
    "ValidationReport",
    "ZoneResult",
]
