"""
Zone building: runs each zone's recipe through the robust geometry
operations and schedules zones so derived zones are built after the zones
they reference.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from shapely.geometry.base import BaseGeometry

from tzboundary.data.sources import SourceResolver, ZoneStore
from tzboundary.exceptions import InvalidRecipe, UnknownOperation
from tzboundary.geometry.ops import GeometryOps
from tzboundary.geometry.utils import post_process_zone
from tzboundary.models.inputs import Operation, OperationKind, SourceKind, ZoneVariant
from tzboundary.models.outputs import ZoneResult
from tzboundary.progress import ProgressStats


logger = logging.getLogger(__name__)


class ZoneBuilder:
    """
    Builds zones of one variant from their recipes.

    Args:
        recipes: zone id -> ordered operations
        resolver: Turns source references into geometries
        ops: Robust boolean operations
        store: Receives each finished ZoneResult
        variant: Variant the recipes belong to
    """

    def __init__(
        self,
        recipes: dict[str, list[Operation]],
        resolver: SourceResolver,
        ops: GeometryOps,
        store: ZoneStore,
        variant: ZoneVariant = ZoneVariant.BASE,
    ):
        self.recipes = recipes
        self.variant = variant
        self._resolver = resolver
        self._ops = ops
        self._store = store
        self._handlers: dict[OperationKind, Callable[[BaseGeometry, BaseGeometry, str], BaseGeometry]] = {
            OperationKind.INTERSECT: lambda acc, src, zone_id: self._ops.intersection(acc, src, label=zone_id),
            OperationKind.DIFFERENCE: lambda acc, src, zone_id: self._ops.difference(acc, src, label=zone_id),
            OperationKind.DIFFERENCE_REVERSED: lambda acc, src, zone_id: self._ops.difference(src, acc, label=zone_id),
            OperationKind.UNION: lambda acc, src, zone_id: self._ops.union(acc, src, label=zone_id),
        }

    def compute(self, zone_id: str) -> BaseGeometry:
        """
        Run a zone's recipe and post-process the result without storing it.

        Raises:
            InvalidRecipe: empty recipe, misplaced init, or unknown zone
            UnknownOperation: an operation kind without a handler
        """
        if zone_id not in self.recipes:
            raise InvalidRecipe(f"no recipe for zone {zone_id}")
        ops = self.recipes[zone_id]
        if not ops:
            raise InvalidRecipe(f"{zone_id}: recipe is empty")

        geom: Optional[BaseGeometry] = None
        for operation in ops:
            logger.debug("%s - %s %s", zone_id, operation.kind.value, operation.source.describe())
            source_geom = self._resolver.resolve(operation.source)

            if operation.kind == OperationKind.INIT:
                if geom is not None:
                    raise InvalidRecipe(f"{zone_id}: init must be the first operation")
                geom = source_geom
                continue

            if geom is None:
                raise InvalidRecipe(
                    f"{zone_id}: {operation.kind.value} before init"
                )
            handler = self._handlers.get(operation.kind)
            if handler is None:
                raise UnknownOperation(f"{zone_id}: unknown op: {operation.kind}")
            geom = handler(geom, source_geom, zone_id)

        return post_process_zone(geom)

    def build(self, zone_id: str) -> ZoneResult:
        """Compute a zone and record it in the store."""
        result = ZoneResult(zone_id=zone_id, geometry=self.compute(zone_id), variant=self.variant)
        self._store.put(result)
        return result


def dependency_waves(
    recipes: dict[str, list[Operation]],
    variant: ZoneVariant = ZoneVariant.BASE,
) -> list[list[str]]:
    """
    Group zones into waves so each zone only references zones of earlier
    waves (or of other, already built variants). Configuration order is
    preserved inside each wave.

    Raises:
        InvalidRecipe: if recipes reference each other in a cycle
    """
    deps: dict[str, set[str]] = {}
    for zone_id, ops in recipes.items():
        deps[zone_id] = {
            op.source.id
            for op in ops
            if op.source.kind == SourceKind.DERIVED_ZONE
            and op.source.variant == variant
            and op.source.id in recipes
        }
        if zone_id in deps[zone_id]:
            raise InvalidRecipe(f"{zone_id}: recipe references itself")

    waves: list[list[str]] = []
    done: set[str] = set()
    remaining = list(recipes)
    while remaining:
        wave = [z for z in remaining if deps[z] <= done]
        if not wave:
            raise InvalidRecipe(
                "circular zone dependencies between: " + ", ".join(remaining)
            )
        waves.append(wave)
        done.update(wave)
        remaining = [z for z in remaining if z not in done]
    return waves


def build_zones(
    builder: ZoneBuilder,
    workers: int = 1,
    build_fn: Optional[Callable[[str], object]] = None,
    progress: Optional[ProgressStats] = None,
) -> None:
    """
    Build every zone of a builder, wave by wave.

    Zones of one wave run concurrently when `workers > 1`. If any zone of a
    wave fails, the first error is raised once the wave has finished and no
    later wave runs, so no dependent zone is built on missing data.

    Args:
        builder: Builder holding the recipes
        workers: Size of the thread pool
        build_fn: Replaces `builder.build` (e.g. to go through a cache)
        progress: Optional progress tracker, one task per zone
    """
    build_fn = build_fn or builder.build

    def run(zone_id: str) -> None:
        if progress:
            progress.begin_task(f"building {zone_id}", True)
        build_fn(zone_id)

    for wave in dependency_waves(builder.recipes, builder.variant):
        if workers <= 1 or len(wave) == 1:
            for zone_id in wave:
                run(zone_id)
            continue

        errors: list[tuple[str, BaseException]] = []
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(run, zone_id): zone_id for zone_id in wave}
            for future, zone_id in futures.items():
                exc = future.exception()
                if exc is not None:
                    logger.error("Failed to build %s: %s", zone_id, exc)
                    errors.append((zone_id, exc))
        if errors:
            raise errors[0][1]
