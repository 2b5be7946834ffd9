"""
Robust boolean operations for zone building.

Polygon boolean algebra on OpenStreetMap-derived data regularly trips over
self-intersections and nearly collinear vertices. Each operation therefore
runs through a recovery ladder:

1. try the operation at input precision
2. on a topology failure, retry with both operands snapped to the grid
3. optionally, buffer both operands outward and retry once more
4. otherwise dump both operands to the diagnostics directory and fail
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional, Union

from shapely.errors import GEOSException
from shapely.geometry.base import BaseGeometry

from tzboundary.exceptions import TopologyFailure
from tzboundary.geometry.utils import (
    BUFFER_DISTANCE,
    reduce_precision,
    write_geojson,
)


logger = logging.getLogger(__name__)


_OPERATIONS: dict[str, Callable[[BaseGeometry, BaseGeometry], object]] = {
    "union": lambda a, b: a.union(b),
    "intersection": lambda a, b: a.intersection(b),
    "intersects": lambda a, b: a.intersects(b),
    "diff": lambda a, b: a.difference(b),
}


class GeometryOps:
    """
    Boolean operations with precision-reduction and buffer retries.

    Args:
        debug_dir: Directory that receives operand dumps when an operation
            fails for good. Defaults to the current directory.
    """

    def __init__(self, debug_dir: Optional[Union[str, Path]] = None):
        self.debug_dir = Path(debug_dir) if debug_dir else Path(".")

    def union(self, a: BaseGeometry, b: BaseGeometry, label: Optional[str] = None) -> BaseGeometry:
        return self.run("union", a, b, label=label)

    def intersection(self, a: BaseGeometry, b: BaseGeometry, label: Optional[str] = None) -> BaseGeometry:
        return self.run("intersection", a, b, label=label)

    def difference(
        self,
        a: BaseGeometry,
        b: BaseGeometry,
        buffer_after_precision_reduction: bool = False,
        label: Optional[str] = None,
    ) -> BaseGeometry:
        return self.run(
            "diff", a, b,
            buffer_after_precision_reduction=buffer_after_precision_reduction,
            label=label,
        )

    def intersects(self, a: BaseGeometry, b: BaseGeometry, label: Optional[str] = None) -> bool:
        return bool(self.run("intersects", a, b, label=label))

    def run(
        self,
        op: str,
        a: BaseGeometry,
        b: BaseGeometry,
        buffer_after_precision_reduction: bool = False,
        label: Optional[str] = None,
    ):
        """
        Run a named operation through the recovery ladder.

        Snapping and buffering can fail on the same topology errors as the
        operation itself, so each happens inside its own step.

        Args:
            op: One of "union", "intersection", "intersects" or "diff"
            a: Left operand
            b: Right operand
            buffer_after_precision_reduction: Allow a final attempt with both
                operands buffered by BUFFER_DISTANCE
            label: Names the caller's work item (zone id, source id) in
                operand dump filenames

        Returns:
            The operation result (geometry, or bool for "intersects")

        Raises:
            TopologyFailure: if every attempt failed on a topology error
        """
        if op not in _OPERATIONS:
            raise ValueError(f"invalid op: {op}")
        fn = _OPERATIONS[op]

        try:
            return fn(a, b)
        except GEOSException as e:
            logger.warning("Encountered topology error during %s, retry with precision reduction: %s", op, e)
        except Exception:
            self._dump_operands(op, a, b, label)
            raise

        try:
            return fn(reduce_precision(a), reduce_precision(b))
        except GEOSException as e:
            if not buffer_after_precision_reduction:
                paths = self._dump_operands(op, a, b, label)
                raise TopologyFailure(
                    op, f"Encountered topology error after reducing precision: {e}", paths
                ) from e
            logger.warning("Encountered topology error during %s, retry with buffer increase: %s", op, e)
        except Exception:
            self._dump_operands(op, a, b, label)
            raise

        try:
            return fn(
                reduce_precision(a.buffer(BUFFER_DISTANCE)),
                reduce_precision(b.buffer(BUFFER_DISTANCE)),
            )
        except GEOSException as e:
            paths = self._dump_operands(op, a, b, label)
            raise TopologyFailure(
                op, f"Encountered topology error after buffering: {e}", paths
            ) from e
        except Exception:
            self._dump_operands(op, a, b, label)
            raise

    def _dump_operands(
        self,
        op: str,
        a: BaseGeometry,
        b: BaseGeometry,
        label: Optional[str] = None,
    ) -> list[str]:
        """Write both input operands as GeoJSON so the failure can be reproduced."""
        self.debug_dir.mkdir(parents=True, exist_ok=True)
        prefix = f"debug_{label.replace('/', '-')}_{op}" if label else f"debug_{op}"
        paths = []
        for suffix, geom in (("a", a), ("b", b)):
            path = self.debug_dir / f"{prefix}_{suffix}.json"
            write_geojson(geom, path)
            paths.append(str(path))
        logger.error("Wrote %s operands to %s", op, ", ".join(paths))
        return paths
