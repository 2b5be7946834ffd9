"""Tests for the robust geometry operations and geometry helpers."""

import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from shapely.errors import GEOSException
from shapely.geometry import MultiPolygon, Polygon, box
from shapely.ops import unary_union

from tzboundary.exceptions import TopologyFailure
from tzboundary.geometry import ops as ops_module
from tzboundary.geometry.ops import GeometryOps
from tzboundary.geometry.utils import (
    band_polygon,
    bounds_contain,
    bounds_overlap,
    extract_polygons,
    geodesic_area,
    geojson_to_geometry,
    post_process_zone,
    read_geojson,
    write_geojson,
)
from tzboundary.models.inputs import OCEAN_BANDS


class FlakyOperation:
    """Raises a topology error for the first `failures` calls."""

    def __init__(self, failures, fn):
        self.failures = failures
        self.fn = fn
        self.calls = []

    def __call__(self, a, b):
        self.calls.append((a, b))
        if len(self.calls) <= self.failures:
            raise GEOSException("TopologyException: side location conflict")
        return self.fn(a, b)


class GeometryOpsPropertyTests(unittest.TestCase):
    def setUp(self):
        self.ops = GeometryOps()
        self.a = box(0, 0, 2, 2)
        self.b = box(1, 1, 3, 4)

    def test_intersection_is_commutative_in_area(self):
        self.assertAlmostEqual(
            self.ops.intersection(self.a, self.b).area,
            self.ops.intersection(self.b, self.a).area,
        )

    def test_union_area_at_least_largest_operand(self):
        area = self.ops.union(self.a, self.b).area
        self.assertGreaterEqual(area, max(self.a.area, self.b.area))

    def test_difference_area_at_most_left_operand(self):
        self.assertLessEqual(self.ops.difference(self.a, self.b).area, self.a.area)

    def test_intersects(self):
        self.assertTrue(self.ops.intersects(self.a, self.b))
        self.assertFalse(self.ops.intersects(self.a, box(5, 5, 6, 6)))

    def test_unknown_operation_name(self):
        with self.assertRaises(ValueError):
            self.ops.run("xor", self.a, self.b)


class RecoveryLadderTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.debug_dir = Path(self.tmp.name)
        self.ops = GeometryOps(debug_dir=self.debug_dir)
        self.a = box(0, 0, 2, 2)
        self.b = box(1, 1, 3, 3)

    def tearDown(self):
        self.tmp.cleanup()

    def test_retries_with_precision_reduction(self):
        flaky = FlakyOperation(1, lambda a, b: a.union(b))
        with patch.dict(ops_module._OPERATIONS, {"union": flaky}):
            result = self.ops.union(self.a, self.b)

        self.assertEqual(len(flaky.calls), 2)
        self.assertAlmostEqual(result.area, 7.0)
        self.assertEqual(list(self.debug_dir.iterdir()), [])

    def test_fails_and_dumps_operands_without_buffer_retry(self):
        flaky = FlakyOperation(5, lambda a, b: a.union(b))
        with patch.dict(ops_module._OPERATIONS, {"union": flaky}):
            with self.assertRaises(TopologyFailure) as ctx:
                self.ops.union(self.a, self.b)

        self.assertEqual(len(flaky.calls), 2)
        self.assertEqual(ctx.exception.op, "union")
        dumped = sorted(p.name for p in self.debug_dir.iterdir())
        self.assertEqual(dumped, ["debug_union_a.json", "debug_union_b.json"])
        self.assertTrue(read_geojson(self.debug_dir / "debug_union_a.json").equals(self.a))

    def test_buffer_retry_after_precision_reduction(self):
        flaky = FlakyOperation(2, lambda a, b: a.difference(b))
        with patch.dict(ops_module._OPERATIONS, {"diff": flaky}):
            result = self.ops.difference(self.a, self.b, buffer_after_precision_reduction=True)

        self.assertEqual(len(flaky.calls), 3)
        buffered_a, buffered_b = flaky.calls[2]
        self.assertGreater(buffered_a.area, self.a.area)
        self.assertGreater(buffered_b.area, self.b.area)
        self.assertFalse(result.is_empty)

    def test_buffer_retry_exhausted(self):
        flaky = FlakyOperation(3, lambda a, b: a.difference(b))
        with patch.dict(ops_module._OPERATIONS, {"diff": flaky}):
            with self.assertRaises(TopologyFailure) as ctx:
                self.ops.difference(self.a, self.b, buffer_after_precision_reduction=True)

        self.assertEqual(len(ctx.exception.debug_files), 2)
        for path in ctx.exception.debug_files:
            self.assertTrue(Path(path).exists())

    def test_snapping_failure_dumps_operands(self):
        flaky = FlakyOperation(1, lambda a, b: a.union(b))
        snap = patch.object(ops_module, "reduce_precision", side_effect=GEOSException("IllegalArgumentException"))
        with patch.dict(ops_module._OPERATIONS, {"union": flaky}), snap:
            with self.assertRaises(TopologyFailure) as ctx:
                self.ops.union(self.a, self.b)

        self.assertEqual(len(flaky.calls), 1)
        self.assertEqual(len(ctx.exception.debug_files), 2)
        self.assertTrue(read_geojson(ctx.exception.debug_files[0]).equals(self.a))

    def test_snapping_failure_falls_through_to_buffer(self):
        snaps = []

        def snap_once_failing(geom):
            snaps.append(geom)
            if len(snaps) == 1:
                raise GEOSException("IllegalArgumentException")
            return geom

        flaky = FlakyOperation(1, lambda a, b: a.difference(b))
        with patch.dict(ops_module._OPERATIONS, {"diff": flaky}), \
                patch.object(ops_module, "reduce_precision", side_effect=snap_once_failing):
            result = self.ops.difference(self.a, self.b, buffer_after_precision_reduction=True)

        self.assertEqual(len(flaky.calls), 2)
        self.assertGreater(flaky.calls[1][0].area, self.a.area)
        self.assertFalse(result.is_empty)

    def test_self_intersecting_operand_never_escapes_as_geos_error(self):
        bowtie = Polygon([(0, 0), (1, 1), (1, 0), (0, 1), (0, 0)])
        other = box(0.2, 0.2, 2, 2)
        for op in ("union", "intersection", "diff"):
            with self.subTest(op=op):
                try:
                    self.ops.run(op, bowtie, other)
                except TopologyFailure as e:
                    self.assertEqual(e.op, op)
                    for path in e.debug_files:
                        self.assertTrue(Path(path).exists())

        result = self.ops.difference(bowtie, other, buffer_after_precision_reduction=True)
        self.assertIsNotNone(result)

    def test_dump_names_carry_label(self):
        flaky = FlakyOperation(5, lambda a, b: a.union(b))
        with patch.dict(ops_module._OPERATIONS, {"union": flaky}):
            with self.assertRaises(TopologyFailure):
                self.ops.union(self.a, self.b, label="America/Argentina/Salta")
            with self.assertRaises(TopologyFailure):
                self.ops.union(self.a, self.b, label="America/Santiago")

        dumped = sorted(p.name for p in self.debug_dir.iterdir())
        self.assertEqual(dumped, [
            "debug_America-Argentina-Salta_union_a.json",
            "debug_America-Argentina-Salta_union_b.json",
            "debug_America-Santiago_union_a.json",
            "debug_America-Santiago_union_b.json",
        ])


class PostProcessTests(unittest.TestCase):
    def test_drops_tiny_holes_and_islands(self):
        hole = [(0.5, 0.5), (0.500005, 0.5), (0.500005, 0.500005), (0.5, 0.500005)]
        main = Polygon([(0, 0), (1, 0), (1, 1), (0, 1)], [hole])
        island = box(2, 2, 2.000005, 2.000005)
        geom = MultiPolygon([main, island])

        result = post_process_zone(geom)

        self.assertEqual(result.geom_type, "Polygon")
        self.assertEqual(len(result.interiors), 0)
        self.assertAlmostEqual(result.area, 1.0)

    def test_keeps_large_holes(self):
        geom = box(0, 0, 2, 2).difference(box(0.5, 0.5, 1.5, 1.5))
        result = post_process_zone(geom)
        self.assertEqual(len(result.interiors), 1)

    def test_keeps_largest_polygon_when_everything_is_tiny(self):
        small = box(0, 0, 0.000003, 0.000003)
        smaller = box(1, 1, 1.000002, 1.000002)
        result = post_process_zone(MultiPolygon([small, smaller]))
        self.assertEqual(result.geom_type, "Polygon")
        self.assertTrue(result.equals(small))

    def test_is_idempotent(self):
        geom = unary_union([
            box(0, 0, 1.23456789, 1),
            box(1, 0, 2, 0.87654321),
            box(3, 3, 3.000004, 3.000004),
        ]).difference(box(0.2, 0.2, 0.4, 0.4))

        once = post_process_zone(geom)
        twice = post_process_zone(once)

        self.assertTrue(once.equals(twice))
        self.assertAlmostEqual(once.area, twice.area)
        self.assertEqual(len(extract_polygons(once)), len(extract_polygons(twice)))

    def test_snaps_to_precision_grid(self):
        result = post_process_zone(box(0, 0, 1.00000049, 1))
        self.assertAlmostEqual(result.bounds[2], 1.0, places=9)


class GeometryUtilsTests(unittest.TestCase):
    def test_geojson_feature_is_unwrapped(self):
        feature = {
            "type": "Feature",
            "properties": {"tzid": "Etc/Test"},
            "geometry": {"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]]},
        }
        self.assertAlmostEqual(geojson_to_geometry(feature).area, 1.0)

    def test_write_and_read_geojson(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = write_geojson(box(0, 0, 1, 1), Path(tmp) / "zone.json")
            data = json.loads(path.read_text())
            self.assertEqual(data["type"], "Polygon")

    def test_geodesic_area_of_one_degree_square_at_equator(self):
        # roughly 111 km x 111 km
        area = geodesic_area(box(0, 0, 1, 1))
        self.assertGreater(area, 1.2e10)
        self.assertLess(area, 1.25e10)

    def test_bounds_helpers(self):
        self.assertTrue(bounds_overlap((0, 0, 1, 1), (1, 1, 2, 2)))
        self.assertFalse(bounds_overlap((0, 0, 1, 1), (1.5, 0, 2, 1)))
        self.assertTrue(bounds_contain((0, 0, 10, 10), (1, 1, 2, 2)))
        self.assertFalse(bounds_contain((0, 0, 10, 10), (9, 9, 11, 10)))

    def test_extract_polygons_from_collection(self):
        collection = box(0, 0, 1, 1).intersection(box(1, 0, 2, 1)).union(box(5, 5, 6, 6))
        self.assertEqual(len(extract_polygons(collection)), 1)
        self.assertEqual(extract_polygons(Polygon()), [])


class OceanBandTableTests(unittest.TestCase):
    def test_24_bands(self):
        self.assertEqual(len(OCEAN_BANDS), 24)
        self.assertEqual(len({b.tzid for b in OCEAN_BANDS}), 24)

    def test_bands_tile_the_longitude_range(self):
        bands = sorted(OCEAN_BANDS, key=lambda b: b.left)
        self.assertEqual(bands[0].left, -180)
        self.assertEqual(bands[-1].right, 180)
        for west, east in zip(bands, bands[1:]):
            self.assertEqual(west.right, east.left, msg=f"{west.tzid} / {east.tzid}")

    def test_band_polygons_cover_the_globe_without_overlap(self):
        polygons = [band_polygon(b.left, b.right) for b in OCEAN_BANDS]
        self.assertAlmostEqual(sum(p.area for p in polygons), 360 * 180)
        self.assertAlmostEqual(unary_union(polygons).area, 360 * 180)


if __name__ == "__main__":
    unittest.main()
