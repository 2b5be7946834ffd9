"""Tests for recipe execution and dependency-ordered zone building."""

import tempfile
import threading
import unittest
from pathlib import Path

from shapely.geometry import box

from tzboundary.data.loaders import DataService
from tzboundary.data.sources import SourceResolver, ZoneStore
from tzboundary.exceptions import InvalidRecipe, MissingSourceData, UnresolvedDependency
from tzboundary.geometry.ops import GeometryOps
from tzboundary.geometry.utils import post_process_zone, write_geojson
from tzboundary.models.inputs import ZoneVariant, parse_recipe, parse_recipes
from tzboundary.models.outputs import ZoneResult
from tzboundary.services.builder import ZoneBuilder, build_zones, dependency_waves


def square(x0, y0, x1, y1):
    return [[[x0, y0], [x1, y0], [x1, y1], [x0, y1], [x0, y0]]]


class BuilderTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        root = Path(self.tmp.name)
        self.downloads_dir = root / "downloads"
        self.downloads_dir.mkdir()
        self.data_service = DataService(root, self.downloads_dir)
        self.store = ZoneStore()
        self.resolver = SourceResolver(self.data_service, self.store)
        self.ops = GeometryOps(debug_dir=root / "debug")

    def tearDown(self):
        self.tmp.cleanup()

    def builder(self, raw_recipes, variant=ZoneVariant.BASE):
        return ZoneBuilder(parse_recipes(raw_recipes), self.resolver, self.ops, self.store, variant)


class RecipeParsingTests(unittest.TestCase):
    def test_inline_source_fields(self):
        ops = parse_recipe("Etc/A", [
            {"op": "init", "source": "overpass", "id": "A"},
            {"op": "difference-reverse-order", "source": "final", "id": "Etc/B", "variant": "1970"},
        ])
        self.assertEqual(ops[0].source.id, "A")
        self.assertEqual(ops[1].source.variant, ZoneVariant.SINCE_1970)

    def test_unknown_operation(self):
        with self.assertRaises(InvalidRecipe):
            parse_recipe("Etc/A", [{"op": "xor", "source": "overpass", "id": "A"}])

    def test_unknown_source(self):
        with self.assertRaises(InvalidRecipe):
            parse_recipe("Etc/A", [{"op": "init", "source": "wfs", "id": "A"}])

    def test_manual_source_requires_data(self):
        with self.assertRaises(InvalidRecipe):
            parse_recipe("Etc/A", [{"op": "init", "source": "manual-polygon"}])


class ZoneBuilderTests(BuilderTestCase):
    def test_single_init_equals_source_after_snap(self):
        builder = self.builder({
            "Etc/A": [{"op": "init", "source": "manual-polygon", "data": square(0, 0, 1.00000042, 1)}],
        })
        result = builder.build("Etc/A")
        expected = post_process_zone(box(0, 0, 1.00000042, 1))
        self.assertTrue(result.geometry.equals(expected))
        self.assertTrue(self.store.has("Etc/A"))

    def test_adjacent_union_is_one_polygon(self):
        builder = self.builder({
            "Etc/A": [
                {"op": "init", "source": "manual-polygon", "data": square(0, 0, 1, 1)},
                {"op": "union", "source": "manual-polygon", "data": square(1, 0, 2, 1)},
            ],
        })
        geom = builder.compute("Etc/A")
        self.assertEqual(geom.geom_type, "Polygon")
        self.assertAlmostEqual(geom.area, 2.0)

    def test_all_operations(self):
        write_geojson(box(0, 0, 4, 4), self.downloads_dir / "big.json")
        builder = self.builder({
            "Etc/A": [
                {"op": "init", "source": "overpass", "id": "big"},
                {"op": "intersect", "source": "manual-polygon", "data": square(0, 0, 4, 2)},
                {"op": "difference", "source": "manual-polygon", "data": square(0, 0, 1, 2)},
                {"op": "union", "source": "manual-multipolygon", "data": [square(10, 10, 11, 11)]},
            ],
            "Etc/B": [
                {"op": "init", "source": "final", "id": "Etc/A"},
                {"op": "difference-reverse-order", "source": "manual-polygon", "data": square(0, 0, 5, 5)},
            ],
        })
        build_zones(builder)

        a = self.store.get("Etc/A").geometry
        self.assertAlmostEqual(a.area, 6.0 + 1.0)
        b = self.store.get("Etc/B").geometry
        self.assertAlmostEqual(b.area, 25.0 - 6.0)

    def test_missing_fetched_source(self):
        builder = self.builder({"Etc/A": [{"op": "init", "source": "overpass", "id": "nowhere"}]})
        with self.assertRaises(MissingSourceData):
            builder.build("Etc/A")

    def test_fixed_download_is_used(self):
        write_geojson(box(0, 0, 1, 1), self.downloads_dir / "patched_fixed.json")
        builder = self.builder({"Etc/A": [{"op": "init", "source": "overpass", "id": "patched"}]})
        self.assertAlmostEqual(builder.compute("Etc/A").area, 1.0)

    def test_missing_derived_zone(self):
        builder = self.builder({"Etc/B": [{"op": "init", "source": "final", "id": "Etc/A"}]})
        with self.assertRaises(UnresolvedDependency):
            builder.build("Etc/B")

    def test_operation_before_init(self):
        builder = self.builder({
            "Etc/A": [{"op": "union", "source": "manual-polygon", "data": square(0, 0, 1, 1)}],
        })
        with self.assertRaises(InvalidRecipe):
            builder.compute("Etc/A")

    def test_second_init(self):
        builder = self.builder({
            "Etc/A": [
                {"op": "init", "source": "manual-polygon", "data": square(0, 0, 1, 1)},
                {"op": "init", "source": "manual-polygon", "data": square(0, 0, 1, 1)},
            ],
        })
        with self.assertRaises(InvalidRecipe):
            builder.compute("Etc/A")

    def test_empty_recipe(self):
        with self.assertRaises(InvalidRecipe):
            self.builder({"Etc/A": []}).compute("Etc/A")

    def test_zone_built_twice(self):
        builder = self.builder({
            "Etc/A": [{"op": "init", "source": "manual-polygon", "data": square(0, 0, 1, 1)}],
        })
        builder.build("Etc/A")
        with self.assertRaises(InvalidRecipe):
            builder.build("Etc/A")

    def test_variant_references_base_zone(self):
        base = self.builder({
            "Etc/A": [{"op": "init", "source": "manual-polygon", "data": square(0, 0, 2, 2)}],
        })
        build_zones(base)
        variant = self.builder({
            "Etc/A": [
                {"op": "init", "source": "final", "id": "Etc/A"},
                {"op": "difference", "source": "manual-polygon", "data": square(0, 0, 1, 2)},
            ],
        }, variant=ZoneVariant.NOW)
        build_zones(variant)

        self.assertAlmostEqual(self.store.get("Etc/A").geometry.area, 4.0)
        self.assertAlmostEqual(self.store.get("Etc/A", ZoneVariant.NOW).geometry.area, 2.0)


class DependencyScheduleTests(BuilderTestCase):
    def test_waves_follow_references(self):
        recipes = parse_recipes({
            "Etc/C": [{"op": "init", "source": "final", "id": "Etc/B"}],
            "Etc/B": [{"op": "init", "source": "final", "id": "Etc/A"}],
            "Etc/A": [{"op": "init", "source": "manual-polygon", "data": square(0, 0, 1, 1)}],
            "Etc/D": [{"op": "init", "source": "manual-polygon", "data": square(2, 2, 3, 3)}],
        })
        self.assertEqual(
            dependency_waves(recipes),
            [["Etc/A", "Etc/D"], ["Etc/B"], ["Etc/C"]],
        )

    def test_other_variant_references_are_not_edges(self):
        recipes = parse_recipes({
            "Etc/A": [{"op": "init", "source": "final", "id": "Etc/B"}],
            "Etc/B": [{"op": "init", "source": "final", "id": "Etc/A", "variant": "now"}],
        })
        self.assertEqual(dependency_waves(recipes), [["Etc/B"], ["Etc/A"]])

    def test_cycle(self):
        recipes = parse_recipes({
            "Etc/A": [{"op": "init", "source": "final", "id": "Etc/B"}],
            "Etc/B": [{"op": "init", "source": "final", "id": "Etc/A"}],
        })
        with self.assertRaises(InvalidRecipe):
            dependency_waves(recipes)

    def test_self_reference(self):
        recipes = parse_recipes({"Etc/A": [{"op": "init", "source": "final", "id": "Etc/A"}]})
        with self.assertRaises(InvalidRecipe):
            dependency_waves(recipes)

    def test_concurrent_build(self):
        raw = {
            f"Etc/Z{i}": [{"op": "init", "source": "manual-polygon", "data": square(i, 0, i + 1, 1)}]
            for i in range(6)
        }
        raw["Etc/All"] = [{"op": "init", "source": "final", "id": "Etc/Z0"}] + [
            {"op": "union", "source": "final", "id": f"Etc/Z{i}"} for i in range(1, 6)
        ]
        builder = self.builder(raw)
        built = []
        lock = threading.Lock()

        def build(zone_id):
            with lock:
                built.append(zone_id)
            return builder.build(zone_id)

        build_zones(builder, workers=3, build_fn=build)
        self.assertEqual(built[-1], "Etc/All")

        self.assertEqual(len(self.store), 7)
        self.assertAlmostEqual(self.store.get("Etc/All").geometry.area, 6.0)

    def test_failed_zone_stops_later_waves(self):
        builder = self.builder({
            "Etc/A": [{"op": "init", "source": "overpass", "id": "missing"}],
            "Etc/B": [{"op": "init", "source": "manual-polygon", "data": square(0, 0, 1, 1)}],
            "Etc/C": [{"op": "init", "source": "final", "id": "Etc/A"}],
        })
        with self.assertRaises(MissingSourceData):
            build_zones(builder, workers=2)
        self.assertTrue(self.store.has("Etc/B"))
        self.assertFalse(self.store.has("Etc/C"))


class ZoneStoreTests(unittest.TestCase):
    def test_zones_by_variant(self):
        store = ZoneStore()
        store.put(ZoneResult("Etc/A", box(0, 0, 1, 1)))
        store.put(ZoneResult("Etc/A", box(0, 0, 2, 2), ZoneVariant.SINCE_1970))
        self.assertEqual(list(store.zones()), ["Etc/A"])
        self.assertAlmostEqual(store.zones(ZoneVariant.SINCE_1970)["Etc/A"].area, 4.0)
        self.assertEqual(len(store), 2)


if __name__ == "__main__":
    unittest.main()
