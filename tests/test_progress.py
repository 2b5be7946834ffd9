"""Tests for progress reporting."""

import unittest

from tzboundary.progress import ProgressStats, format_seconds


class ProgressStatsTests(unittest.TestCase):
    def test_percentage(self):
        stats = ProgressStats("Zones", 3)
        self.assertEqual(stats.get_percentage(), 0.0)
        stats.log_next()
        self.assertEqual(stats.get_percentage(), 33.3)
        stats.log_next()
        stats.log_next()
        self.assertEqual(stats.get_percentage(), 100.0)

    def test_callback_receives_fraction_and_message(self):
        updates = []
        stats = ProgressStats("Zones", 2, lambda fraction, message: updates.append((fraction, message)))
        stats.begin_task("Etc/A")
        stats.begin_task("Etc/B", True)

        self.assertEqual(updates[0], (0.0, "Etc/A; Zones progress: 0.0% done"))
        self.assertEqual(updates[1][0], 0.5)
        self.assertTrue(updates[1][1].endswith("left"))

    def test_time_left_before_any_task(self):
        self.assertEqual(ProgressStats("Zones", 2).get_time_left(), "?")

    def test_empty_stage_is_done(self):
        self.assertEqual(ProgressStats("Zones", 0).get_percentage(), 100.0)

    def test_format_seconds(self):
        self.assertEqual(format_seconds(5), "5.0 seconds")
        self.assertEqual(format_seconds(90), "1.5 minutes")
        self.assertEqual(format_seconds(5400), "1.5 hours")
        self.assertEqual(format_seconds(86400 * 2), "2.0 days")


if __name__ == "__main__":
    unittest.main()
