#!/usr/bin/env python3
"""Unit tests for bar|beat parsing and split/slice planning."""

from __future__ import annotations

import io
import pathlib
import sys
import unittest
from unittest import mock

sys.path.append(str(pathlib.Path(__file__).resolve().parent))

from arrangement.base import ClipUpdateError, WarningLog
from arrangement.positions import (
    bar_beat_duration_to_beats,
    bar_beat_to_beats,
    parse_split_offsets,
    require_bar_beat_duration,
    require_bar_beat_list,
)
from arrangement.splitting import Segment, plan_segments, plan_slice, plan_split


class BarBeatTests(unittest.TestCase):
    def test_positions_in_four_four(self) -> None:
        self.assertEqual(bar_beat_to_beats("1|1", 4, 4), 0.0)
        self.assertEqual(bar_beat_to_beats("2|1", 4, 4), 4.0)
        self.assertEqual(bar_beat_to_beats("3|2.5", 4, 4), 9.5)
        self.assertAlmostEqual(bar_beat_to_beats("1|2+1/3", 4, 4), 4.0 / 3.0)
        self.assertEqual(bar_beat_to_beats("1|3/2", 4, 4), 0.5)

    def test_positions_scale_to_quarter_notes(self) -> None:
        self.assertEqual(bar_beat_to_beats("2|1", 6, 8), 3.0)
        self.assertEqual(bar_beat_to_beats("2|1", 3, 4), 3.0)
        self.assertEqual(bar_beat_to_beats("1|2", 7, 8), 0.5)

    def test_durations(self) -> None:
        self.assertEqual(bar_beat_duration_to_beats("4:0", 4, 4), 16.0)
        self.assertEqual(bar_beat_duration_to_beats("0:2.5", 4, 4), 2.5)
        self.assertEqual(bar_beat_duration_to_beats("1:0", 6, 8), 3.0)

    def test_bar_or_beat_below_one_is_rejected(self) -> None:
        for text in ("0|1", "1|0", "-1|1"):
            with self.subTest(text=text):
                with self.assertRaises(ValueError):
                    bar_beat_to_beats(text, 4, 4)

    def test_division_by_zero_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            bar_beat_to_beats("1|1+1/0", 4, 4)

    def test_request_boundary_checks_reject_bad_syntax(self) -> None:
        self.assertEqual(require_bar_beat_list("1|1, 2|3", "split"), ["1|1", "2|3"])
        self.assertEqual(require_bar_beat_duration(" 2:0 ", "slice"), "2:0")
        with self.assertRaises(ClipUpdateError):
            require_bar_beat_list("1|1, bar two", "split")
        with self.assertRaises(ClipUpdateError):
            require_bar_beat_list(" , ", "split")
        with self.assertRaises(ClipUpdateError):
            require_bar_beat_duration("2|1", "slice")

    def test_split_offsets_sorted_and_deduplicated(self) -> None:
        self.assertEqual(parse_split_offsets("3|1, 2|1, 2|1", 4, 4), [4.0, 8.0])
        self.assertIsNone(parse_split_offsets("2|1, 0|1", 4, 4))


class SplitPlanTests(unittest.TestCase):
    def setUp(self) -> None:
        self.warnings = WarningLog()
        stderr_patch = mock.patch("sys.stderr", new_callable=io.StringIO)
        stderr_patch.start()
        self.addCleanup(stderr_patch.stop)

    def test_plan_split_happy_path(self) -> None:
        self.assertEqual(plan_split("3|1, 2|1, 2|1", 1, 4, 4, self.warnings), [4.0, 8.0])
        self.assertEqual(len(self.warnings), 0)

    def test_plan_split_without_arrangement_clips(self) -> None:
        self.assertIsNone(plan_split("2|1", 0, 4, 4, self.warnings))
        self.assertTrue(self.warnings.has("split-no-arrangement"))

    def test_plan_split_invalid_conversion(self) -> None:
        self.assertIsNone(plan_split("2|0", 1, 4, 4, self.warnings))
        self.assertTrue(self.warnings.has("split-invalid-format"))

    def test_plan_split_too_many_points(self) -> None:
        text = ", ".join(f"{bar}|1" for bar in range(2, 35))
        self.assertIsNone(plan_split(text, 1, 4, 4, self.warnings))
        self.assertTrue(self.warnings.has("split-max-exceeded"))

    def test_plan_split_only_clip_start(self) -> None:
        self.assertIsNone(plan_split("1|1", 1, 4, 4, self.warnings))
        self.assertTrue(self.warnings.has("split-no-valid-points"))

    def test_split_warnings_are_reported_once(self) -> None:
        plan_split("2|0", 1, 4, 4, self.warnings)
        plan_split("2|0", 1, 4, 4, self.warnings)
        self.assertEqual(len(self.warnings), 1)

    def test_plan_slice_offsets(self) -> None:
        self.assertEqual(plan_slice("1:0", 16.0, 4, 4, self.warnings), [4.0, 8.0, 12.0])
        self.assertEqual(plan_slice("1:0", 10.0, 4, 4, self.warnings), [4.0, 8.0])

    def test_plan_slice_clip_not_longer_than_interval(self) -> None:
        self.assertIsNone(plan_slice("1:0", 4.0, 4, 4, self.warnings))
        self.assertEqual(len(self.warnings), 0)

    def test_plan_slice_invalid_size(self) -> None:
        self.assertIsNone(plan_slice("0:0", 16.0, 4, 4, self.warnings))
        self.assertTrue(self.warnings.has("slice-invalid-size"))

    def test_plan_slice_too_many_pieces(self) -> None:
        self.assertIsNone(plan_slice("0:1", 65.0, 4, 4, self.warnings))
        self.assertTrue(self.warnings.has("slice-max-exceeded"))
        self.assertEqual(len(plan_slice("0:1", 64.0, 4, 4, self.warnings) or []), 63)

    def test_plan_segments_drops_offsets_outside_clip(self) -> None:
        segments = plan_segments([0.0, 4.0, 8.0, 16.0, 20.0], 16.0)
        self.assertEqual(segments, [Segment(0.0, 4.0), Segment(4.0, 8.0), Segment(8.0, 16.0)])


if __name__ == "__main__":
    unittest.main()
