#!/usr/bin/env python3
"""Split/slice execution against the in-memory Live set."""

from __future__ import annotations

import io
import pathlib
import sys
import unittest
from unittest import mock

sys.path.append(str(pathlib.Path(__file__).resolve().parent))

from arrangement.base import EditContext, WarningLog
from arrangement.clip_ops import read_clip
from arrangement.holding import HoldingArea
from arrangement.splitting import execute_split
from arrangement.update import ClipUpdateRequest, update_clips
from fake_live_set import FakeLiveSet


HOLDING_START = 400.0


class ExecuteSplitTests(unittest.TestCase):
    def setUp(self) -> None:
        stderr_patch = mock.patch("sys.stderr", new_callable=io.StringIO)
        stderr_patch.start()
        self.addCleanup(stderr_patch.stop)

    def _context(self, live: FakeLiveSet) -> EditContext:
        return EditContext(
            client=live,
            holding=HoldingArea(live, HOLDING_START),
            warnings=WarningLog(),
            silence_wav_path="/tmp/silence.wav",
        )

    def test_duplication_count_is_two_n_minus_two(self) -> None:
        for segments in (2, 3, 4, 5):
            with self.subTest(segments=segments):
                live = FakeLiveSet()
                track = live.add_track(is_midi=True)
                clip_id = live.add_clip(track, 0.0, 4.0 * segments)
                ctx = self._context(live)
                offsets = [4.0 * k for k in range(1, segments)]

                refs = execute_split(ctx, read_clip(live, clip_id), offsets)

                self.assertEqual(live.duplications, 2 * segments - 2)
                expected = [(4.0 * k, 4.0 * (k + 1)) for k in range(segments)]
                self.assertEqual(live.spans(track), expected)
                self.assertEqual([(ref.start_time, ref.end_time) for ref in refs], expected)
                self.assertEqual(
                    [clip.start_marker for clip in live.arrangement(track)],
                    [4.0 * k for k in range(segments)],
                )
                self.assertEqual(live.arrangement(track)[0].clip_id, clip_id)
                self.assertEqual(len(ctx.warnings), 0)

    def test_offsets_outside_the_clip_leave_it_unchanged(self) -> None:
        live = FakeLiveSet()
        track = live.add_track(is_midi=True)
        clip_id = live.add_clip(track, 8.0, 4.0)
        ctx = self._context(live)

        refs = execute_split(ctx, read_clip(live, clip_id), [4.0, 12.0])

        self.assertEqual([ref.clip_id for ref in refs], [clip_id])
        self.assertEqual(live.duplications, 0)

    def test_looped_clip_segments_continue_the_loop(self) -> None:
        live = FakeLiveSet()
        track = live.add_track(is_midi=True)
        clip_id = live.add_clip(track, 0.0, 12.0, looping=True, loop_end=8.0)
        ctx = self._context(live)

        execute_split(ctx, read_clip(live, clip_id), [4.0, 8.0])

        self.assertEqual(live.spans(track), [(0.0, 4.0), (4.0, 8.0), (8.0, 12.0)])
        self.assertEqual([clip.start_marker for clip in live.arrangement(track)], [0.0, 4.0, 0.0])


class SplitRequestTests(unittest.TestCase):
    def setUp(self) -> None:
        stderr_patch = mock.patch("sys.stderr", new_callable=io.StringIO)
        stderr_patch.start()
        self.addCleanup(stderr_patch.stop)
        self.live = FakeLiveSet()
        self.track = self.live.add_track(is_midi=True)

    def test_split_request_returns_every_segment(self) -> None:
        clip_id = self.live.add_clip(self.track, 0.0, 12.0)

        result = update_clips(self.live, ClipUpdateRequest(ids=str(clip_id), split="3|1, 2|1, 2|1"))

        self.assertEqual(self.live.spans(self.track), [(0.0, 4.0), (4.0, 8.0), (8.0, 12.0)])
        payload = result.payload()
        self.assertIsInstance(payload, list)
        self.assertEqual(len(payload), 3)
        self.assertEqual(payload[0], {"id": clip_id})
        self.assertEqual(result.warnings, [])

    def test_slice_request_cuts_uniform_pieces(self) -> None:
        clip_id = self.live.add_clip(self.track, 4.0, 16.0)

        result = update_clips(self.live, ClipUpdateRequest(ids=str(clip_id), slice="1:0"))

        self.assertEqual(
            self.live.spans(self.track),
            [(4.0, 8.0), (8.0, 12.0), (12.0, 16.0), (16.0, 20.0)],
        )
        self.assertEqual(len(result.clips), 4)
        self.assertEqual(self.live.duplications, 6)

    def test_audio_split_trims_with_session_temp_clips(self) -> None:
        live = FakeLiveSet()
        track = live.add_track(is_midi=False)
        clip_id = live.add_clip(track, 0.0, 8.0, file_path="/samples/pad.wav")

        update_clips(live, ClipUpdateRequest(ids=str(clip_id), split="2|1"))

        self.assertEqual(live.spans(track), [(0.0, 4.0), (4.0, 8.0)])
        self.assertEqual([clip.start_marker for clip in live.arrangement(track)], [0.0, 4.0])
        self.assertEqual(live.duplications, 2)
        self.assertEqual(live.session_duplications, 2)
        self.assertTrue(all(slot is None for slot in live.tracks[track].slots))

    def test_failed_middle_segment_warns_and_keeps_the_rest(self) -> None:
        clip_id = self.live.add_clip(self.track, 0.0, 12.0)
        self.live.fail_duplications_at = {2}

        result = update_clips(self.live, ClipUpdateRequest(ids=str(clip_id), split="2|1, 3|1"))

        self.assertEqual(self.live.spans(self.track), [(0.0, 4.0), (8.0, 12.0)])
        self.assertTrue(any("middle segment 1" in warning for warning in result.warnings))
        self.assertEqual(len(result.clips), 2)

    def test_failed_master_copy_leaves_clip_untouched(self) -> None:
        clip_id = self.live.add_clip(self.track, 0.0, 12.0)
        self.live.fail_duplications_at = {1}

        result = update_clips(self.live, ClipUpdateRequest(ids=str(clip_id), split="2|1"))

        self.assertEqual(self.live.spans(self.track), [(0.0, 12.0)])
        self.assertEqual(result.payload(), {"id": clip_id})
        self.assertTrue(any("split skipped" in warning for warning in result.warnings))

    def test_invalid_split_points_warn_once_for_the_batch(self) -> None:
        first = self.live.add_clip(self.track, 0.0, 8.0)
        second = self.live.add_clip(self.track, 8.0, 8.0)

        result = update_clips(self.live, ClipUpdateRequest(ids=f"{first},{second}", split="2|0"))

        self.assertEqual(len(result.warnings), 1)
        self.assertIn("invalid split format", result.warnings[0])
        self.assertEqual(self.live.spans(self.track), [(0.0, 8.0), (8.0, 16.0)])

    def test_session_clip_is_returned_unchanged_with_warning(self) -> None:
        session_id = self.live.add_session_clip(self.track, 0, 4.0)

        result = update_clips(self.live, ClipUpdateRequest(ids=str(session_id), split="2|1"))

        self.assertEqual(result.payload(), {"id": session_id})
        self.assertTrue(any("session clip" in warning for warning in result.warnings))
        self.assertTrue(any("requires arrangement clips" in warning for warning in result.warnings))

    def test_name_and_color_apply_to_every_segment(self) -> None:
        clip_id = self.live.add_clip(self.track, 0.0, 8.0)

        update_clips(
            self.live,
            ClipUpdateRequest(ids=str(clip_id), split="2|1", name="Verse", color=0x00FF00),
        )

        clips = self.live.arrangement(self.track)
        self.assertEqual([clip.name for clip in clips], ["Verse", "Verse"])
        self.assertEqual({clip.color for clip in clips}, {0x00FF00})

    def test_failed_first_segment_trim_leaves_audio_clip_whole(self) -> None:
        live = FakeLiveSet()
        track = live.add_track(is_midi=False)
        clip_id = live.add_clip(track, 0.0, 8.0, file_path="/samples/pad.wav")
        # The final segment's head trim succeeds; the trim of segment 0 gets no clip back.
        live.fail_session_duplications_at = {2}

        result = update_clips(live, ClipUpdateRequest(ids=str(clip_id), split="2|1"))

        self.assertEqual(live.spans(track), [(0.0, 8.0)])
        self.assertEqual(result.payload(), {"id": clip_id})
        self.assertTrue(any("first segment; split skipped" in warning for warning in result.warnings))
        self.assertTrue(all(slot is None for slot in live.tracks[track].slots))

    def test_failed_final_segment_trim_leaves_audio_clip_whole(self) -> None:
        live = FakeLiveSet()
        track = live.add_track(is_midi=False)
        first = live.add_clip(track, 0.0, 8.0, file_path="/samples/pad.wav")
        second = live.add_clip(track, 8.0, 8.0, file_path="/samples/pad.wav")
        live.fail_session_duplications_at = {1}

        result = update_clips(live, ClipUpdateRequest(ids=f"{first},{second}", split="2|1"))

        self.assertEqual(live.spans(track), [(0.0, 8.0), (8.0, 12.0), (12.0, 16.0)])
        self.assertEqual(live.arrangement(track)[0].clip_id, first)
        self.assertTrue(any("split skipped" in warning for warning in result.warnings))
        self.assertEqual(len(result.clips), 3)

    def test_too_many_split_points_leave_the_clip_alone(self) -> None:
        clip_id = self.live.add_clip(self.track, 0.0, 8.0)
        points = ", ".join(f"{bar}|{beat}" for bar in range(2, 11) for beat in (1, 2, 3, 4))

        result = update_clips(self.live, ClipUpdateRequest(ids=str(clip_id), split=points))

        self.assertEqual(self.live.spans(self.track), [(0.0, 8.0)])
        self.assertEqual(self.live.duplications, 0)
        self.assertEqual(result.payload(), {"id": clip_id})
        self.assertTrue(any("too many split points" in warning for warning in result.warnings))


if __name__ == "__main__":
    unittest.main()
