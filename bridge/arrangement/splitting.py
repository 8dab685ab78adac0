from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

import live_api as api
from arrangement.base import (
    EPSILON,
    MAX_SLICES,
    MAX_SPLIT_POINTS,
    ArrangementClipRef,
    ClipState,
    DuplicationFailed,
    EditContext,
    WarningLog,
)
from arrangement.clip_ops import delete_clip, rescan_span, resolve_after_mutation, trim_head, trim_tail
from arrangement.overlap import safe_duplicate
from arrangement.positions import bar_beat_duration_to_beats, parse_split_offsets

@dataclass(frozen=True)
class Segment:
    offset_a: float
    offset_b: float

    @property
    def length(self) -> float:
        return self.offset_b - self.offset_a

def plan_split(
    split_text: str | None,
    arrangement_clip_count: int,
    sig_num: int,
    sig_den: int,
    warnings: WarningLog,
) -> List[float] | None:
    """Validate and normalize split positions; None means no split happens."""
    if split_text is None or not str(split_text).strip():
        return None

    if arrangement_clip_count == 0:
        warnings.add("split requires arrangement clips", key="split-no-arrangement")
        return None

    offsets = parse_split_offsets(split_text, sig_num, sig_den)
    if offsets is None:
        warnings.add(
            f"invalid split format {split_text!r}; expected comma-separated bar|beat positions like '2|1, 3|1'",
            key="split-invalid-format",
        )
        return None

    if len(offsets) > MAX_SPLIT_POINTS:
        warnings.add(
            f"too many split points ({len(offsets)}), max is {MAX_SPLIT_POINTS}",
            key="split-max-exceeded",
        )
        return None

    valid = [offset for offset in offsets if offset > EPSILON]
    if not valid:
        warnings.add(
            "no valid split points (all at or before clip start)",
            key="split-no-valid-points",
        )
        return None
    return valid

def plan_slice(
    slice_text: str | None,
    clip_length: float,
    sig_num: int,
    sig_den: int,
    warnings: WarningLog,
) -> List[float] | None:
    """Uniform offsets at every multiple of the slice interval inside the clip."""
    if slice_text is None or not str(slice_text).strip():
        return None
    try:
        interval = bar_beat_duration_to_beats(slice_text, sig_num, sig_den)
    except ValueError:
        interval = 0.0
    if interval <= EPSILON:
        warnings.add(f"invalid slice size {slice_text!r}; must be greater than 0", key="slice-invalid-size")
        return None

    count = int((clip_length - EPSILON) // interval) + 1
    if count > MAX_SLICES:
        warnings.add(
            f"slicing into {count} pieces exceeds the maximum of {MAX_SLICES}",
            key="slice-max-exceeded",
        )
        return None

    offsets: List[float] = []
    step = 1
    while step * interval < clip_length - EPSILON:
        offsets.append(step * interval)
        step += 1
    return offsets or None

def plan_segments(offsets: Sequence[float], length: float) -> List[Segment]:
    """Contiguous segments covering [0, length); offsets outside the clip are ignored."""
    inner = sorted({float(o) for o in offsets if EPSILON < o < length - EPSILON})
    bounds = [0.0] + inner + [float(length)]
    return [Segment(bounds[i], bounds[i + 1]) for i in range(len(bounds) - 1)]

def _stage_segment(ctx: EditContext, clip: ClipState, segment: Segment) -> int:
    """Copy the clip into the holding area and trim the copy down to one segment."""
    track_index = clip.track_index
    work_pos = ctx.holding.reserve(track_index, clip.length)
    work_id = safe_duplicate(ctx, track_index, clip.clip_id, work_pos)
    work: ArrangementClipRef | None = ArrangementClipRef(
        path=api.clip_path(work_id),
        clip_id=work_id,
        start_time=work_pos,
        end_time=work_pos + clip.length,
    )
    try:
        work = trim_tail(ctx, track_index, work, work_pos + segment.offset_b, clip.is_midi)
        if work is not None:
            work = trim_head(ctx, track_index, work, work_pos + segment.offset_a, clip.is_midi)
    except DuplicationFailed:
        # A failed trim leaves the working copy where it was staged.
        leftover = resolve_after_mutation(ctx.client, track_index, work_pos)
        if leftover is not None and leftover.clip_id is not None:
            delete_clip(ctx.client, track_index, int(leftover.clip_id))
        raise
    if work is None or work.clip_id is None:
        raise DuplicationFailed("working copy vanished while trimming")
    return int(work.clip_id)

def execute_split(ctx: EditContext, clip: ClipState, offsets: Sequence[float]) -> List[ArrangementClipRef]:
    """Carve a clip into contiguous segments at the given clip-relative offsets.

    Segment 0 is the original clip trimmed in place. Every later segment is
    staged from the untrimmed original in the holding area (one duplication)
    and placed back once segment 0 is trimmed (one more), so N segments cost
    2N - 2 duplications. Nothing on the original's span changes until all
    staging has finished; if the final segment or the segment 0 trim fails,
    the clip is left whole.
    """
    segments = plan_segments(offsets, clip.length)
    if len(segments) < 2:
        return [clip.ref()]

    track_index = clip.track_index
    last_index = len(segments) - 1
    staged: List[Tuple[int, int]] = []
    try:
        try:
            staged.append((last_index, _stage_segment(ctx, clip, segments[last_index])))
        except DuplicationFailed as exc:
            ctx.warnings.add(f"Failed to duplicate clip {clip.clip_id} into the holding area; split skipped ({exc})")
            return [clip.ref()]

        for index in range(1, last_index):
            try:
                staged.append((index, _stage_segment(ctx, clip, segments[index])))
            except DuplicationFailed as exc:
                ctx.warnings.add(
                    f"Failed to duplicate source for middle segment {index} of clip {clip.clip_id} ({exc})"
                )

        try:
            trim_tail(ctx, track_index, clip.ref(), clip.start_time + segments[0].offset_b, clip.is_midi)
        except DuplicationFailed as exc:
            ctx.warnings.add(f"Failed to trim clip {clip.clip_id} to its first segment; split skipped ({exc})")
            return [clip.ref()]

        for index, staged_id in sorted(staged):
            label = "final segment" if index == last_index else f"middle segment {index}"
            try:
                safe_duplicate(ctx, track_index, staged_id, clip.start_time + segments[index].offset_a)
            except DuplicationFailed as exc:
                ctx.warnings.add(f"Failed to place {label} of clip {clip.clip_id} ({exc})")
    finally:
        for _index, staged_id in staged:
            delete_clip(ctx.client, track_index, staged_id)
        ctx.holding.sweep(track_index)

    return rescan_span(ctx.client, track_index, clip.start_time, clip.end_time)
