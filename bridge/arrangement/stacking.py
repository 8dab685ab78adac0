from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from arrangement.base import (
    ArrangementClipRef,
    ClipState,
    DuplicationFailed,
    EditContext,
    _same_time,
)
from arrangement.clip_ops import delete_clip, rescan_span, resolve_after_mutation
from arrangement.overlap import safe_duplicate

@dataclass(frozen=True)
class StackClassification:
    survivors: Tuple[ClipState, ...]
    non_survivors: Tuple[ClipState, ...]

def classify_survivors(clips: Sequence[ClipState]) -> StackClassification:
    """Split clips sharing one start position into visible survivors and hidden ones.

    Walking from the last clip back, a clip survives only when it is strictly
    longer than every clip placed after it; anything else would end up fully
    underneath a later clip. Both tuples keep input order.
    """
    max_length_so_far = 0.0
    survivor_flags: List[bool] = []
    for clip in reversed(clips):
        survives = clip.length > max_length_so_far
        if survives:
            max_length_so_far = clip.length
        survivor_flags.append(survives)
    survivor_flags.reverse()
    survivors = tuple(clip for clip, keep in zip(clips, survivor_flags) if keep)
    non_survivors = tuple(clip for clip, keep in zip(clips, survivor_flags) if not keep)
    return StackClassification(survivors=survivors, non_survivors=non_survivors)

def _stage(ctx: EditContext, clip: ClipState) -> int | None:
    """Copy a clip into the holding area and delete the original."""
    hold_pos = ctx.holding.reserve(clip.track_index, clip.length)
    try:
        staged_id = safe_duplicate(ctx, clip.track_index, clip.clip_id, hold_pos)
    except DuplicationFailed as exc:
        ctx.warnings.add(f"Failed to stage clip {clip.clip_id} for moving ({exc})")
        return None
    delete_clip(ctx.client, clip.track_index, clip.clip_id)
    return staged_id

def execute_move(ctx: EditContext, clip: ClipState, positions: Sequence[float]) -> List[ArrangementClipRef]:
    """Move a clip to positions[0] and copy it to every further position."""
    if len(positions) == 1 and _same_time(positions[0], clip.start_time):
        return [clip.ref()]

    track_index = clip.track_index
    staged_id = _stage(ctx, clip)
    if staged_id is None:
        return [clip.ref()]

    produced: List[ArrangementClipRef] = []
    try:
        for position in positions:
            try:
                safe_duplicate(ctx, track_index, staged_id, position)
            except DuplicationFailed as exc:
                ctx.warnings.add(f"Failed to place clip {clip.clip_id} at beat {position:g} ({exc})")
                continue
            ref = resolve_after_mutation(ctx.client, track_index, position)
            if ref is not None:
                produced.append(ref)

        if not produced:
            # Nothing landed; put the clip back where it was.
            try:
                safe_duplicate(ctx, track_index, staged_id, clip.start_time)
            except DuplicationFailed as exc:
                ctx.warnings.add(f"Failed to restore clip {clip.clip_id} after a failed move ({exc})")
            ref = resolve_after_mutation(ctx.client, track_index, clip.start_time)
            if ref is not None:
                produced.append(ref)
    finally:
        delete_clip(ctx.client, track_index, staged_id)
        ctx.holding.sweep(track_index)
    return produced

def execute_stack(
    ctx: EditContext,
    track_index: int,
    clips: Sequence[ClipState],
    target: float,
) -> List[ArrangementClipRef]:
    """Place several clips of one track at the same start position.

    Non-survivors are deleted without ever being duplicated. Survivors are
    staged in the holding area first, since their originals may sit inside
    the target span, then placed one at a time in input order.
    """
    if not clips:
        return []
    classification = classify_survivors(clips)

    for clip in classification.non_survivors:
        delete_clip(ctx.client, track_index, clip.clip_id)

    staged: List[Tuple[ClipState, int]] = []
    try:
        for clip in classification.survivors:
            staged_id = _stage(ctx, clip)
            if staged_id is not None:
                staged.append((clip, staged_id))

        for clip, staged_id in staged:
            try:
                safe_duplicate(ctx, track_index, staged_id, target)
            except DuplicationFailed as exc:
                ctx.warnings.add(f"Failed to stack clip {clip.clip_id} at beat {target:g} ({exc})")
            finally:
                delete_clip(ctx.client, track_index, staged_id)
    finally:
        ctx.holding.sweep(track_index)

    span = max(clip.length for clip in classification.survivors)
    return rescan_span(ctx.client, track_index, target, target + span)
