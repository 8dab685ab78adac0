"""Clearing a destination span before anything is duplicated into it.

Live crashes when an arrangement clip is duplicated onto a span that another
arrangement clip occupies. `safe_duplicate` is the only way the engine
duplicates arrangement clips, and it always goes through `clear_span` first.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Sequence

import live_api as api
from arrangement.base import (
    EPSILON,
    ArrangementClipRef,
    DuplicationFailed,
    EditContext,
    OverlapCategory,
    _overlaps,
)
from arrangement.clip_ops import (
    delete_clip,
    duplicate_to,
    list_arrangement_clips,
    read_clip,
    trim_head,
    trim_tail,
)


@dataclass(frozen=True)
class OverlapAction:
    category: OverlapCategory
    ref: ArrangementClipRef


_CATEGORY_ORDER: Dict[str, int] = {"contains": 0, "before": 1, "after": 2, "straddles": 3}


def classify_overlap(
    clip_start: float,
    clip_end: float,
    dest_start: float,
    dest_end: float,
) -> OverlapCategory | None:
    """Classify how an existing clip relates to a destination span (None when disjoint)."""
    if not _overlaps(clip_start, clip_end, dest_start, dest_end):
        return None
    starts_inside = clip_start >= dest_start - EPSILON
    ends_inside = clip_end <= dest_end + EPSILON
    if starts_inside and ends_inside:
        return "contains"
    if ends_inside:
        return "before"
    if starts_inside:
        return "after"
    return "straddles"


def plan_clear_span(
    refs: Sequence[ArrangementClipRef],
    dest_start: float,
    dest_end: float,
    exclude_ids: Iterable[int] = (),
) -> List[OverlapAction]:
    excluded = {int(clip_id) for clip_id in exclude_ids}
    actions: List[OverlapAction] = []
    for ref in refs:
        if ref.clip_id is None or ref.clip_id in excluded:
            continue
        category = classify_overlap(ref.start_time, ref.end_time, dest_start, dest_end)
        if category is not None:
            actions.append(OverlapAction(category=category, ref=ref))
    actions.sort(key=lambda action: (_CATEGORY_ORDER[action.category], action.ref.start_time))
    return actions


def _delete_contained(
    ctx: EditContext,
    track_index: int,
    ref: ArrangementClipRef,
    dest_start: float,
    dest_end: float,
    is_midi: bool,
) -> None:
    delete_clip(ctx.client, track_index, int(ref.clip_id))


def _keep_before(
    ctx: EditContext,
    track_index: int,
    ref: ArrangementClipRef,
    dest_start: float,
    dest_end: float,
    is_midi: bool,
) -> None:
    trim_tail(ctx, track_index, ref, dest_start, is_midi)


def _keep_after(
    ctx: EditContext,
    track_index: int,
    ref: ArrangementClipRef,
    dest_start: float,
    dest_end: float,
    is_midi: bool,
) -> None:
    trim_head(ctx, track_index, ref, dest_end, is_midi)


def _split_around(
    ctx: EditContext,
    track_index: int,
    ref: ArrangementClipRef,
    dest_start: float,
    dest_end: float,
    is_midi: bool,
) -> None:
    # The after-piece is carved from a holding copy so the original keeps its
    # identity as the before-piece.
    hold_pos = ctx.holding.reserve(track_index, ref.length)
    copy_id = safe_duplicate(ctx, track_index, int(ref.clip_id), hold_pos)
    trim_tail(ctx, track_index, ref, dest_start, is_midi)

    copy_ref = ArrangementClipRef(
        path=api.clip_path(copy_id),
        clip_id=copy_id,
        start_time=hold_pos,
        end_time=hold_pos + ref.length,
    )
    after_piece = trim_head(ctx, track_index, copy_ref, hold_pos + (dest_end - ref.start_time), is_midi)
    if after_piece is None or after_piece.clip_id is None:
        raise DuplicationFailed(f"lost the staged remainder of clip {ref.clip_id}")
    safe_duplicate(ctx, track_index, int(after_piece.clip_id), dest_end)
    delete_clip(ctx.client, track_index, int(after_piece.clip_id))


_ACTIONS: Dict[str, Callable[..., None]] = {
    "contains": _delete_contained,
    "before": _keep_before,
    "after": _keep_after,
    "straddles": _split_around,
}


def clear_span(
    ctx: EditContext,
    track_index: int,
    dest_start: float,
    dest_end: float,
    is_midi: bool,
    exclude_ids: Iterable[int] = (),
) -> int:
    """Make [dest_start, dest_end) empty on a track, keeping whatever lies outside it.

    Returns the number of clips that had to be deleted or trimmed.
    """
    refs = list_arrangement_clips(ctx.client, track_index)
    actions = plan_clear_span(refs, dest_start, dest_end, exclude_ids)
    for action in actions:
        _ACTIONS[action.category](ctx, track_index, action.ref, dest_start, dest_end, is_midi)
    return len(actions)


def safe_duplicate(ctx: EditContext, track_index: int, source_id: int, position: float) -> int:
    """Duplicate a clip to `position`, clearing the destination first.

    Session clips duplicate safely onto occupied space and skip the clearing.
    If the span is still occupied after clearing, the duplicate is never sent
    and DuplicationFailed is raised instead.
    """
    source = read_clip(ctx.client, source_id)
    if source is None:
        raise DuplicationFailed(f"clip {source_id} no longer exists")
    if not source.is_arrangement:
        return duplicate_to(ctx.client, track_index, source_id, position)

    dest_end = float(position) + source.length
    if source.track_index == track_index and _overlaps(
        source.start_time, source.end_time, position, dest_end
    ):
        raise DuplicationFailed(f"clip {source_id} overlaps its own destination at {position:g}")

    clear_span(ctx, track_index, position, dest_end, source.is_midi, exclude_ids=(source_id,))
    blocking = [
        ref
        for ref in list_arrangement_clips(ctx.client, track_index)
        if ref.clip_id != source_id and _overlaps(ref.start_time, ref.end_time, position, dest_end)
    ]
    if blocking:
        raise DuplicationFailed(
            f"destination {position:g}-{dest_end:g} on track {track_index} is still occupied"
        )
    return duplicate_to(ctx.client, track_index, source_id, position)
