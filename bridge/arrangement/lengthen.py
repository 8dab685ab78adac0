from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Literal

import live_api as api
from arrangement.base import (
    EPSILON,
    ArrangementClipRef,
    ClipKind,
    ClipState,
    DuplicationFailed,
    EditContext,
)
from arrangement.clip_ops import (
    create_session_audio_clip,
    delete_clip,
    get_clip_notes,
    resolve_after_mutation,
    rescan_span,
    set_clip_props,
    set_markers_with_looping_workaround,
    trim_tail,
)
from arrangement.overlap import clear_span, safe_duplicate

LengthenMode = Literal["tile", "extend"]

PlanMode = Literal["tile", "extend", "shorten", "noop"]

# How each kind of clip reaches a longer target. Looped clips repeat their
# loop; unlooped clips reveal more of their underlying material.
LENGTHEN_MODES: Dict[ClipKind, LengthenMode] = {
    "looped_midi": "tile",
    "looped_audio": "tile",
    "unlooped_midi": "extend",
    "unlooped_warped_audio": "extend",
    "unlooped_unwarped_audio": "extend",
}

_KIND_LABELS: Dict[ClipKind, str] = {
    "looped_midi": "looped MIDI",
    "looped_audio": "looped audio",
    "unlooped_midi": "unlooped MIDI",
    "unlooped_warped_audio": "unlooped warped audio",
    "unlooped_unwarped_audio": "unlooped unwarped audio",
}

@dataclass(frozen=True)
class LengthenPlan:
    mode: PlanMode
    length: float
    requested: float
    warning: str | None = None

def _midi_content_end(ctx: EditContext, clip: ClipState) -> float | None:
    ends = [
        float(note.get("start_time", 0.0)) + float(note.get("duration", 0.0))
        for note in get_clip_notes(ctx.client, clip.clip_id)
    ]
    return max(ends + [clip.end_marker])

def _probe_audio_content_end(ctx: EditContext, clip: ClipState, warped: bool) -> float | None:
    """Read the file's natural end from a throwaway session clip of the same file."""
    if not clip.file_path:
        return None
    slot_path, probe_id = create_session_audio_clip(ctx.client, clip.track_index, clip.file_path)
    try:
        if not warped:
            set_clip_props(ctx.client, probe_id, (("warping", 0),))
        return api._as_float(ctx.client.get(api.clip_path(probe_id), "end_marker"))
    finally:
        ctx.client.call(slot_path, "delete_clip", [])

def _warped_audio_content_end(ctx: EditContext, clip: ClipState) -> float | None:
    return _probe_audio_content_end(ctx, clip, warped=True)

def _unwarped_audio_content_end(ctx: EditContext, clip: ClipState) -> float | None:
    return _probe_audio_content_end(ctx, clip, warped=False)

CONTENT_PROBES: Dict[ClipKind, Callable[[EditContext, ClipState], float | None]] = {
    "unlooped_midi": _midi_content_end,
    "unlooped_warped_audio": _warped_audio_content_end,
    "unlooped_unwarped_audio": _unwarped_audio_content_end,
}

def clip_kind(clip: ClipState) -> ClipKind:
    return clip.kind

def plan_lengthen(clip: ClipState, target: float, content_end: float | None = None) -> LengthenPlan:
    """Decide how a clip reaches `target` beats of arrangement length.

    `content_end` is the marker position where the clip's material runs out;
    it only matters for unlooped clips and defaults to the current end marker.
    """
    current = clip.length
    if abs(target - current) <= EPSILON:
        return LengthenPlan("noop", current, target)
    if target < current:
        return LengthenPlan("shorten", target, target)

    if LENGTHEN_MODES[clip_kind(clip)] == "tile":
        return LengthenPlan("tile", target, target)

    boundary = clip.end_marker if content_end is None else max(content_end, clip.end_marker)
    available = boundary - clip.start_marker
    label = _KIND_LABELS[clip_kind(clip)]
    if available <= current + EPSILON:
        return LengthenPlan(
            "noop",
            current,
            target,
            warning=(
                f"Cannot lengthen {label} clip {clip.clip_id}: no additional content "
                f"({available:.1f} beats available, {current:g} currently shown)"
            ),
        )
    if available < target - EPSILON:
        return LengthenPlan(
            "extend",
            available,
            target,
            warning=(
                f"{label.capitalize()} clip {clip.clip_id} capped at its content boundary: "
                f"{available:.1f} beats available, {target:g} requested"
            ),
        )
    return LengthenPlan("extend", target, target)

def _tile_start_marker(clip: ClipState, content_offset: float) -> float:
    marker = clip.loop_start + (content_offset % clip.loop_length)
    if marker >= clip.loop_end - EPSILON:
        marker = clip.loop_start
    return marker

def _partial_tile(ctx: EditContext, clip: ClipState, position: float, length: float) -> int:
    track_index = clip.track_index
    hold_pos = ctx.holding.reserve(track_index, clip.length)
    copy_id = safe_duplicate(ctx, track_index, clip.clip_id, hold_pos)
    copy = ArrangementClipRef(
        path=api.clip_path(copy_id),
        clip_id=copy_id,
        start_time=hold_pos,
        end_time=hold_pos + clip.length,
    )
    try:
        trimmed = trim_tail(ctx, track_index, copy, hold_pos + length, clip.is_midi)
        if trimmed is None or trimmed.clip_id is None:
            raise DuplicationFailed(f"partial tile of clip {clip.clip_id} vanished while trimming")
        copy = trimmed
        return safe_duplicate(ctx, track_index, int(copy.clip_id), position)
    finally:
        delete_clip(ctx.client, track_index, int(copy.clip_id))

def _execute_tile(ctx: EditContext, clip: ClipState, plan: LengthenPlan) -> List[ArrangementClipRef]:
    if clip.loop_length <= EPSILON:
        ctx.warnings.add(f"Cannot tile clip {clip.clip_id}: its loop is empty")
        return [clip.ref()]

    track_index = clip.track_index
    if clip.end_marker < clip.loop_end - EPSILON:
        # start_marker may not pass end_marker on the copies.
        set_clip_props(ctx.client, clip.clip_id, (("end_marker", clip.loop_end),))

    unit = clip.length
    target_end = clip.start_time + plan.length
    position = clip.end_time
    content_offset = (clip.start_marker - clip.loop_start) + unit
    try:
        while position < target_end - EPSILON:
            tile_length = min(unit, target_end - position)
            try:
                if tile_length >= unit - EPSILON:
                    tile_id = safe_duplicate(ctx, track_index, clip.clip_id, position)
                else:
                    tile_id = _partial_tile(ctx, clip, position, tile_length)
                set_clip_props(
                    ctx.client,
                    tile_id,
                    (("start_marker", _tile_start_marker(clip, content_offset)),),
                )
            except DuplicationFailed as exc:
                ctx.warnings.add(f"Failed to duplicate tile at beat {position:g} for clip {clip.clip_id} ({exc})")
            position += tile_length
            content_offset += tile_length
    finally:
        ctx.holding.sweep(track_index)
    return rescan_span(ctx.client, track_index, clip.start_time, target_end)

def _execute_extend(ctx: EditContext, clip: ClipState, plan: LengthenPlan) -> List[ArrangementClipRef]:
    new_end = clip.start_time + plan.length
    try:
        clear_span(ctx, clip.track_index, clip.end_time, new_end, clip.is_midi, exclude_ids=(clip.clip_id,))
    except DuplicationFailed as exc:
        ctx.warnings.add(f"Failed to clear room to lengthen clip {clip.clip_id}; left unchanged ({exc})")
        return [clip.ref()]
    marker_end = clip.start_marker + plan.length
    set_markers_with_looping_workaround(ctx.client, clip, loop_end=marker_end, end_marker=marker_end)
    ref = resolve_after_mutation(ctx.client, clip.track_index, clip.start_time)
    return [ref] if ref is not None else []

def _execute_shorten(ctx: EditContext, clip: ClipState, plan: LengthenPlan) -> List[ArrangementClipRef]:
    try:
        ref = trim_tail(ctx, clip.track_index, clip.ref(), clip.start_time + plan.length, clip.is_midi)
    except DuplicationFailed as exc:
        ctx.warnings.add(f"Failed to shorten clip {clip.clip_id}; left unchanged ({exc})")
        return [clip.ref()]
    return [ref] if ref is not None else []

def _execute_noop(ctx: EditContext, clip: ClipState, plan: LengthenPlan) -> List[ArrangementClipRef]:
    return [clip.ref()]

_EXECUTORS: Dict[str, Callable[[EditContext, ClipState, LengthenPlan], List[ArrangementClipRef]]] = {
    "tile": _execute_tile,
    "extend": _execute_extend,
    "shorten": _execute_shorten,
    "noop": _execute_noop,
}

def execute_lengthen(ctx: EditContext, clip: ClipState, target: float) -> List[ArrangementClipRef]:
    """Bring a clip to `target` beats; returns the fresh handles covering the result."""
    content_end: float | None = None
    probe = CONTENT_PROBES.get(clip_kind(clip))
    if probe is not None and target > clip.length + EPSILON:
        try:
            content_end = probe(ctx, clip)
        except DuplicationFailed as exc:
            ctx.warnings.add(f"Could not measure content of clip {clip.clip_id} ({exc})")
    plan = plan_lengthen(clip, target, content_end)
    if plan.warning:
        ctx.warnings.add(plan.warning)
    return _EXECUTORS[plan.mode](ctx, clip, plan)
