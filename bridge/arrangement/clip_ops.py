from __future__ import annotations

import re
from typing import Any, List, Sequence, Tuple

import live_api as api
from arrangement.base import (
    EPSILON,
    NOTE_SCAN_SPAN_BEATS,
    ArrangementClipRef,
    ClipState,
    DuplicationFailed,
    EditContext,
    _same_time,
)

_TRACK_INDEX_RE = re.compile(r"\btracks (\d+)\b")

def _track_index_from_path(path: object) -> int | None:
    match = _TRACK_INDEX_RE.search(str(path or ""))
    return int(match.group(1)) if match else None

def _clip_track_index(client: Any, clip_path: str) -> int | None:
    describe = client.describe(clip_path)
    if not isinstance(describe, dict):
        return None
    object_id = api._as_int(describe.get("id"))
    if object_id is None or object_id <= 0:
        return None
    return _track_index_from_path(describe.get("path"))

def read_clip(client: Any, clip_id: int) -> ClipState | None:
    """Snapshot every clip property the engine works with, or None if the clip is gone."""
    path = api.clip_path(clip_id)
    track_index = _clip_track_index(client, path)
    if track_index is None:
        return None

    def _float(prop: str) -> float | None:
        return api._as_float(client.get(path, prop))

    start_time = _float("start_time")
    end_time = _float("end_time")
    if start_time is None or end_time is None:
        return None

    is_midi = api._as_bool(client.get(path, "is_midi_clip"))
    file_path: str | None = None
    warping = False
    if not is_midi:
        warping = api._as_bool(client.get(path, "warping"))
        raw_file = api._scalar(client.get(path, "file_path"))
        file_path = None if raw_file in (None, "") else str(raw_file)

    return ClipState(
        clip_id=int(clip_id),
        track_index=track_index,
        start_time=start_time,
        end_time=end_time,
        is_midi=is_midi,
        is_arrangement=api._as_bool(client.get(path, "is_arrangement_clip")),
        looping=api._as_bool(client.get(path, "looping")),
        warping=warping,
        loop_start=_float("loop_start") or 0.0,
        loop_end=_float("loop_end") or 0.0,
        start_marker=_float("start_marker") or 0.0,
        end_marker=_float("end_marker") or 0.0,
        file_path=file_path,
    )

def list_arrangement_clips(client: Any, track_index: int) -> List[ArrangementClipRef]:
    """Rescan a track's arrangement clips, sorted by start time."""
    track_path = api.track_path(track_index)
    children = client.children(track_path, "arrangement_clips")

    refs: List[ArrangementClipRef] = []
    for clip_info in children:
        clip_id = api._as_int(clip_info.get("id"))
        if clip_id is None or clip_id <= 0:
            raw_path = clip_info.get("path")
            if not raw_path:
                continue
            clip_id = api._as_int(client.get(api._sanitize_live_path(str(raw_path)), "id"))
        if clip_id is None or clip_id <= 0:
            continue
        clip_path = api.clip_path(clip_id)
        start_time = api._as_float(client.get(clip_path, "start_time"))
        end_time = api._as_float(client.get(clip_path, "end_time"))
        if start_time is None or end_time is None:
            continue
        refs.append(
            ArrangementClipRef(
                path=clip_path,
                clip_id=clip_id,
                start_time=float(start_time),
                end_time=float(end_time),
            )
        )
    refs.sort(key=lambda ref: (ref.start_time, ref.end_time))
    return refs

def resolve_after_mutation(
    client: Any,
    track_index: int,
    start_time: float,
) -> ArrangementClipRef | None:
    """Re-acquire the clip that starts at `start_time`; None when nothing starts there."""
    matches = [
        ref
        for ref in list_arrangement_clips(client, track_index)
        if _same_time(ref.start_time, start_time)
    ]
    if not matches:
        return None
    # Prefer the newest object when the host briefly reports two.
    matches.sort(key=lambda ref: -(ref.clip_id or 0))
    return matches[0]

def rescan_span(
    client: Any,
    track_index: int,
    start: float,
    end: float,
) -> List[ArrangementClipRef]:
    return [
        ref
        for ref in list_arrangement_clips(client, track_index)
        if start - EPSILON <= ref.start_time < end - EPSILON
    ]

def set_clip_props(client: Any, clip_id: int, props: Sequence[Tuple[str, object]]) -> None:
    path = api.clip_path(clip_id)
    for prop, value in props:
        client.set(path, prop, value)

def set_markers_with_looping_workaround(
    client: Any,
    clip: ClipState,
    *,
    loop_start: float | None = None,
    loop_end: float | None = None,
    start_marker: float | None = None,
    end_marker: float | None = None,
) -> None:
    """Move loop and content markers on a clip regardless of its looping state.

    Live only accepts loop edits while looping is on, and rejects any write
    that would momentarily put a start past its end, so growing ends are
    written before starts and shrinking ends after them.
    """
    props: List[Tuple[str, object]] = []
    if not clip.looping:
        props.append(("looping", 1))

    grow_loop_end = loop_end is not None and loop_end > clip.loop_end
    grow_end_marker = end_marker is not None and end_marker > clip.end_marker
    if grow_loop_end:
        props.append(("loop_end", loop_end))
    if loop_start is not None:
        props.append(("loop_start", loop_start))
    if loop_end is not None and not grow_loop_end:
        props.append(("loop_end", loop_end))
    if grow_end_marker:
        props.append(("end_marker", end_marker))
    if start_marker is not None:
        props.append(("start_marker", start_marker))
    if end_marker is not None and not grow_end_marker:
        props.append(("end_marker", end_marker))

    if not clip.looping:
        props.append(("looping", 0))
    set_clip_props(client, clip.clip_id, props)

def duplicate_to(client: Any, track_index: int, clip_id: int, position: float) -> int:
    """Duplicate a clip onto the arrangement; raises DuplicationFailed on a sentinel result.

    Callers must have made the destination safe first (see overlap.safe_duplicate).
    """
    try:
        result = client.call(
            api.track_path(track_index),
            "duplicate_clip_to_arrangement",
            [api.clip_path(clip_id), float(position)],
        )
    except api.LiveApiError as exc:
        raise DuplicationFailed(f"duplicating clip {clip_id} to {position:g} failed: {exc}") from exc
    new_id = api._extract_id_from_call_result(result)
    if new_id is None or new_id <= 0:
        raise DuplicationFailed(f"duplicating clip {clip_id} to {position:g} returned no clip")
    return int(new_id)

def delete_clip(client: Any, track_index: int, clip_id: int) -> bool:
    """Delete an arrangement clip; returns False when it was already gone."""
    present = {ref.clip_id for ref in list_arrangement_clips(client, track_index)}
    if int(clip_id) not in present:
        return False
    client.call(api.track_path(track_index), "delete_clip", [api.clip_path(clip_id)])
    return True

def _find_empty_clip_slot(client: Any, track_index: int) -> str:
    track_path = api.track_path(track_index)
    slots = client.children(track_path, "clip_slots")
    for index in range(len(slots)):
        slot_path = f"{track_path} clip_slots {index}"
        if not api._as_bool(client.get(slot_path, "has_clip")):
            return slot_path
    client.call("live_set", "create_scene", [-1])
    return f"{track_path} clip_slots {len(slots)}"

def create_session_audio_clip(client: Any, track_index: int, file_path: str) -> Tuple[str, int]:
    """Load an audio file into an empty session slot (adding a scene if needed).

    Returns the slot path and the new clip id. Arrangement-side creation of
    audio clips is not available, so session clips are the staging medium.
    """
    slot_path = _find_empty_clip_slot(client, track_index)
    result = client.call(slot_path, "create_audio_clip", [str(file_path)])
    session_id = api._extract_id_from_call_result(result)
    if session_id is None or session_id <= 0:
        session_id = api._as_int(client.get(f"{slot_path} clip", "id"))
    if session_id is None or session_id <= 0:
        raise DuplicationFailed(f"could not create a session audio clip from {file_path}")
    return slot_path, int(session_id)

def truncate_span(
    ctx: EditContext,
    track_index: int,
    position: float,
    length: float,
    is_midi: bool,
) -> None:
    """Overwrite [position, position + length) with a temporary clip, then delete it.

    Live trims whatever the temporary clip covers, which is the only way to
    shorten an arrangement clip from either end.
    """
    if length <= EPSILON:
        return
    client = ctx.client
    track_path = api.track_path(track_index)
    if is_midi:
        result = client.call(track_path, "create_midi_clip", [float(position), float(length)])
        temp_id = api._extract_id_from_call_result(result)
        if temp_id is None or temp_id <= 0:
            found = resolve_after_mutation(client, track_index, position)
            temp_id = None if found is None else found.clip_id
        if temp_id is None:
            raise DuplicationFailed(f"temporary clip at {position:g} was not created")
        delete_clip(client, track_index, temp_id)
        return

    slot_path, session_id = create_session_audio_clip(client, track_index, ctx.silence_wav_path)
    try:
        set_clip_props(
            client,
            session_id,
            (("warping", 1), ("looping", 1), ("loop_start", 0.0), ("loop_end", float(length))),
        )
        temp_id = duplicate_to(client, track_index, session_id, position)
    finally:
        client.call(slot_path, "delete_clip", [])
    delete_clip(client, track_index, temp_id)

def trim_tail(
    ctx: EditContext,
    track_index: int,
    ref: ArrangementClipRef,
    new_end: float,
    is_midi: bool,
) -> ArrangementClipRef | None:
    """Keep [start, new_end) of a clip; its identity and position are preserved."""
    if new_end >= ref.end_time - EPSILON:
        return ref
    truncate_span(ctx, track_index, new_end, ref.end_time - new_end, is_midi)
    return resolve_after_mutation(ctx.client, track_index, ref.start_time)

def trim_head(
    ctx: EditContext,
    track_index: int,
    ref: ArrangementClipRef,
    new_start: float,
    is_midi: bool,
) -> ArrangementClipRef | None:
    """Keep [new_start, end) of a clip.

    Live re-issues head-trimmed clips, so the result is re-resolved at its new
    start time rather than reusing the old handle.
    """
    if new_start <= ref.start_time + EPSILON:
        return ref
    truncate_span(ctx, track_index, ref.start_time, new_start - ref.start_time, is_midi)
    return resolve_after_mutation(ctx.client, track_index, new_start)

def _extract_notes_from_result(result: object | None) -> List[dict] | None:
    if isinstance(result, dict):
        notes = result.get("notes")
        if isinstance(notes, list):
            return [dict(note) for note in notes if isinstance(note, dict)]
        return None
    if isinstance(result, list):
        if all(isinstance(item, dict) for item in result):
            return [dict(item) for item in result]
        for item in result:
            if isinstance(item, dict) and isinstance(item.get("notes"), list):
                return [dict(note) for note in item["notes"] if isinstance(note, dict)]
    return None

def get_clip_notes(client: Any, clip_id: int) -> List[dict]:
    result = client.call(
        api.clip_path(clip_id),
        "get_notes_extended",
        [0, 128, 0.0, NOTE_SCAN_SPAN_BEATS],
    )
    return _extract_notes_from_result(result) or []
