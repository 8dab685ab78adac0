"""One update request over a batch of clips: move, lengthen, then split or slice.

Every clip (or same-track stack) runs its whole cycle before the next one
starts, and the holding area is swept after each cycle, so a failure part way
through a batch leaves only finished clips and untouched ones behind.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

import live_api as api
from arrangement.base import (
    EPSILON,
    ArrangementClipRef,
    ClipState,
    ClipUpdateError,
    DuplicationFailed,
    EditContext,
    WarningLog,
    _beats_per_bar,
    _resolve_silence_wav_path,
)
from arrangement.clip_ops import read_clip, rescan_span, resolve_after_mutation, set_clip_props
from arrangement.holding import HoldingArea, compute_holding_start
from arrangement.lengthen import execute_lengthen
from arrangement.positions import (
    bar_beat_duration_to_beats,
    bar_beat_to_beats,
    require_bar_beat_duration,
    require_bar_beat_list,
)
from arrangement.splitting import execute_split, plan_slice, plan_split
from arrangement.stacking import execute_move, execute_stack

_CLIP_ID_RE = re.compile(r"^(?:id\s+)?(\d+)$")

WorkUnit = Tuple[List[ClipState], List[float] | None]

@dataclass(frozen=True)
class ClipUpdateRequest:
    ids: str
    split: str | None = None
    slice: str | None = None
    arrangement_start: str | None = None
    arrangement_length: str | None = None
    name: str | None = None
    color: int | None = None

    @property
    def is_structural(self) -> bool:
        return any(
            value not in (None, "")
            for value in (self.split, self.slice, self.arrangement_start, self.arrangement_length)
        )

@dataclass
class ClipUpdateResult:
    clips: List[ArrangementClipRef] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def payload(self) -> Dict[str, Any] | List[Dict[str, Any]]:
        entries = [{"id": int(ref.clip_id)} for ref in self.clips if ref.clip_id is not None]
        if len(entries) == 1:
            return entries[0]
        return entries

def parse_clip_ids(text: str) -> List[int]:
    """Comma-separated clip ids (`12`, `id 12`); duplicates keep their first position."""
    ids: List[int] = []
    for part in str(text or "").split(","):
        raw = part.strip()
        if not raw:
            continue
        match = _CLIP_ID_RE.match(raw)
        if match is None:
            raise ClipUpdateError(f"invalid clip id {raw!r}")
        clip_id = int(match.group(1))
        if clip_id <= 0:
            raise ClipUpdateError(f"invalid clip id {raw!r}")
        if clip_id not in ids:
            ids.append(clip_id)
    if not ids:
        raise ClipUpdateError("at least one clip id is required")
    return ids

def validate_request(request: ClipUpdateRequest) -> None:
    """Reject requests that are malformed as a whole before touching the set."""
    if request.split not in (None, "") and request.slice not in (None, ""):
        raise ClipUpdateError("split and slice cannot be combined in one request")
    if request.split not in (None, ""):
        require_bar_beat_list(str(request.split), "split")
    if request.slice not in (None, ""):
        require_bar_beat_duration(str(request.slice), "slice")
    if request.arrangement_start not in (None, ""):
        require_bar_beat_list(str(request.arrangement_start), "arrangement start")
    if request.arrangement_length not in (None, ""):
        require_bar_beat_duration(str(request.arrangement_length), "arrangement length")
    if request.color is not None and not 0 <= int(request.color) <= 0xFFFFFF:
        raise ClipUpdateError(f"color must be within 0x000000..0xFFFFFF, got {request.color}")

def _target_positions(text: str | None, sig_num: int, sig_den: int) -> List[float] | None:
    if text in (None, ""):
        return None
    positions: List[float] = []
    for part in require_bar_beat_list(str(text), "arrangement start"):
        try:
            positions.append(bar_beat_to_beats(part, sig_num, sig_den))
        except ValueError as exc:
            raise ClipUpdateError(f"arrangement start: {exc}") from exc
    return positions

def _target_length(text: str | None, sig_num: int, sig_den: int) -> float | None:
    if text in (None, ""):
        return None
    try:
        length = bar_beat_duration_to_beats(str(text), sig_num, sig_den)
    except ValueError as exc:
        raise ClipUpdateError(f"arrangement length: {exc}") from exc
    if length <= EPSILON:
        raise ClipUpdateError("arrangement length must be greater than 0")
    return length

def plan_work_units(clips: Sequence[ClipState], positions: Sequence[float] | None) -> List[WorkUnit]:
    """Pair clips with target positions.

    One position moves every clip there, stacking clips that share a track.
    One clip with several positions is moved to the first and copied to the
    rest. Otherwise clips and positions pair up one to one.
    """
    if positions is None:
        return [([clip], None) for clip in clips]
    if not clips:
        return []
    if len(positions) == 1:
        groups: Dict[int, List[ClipState]] = {}
        for clip in clips:
            groups.setdefault(clip.track_index, []).append(clip)
        return [(group, [positions[0]]) for group in groups.values()]
    if len(clips) == 1:
        return [([clips[0]], list(positions))]
    if len(clips) == len(positions):
        return [([clip], [position]) for clip, position in zip(clips, positions)]
    raise ClipUpdateError(
        f"{len(positions)} arrangement start positions cannot be matched to {len(clips)} clips; "
        "give one position, one per clip, or a single clip"
    )

def _holding_horizon(
    clips: Sequence[ClipState],
    positions: Sequence[float] | None,
    length: float | None,
) -> float:
    horizon = 0.0
    span = max([clip.length for clip in clips] + [length or 0.0])
    for clip in clips:
        horizon = max(horizon, clip.end_time, clip.start_time + (length or 0.0))
    for position in positions or ():
        horizon = max(horizon, position + span)
    return horizon

def _refresh(ctx: EditContext, refs: Sequence[ArrangementClipRef]) -> List[ClipState]:
    states: List[ClipState] = []
    for ref in refs:
        if ref.clip_id is None:
            continue
        state = read_clip(ctx.client, int(ref.clip_id))
        if state is not None:
            states.append(state)
    return states

def _run_unit(
    ctx: EditContext,
    unit: WorkUnit,
    length: float | None,
    split_offsets: List[float] | None,
    slice_text: str | None,
    sig: Tuple[int, int],
) -> List[Tuple[int, ArrangementClipRef]]:
    clips, positions = unit
    fresh: List[ClipState] = []
    for clip in clips:
        state = read_clip(ctx.client, clip.clip_id)
        if state is None:
            ctx.warnings.add(f"clip {clip.clip_id} was overwritten by an earlier edit in this request; skipped")
            continue
        fresh.append(state)
    if not fresh:
        return []
    track_index = fresh[0].track_index

    if positions is None:
        refs = [state.ref() for state in fresh]
    elif len(fresh) > 1:
        refs = execute_stack(ctx, track_index, fresh, positions[0])
    else:
        refs = execute_move(ctx, fresh[0], positions)

    if length is not None:
        lengthened: List[ArrangementClipRef] = []
        for state in _refresh(ctx, refs):
            lengthened.extend(execute_lengthen(ctx, state, length))
        refs = lengthened

    if split_offsets is not None or slice_text is not None:
        carved: List[ArrangementClipRef] = []
        for state in _refresh(ctx, refs):
            offsets = split_offsets
            if slice_text is not None:
                offsets = plan_slice(slice_text, state.length, sig[0], sig[1], ctx.warnings)
            if offsets is None:
                carved.append(state.ref())
                continue
            carved.extend(execute_split(ctx, state, offsets))
        refs = carved

    return [(track_index, ref) for ref in refs]

def _recover_unit(
    ctx: EditContext,
    unit: WorkUnit,
    exc: DuplicationFailed,
) -> List[Tuple[int, ArrangementClipRef]]:
    """Warn about a unit that failed part way and report whatever of it is still there."""
    clips, _positions = unit
    ids = ", ".join(str(clip.clip_id) for clip in clips)
    ctx.warnings.add(f"Failed to update clip(s) {ids}; continuing with the rest of the request ({exc})")
    ctx.holding.sweep(clips[0].track_index)
    survivors = _refresh(ctx, [clip.ref() for clip in clips])
    return [(state.track_index, state.ref()) for state in survivors]

def _settle(ctx: EditContext, produced: Sequence[Tuple[int, ArrangementClipRef]]) -> List[ArrangementClipRef]:
    """Re-resolve every produced clip; later units may have re-issued or trimmed it.

    A clip whose head was trimmed by a later unit no longer starts where it was
    produced, so its original span is rescanned for the piece that kept its end.
    """
    settled: List[ArrangementClipRef] = []
    seen: set[int] = set()
    for track_index, ref in produced:
        current = resolve_after_mutation(ctx.client, track_index, ref.start_time)
        if current is not None:
            candidates = [current]
        else:
            candidates = [
                found
                for found in rescan_span(ctx.client, track_index, ref.start_time, ref.end_time)
                if found.end_time <= ref.end_time + EPSILON
            ]
        for candidate in candidates:
            if candidate.clip_id is None or candidate.clip_id in seen:
                continue
            seen.add(int(candidate.clip_id))
            settled.append(candidate)
    return settled

def _apply_scalar_props(client: Any, request: ClipUpdateRequest, refs: Sequence[ArrangementClipRef]) -> None:
    props: List[Tuple[str, object]] = []
    if request.name is not None:
        props.append(("name", str(request.name)))
    if request.color is not None:
        props.append(("color", int(request.color)))
    if not props:
        return
    for ref in refs:
        if ref.clip_id is not None:
            set_clip_props(client, int(ref.clip_id), props)

def update_clips(
    client: Any,
    request: ClipUpdateRequest,
    silence_wav_path: str | None = None,
) -> ClipUpdateResult:
    """Apply one update request and return the fresh ids of every resulting clip."""
    clip_ids = parse_clip_ids(request.ids)
    validate_request(request)

    states: List[ClipState] = []
    for clip_id in clip_ids:
        state = read_clip(client, clip_id)
        if state is None:
            raise ClipUpdateError(f"clip id {clip_id} does not exist")
        states.append(state)

    sig = api.signature(client)
    positions = _target_positions(request.arrangement_start, *sig)
    length = _target_length(request.arrangement_length, *sig)

    arrangement = [state for state in states if state.is_arrangement]
    session = [state for state in states if not state.is_arrangement]
    units = plan_work_units(arrangement, positions)

    warnings = WarningLog()
    if request.is_structural:
        for state in session:
            warnings.add(
                f"clip {state.clip_id} is a session clip; split, slice, move and length only apply to arrangement clips"
            )

    split_offsets = None
    if request.split not in (None, ""):
        split_offsets = plan_split(request.split, len(arrangement), sig[0], sig[1], warnings)
    slice_text = None if request.slice in (None, "") else str(request.slice)

    produced: List[Tuple[int, ArrangementClipRef]] = []
    if units:
        holding_start = compute_holding_start(
            client,
            [state.track_index for state in arrangement],
            _beats_per_bar(*sig),
            _holding_horizon(arrangement, positions, length),
        )
        ctx = EditContext(
            client=client,
            holding=HoldingArea(client, holding_start),
            warnings=warnings,
            silence_wav_path=str(_resolve_silence_wav_path(silence_wav_path)),
        )
        for unit in units:
            try:
                produced.extend(_run_unit(ctx, unit, length, split_offsets, slice_text, sig))
            except DuplicationFailed as exc:
                produced.extend(_recover_unit(ctx, unit, exc))
        clips = _settle(ctx, produced)
    else:
        clips = []

    clips.extend(state.ref() for state in session)
    _apply_scalar_props(client, request, clips)
    return ClipUpdateResult(clips=clips, warnings=list(warnings.messages))
