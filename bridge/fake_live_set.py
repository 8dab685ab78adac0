"""In-memory stand-in for the LiveAPI surface the bridge exposes.

Models just enough of Live's arrangement behavior for the clip engine:

- duplicating an arrangement clip onto an occupied span crashes the host
  (raises HostCrashed), while session clips and create_midi_clip overwrite
  whatever they cover
- overwriting the head of a clip re-issues it under a new id and advances
  its start marker (wrapping inside the loop for looped clips)
- unlooped clips are exactly as long as their markers
"""

from __future__ import annotations

import copy
import itertools
import re
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Set, Tuple

EPSILON = 1e-6

DEFAULT_AUDIO_FILE_LENGTH = 16.0


class HostCrashed(RuntimeError):
    pass


class FakeHostError(RuntimeError):
    pass


@dataclass
class FakeClip:
    clip_id: int
    track_index: int
    start_time: float
    end_time: float
    is_midi: bool = True
    is_arrangement: bool = True
    looping: bool = False
    warping: bool = True
    loop_start: float = 0.0
    loop_end: float = 4.0
    start_marker: float = 0.0
    end_marker: float = 4.0
    file_path: str | None = None
    name: str = ""
    color: int = 0
    notes: List[dict] = field(default_factory=list)

    @property
    def length(self) -> float:
        return self.end_time - self.start_time

    def sync_unlooped_end(self) -> None:
        if self.is_arrangement and not self.looping:
            self.end_time = self.start_time + (self.end_marker - self.start_marker)


@dataclass
class FakeTrack:
    index: int
    is_midi: bool
    name: str
    arrangement: List[FakeClip] = field(default_factory=list)
    slots: List[FakeClip | None] = field(default_factory=list)


_CLIP_ID_PATH = re.compile(r"^id (\d+)$")
_TRACK_PATH = re.compile(r"^live_set tracks (\d+)$")
_SLOT_PATH = re.compile(r"^live_set tracks (\d+) clip_slots (\d+)$")
_SLOT_CLIP_PATH = re.compile(r"^live_set tracks (\d+) clip_slots (\d+) clip$")
_ARRANGEMENT_CLIP_PATH = re.compile(r"^live_set tracks (\d+) arrangement_clips (\d+)$")


class FakeLiveSet:
    def __init__(self, sig_num: int = 4, sig_den: int = 4, scenes: int = 2) -> None:
        self.sig_num = sig_num
        self.sig_den = sig_den
        self.scenes = scenes
        self.tracks: List[FakeTrack] = []
        self.audio_file_lengths: Dict[str, float] = {}
        self.fail_duplications_at: Set[int] = set()
        self.fail_session_duplications_at: Set[int] = set()
        self.duplications = 0
        self.session_duplications = 0
        self.calls: List[Tuple[str, str, list]] = []
        self._ids = itertools.count(100)

    # -- building a set -------------------------------------------------

    def add_track(self, is_midi: bool = True, name: str | None = None) -> int:
        index = len(self.tracks)
        label = name or f"{'MIDI' if is_midi else 'Audio'} {index + 1}"
        self.tracks.append(FakeTrack(index=index, is_midi=is_midi, name=label, slots=[None] * self.scenes))
        return index

    def add_clip(
        self,
        track_index: int,
        start: float,
        length: float,
        *,
        looping: bool = False,
        loop_start: float = 0.0,
        loop_end: float | None = None,
        start_marker: float | None = None,
        end_marker: float | None = None,
        warping: bool = True,
        file_path: str | None = None,
        notes: Sequence[dict] = (),
        name: str = "",
    ) -> int:
        track = self.tracks[track_index]
        loop_end = loop_start + length if loop_end is None else loop_end
        start_marker = loop_start if start_marker is None else start_marker
        if end_marker is None:
            end_marker = loop_end if looping else start_marker + length
        clip = FakeClip(
            clip_id=next(self._ids),
            track_index=track_index,
            start_time=float(start),
            end_time=float(start) + float(length),
            is_midi=track.is_midi,
            looping=looping,
            warping=warping,
            loop_start=float(loop_start),
            loop_end=float(loop_end),
            start_marker=float(start_marker),
            end_marker=float(end_marker),
            file_path=file_path,
            notes=[dict(note) for note in notes],
            name=name,
        )
        track.arrangement.append(clip)
        return clip.clip_id

    def add_session_clip(self, track_index: int, slot_index: int, length: float, *, looping: bool = True) -> int:
        track = self.tracks[track_index]
        clip = FakeClip(
            clip_id=next(self._ids),
            track_index=track_index,
            start_time=0.0,
            end_time=float(length),
            is_midi=track.is_midi,
            is_arrangement=False,
            looping=looping,
            loop_end=float(length),
            end_marker=float(length),
        )
        track.slots[slot_index] = clip
        return clip.clip_id

    # -- inspection -----------------------------------------------------

    def clip(self, clip_id: int) -> FakeClip | None:
        for track in self.tracks:
            for clip in track.arrangement:
                if clip.clip_id == clip_id:
                    return clip
            for clip in track.slots:
                if clip is not None and clip.clip_id == clip_id:
                    return clip
        return None

    def arrangement(self, track_index: int) -> List[FakeClip]:
        return sorted(self.tracks[track_index].arrangement, key=lambda clip: (clip.start_time, clip.clip_id))

    def spans(self, track_index: int) -> List[Tuple[float, float]]:
        return [(clip.start_time, clip.end_time) for clip in self.arrangement(track_index)]

    # -- path resolution --------------------------------------------------

    def _locate(self, path: str) -> Tuple[str, object]:
        raw = str(path).replace('"', "").strip()
        if raw == "live_set":
            return "live_set", None
        match = _CLIP_ID_PATH.match(raw)
        if match:
            clip = self.clip(int(match.group(1)))
            return ("clip", clip) if clip is not None else ("missing", None)
        match = _TRACK_PATH.match(raw)
        if match:
            return "track", self.tracks[int(match.group(1))]
        match = _SLOT_PATH.match(raw)
        if match:
            return "slot", (self.tracks[int(match.group(1))], int(match.group(2)))
        match = _SLOT_CLIP_PATH.match(raw)
        if match:
            clip = self.tracks[int(match.group(1))].slots[int(match.group(2))]
            return ("clip", clip) if clip is not None else ("missing", None)
        match = _ARRANGEMENT_CLIP_PATH.match(raw)
        if match:
            clips = self.arrangement(int(match.group(1)))
            index = int(match.group(2))
            return ("clip", clips[index]) if index < len(clips) else ("missing", None)
        raise FakeHostError(f"unknown path {raw!r}")

    def _canonical_path(self, clip: FakeClip) -> str:
        track = self.tracks[clip.track_index]
        if clip.is_arrangement:
            index = self.arrangement(track.index).index(clip)
            return f"live_set tracks {track.index} arrangement_clips {index}"
        slot = track.slots.index(clip)
        return f"live_set tracks {track.index} clip_slots {slot} clip"

    # -- LiveAPI surface --------------------------------------------------

    def get(self, path: str, prop: str) -> object | None:
        kind, target = self._locate(path)
        if kind == "live_set":
            return {"signature_numerator": self.sig_num, "signature_denominator": self.sig_den}.get(prop)
        if kind == "missing":
            return None
        if kind == "track":
            return {"name": target.name, "has_midi_input": int(target.is_midi)}.get(prop)
        if kind == "slot":
            track, slot_index = target
            if prop == "has_clip":
                return int(track.slots[slot_index] is not None)
            return None
        clip: FakeClip = target  # type: ignore[assignment]
        values = {
            "id": clip.clip_id,
            "start_time": clip.start_time,
            "end_time": clip.end_time,
            "length": clip.length,
            "is_midi_clip": int(clip.is_midi),
            "is_audio_clip": int(not clip.is_midi),
            "is_arrangement_clip": int(clip.is_arrangement),
            "looping": int(clip.looping),
            "warping": int(clip.warping),
            "loop_start": clip.loop_start,
            "loop_end": clip.loop_end,
            "start_marker": clip.start_marker,
            "end_marker": clip.end_marker,
            "file_path": clip.file_path,
            "name": clip.name,
            "color": clip.color,
        }
        return values.get(prop)

    def set(self, path: str, prop: str, value: object) -> None:
        kind, target = self._locate(path)
        if kind != "clip":
            raise FakeHostError(f"cannot set {prop} on {path}")
        clip: FakeClip = target  # type: ignore[assignment]
        if prop == "looping":
            enable = bool(int(value))  # type: ignore[arg-type]
            was_looping = clip.looping
            clip.looping = enable
            if was_looping and not enable:
                clip.sync_unlooped_end()
        elif prop == "loop_start":
            if float(value) >= clip.loop_end:  # type: ignore[arg-type]
                raise FakeHostError("loop_start must be before loop_end")
            clip.loop_start = float(value)  # type: ignore[arg-type]
        elif prop == "loop_end":
            if float(value) <= clip.loop_start:  # type: ignore[arg-type]
                raise FakeHostError("loop_end must be after loop_start")
            clip.loop_end = float(value)  # type: ignore[arg-type]
        elif prop == "start_marker":
            if float(value) >= clip.end_marker:  # type: ignore[arg-type]
                raise FakeHostError("start_marker must be before end_marker")
            clip.start_marker = float(value)  # type: ignore[arg-type]
            clip.sync_unlooped_end()
        elif prop == "end_marker":
            if float(value) <= clip.start_marker:  # type: ignore[arg-type]
                raise FakeHostError("end_marker must be after start_marker")
            clip.end_marker = float(value)  # type: ignore[arg-type]
            clip.sync_unlooped_end()
        elif prop == "warping":
            clip.warping = bool(int(value))  # type: ignore[arg-type]
        elif prop == "name":
            clip.name = str(value)
        elif prop == "color":
            clip.color = int(value)  # type: ignore[arg-type]
        else:
            raise FakeHostError(f"unsupported clip property {prop}")

    def call(self, path: str, method: str, args: Sequence[object] = ()) -> object | None:
        self.calls.append((str(path), method, list(args)))
        kind, target = self._locate(path)
        if kind == "live_set" and method == "create_scene":
            self.scenes += 1
            for track in self.tracks:
                track.slots.append(None)
            return None
        if kind == "track":
            track: FakeTrack = target  # type: ignore[assignment]
            if method == "duplicate_clip_to_arrangement":
                return self._duplicate_to_arrangement(track, str(args[0]), float(args[1]))  # type: ignore[arg-type]
            if method == "create_midi_clip":
                return self._create_midi_clip(track, float(args[0]), float(args[1]))  # type: ignore[arg-type]
            if method == "delete_clip":
                return self._delete_arrangement_clip(track, str(args[0]))
        if kind == "slot":
            track, slot_index = target  # type: ignore[misc]
            if method == "create_audio_clip":
                return self._create_audio_clip(track, slot_index, str(args[0]))
            if method == "delete_clip":
                track.slots[slot_index] = None
                return None
        if kind == "clip" and method == "get_notes_extended":
            clip: FakeClip = target  # type: ignore[assignment, no-redef]
            from_time = float(args[2])  # type: ignore[arg-type]
            span = float(args[3])  # type: ignore[arg-type]
            notes = [
                dict(note)
                for note in clip.notes
                if from_time <= float(note.get("start_time", 0.0)) < from_time + span
            ]
            return {"notes": notes}
        raise FakeHostError(f"unsupported call {method} on {path}")

    def children(self, path: str, child: str) -> List[dict]:
        kind, target = self._locate(path)
        if kind == "live_set" and child == "tracks":
            return [
                {"id": 1000 + track.index, "index": track.index, "name": track.name, "path": f"live_set tracks {track.index}"}
                for track in self.tracks
            ]
        if kind == "track" and child == "arrangement_clips":
            track: FakeTrack = target  # type: ignore[assignment]
            return [
                {
                    "id": clip.clip_id,
                    "index": index,
                    "name": clip.name,
                    "path": f"live_set tracks {track.index} arrangement_clips {index}",
                }
                for index, clip in enumerate(self.arrangement(track.index))
            ]
        if kind == "track" and child == "clip_slots":
            track = target  # type: ignore[assignment]
            return [
                {"id": 5000 + track.index * 100 + index, "index": index, "path": f"live_set tracks {track.index} clip_slots {index}"}
                for index in range(len(track.slots))
            ]
        raise FakeHostError(f"unsupported children {child} on {path}")

    def describe(self, path: str) -> dict | None:
        kind, target = self._locate(path)
        if kind == "missing":
            return {"id": 0, "type": "", "path": ""}
        if kind != "clip":
            return {"id": 1, "type": kind, "path": str(path)}
        clip: FakeClip = target  # type: ignore[assignment]
        return {"id": clip.clip_id, "type": "Clip", "name": clip.name, "path": self._canonical_path(clip)}

    # -- host behavior ------------------------------------------------------

    def _source_length(self, clip: FakeClip) -> float:
        if clip.is_arrangement:
            return clip.length
        if clip.looping:
            return clip.loop_end - clip.loop_start
        return clip.end_marker - clip.start_marker

    def _duplicate_to_arrangement(self, track: FakeTrack, source_path: str, position: float) -> list:
        kind, source = self._locate(source_path)
        if kind != "clip":
            return ["id", 0]
        source_clip: FakeClip = source  # type: ignore[assignment]
        length = self._source_length(source_clip)
        end = position + length

        if source_clip.is_arrangement:
            self.duplications += 1
            if self.duplications in self.fail_duplications_at:
                return ["id", 0]
            for clip in track.arrangement:
                if clip.start_time < end - EPSILON and clip.end_time > position + EPSILON:
                    raise HostCrashed(
                        f"duplicated clip {source_clip.clip_id} onto occupied span "
                        f"{position:g}-{end:g} on track {track.index} (clip {clip.clip_id})"
                    )
        else:
            self.session_duplications += 1
            if self.session_duplications in self.fail_session_duplications_at:
                return ["id", 0]
            self._overwrite(track, position, end)

        clip = copy.deepcopy(source_clip)
        clip.clip_id = next(self._ids)
        clip.track_index = track.index
        clip.is_arrangement = True
        clip.start_time = position
        clip.end_time = end
        track.arrangement.append(clip)
        return ["id", clip.clip_id]

    def _create_midi_clip(self, track: FakeTrack, position: float, length: float) -> list:
        if not track.is_midi:
            raise FakeHostError("create_midi_clip is only available on MIDI tracks")
        self._overwrite(track, position, position + length)
        clip = FakeClip(
            clip_id=next(self._ids),
            track_index=track.index,
            start_time=position,
            end_time=position + length,
            looping=True,
            loop_end=length,
            end_marker=length,
        )
        track.arrangement.append(clip)
        return ["id", clip.clip_id]

    def _create_audio_clip(self, track: FakeTrack, slot_index: int, file_path: str) -> list:
        if track.is_midi:
            raise FakeHostError("create_audio_clip is only available on audio tracks")
        if track.slots[slot_index] is not None:
            raise FakeHostError(f"clip slot {slot_index} on track {track.index} is not empty")
        length = self.audio_file_lengths.get(file_path, DEFAULT_AUDIO_FILE_LENGTH)
        clip = FakeClip(
            clip_id=next(self._ids),
            track_index=track.index,
            start_time=0.0,
            end_time=length,
            is_midi=False,
            is_arrangement=False,
            looping=False,
            loop_end=length,
            end_marker=length,
            file_path=file_path,
        )
        track.slots[slot_index] = clip
        return ["id", clip.clip_id]

    def _delete_arrangement_clip(self, track: FakeTrack, clip_path: str) -> None:
        kind, target = self._locate(clip_path)
        if kind != "clip" or target not in track.arrangement:
            raise FakeHostError(f"no arrangement clip {clip_path} on track {track.index}")
        track.arrangement.remove(target)  # type: ignore[arg-type]
        return None

    def _overwrite(self, track: FakeTrack, start: float, end: float) -> None:
        """Trim or remove whatever a newly written clip covers."""
        for clip in list(track.arrangement):
            if clip.end_time <= start + EPSILON or clip.start_time >= end - EPSILON:
                continue
            covers_head = clip.start_time >= start - EPSILON
            covers_tail = clip.end_time <= end + EPSILON
            if covers_head and covers_tail:
                track.arrangement.remove(clip)
            elif not covers_head and not covers_tail:
                raise FakeHostError(f"write {start:g}-{end:g} would split clip {clip.clip_id}")
            elif covers_tail:
                kept = start - clip.start_time
                clip.end_time = start
                if not clip.looping:
                    clip.end_marker = clip.start_marker + kept
            else:
                delta = end - clip.start_time
                if clip.looping:
                    loop_length = clip.loop_end - clip.loop_start
                    clip.start_marker = clip.loop_start + (
                        (clip.start_marker - clip.loop_start + delta) % loop_length
                    )
                else:
                    clip.start_marker += delta
                clip.start_time = end
                clip.clip_id = next(self._ids)
