from __future__ import annotations

import math
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Literal

import ableton_udp_bridge as bridge


HOST = bridge.DEFAULT_HOST

PORT = bridge.DEFAULT_PORT

ACK_PORT = bridge.DEFAULT_ACK_PORT

EPSILON = 1e-3

MAX_SPLIT_POINTS = 32

MAX_SLICES = 64

HOLDING_GAP_BEATS = 4.0

HOLDING_MARGIN_BARS = 10

HOLDING_MIN_BARS = 10

DEFAULT_ACK_TIMEOUT_S = 0.6

DEFAULT_SILENCE_WAV_PATH = Path("bridge/assets/silence.wav")

# Large enough to cover any note a clip could hold past its visible end.
NOTE_SCAN_SPAN_BEATS = 1_000_000.0

ClipKind = Literal[
    "looped_midi",
    "looped_audio",
    "unlooped_midi",
    "unlooped_warped_audio",
    "unlooped_unwarped_audio",
]

OverlapCategory = Literal["contains", "before", "after", "straddles"]

class ClipUpdateError(ValueError):
    """A request that cannot be executed at all (bad ids, bad syntax, bad fan-out)."""

class DuplicationFailed(RuntimeError):
    """The host returned no object for a duplicate, or the target could not be made safe."""

@dataclass(frozen=True)
class ArrangementClipRef:
    path: str
    clip_id: int | None
    start_time: float
    end_time: float

    @property
    def length(self) -> float:
        return self.end_time - self.start_time

@dataclass(frozen=True)
class ClipState:
    clip_id: int
    track_index: int
    start_time: float
    end_time: float
    is_midi: bool
    is_arrangement: bool
    looping: bool
    warping: bool
    loop_start: float
    loop_end: float
    start_marker: float
    end_marker: float
    file_path: str | None = None

    @property
    def path(self) -> str:
        return f"id {self.clip_id}"

    @property
    def track_path(self) -> str:
        return f"live_set tracks {self.track_index}"

    @property
    def length(self) -> float:
        return self.end_time - self.start_time

    @property
    def loop_length(self) -> float:
        return self.loop_end - self.loop_start

    @property
    def kind(self) -> ClipKind:
        if self.looping:
            return "looped_midi" if self.is_midi else "looped_audio"
        if self.is_midi:
            return "unlooped_midi"
        return "unlooped_warped_audio" if self.warping else "unlooped_unwarped_audio"

    def ref(self) -> ArrangementClipRef:
        return ArrangementClipRef(
            path=self.path,
            clip_id=self.clip_id,
            start_time=self.start_time,
            end_time=self.end_time,
        )

class WarningLog:
    """Collects operation-level warnings, printing each one once.

    Warnings with a `key` are deduplicated by key so a batch over many clips
    reports a shared problem (for example an invalid split string) a single time.
    """

    def __init__(self) -> None:
        self._seen: set[str] = set()
        self.messages: List[str] = []

    def add(self, message: str, key: str | None = None) -> None:
        token = key if key is not None else message
        if token in self._seen:
            return
        self._seen.add(token)
        self.messages.append(message)
        print(f"warning: {message}", file=sys.stderr)

    def has(self, key: str) -> bool:
        return key in self._seen

    def __len__(self) -> int:
        return len(self.messages)

@dataclass
class EditContext:
    """Everything one update request threads through the engine."""

    client: Any
    holding: Any
    warnings: WarningLog
    silence_wav_path: str

def _repo_root() -> Path:
    # base.py lives at bridge/arrangement/base.py; repo root is two levels up.
    return Path(__file__).resolve().parents[2]

def _resolve_silence_wav_path(raw_path: str | None) -> Path:
    if raw_path in (None, ""):
        return _repo_root() / DEFAULT_SILENCE_WAV_PATH
    path = Path(raw_path)
    if path.is_absolute():
        return path
    return _repo_root() / path

def _beats_per_bar(sig_num: int, sig_den: int) -> float:
    """Convert Live's time signature into quarter-note beat units."""
    if sig_num <= 0:
        raise ValueError("signature_numerator must be > 0")
    if sig_den <= 0:
        raise ValueError("signature_denominator must be > 0")
    return float(sig_num) * 4.0 / float(sig_den)

def _bars_ceil(beats: float, beats_per_bar: float) -> int:
    if beats <= 0:
        return 0
    return int(math.ceil(float(beats) / float(beats_per_bar) - EPSILON))

def _overlaps(start_a: float, end_a: float, start_b: float, end_b: float) -> bool:
    return start_a < end_b - EPSILON and end_a > start_b + EPSILON

def _same_time(a: float, b: float) -> bool:
    return abs(float(a) - float(b)) <= EPSILON
