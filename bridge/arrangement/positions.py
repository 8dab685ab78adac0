"""bar|beat positions and bar:beat durations in Live's quarter-note beats.

Positions are 1-based (`1|1` is the first beat of the first bar); durations
are 0-based (`1:0` is one bar). Beats may be fractional: `2.5`, `3/2` or
`2+1/3`. Time signatures other than x/4 scale musical beats into quarter
notes, so `2|1` in 6/8 is 3.0 beats.
"""

from __future__ import annotations

import re
from typing import List

from arrangement.base import ClipUpdateError


_BEAT_VALUE = r"-?\d+(?:\+\d+/\d+|\.\d+|/\d+)?"

BAR_BEAT_RE = re.compile(rf"^(-?\d+)\|({_BEAT_VALUE})$")

BAR_BEAT_DURATION_RE = re.compile(rf"^(-?\d+):({_BEAT_VALUE})$")


def _parse_beat_value(text: str, context: str) -> float:
    if "+" in text:
        whole, fraction = text.split("+", 1)
        numerator, denominator = fraction.split("/", 1)
        if int(denominator) == 0:
            raise ValueError(f"division by zero in {context!r}")
        return int(whole) + int(numerator) / int(denominator)
    if "/" in text:
        numerator, denominator = text.split("/", 1)
        if int(denominator) == 0:
            raise ValueError(f"division by zero in {context!r}")
        return int(numerator) / int(denominator)
    return float(text)


def _quarter_notes(musical_beats: float, sig_den: int) -> float:
    return musical_beats * (4.0 / float(sig_den))


def is_bar_beat(text: str) -> bool:
    return BAR_BEAT_RE.match(text.strip()) is not None


def is_bar_beat_duration(text: str) -> bool:
    return BAR_BEAT_DURATION_RE.match(text.strip()) is not None


def bar_beat_to_beats(text: str, sig_num: int, sig_den: int) -> float:
    """Convert an absolute bar|beat position to beats from the song (or clip) start.

    Raises ValueError for syntax that does not match, and for bars or beats
    below 1.
    """
    raw = text.strip()
    match = BAR_BEAT_RE.match(raw)
    if match is None:
        raise ValueError(f"invalid bar|beat position {raw!r}; expected e.g. '1|1', '2|3.5' or '1|2+1/3'")
    bar = int(match.group(1))
    beat = _parse_beat_value(match.group(2), raw)
    if bar < 1:
        raise ValueError(f"bar number must be 1 or greater, got {bar}")
    if beat < 1:
        raise ValueError(f"beat must be 1 or greater, got {beat:g}")
    return _quarter_notes((bar - 1) * sig_num + (beat - 1), sig_den)


def bar_beat_duration_to_beats(text: str, sig_num: int, sig_den: int) -> float:
    raw = text.strip()
    match = BAR_BEAT_DURATION_RE.match(raw)
    if match is None:
        raise ValueError(f"invalid bar:beat duration {raw!r}; expected e.g. '4:0' or '0:2.5'")
    bars = int(match.group(1))
    beats = _parse_beat_value(match.group(2), raw)
    if bars < 0:
        raise ValueError(f"bars in duration must be 0 or greater, got {bars}")
    if beats < 0:
        raise ValueError(f"beats in duration must be 0 or greater, got {beats:g}")
    return _quarter_notes(bars * sig_num + beats, sig_den)


def split_list(text: str) -> List[str]:
    return [part.strip() for part in str(text).split(",") if part.strip()]


def require_bar_beat_list(text: str, option: str) -> List[str]:
    """Request-boundary check: every comma-separated entry must be bar|beat shaped."""
    parts = split_list(text)
    if not parts:
        raise ClipUpdateError(f"{option} must list at least one bar|beat position")
    for part in parts:
        if not is_bar_beat(part):
            raise ClipUpdateError(f"{option}: invalid bar|beat position {part!r}")
    return parts


def require_bar_beat_duration(text: str, option: str) -> str:
    raw = str(text).strip()
    if not is_bar_beat_duration(raw):
        raise ClipUpdateError(f"{option}: invalid bar:beat duration {raw!r}")
    return raw


def parse_split_offsets(text: str, sig_num: int, sig_den: int) -> List[float] | None:
    """Parse comma-separated clip-local bar|beat positions into sorted unique offsets.

    Returns None when any entry cannot be converted.
    """
    offsets: List[float] = []
    for part in split_list(text):
        try:
            offsets.append(bar_beat_to_beats(part, sig_num, sig_den))
        except ValueError:
            return None
    return sorted(set(offsets))
