"""Holding area: far-future scratch space on each track for staging copies.

Staged clips never sit next to real content, so intermediate copies cannot
collide with it, and an interrupted edit leaves nothing audible behind. Any
clip still in the region when a cycle ends is an orphan and gets swept.
"""

from __future__ import annotations

import sys
from typing import Any, Dict, Iterable

from arrangement.base import (
    EPSILON,
    HOLDING_GAP_BEATS,
    HOLDING_MARGIN_BARS,
    HOLDING_MIN_BARS,
    _bars_ceil,
)
from arrangement.clip_ops import delete_clip, list_arrangement_clips


def compute_holding_start(
    client: Any,
    track_indices: Iterable[int],
    beats_per_bar: float,
    horizon: float = 0.0,
) -> float:
    """Place the holding area well past every clip on the given tracks and past `horizon`."""
    furthest = max(0.0, float(horizon))
    for track_index in sorted(set(track_indices)):
        for ref in list_arrangement_clips(client, track_index):
            furthest = max(furthest, ref.end_time)
    bars = max(_bars_ceil(furthest, beats_per_bar) + HOLDING_MARGIN_BARS, HOLDING_MIN_BARS)
    return float(bars) * float(beats_per_bar)


class HoldingArea:
    def __init__(self, client: Any, start: float) -> None:
        self.client = client
        self.start = float(start)
        self._cursors: Dict[int, float] = {}

    def reserve(self, track_index: int, length: float) -> float:
        """Return a free position for a clip of `length` beats on the track."""
        position = self._cursors.get(track_index, self.start)
        self._cursors[track_index] = position + float(length) + HOLDING_GAP_BEATS
        return position

    def contains(self, position: float) -> bool:
        return position >= self.start - EPSILON

    def sweep(self, track_index: int) -> int:
        """Delete anything left in the region and reset the track's cursor."""
        leftovers = [
            ref
            for ref in list_arrangement_clips(self.client, track_index)
            if self.contains(ref.start_time) and ref.clip_id is not None
        ]
        for ref in leftovers:
            delete_clip(self.client, track_index, int(ref.clip_id))
        if leftovers:
            print(
                f"warning: swept {len(leftovers)} staged clip(s) from the holding area on track {track_index}",
                file=sys.stderr,
            )
        self._cursors.pop(track_index, None)
        return len(leftovers)
