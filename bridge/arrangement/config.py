from __future__ import annotations

import argparse
from dataclasses import dataclass
from typing import Iterable

import ableton_udp_bridge as bridge
from arrangement.base import DEFAULT_ACK_TIMEOUT_S, DEFAULT_SILENCE_WAV_PATH
from arrangement.positions import is_bar_beat, is_bar_beat_duration, split_list

@dataclass(frozen=True)
class ClipUpdateConfig:
    ids: str
    split: str | None
    slice: str | None
    arrangement_start: str | None
    arrangement_length: str | None
    name: str | None
    color: int | None
    silence_wav_path: str | None
    ack_timeout_s: float
    quiet: bool
    dry_run: bool

def _optional_text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None

def parse_args(argv: Iterable[str] | None = None) -> ClipUpdateConfig:
    parser = argparse.ArgumentParser(
        description="Split, slice, lengthen, move or stack arrangement clips via the UDP bridge.",
    )
    parser.add_argument(
        "--ids",
        required=True,
        help="Comma-separated clip ids to update (for example: 12,15 or 'id 12')",
    )
    parser.add_argument(
        "--split",
        default=None,
        help="Comma-separated clip-relative bar|beat split points (for example: '2|1, 3|1')",
    )
    parser.add_argument(
        "--slice",
        default=None,
        help="Uniform slice interval as bar:beat duration (for example: '1:0' or '0:2')",
    )
    parser.add_argument(
        "--arrangement-start",
        default=None,
        help="Target bar|beat position(s); one per clip, one for all, or several for one clip",
    )
    parser.add_argument(
        "--arrangement-length",
        default=None,
        help="Target arrangement length as bar:beat duration (for example: '4:0')",
    )
    parser.add_argument("--name", default=None, help="Name applied to every resulting clip")
    parser.add_argument(
        "--color",
        type=bridge.clip_color,
        default=None,
        help="Clip color applied to every resulting clip (0xRRGGBB or decimal)",
    )
    parser.add_argument(
        "--silence-wav",
        default=str(DEFAULT_SILENCE_WAV_PATH),
        help=f"Silent audio file used to trim audio clips (default: {DEFAULT_SILENCE_WAV_PATH})",
    )
    parser.add_argument(
        "--ack-timeout",
        type=bridge.positive_float,
        default=DEFAULT_ACK_TIMEOUT_S,
        help=f"Ack wait timeout in seconds (default: {DEFAULT_ACK_TIMEOUT_S})",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Do not print sent:/ack: lines for each LiveAPI request",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate and print the request without sending OSC messages",
    )

    ns = parser.parse_args(None if argv is None else list(argv))

    split = _optional_text(ns.split)
    slice_ = _optional_text(ns.slice)
    arrangement_start = _optional_text(ns.arrangement_start)
    arrangement_length = _optional_text(ns.arrangement_length)

    if not split_list(ns.ids):
        parser.error("--ids must list at least one clip id")
    if split is not None and slice_ is not None:
        parser.error("--split and --slice cannot be combined")
    if split is not None and not all(is_bar_beat(part) for part in split_list(split) or [""]):
        parser.error("--split must be comma-separated bar|beat positions")
    if slice_ is not None and not is_bar_beat_duration(slice_):
        parser.error("--slice must be a bar:beat duration")
    if arrangement_start is not None and not all(
        is_bar_beat(part) for part in split_list(arrangement_start) or [""]
    ):
        parser.error("--arrangement-start must be comma-separated bar|beat positions")
    if arrangement_length is not None and not is_bar_beat_duration(arrangement_length):
        parser.error("--arrangement-length must be a bar:beat duration")

    return ClipUpdateConfig(
        ids=str(ns.ids),
        split=split,
        slice=slice_,
        arrangement_start=arrangement_start,
        arrangement_length=arrangement_length,
        name=None if ns.name is None else str(ns.name),
        color=None if ns.color is None else int(ns.color),
        silence_wav_path=_optional_text(ns.silence_wav),
        ack_timeout_s=float(ns.ack_timeout),
        quiet=bool(ns.quiet),
        dry_run=bool(ns.dry_run),
    )
