#!/usr/bin/env python3
"""Split, slice, lengthen, move or stack arrangement clips via the UDP bridge."""

from __future__ import annotations

import json
import socket
import sys
from typing import Iterable

import ableton_udp_bridge as bridge
import live_api as api
from arrangement.base import ACK_PORT, HOST, PORT, ClipUpdateError, _resolve_silence_wav_path
from arrangement.config import ClipUpdateConfig, parse_args
from arrangement.update import ClipUpdateRequest, parse_clip_ids, update_clips, validate_request


def _request_from_config(cfg: ClipUpdateConfig) -> ClipUpdateRequest:
    return ClipUpdateRequest(
        ids=cfg.ids,
        split=cfg.split,
        slice=cfg.slice,
        arrangement_start=cfg.arrangement_start,
        arrangement_length=cfg.arrangement_length,
        name=cfg.name,
        color=cfg.color,
    )


def _print_request(request: ClipUpdateRequest, silence_wav_path: str) -> None:
    print(f"info: clip ids {', '.join(str(clip_id) for clip_id in parse_clip_ids(request.ids))}")
    for label, value in (
        ("split", request.split),
        ("slice", request.slice),
        ("arrangement start", request.arrangement_start),
        ("arrangement length", request.arrangement_length),
        ("name", request.name),
        ("color", None if request.color is None else f"0x{request.color:06X}"),
    ):
        if value is not None:
            print(f"info: {label} {value}")
    print(f"info: silence wav {silence_wav_path}")


def run(cfg: ClipUpdateConfig) -> int:
    request = _request_from_config(cfg)
    silence_wav_path = str(_resolve_silence_wav_path(cfg.silence_wav_path))
    try:
        validate_request(request)
        if cfg.dry_run:
            _print_request(request, silence_wav_path)
            print("info: dry run, nothing sent")
            return 0
    except ClipUpdateError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    ack_sock = bridge.open_ack_socket(HOST, ACK_PORT)
    if ack_sock is None:
        print("error: failed to open ack socket", file=sys.stderr)
        return 1

    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            print(f"\nTarget: udp://{HOST}:{PORT}")
            print(f"Ack:    udp://{HOST}:{ACK_PORT} (timeout {cfg.ack_timeout_s:.2f}s)")
            client = api.LiveApiClient(
                sock,
                ack_sock,
                cfg.ack_timeout_s,
                host=HOST,
                port=PORT,
                verbose=not cfg.quiet,
            )
            try:
                result = update_clips(client, request, silence_wav_path)
            except ClipUpdateError as exc:
                print(f"error: {exc}", file=sys.stderr)
                return 2
    finally:
        ack_sock.close()

    if result.warnings:
        print(f"info: finished with {len(result.warnings)} warning(s)")
    print(f"result: {json.dumps(result.payload(), sort_keys=True)}")
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    cfg = parse_args(argv)
    try:
        return run(cfg)
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 130
    except Exception as exc:  # noqa: BLE001 - CLI should report unexpected failures and exit non-zero
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
