#!/usr/bin/env python3
"""
Transport layer for the Ableton Live UDP bridge.

Commands are OSC (Open Sound Control) messages sent to a Max for Live device
that listens on UDP port 9000 via `udpreceive 9000`; replies come back as
`/ack` packets on port 9001. OSC encoding is implemented using only the
Python standard library.
"""

from __future__ import annotations

import argparse
import json
import select
import socket
import struct
import sys
import time
from dataclasses import dataclass
from typing import List, Sequence, Tuple, Union


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9000
DEFAULT_ACK_PORT = 9001

OscArg = Union[int, float, str]

OscAck = Tuple[str, List[OscArg]]


@dataclass(frozen=True)
class OscCommand:
    address: str
    args: Tuple[OscArg, ...] = ()


def positive_float(value: str) -> float:
    parsed = float(value)
    if parsed <= 0:
        raise argparse.ArgumentTypeError("value must be > 0")
    return parsed


def clip_color(value: str) -> int:
    parsed = int(value, 0)
    if not 0 <= parsed <= 0xFFFFFF:
        raise argparse.ArgumentTypeError("color must be between 0x000000 and 0xFFFFFF")
    return parsed


def _pad4(length: int) -> int:
    remainder = length % 4
    return 0 if remainder == 0 else 4 - remainder


def _encode_osc_string(value: str) -> bytes:
    raw = value.encode("utf-8") + b"\x00"
    raw += b"\x00" * _pad4(len(raw))
    return raw


def _decode_osc_string(data: bytes, start: int) -> Tuple[str, int]:
    end = data.find(b"\x00", start)
    if end == -1:
        # Some OSC senders appear to omit the trailing NUL on the final string.
        # In that case, treat the remainder as the string and stop parsing.
        text = data[start:].decode("utf-8", errors="replace")
        return text, len(data)
    text = data[start:end].decode("utf-8", errors="replace")
    idx = end + 1
    idx += _pad4(idx)
    return text, idx


def encode_osc_message(address: str, args: Sequence[OscArg]) -> bytes:
    if not address.startswith("/"):
        raise ValueError(f"OSC address must start with '/': {address}")

    type_tags: List[str] = []
    payload = bytearray()

    for arg in args:
        if isinstance(arg, bool):
            type_tags.append("i")
            payload.extend(struct.pack(">i", int(arg)))
        elif isinstance(arg, int):
            type_tags.append("i")
            payload.extend(struct.pack(">i", arg))
        elif isinstance(arg, float):
            type_tags.append("f")
            payload.extend(struct.pack(">f", arg))
        elif isinstance(arg, str):
            type_tags.append("s")
            payload.extend(_encode_osc_string(arg))
        else:
            raise TypeError(f"Unsupported OSC argument type: {type(arg)}")

    type_tag_string = "," + "".join(type_tags)
    return _encode_osc_string(address) + _encode_osc_string(type_tag_string) + payload


def decode_osc_message(data: bytes) -> Tuple[str, List[OscArg]]:
    if data.startswith(b"#bundle"):
        raise ValueError("OSC bundles are not supported by this minimal decoder")

    address, idx = _decode_osc_string(data, 0)
    type_tags, idx = _decode_osc_string(data, idx)

    if not type_tags.startswith(","):
        raise ValueError(f"OSC type tags must start with ',': {type_tags}")

    args: List[OscArg] = []
    for tag in type_tags[1:]:
        if tag in ("i", "f"):
            if idx + 4 > len(data):
                kind = "int" if tag == "i" else "float"
                raise ValueError(f"OSC {kind} argument truncated")
            value = struct.unpack(">" + tag, data[idx : idx + 4])[0]
            idx += 4
            args.append(value)
        elif tag == "s":
            text, idx = _decode_osc_string(data, idx)
            args.append(text)
        else:
            raise ValueError(f"Unsupported OSC type tag: {tag}")

    return address, args


def format_arg(value: OscArg) -> str:
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


def describe_command(cmd: OscCommand) -> str:
    if not cmd.args:
        return cmd.address
    return cmd.address + " " + " ".join(format_arg(arg) for arg in cmd.args)


def try_parse_json(value: OscArg) -> object | None:
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return None


def _compact(value: OscArg, max_len: int = 120) -> str:
    parsed = try_parse_json(value)
    if isinstance(parsed, (dict, list)):
        text = json.dumps(parsed, separators=(",", ":"))
    else:
        text = str(value)
    return text if len(text) <= max_len else text[: max_len - 3] + "..."


# LiveAPI reply events and the index of their trailing request id.
_RPC_REPLIES = {
    "api_get": 4,
    "api_set": 4,
    "api_call": 4,
    "api_children": 4,
    "api_describe": 3,
}


def _rpc_ack_summary(args: Sequence[OscArg]) -> str | None:
    """One readable line for a LiveAPI reply, or None for anything else."""
    if not args:
        return None
    event = str(args[0])

    if event == "error":
        if len(args) < 2 or not str(args[1]).startswith("api_"):
            return None
        return "api_error " + " ".join(str(a) for a in args[1:])

    width = _RPC_REPLIES.get(event)
    if width is None or len(args) < width:
        return None
    request = f" req={args[width]}" if len(args) > width and args[width] not in (None, "") else ""
    if event == "api_children":
        children = try_parse_json(args[3])
        count = len(children) if isinstance(children, list) else "?"
        return f"api_children {args[1]} {args[2]} count={count}{request}"
    if event == "api_describe":
        return f"api_describe {args[1]} -> {_compact(args[2])}{request}"
    return f"{event} {args[1]} {args[2]} -> {_compact(args[3])}{request}"


def summarize_ack(address: str, args: Sequence[OscArg]) -> List[str]:
    suffix = "" if not args else " " + " ".join(format_arg(a) for a in args)
    lines = [f"ack:  {address}{suffix}"]

    if address == "/ack":
        summary = _rpc_ack_summary(args)
        if summary:
            lines.append(f"ack:  {summary}")

    return lines


def open_ack_socket(host: str = DEFAULT_HOST, ack_port: int = DEFAULT_ACK_PORT) -> socket.socket | None:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.bind((host, ack_port))
    except OSError as exc:
        print(
            f"warning: could not bind ack socket on {host}:{ack_port}: {exc}",
            file=sys.stderr,
        )
        sock.close()
        return None

    sock.setblocking(False)
    return sock


def _decode_packet(packet: bytes) -> OscAck:
    try:
        return decode_osc_message(packet)
    except (ValueError, struct.error) as exc:
        return ("<unparsed>", [f"{exc}: {packet!r}"])


def wait_for_acks(
    sock: socket.socket,
    timeout_s: float,
    quiet_window_s: float = 0.05,
) -> List[OscAck]:
    if timeout_s <= 0:
        return []

    deadline = time.monotonic() + timeout_s
    received: List[OscAck] = []
    quiet_window = max(0.0, float(quiet_window_s))

    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break

        # Full timeout until the first ack; then only the quiet window.
        wait_timeout = remaining
        if received and quiet_window > 0.0:
            wait_timeout = min(wait_timeout, quiet_window)

        readable, _, _ = select.select([sock], [], [], wait_timeout)
        if not readable:
            break

        while True:
            try:
                packet, _addr = sock.recvfrom(65535)
            except BlockingIOError:
                break
            except OSError:
                return received

            received.append(_decode_packet(packet))

    return received


def drain_acks_nonblocking(sock: socket.socket) -> List[OscAck]:
    drained: List[OscAck] = []
    while True:
        try:
            packet, _addr = sock.recvfrom(65535)
        except OSError:
            break
        drained.append(_decode_packet(packet))
    return drained


def send_and_collect_acks(
    sock: socket.socket,
    ack_sock: socket.socket,
    command: OscCommand,
    timeout_s: float,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> List[OscAck]:
    """Send one command and collect the acks that follow it.

    Stale packets from an earlier request are drained first so a late reply
    cannot be mistaken for this command's answer.
    """
    drain_acks_nonblocking(ack_sock)
    payload = encode_osc_message(command.address, command.args)
    sock.sendto(payload, (host, port))
    return wait_for_acks(ack_sock, timeout_s)
