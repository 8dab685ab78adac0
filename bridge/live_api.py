"""LiveAPI request/reply client on top of the UDP bridge.

Every request carries a request id; the bridge device echoes it as the last
argument of the matching `/ack` packet, which is how replies are paired with
requests on a connectionless transport.
"""

from __future__ import annotations

import itertools
import json
import socket
import sys
from typing import Any, List, Sequence

import ableton_udp_bridge as bridge


OscAck = bridge.OscAck


class LiveApiError(RuntimeError):
    """The bridge answered a request with an `error api_*` ack."""


def _req_id(*parts: object) -> str:
    raw = "-".join(str(p) for p in parts if p is not None)
    return raw.replace(" ", "_")


def _print_acks(acks: Sequence[OscAck]) -> None:
    if not acks:
        print("ack:  (none received; bridge may not be loaded yet)")
        return
    for address, args in acks:
        for line in bridge.summarize_ack(address, args):
            print(line)


def _matching_ack(acks: Sequence[OscAck], event: str, request_id: str, min_args: int) -> List[bridge.OscArg] | None:
    for address, args in acks:
        if address != "/ack" or len(args) < min_args:
            continue
        if args[0] != event:
            continue
        if str(args[-1]) != request_id:
            continue
        return list(args)
    return None


def _decode_value(value: bridge.OscArg) -> object:
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def _extract_api_error(acks: Sequence[OscAck], request_id: str) -> str | None:
    for address, args in acks:
        if address != "/ack" or len(args) < 3:
            continue
        if args[0] != "error" or not str(args[1]).startswith("api_"):
            continue
        if str(args[-1]) != request_id:
            continue
        return " ".join(str(a) for a in args[1:-1])
    return None


def _extract_api_children(acks: Sequence[OscAck], request_id: str) -> List[dict]:
    args = _matching_ack(acks, "api_children", request_id, 4)
    if args is None or not isinstance(args[3], str):
        return []
    try:
        parsed = json.loads(args[3])
    except json.JSONDecodeError:
        return []
    return parsed if isinstance(parsed, list) else []


def _extract_api_describe(acks: Sequence[OscAck], request_id: str) -> dict | None:
    args = _matching_ack(acks, "api_describe", request_id, 3)
    if args is None:
        return None
    parsed = _decode_value(args[2])
    return parsed if isinstance(parsed, dict) else None


def _scalar(value: object | None) -> object | None:
    """Extract a scalar value from LiveAPI-style responses."""
    if isinstance(value, list):
        if not value:
            return None
        return value[-1]
    return value


def _as_float(value: object | None) -> float | None:
    scalar = _scalar(value)
    if scalar is None:
        return None
    try:
        return float(scalar)
    except (TypeError, ValueError):
        return None


def _as_int(value: object | None) -> int | None:
    scalar = _scalar(value)
    if scalar is None:
        return None
    try:
        return int(float(scalar))
    except (TypeError, ValueError):
        return None


def _as_bool(value: object | None) -> bool:
    parsed = _as_int(value)
    return bool(parsed) if parsed is not None else False


def _sanitize_live_path(path: str) -> str:
    """Remove quoting artifacts that can appear in LiveAPI path strings."""
    return str(path).replace('"', "").strip()


def _extract_id_from_call_result(result: object | None) -> int | None:
    if isinstance(result, list):
        for idx, item in enumerate(result):
            if str(item) == "id" and idx + 1 < len(result):
                return _as_int(result[idx + 1])
        if len(result) == 1:
            return _as_int(result[0])
    if isinstance(result, dict):
        return _as_int(result.get("id"))
    if isinstance(result, str) and result.startswith("id "):
        return _as_int(result[3:])
    return None


def clip_path(clip_id: int) -> str:
    return f"id {int(clip_id)}"


def track_path(track_index: int) -> str:
    return f"live_set tracks {int(track_index)}"


class LiveApiClient:
    """Synchronous LiveAPI RPC over the bridge sockets.

    The engine only ever talks to objects with `get`, `set`, `call`,
    `children` and `describe`; tests substitute an in-memory host with the
    same surface.
    """

    def __init__(
        self,
        sock: socket.socket,
        ack_sock: socket.socket,
        timeout_s: float,
        *,
        host: str = bridge.DEFAULT_HOST,
        port: int = bridge.DEFAULT_PORT,
        request_prefix: str = "clip",
        verbose: bool = True,
    ) -> None:
        self.sock = sock
        self.ack_sock = ack_sock
        self.timeout_s = float(timeout_s)
        self.host = host
        self.port = port
        self.request_prefix = request_prefix
        self.verbose = verbose
        self._counter = itertools.count(1)

    def _next_request_id(self, verb: str) -> str:
        return _req_id(self.request_prefix, verb, next(self._counter))

    def _roundtrip(self, cmd: bridge.OscCommand, request_id: str) -> List[OscAck]:
        if self.verbose:
            print(f"sent: {bridge.describe_command(cmd)}")
        acks = bridge.send_and_collect_acks(
            self.sock,
            self.ack_sock,
            cmd,
            self.timeout_s,
            host=self.host,
            port=self.port,
        )
        if self.verbose:
            _print_acks(acks)
        error = _extract_api_error(acks, request_id)
        if error is not None:
            raise LiveApiError(f"{cmd.address} failed: {error}")
        return acks

    def get(self, path: str, prop: str) -> object | None:
        request_id = self._next_request_id("get")
        cmd = bridge.OscCommand("/api/get", (path, prop, request_id))
        acks = self._roundtrip(cmd, request_id)
        args = _matching_ack(acks, "api_get", request_id, 4)
        return None if args is None else _decode_value(args[3])

    def set(self, path: str, prop: str, value: object) -> None:
        request_id = self._next_request_id("set")
        cmd = bridge.OscCommand("/api/set", (path, prop, json.dumps(value), request_id))
        self._roundtrip(cmd, request_id)

    def call(self, path: str, method: str, args: Sequence[object] = ()) -> object | None:
        request_id = self._next_request_id("call")
        cmd = bridge.OscCommand("/api/call", (path, method, json.dumps(list(args)), request_id))
        acks = self._roundtrip(cmd, request_id)
        reply = _matching_ack(acks, "api_call", request_id, 4)
        return None if reply is None else _decode_value(reply[3])

    def children(self, path: str, child: str) -> List[dict]:
        request_id = self._next_request_id("children")
        cmd = bridge.OscCommand("/api/children", (path, child, request_id))
        return _extract_api_children(self._roundtrip(cmd, request_id), request_id)

    def describe(self, path: str) -> dict | None:
        request_id = self._next_request_id("describe")
        cmd = bridge.OscCommand("/api/describe", (path, request_id))
        return _extract_api_describe(self._roundtrip(cmd, request_id), request_id)


def signature(client: Any) -> tuple[int, int]:
    """Return the song time signature, falling back to 4/4 when unreadable."""
    numerator = _as_int(client.get("live_set", "signature_numerator"))
    denominator = _as_int(client.get("live_set", "signature_denominator"))
    if not numerator or not denominator or numerator <= 0 or denominator <= 0:
        print("warning: could not read song time signature; assuming 4/4", file=sys.stderr)
        return 4, 4
    return int(numerator), int(denominator)
