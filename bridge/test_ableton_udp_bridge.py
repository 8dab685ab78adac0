#!/usr/bin/env python3
"""Unit tests for the UDP bridge transport helpers."""

from __future__ import annotations

import argparse
import json
import pathlib
import sys
import unittest
from unittest import mock

sys.path.append(str(pathlib.Path(__file__).resolve().parent))

import ableton_udp_bridge as bridge


class BridgeCodecTests(unittest.TestCase):
    def test_encode_decode_mixed_arguments(self) -> None:
        packet = bridge.encode_osc_message("/api/set", ("id 12", "start_marker", 2.5, 7))
        self.assertEqual(len(packet) % 4, 0)
        address, args = bridge.decode_osc_message(packet)
        self.assertEqual(address, "/api/set")
        self.assertEqual(args[:2], ["id 12", "start_marker"])
        self.assertAlmostEqual(float(args[2]), 2.5)
        self.assertEqual(args[3], 7)

    def test_describe_command_formats_floats_compactly(self) -> None:
        cmd = bridge.OscCommand("/api/call", ("live_set tracks 0", "create_midi_clip", 4.0))
        self.assertEqual(bridge.describe_command(cmd), "/api/call live_set tracks 0 create_midi_clip 4")

    def test_clip_color_accepts_hex_and_rejects_out_of_range(self) -> None:
        self.assertEqual(bridge.clip_color("0xFF0000"), 0xFF0000)
        self.assertEqual(bridge.clip_color("255"), 255)
        with self.assertRaises(argparse.ArgumentTypeError):
            bridge.clip_color("0x1000000")


class BridgeAckSummaryTests(unittest.TestCase):
    def test_rpc_ack_summary_children(self) -> None:
        children = [
            {"index": 0, "id": 101, "path": "live_set tracks 0 arrangement_clips 0", "name": "Verse"},
            {"index": 1, "id": 102, "path": "live_set tracks 0 arrangement_clips 1", "name": "Chorus"},
        ]
        args = [
            "api_children",
            "live_set tracks 0",
            "arrangement_clips",
            json.dumps(children),
            "clip-children-2",
        ]
        lines = bridge.summarize_ack("/ack", args)
        self.assertGreaterEqual(len(lines), 2)
        self.assertIn("api_children live_set tracks 0 arrangement_clips count=2", lines[1])
        self.assertIn("req=clip-children-2", lines[1])

    def test_rpc_ack_summary_call_result(self) -> None:
        args = ["api_call", "live_set tracks 1", "duplicate_clip_to_arrangement", '["id", 230]', "clip-call-9"]
        lines = bridge.summarize_ack("/ack", args)
        self.assertIn('duplicate_clip_to_arrangement -> ["id",230]', lines[1])
        self.assertIn("req=clip-call-9", lines[1])

    def test_rpc_ack_summary_error(self) -> None:
        args = ["error", "api_call", "no such object", "clip-call-3"]
        lines = bridge.summarize_ack("/ack", args)
        self.assertIn("api_error api_call no such object", lines[1])

    def test_rpc_ack_summary_describe(self) -> None:
        args = ["api_describe", "id 17", json.dumps({"id": 17, "path": "live_set tracks 2 arrangement_clips 0"}), "clip-describe-4"]
        lines = bridge.summarize_ack("/ack", args)
        self.assertEqual(
            lines[1],
            'ack:  api_describe id 17 -> {"id":17,"path":"live_set tracks 2 arrangement_clips 0"} req=clip-describe-4',
        )

    def test_unknown_ack_event_has_no_summary(self) -> None:
        self.assertEqual(bridge.summarize_ack("/ack", ["status", "ok"]), ["ack:  /ack status ok"])

    def test_non_ack_addresses_get_single_line(self) -> None:
        lines = bridge.summarize_ack("/status", ["ok"])
        self.assertEqual(lines, ["ack:  /status ok"])


class _QueuedSock:
    """Non-blocking ack socket stand-in that hands out queued packets."""

    def __init__(self, packets: list[bytes]) -> None:
        self.packets = list(packets)

    def recvfrom(self, _size: int) -> tuple[bytes, tuple[str, int]]:
        if not self.packets:
            raise BlockingIOError
        return self.packets.pop(0), ("127.0.0.1", 9001)


class BridgeSocketTests(unittest.TestCase):
    def test_wait_shortens_to_quiet_window_once_an_ack_arrived(self) -> None:
        sock = _QueuedSock([bridge.encode_osc_message("/ack", ("api_get", "id 4", "name", '"Bass"', "clip-get-1"))])
        waits: list[float] = []

        def _select(_r: object, _w: object, _e: object, timeout: float) -> tuple[list[object], list[object], list[object]]:
            waits.append(float(timeout))
            return ([sock] if sock.packets else []), [], []

        with mock.patch("ableton_udp_bridge.time.monotonic", side_effect=[0.0, 0.0, 0.01]), mock.patch(
            "ableton_udp_bridge.select.select", side_effect=_select
        ):
            acks = bridge.wait_for_acks(sock, timeout_s=2.0, quiet_window_s=0.05)

        self.assertEqual(acks, [("/ack", ["api_get", "id 4", "name", '"Bass"', "clip-get-1"])])
        self.assertEqual(waits, [2.0, 0.05])

    def test_drain_keeps_unparseable_packets_for_logging(self) -> None:
        sock = _QueuedSock([b"#bundle\x00junk", bridge.encode_osc_message("/ack", ("pong",))])

        drained = bridge.drain_acks_nonblocking(sock)

        self.assertEqual(drained[0][0], "<unparsed>")
        self.assertIn("bundles are not supported", drained[0][1][0])
        self.assertEqual(drained[1], ("/ack", ["pong"]))

    def test_send_and_collect_drains_stale_acks_before_sending(self) -> None:
        order: list[str] = []

        class _FakeSendSock:
            def sendto(self, payload: bytes, target: tuple[str, int]) -> None:
                order.append("send")
                self.payload = payload
                self.target = target

        send_sock = _FakeSendSock()
        with (
            mock.patch(
                "ableton_udp_bridge.drain_acks_nonblocking",
                side_effect=lambda _sock: order.append("drain") or [],
            ),
            mock.patch(
                "ableton_udp_bridge.wait_for_acks",
                side_effect=lambda _sock, _timeout: order.append("wait") or [("/ack", ["pong"])],
            ),
        ):
            acks = bridge.send_and_collect_acks(
                send_sock,
                object(),
                bridge.OscCommand("/ping"),
                0.5,
                host="127.0.0.1",
                port=9000,
            )

        self.assertEqual(order, ["drain", "send", "wait"])
        self.assertEqual(acks, [("/ack", ["pong"])])
        self.assertEqual(send_sock.target, ("127.0.0.1", 9000))
        self.assertEqual(bridge.decode_osc_message(send_sock.payload), ("/ping", []))


if __name__ == "__main__":
    unittest.main()
