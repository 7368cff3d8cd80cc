#!/usr/bin/env python3
"""
Test SessionController against a scripted in-memory exchange.

FakeExchange hands out FakeTransport connections that answer requests from
a fixed replay list and a packet store, so every state transition can be
checked without sockets.
"""

import unittest
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional

src_path = str(Path(__file__).parent.parent / 'src')
if src_path not in sys.path:
    sys.path.append(src_path)

from abx_client.errors import ExchangeConnectionError, TransportError
from abx_client.wire_codec import CallType, Packet, PACKET_SIZE, encode_packet
from abx_client.session import SessionConfig, SessionController, SessionState


def pkt(seq: int, symbol: str = 'MSFT') -> Packet:
    return Packet(symbol=symbol, side='B' if seq % 2 else 'S', sequence=seq,
                  quantity=10 * seq, price=100 + seq)


class FakeTransport:
    """In-memory stand-in for StreamTransport"""

    def __init__(self, exchange: 'FakeExchange'):
        self.exchange = exchange
        self.buffer = bytearray()
        self.closing = False
        self.at_eof = False
        self.closed = False
        self.delayed = bytearray()

    def connect(self):
        if self.exchange.refuse_connections:
            raise ExchangeConnectionError('fake', 0, 'refused')
        self.exchange.connections += 1

    def hold_back(self, count: int):
        """Move the last count buffered bytes so they arrive after the next request"""
        self.delayed = self.buffer[-count:]
        del self.buffer[-count:]

    def send(self, data: bytes):
        self.exchange.requests.append(bytes(data))
        self.buffer += self.delayed
        self.delayed = bytearray()
        call_type, seq = data[0], data[1]
        if call_type == CallType.STREAM_ALL:
            for packet in self.exchange.replay:
                self.buffer += encode_packet(packet)
            if self.exchange.delay_replay_tail:
                self.hold_back(self.exchange.delay_replay_tail)
            self.closing = self.exchange.close_after_replay
        elif call_type == CallType.RESEND_PACKET:
            if seq in self.exchange.fail_resend or seq not in self.exchange.store:
                self.buffer += b'\x00' * 5
                self.closing = True
            else:
                self.buffer += encode_packet(self.exchange.resend_overrides.get(seq, self.exchange.store[seq]))
                if seq in self.exchange.split_resend:
                    self.exchange.split_resend.discard(seq)
                    self.hold_back(PACKET_SIZE // 2)

    def recv_exact(self, count: int) -> bytes:
        if self.exchange.fail_reads:
            raise TransportError('connection reset')
        data = bytes(self.buffer[:count])
        del self.buffer[:count]
        if len(data) < count and self.closing:
            self.at_eof = True
        return data

    def close(self):
        self.closed = True


class FakeExchange:
    """
    Scripted exchange: replays a list, resends from a store.

    split_resend delivers half of the first response for each listed sequence
    and the rest only after the next request; delay_replay_tail does the same
    for the last bytes of the replay.
    """

    def __init__(self, replay: Iterable[Packet], store: Optional[Iterable[Packet]] = None,
                 fail_resend: Iterable[int] = (), close_after_replay: bool = True,
                 split_resend: Iterable[int] = (), delay_replay_tail: int = 0):
        self.replay: List[Packet] = list(replay)
        self.store: Dict[int, Packet] = {p.sequence: p for p in (store if store is not None else self.replay)}
        self.fail_resend = set(fail_resend)
        self.resend_overrides: Dict[int, Packet] = {}
        self.close_after_replay = close_after_replay
        self.split_resend = set(split_resend)
        self.delay_replay_tail = delay_replay_tail
        self.refuse_connections = False
        self.fail_reads = False
        self.requests: List[bytes] = []
        self.connections = 0
        self.transports: List[FakeTransport] = []

    def factory(self) -> FakeTransport:
        transport = FakeTransport(self)
        self.transports.append(transport)
        return transport


def run_session(exchange: FakeExchange, **config_kwargs):
    config = SessionConfig(host='fake', port=3000, **config_kwargs)
    controller = SessionController(config, transport_factory=exchange.factory)
    return controller, controller.run()


class TestSessionController(unittest.TestCase):

    def test_gap_free_stream_sends_no_recovery(self):
        exchange = FakeExchange(replay=[pkt(s) for s in range(1, 6)])
        controller, result = run_session(exchange)

        self.assertEqual(exchange.requests, [b'\x01\x00'])
        self.assertEqual([p.sequence for p in result.packets], [1, 2, 3, 4, 5])
        self.assertTrue(result.complete)
        self.assertEqual(result.metrics.recovery_requests, 0)
        self.assertEqual(controller.state, SessionState.DONE)

    def test_single_gap_recovered(self):
        full = [pkt(s) for s in range(1, 6)]
        exchange = FakeExchange(replay=[p for p in full if p.sequence != 3], store=full)
        _, result = run_session(exchange)

        self.assertEqual(exchange.requests, [b'\x01\x00', bytes([2, 3])])
        self.assertEqual(len(result.packets), 5)
        self.assertEqual([p.sequence for p in result.packets], [1, 2, 3, 4, 5])
        self.assertEqual(result.packets[2], full[2])
        self.assertEqual(result.missing, [])
        self.assertEqual(result.metrics.recovered, 1)

    def test_reconnects_after_replay_close(self):
        full = [pkt(s) for s in range(1, 6)]
        exchange = FakeExchange(replay=[p for p in full if p.sequence != 3], store=full)
        run_session(exchange)

        self.assertEqual(exchange.connections, 2)
        self.assertTrue(all(t.closed for t in exchange.transports))

    def test_same_connection_when_server_keeps_it_open(self):
        full = [pkt(s) for s in range(1, 8)]
        exchange = FakeExchange(replay=[p for p in full if p.sequence not in (2, 6)], store=full,
                                close_after_replay=False)
        _, result = run_session(exchange)

        self.assertEqual(exchange.connections, 1)
        self.assertTrue(result.complete)
        self.assertEqual(exchange.requests[1:], [bytes([2, 2]), bytes([2, 6])])

    def test_failed_recovery_bounded_by_pass_limit(self):
        full = [pkt(s) for s in range(1, 6)]
        exchange = FakeExchange(replay=[p for p in full if p.sequence != 3], store=full,
                                fail_resend={3})
        controller, result = run_session(exchange, max_recovery_passes=2)

        self.assertEqual(exchange.requests, [b'\x01\x00', bytes([2, 3]), bytes([2, 3])])
        self.assertEqual([p.sequence for p in result.packets], [1, 2, 4, 5])
        self.assertEqual(result.missing, [3])
        self.assertFalse(result.complete)
        self.assertEqual(result.metrics.recovery_passes, 2)
        self.assertEqual(result.metrics.recovery_failures, 2)
        self.assertEqual(controller.state, SessionState.DONE)

    def test_zero_passes_reports_gap_without_requests(self):
        full = [pkt(s) for s in range(1, 6)]
        exchange = FakeExchange(replay=[p for p in full if p.sequence != 2], store=full)
        _, result = run_session(exchange, max_recovery_passes=0)

        self.assertEqual(exchange.requests, [b'\x01\x00'])
        self.assertEqual(result.missing, [2])

    def test_missing_requested_in_ascending_order(self):
        full = [pkt(s) for s in range(1, 11)]
        exchange = FakeExchange(replay=[full[9], full[0], full[6], full[3]], store=full,
                                close_after_replay=False)
        _, result = run_session(exchange)

        resend_seqs = [r[1] for r in exchange.requests[1:]]
        self.assertEqual(resend_seqs, [2, 3, 5, 6, 8, 9])
        self.assertTrue(result.complete)

    def test_duplicates_in_replay_are_kept_once(self):
        first = pkt(2)
        conflicting = Packet(symbol='AAPL', side='S', sequence=2, quantity=1, price=1)
        exchange = FakeExchange(replay=[pkt(1), first, conflicting, pkt(3), pkt(3)])
        _, result = run_session(exchange)

        self.assertEqual([p.sequence for p in result.packets], [1, 2, 3])
        self.assertEqual(result.packets[1], first)
        self.assertEqual(result.metrics.duplicates, 2)
        self.assertEqual(result.metrics.recovery_requests, 0)

    def test_wrong_sequence_in_recovery_response(self):
        full = [pkt(s) for s in range(1, 6)]
        exchange = FakeExchange(replay=[p for p in full if p.sequence != 3], store=full,
                                close_after_replay=False)
        exchange.resend_overrides[3] = full[0]
        _, result = run_session(exchange, max_recovery_passes=1)

        self.assertEqual(result.missing, [3])
        self.assertEqual(len(result.packets), 4)
        self.assertEqual(result.metrics.recovery_failures, 1)

    def test_sequences_above_resend_range_not_requested(self):
        exchange = FakeExchange(replay=[pkt(300), pkt(302)])
        _, result = run_session(exchange)

        self.assertEqual(exchange.requests, [b'\x01\x00'])
        self.assertEqual(result.missing, [301])

    def test_far_sequence_bounded_recovery(self):
        far = Packet(symbol='MSFT', side='B', sequence=2_000_000_000, quantity=1, price=1)
        exchange = FakeExchange(replay=[pkt(1), far], store=[])

        with self.assertLogs('abx_client.session', level='WARNING') as logs:
            _, result = run_session(exchange, max_recovery_passes=1, max_missing=1000)

        self.assertFalse(result.complete)
        self.assertEqual(result.missing_count, 1_999_999_998)
        self.assertEqual(len(result.missing), 1000)
        self.assertEqual(result.missing[:3], [2, 3, 4])
        # Only 2..255 fit in a resend request
        self.assertEqual(len(exchange.requests), 1 + 254)
        self.assertEqual(result.metrics.recovery_failures, 1000)
        unaddressable = [line for line in logs.output if 'cannot be addressed' in line]
        self.assertEqual(len(unaddressable), 1)

    def test_half_received_resend_does_not_misalign_next_read(self):
        full = [pkt(s) for s in range(1, 6)]
        exchange = FakeExchange(replay=[full[0], full[3], full[4]], store=full,
                                close_after_replay=False, split_resend={2})
        _, result = run_session(exchange)

        self.assertTrue(result.complete)
        self.assertEqual(result.packets, full)
        self.assertEqual(exchange.connections, 2)
        self.assertTrue(exchange.transports[0].closed)
        self.assertEqual(result.metrics.recovery_failures, 1)
        self.assertEqual(result.metrics.recovered, 2)

    def test_replay_partial_record_without_eof_reconnects(self):
        full = [pkt(s) for s in range(1, 6)]
        exchange = FakeExchange(replay=[p for p in full if p.sequence != 3], store=full,
                                close_after_replay=False, delay_replay_tail=PACKET_SIZE // 2)
        _, result = run_session(exchange)

        # The cut-off packet 5 is dropped with its connection
        self.assertEqual(result.packets, full[:4])
        self.assertTrue(result.complete)
        self.assertEqual(exchange.connections, 2)
        self.assertEqual(exchange.requests, [b'\x01\x00', bytes([2, 3])])

    def test_replay_partial_record_at_eof_is_logged(self):
        full = [pkt(s) for s in range(1, 6)]
        exchange = FakeExchange(replay=full, delay_replay_tail=7)

        with self.assertLogs('abx_client.session', level='WARNING') as logs:
            _, result = run_session(exchange)

        self.assertTrue(any('partial record' in line for line in logs.output))
        self.assertEqual([p.sequence for p in result.packets], [1, 2, 3, 4])
        self.assertTrue(result.complete)

    def test_metrics_to_dict(self):
        full = [pkt(s) for s in range(1, 6)]
        exchange = FakeExchange(replay=[p for p in full if p.sequence != 3], store=full)
        _, result = run_session(exchange)

        metrics = result.metrics.to_dict()
        self.assertEqual(metrics['packets_received'], 5)
        self.assertEqual(metrics['recovery_requests'], 1)
        self.assertEqual(metrics['recovered'], 1)
        self.assertEqual(metrics['recovery_passes'], 1)
        self.assertEqual(metrics['recovery_failures'], 0)
        self.assertEqual(metrics['duplicates'], 0)
        self.assertEqual(metrics['connections'], 2)
        self.assertGreaterEqual(metrics['elapsed_seconds'], 0)

    def test_empty_replay(self):
        exchange = FakeExchange(replay=[])
        _, result = run_session(exchange)

        self.assertEqual(result.packets, [])
        self.assertTrue(result.complete)

    def test_connection_refused_is_fatal(self):
        exchange = FakeExchange(replay=[pkt(1)])
        exchange.refuse_connections = True
        controller = SessionController(SessionConfig(host='fake', port=3000),
                                       transport_factory=exchange.factory)

        with self.assertRaises(ExchangeConnectionError):
            controller.run()
        self.assertEqual(controller.state, SessionState.DONE)

    def test_read_failure_is_fatal_and_closes_transport(self):
        exchange = FakeExchange(replay=[pkt(1)])
        exchange.fail_reads = True

        with self.assertRaises(TransportError):
            run_session(exchange)
        self.assertTrue(exchange.transports[0].closed)

    def test_session_runs_once(self):
        exchange = FakeExchange(replay=[pkt(1)])
        controller, _ = run_session(exchange)

        with self.assertRaises(RuntimeError):
            controller.run()

    def test_publish_hands_ordered_packets_to_writer(self):
        class MemoryWriter:
            def __init__(self):
                self.written = None

            def write(self, packets):
                self.written = list(packets)
                return 'memory'

        full = [pkt(s) for s in range(1, 4)]
        exchange = FakeExchange(replay=[full[2], full[0]], store=full)
        _, result = run_session(exchange)

        writer = MemoryWriter()
        self.assertEqual(result.assembler.publish(writer), 'memory')
        self.assertEqual(writer.written, full)


if __name__ == '__main__':
    unittest.main()
