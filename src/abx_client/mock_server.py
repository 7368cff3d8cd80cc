#!/usr/bin/env python3
"""
Mock ABX Exchange

A small TCP server speaking the ABX wire protocol, for local testing of the
client. It replays a fixed packet set on STREAM_ALL, optionally dropping
some sequences from the replay, and answers RESEND_PACKET with one record.
Sequences listed in fail_resend get a truncated response instead.

Run standalone:
    python -m abx_client.mock_server --port 3000 --count 14 --drop 3,7
"""

import sys
import socket
import argparse
import threading
import logging
from typing import Dict, Iterable, List, Optional, Set

from .wire_codec import (
    CallType, Packet, REQUEST_SIZE, PACKET_SIZE,
    encode_packet,
)

logger = logging.getLogger(__name__)

_SYMBOLS = ('MSFT', 'AAPL', 'AMZN', 'META')


def generate_packets(count: int, first_sequence: int = 1) -> List[Packet]:
    """Deterministic sample packets for sequences first_sequence..first_sequence+count-1"""
    packets = []
    for i in range(count):
        seq = first_sequence + i
        packets.append(Packet(
            symbol=_SYMBOLS[i % len(_SYMBOLS)],
            side='B' if i % 2 == 0 else 'S',
            sequence=seq,
            quantity=50 + (i * 7) % 100,
            price=100 + (i * 13) % 40,
        ))
    return packets


class MockExchangeServer:
    """
    Threaded mock exchange.

    Each connection is served on its own thread. After a replay the
    connection is closed, like the real exchange; after a resend it stays
    open for further requests unless the record was truncated.

    Example:
        server = MockExchangeServer(generate_packets(5), drop={3})
        server.start()
        # ... client connects to server.port ...
        server.stop()
    """

    def __init__(self, packets: Iterable[Packet], host: str = '127.0.0.1', port: int = 0,
                 drop: Optional[Iterable[int]] = None,
                 fail_resend: Optional[Iterable[int]] = None):
        """
        Args:
            packets: Packet set the exchange holds
            host: Bind address
            port: Bind port (0 = pick a free port; see .port after start())
            drop: Sequences omitted from the replay
            fail_resend: Sequences whose resend gets a truncated record
        """
        self.packets: Dict[int, Packet] = {p.sequence: p for p in packets}
        self.host = host
        self.port = port
        self.drop: Set[int] = set(drop or ())
        self.fail_resend: Set[int] = set(fail_resend or ())
        self.running = False
        self.socket: Optional[socket.socket] = None
        self.thread: Optional[threading.Thread] = None
        self.requests: List[bytes] = []
        self._lock = threading.Lock()

    def start(self):
        """Start accepting connections"""
        if self.running:
            logger.warning("Mock exchange already running")
            return

        self.socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.socket.bind((self.host, self.port))
        self.socket.listen(5)
        self.socket.settimeout(0.2)
        self.port = self.socket.getsockname()[1]

        self.running = True
        self.thread = threading.Thread(target=self._accept_loop, daemon=True)
        self.thread.start()
        logger.info(f"Mock exchange listening on {self.host}:{self.port} "
                    f"({len(self.packets)} packets, drop={sorted(self.drop)})")

    def stop(self):
        """Stop the server"""
        self.running = False
        if self.thread:
            self.thread.join(timeout=2)
        if self.socket:
            self.socket.close()
            self.socket = None
        logger.info("Mock exchange stopped")

    def __enter__(self) -> 'MockExchangeServer':
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()

    def _accept_loop(self):
        while self.running:
            try:
                conn, addr = self.socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self.running:
                    logger.error(f"Accept failed: {e}")
                break

            logger.debug(f"Client connected from {addr}")
            threading.Thread(target=self._serve, args=(conn,), daemon=True).start()

    def _serve(self, conn: socket.socket):
        with conn:
            while self.running:
                try:
                    request = self._recv_request(conn)
                except OSError as e:
                    logger.debug(f"Client connection error: {e}")
                    return
                if request is None:
                    return

                with self._lock:
                    self.requests.append(request)

                call_type, seq = request[0], request[1]
                try:
                    if call_type == CallType.STREAM_ALL:
                        self._send_replay(conn)
                        return
                    elif call_type == CallType.RESEND_PACKET:
                        if not self._send_resend(conn, seq):
                            return
                    else:
                        logger.warning(f"Unknown call type {call_type}, closing connection")
                        return
                except OSError as e:
                    logger.debug(f"Client went away: {e}")
                    return

    @staticmethod
    def _recv_request(conn: socket.socket) -> Optional[bytes]:
        data = b''
        while len(data) < REQUEST_SIZE:
            chunk = conn.recv(REQUEST_SIZE - len(data))
            if not chunk:
                return None
            data += chunk
        return data

    def _send_replay(self, conn: socket.socket):
        sent = 0
        for seq in sorted(self.packets):
            if seq in self.drop:
                continue
            conn.sendall(encode_packet(self.packets[seq]))
            sent += 1
        logger.debug(f"Replayed {sent} packets")

    def _send_resend(self, conn: socket.socket, seq: int) -> bool:
        """Send one record; a truncated record is followed by a close (returns False)"""
        packet = self.packets.get(seq)
        if packet is None or seq in self.fail_resend:
            logger.debug(f"Resend of {seq}: sending truncated record")
            conn.sendall(b"\x00" * (PACKET_SIZE // 2))
            return False
        conn.sendall(encode_packet(packet))
        return True


def _parse_sequences(value: str) -> Set[int]:
    return {int(part) for part in value.split(',') if part.strip()}


def main(argv: Optional[List[str]] = None):
    """Run a mock exchange in the foreground"""
    parser = argparse.ArgumentParser(description='Mock ABX exchange server')
    parser.add_argument('--host', default='127.0.0.1', help='Bind address')
    parser.add_argument('--port', type=int, default=3000, help='Bind port')
    parser.add_argument('--count', type=int, default=14, help='Number of packets to serve')
    parser.add_argument('--drop', type=_parse_sequences, default=set(),
                        help='Comma-separated sequences to omit from the replay')
    parser.add_argument('--fail-resend', type=_parse_sequences, default=set(),
                        help='Comma-separated sequences whose resend is truncated')
    parser.add_argument('--debug', '-d', action='store_true', help='Enable DEBUG logging')
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(levelname)s:%(name)s:%(message)s',
    )

    server = MockExchangeServer(
        generate_packets(args.count),
        host=args.host,
        port=args.port,
        drop=args.drop,
        fail_resend=args.fail_resend,
    )
    server.start()
    try:
        while server.thread.is_alive():
            server.thread.join(timeout=1)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        server.stop()
    return 0


if __name__ == '__main__':
    sys.exit(main())
