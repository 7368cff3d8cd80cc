#!/usr/bin/env python3
"""
Stream Transport

Blocking TCP connection to the exchange. Provides exact-count reads on top
of socket.recv, which may return fewer bytes than asked for.
"""

import socket
import logging
from typing import Optional

from .errors import ExchangeConnectionError, TransportError

logger = logging.getLogger(__name__)


class StreamTransport:
    """
    One TCP connection to the exchange.

    Example:
        with StreamTransport('127.0.0.1', 3000) as transport:
            transport.send(b'\\x01\\x00')
            record = transport.recv_exact(16)
    """

    def __init__(self, host: str, port: int, read_timeout: Optional[float] = None,
                 connect_timeout: Optional[float] = 10.0):
        """
        Args:
            host: Exchange address
            port: Exchange TCP port
            read_timeout: Seconds to wait for data before treating the stream
                as exhausted (None = block indefinitely)
            connect_timeout: Seconds allowed for the TCP handshake
        """
        self.host = host
        self.port = port
        self.read_timeout = read_timeout
        self.connect_timeout = connect_timeout
        self.socket: Optional[socket.socket] = None
        self.at_eof = False
        self.bytes_sent = 0
        self.bytes_received = 0

    @property
    def connected(self) -> bool:
        return self.socket is not None

    def connect(self):
        """Open the connection"""
        if self.socket is not None:
            logger.warning("Transport already connected")
            return

        try:
            sock = socket.create_connection((self.host, self.port), timeout=self.connect_timeout)
        except OSError as e:
            raise ExchangeConnectionError(self.host, self.port, str(e)) from e

        sock.settimeout(self.read_timeout)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        self.socket = sock
        self.at_eof = False
        logger.info(f"Connected to {self.host}:{self.port}")

    def send(self, data: bytes):
        """Write all bytes to the stream"""
        if self.socket is None:
            raise TransportError("send() on a closed transport")
        try:
            self.socket.sendall(data)
        except OSError as e:
            raise TransportError(f"Write to {self.host}:{self.port} failed: {e}") from e
        self.bytes_sent += len(data)

    def recv_exact(self, count: int) -> bytes:
        """
        Read until count bytes arrive, the peer closes, or the read times out.

        Returns:
            The bytes collected; shorter than count only at end of stream
            (at_eof is then set for a peer close)
        """
        if self.socket is None:
            raise TransportError("recv_exact() on a closed transport")

        chunks = []
        remaining = count
        while remaining > 0:
            try:
                chunk = self.socket.recv(remaining)
            except socket.timeout:
                logger.debug(f"Read timed out after {self.read_timeout}s "
                             f"({count - remaining}/{count} bytes)")
                break
            except OSError as e:
                raise TransportError(f"Read from {self.host}:{self.port} failed: {e}") from e

            if not chunk:
                self.at_eof = True
                logger.debug(f"Peer closed stream ({count - remaining}/{count} bytes)")
                break

            chunks.append(chunk)
            remaining -= len(chunk)

        data = b''.join(chunks)
        self.bytes_received += len(data)
        return data

    def close(self):
        """Close the connection"""
        if self.socket is None:
            return
        try:
            self.socket.close()
        except OSError as e:
            logger.debug(f"Error closing socket: {e}")
        self.socket = None
        logger.debug(f"Connection to {self.host}:{self.port} closed "
                     f"(sent {self.bytes_sent} bytes, received {self.bytes_received} bytes)")

    def __enter__(self) -> 'StreamTransport':
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
