#!/usr/bin/env python3
"""
Exchange Session - Replay, Gap Check, Recovery

Drives one run against the exchange:

    CONNECTING -> STREAMING_ALL -> DRAINING -> GAP_CHECK -> (RECOVERING -> GAP_CHECK)* -> DONE

The replay is drained until the stream ends. Missing sequence numbers are
then requested one at a time, for at most max_recovery_passes passes, so a
server that never supplies a sequence cannot keep the client looping.
Sequences still missing after the last pass are reported, not raised.
"""

import time
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Callable, List, Dict, Any

from .errors import MalformedPacket
from .wire_codec import (
    CallType, Packet, PACKET_SIZE, MAX_RESEND_SEQUENCE,
    encode_request, decode_packet,
)
from .sequence_tracker import SequenceTracker, DEFAULT_MAX_MISSING
from .result_assembler import ResultAssembler
from .transport import StreamTransport

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Exchange session states"""
    IDLE = "idle"                      # Not started
    CONNECTING = "connecting"          # Opening transport
    STREAMING_ALL = "streaming_all"    # Replay requested
    DRAINING = "draining"              # Reading replay records
    GAP_CHECK = "gap_check"            # Computing missing sequences
    RECOVERING = "recovering"          # Requesting missing sequences
    DONE = "done"                      # Transport closed, result ready


@dataclass
class SessionConfig:
    """Configuration for an exchange session"""
    host: str
    port: int
    read_timeout: Optional[float] = None
    max_recovery_passes: int = 2
    first_sequence: Optional[int] = None
    max_missing: int = DEFAULT_MAX_MISSING   # Cap on sequences expanded per gap check

    def __post_init__(self):
        if self.max_recovery_passes < 0:
            raise ValueError("max_recovery_passes must be >= 0")
        if self.max_missing < 1:
            raise ValueError("max_missing must be >= 1")

    @classmethod
    def from_client_config(cls, config) -> 'SessionConfig':
        return cls(
            host=config.server_address,
            port=config.server_port,
            read_timeout=config.read_timeout,
            max_recovery_passes=config.max_recovery_passes,
            first_sequence=config.first_sequence,
            max_missing=config.max_missing,
        )


@dataclass
class SessionMetrics:
    """Counters for one run"""
    packets_received: int = 0
    duplicates: int = 0
    recovery_requests: int = 0
    recovered: int = 0
    recovery_failures: int = 0
    recovery_passes: int = 0
    connections: int = 0
    session_start_time: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'packets_received': self.packets_received,
            'duplicates': self.duplicates,
            'recovery_requests': self.recovery_requests,
            'recovered': self.recovered,
            'recovery_failures': self.recovery_failures,
            'recovery_passes': self.recovery_passes,
            'connections': self.connections,
            'elapsed_seconds': time.time() - self.session_start_time,
        }


@dataclass
class SessionResult:
    """Outcome of a run"""
    packets: List[Packet]
    missing: List[int]          # Ascending, at most max_missing entries
    missing_count: int          # Exact total, may exceed len(missing)
    metrics: SessionMetrics
    assembler: ResultAssembler

    @property
    def complete(self) -> bool:
        return self.missing_count == 0


class SessionController:
    """
    Owns the transport and the packet collection for a single run.

    Example:
        config = SessionConfig(host='127.0.0.1', port=3000)
        result = SessionController(config).run()
        result.assembler.publish(JSONPacketWriter('output.json'))
    """

    def __init__(self, config: SessionConfig,
                 transport_factory: Optional[Callable[[], StreamTransport]] = None):
        """
        Args:
            config: Session configuration
            transport_factory: Returns a new, unconnected transport; defaults
                to a StreamTransport for config.host/config.port
        """
        self.config = config
        self.transport_factory = transport_factory or self._default_transport
        self.state = SessionState.IDLE
        self.transport: Optional[StreamTransport] = None

        self.tracker = SequenceTracker(first_sequence=config.first_sequence,
                                       max_missing=config.max_missing)
        self.assembler = ResultAssembler()
        self.metrics = SessionMetrics()

    def _default_transport(self) -> StreamTransport:
        return StreamTransport(self.config.host, self.config.port,
                               read_timeout=self.config.read_timeout)

    def run(self) -> SessionResult:
        """
        Execute the session to completion.

        Raises:
            ExchangeConnectionError: If the exchange is unreachable
            TransportError: On read/write failure other than stream closure
        """
        if self.state != SessionState.IDLE:
            raise RuntimeError(f"Session already run (state {self.state.value})")

        try:
            self._connect()

            self.state = SessionState.STREAMING_ALL
            self.transport.send(encode_request(CallType.STREAM_ALL))

            self.state = SessionState.DRAINING
            self._drain()

            missing = self._gap_check()
            while missing and self.metrics.recovery_passes < self.config.max_recovery_passes:
                self.state = SessionState.RECOVERING
                self._recovery_pass(missing)
                missing = self._gap_check()
        finally:
            self._close()
            self.state = SessionState.DONE

        missing_count = self.tracker.missing_count()
        if missing_count:
            logger.warning(f"{missing_count} sequences still missing after "
                           f"{self.metrics.recovery_passes} recovery passes: "
                           f"{format_sequences(missing, missing_count)}")

        packets = self.assembler.packets()
        logger.info(f"Session done: {len(packets)} packets, {missing_count} missing, "
                    f"{self.metrics.recovery_requests} recovery requests")

        return SessionResult(
            packets=packets,
            missing=missing,
            missing_count=missing_count,
            metrics=self.metrics,
            assembler=self.assembler,
        )

    def _connect(self):
        self.state = SessionState.CONNECTING
        transport = self.transport_factory()
        transport.connect()
        self.transport = transport
        self.metrics.connections += 1

    def _close(self):
        if self.transport is not None:
            self.transport.close()
            self.transport = None

    def _ensure_open(self):
        """Reopen the connection if it was closed or dropped after a response"""
        if self.transport is None or self.transport.at_eof:
            logger.debug("Stream closed, reconnecting for recovery")
            self._close()
            self._connect()

    def _accept(self, packet: Packet) -> bool:
        """Feed a decoded packet to the tracker and the assembler"""
        self.metrics.packets_received += 1
        if packet.sequence in self.tracker:
            self.metrics.duplicates += 1
        self.tracker.record_seen(packet.sequence)
        return self.assembler.add(packet)

    def _drain(self):
        """Read replay records until the stream ends"""
        count = 0
        while True:
            data = self.transport.recv_exact(PACKET_SIZE)
            try:
                packet = decode_packet(data)
            except MalformedPacket as e:
                if data:
                    logger.warning(f"Replay ended with partial record: {e}")
                    if not self.transport.at_eof:
                        # The rest of the record may still arrive and would misalign later reads
                        self._close()
                break

            logger.debug(f"Replay packet: {packet}")
            self._accept(packet)
            count += 1

        logger.info(f"Replay drained: {count} packets "
                    f"(sequences {self.tracker.min_seen}..{self.tracker.max_seen})")

    def _gap_check(self) -> List[int]:
        self.state = SessionState.GAP_CHECK
        missing = self.tracker.missing()
        if missing:
            total = self.tracker.missing_count()
            logger.info(f"Gap check: {total} missing sequences")
            if total > len(missing):
                logger.warning(f"Gap check: only the lowest {len(missing)} of {total} "
                               f"missing sequences are tracked (max_missing)")
        return missing

    def _recovery_pass(self, missing: List[int]):
        """Request each missing sequence once, in ascending order"""
        self.metrics.recovery_passes += 1
        logger.info(f"Recovery pass {self.metrics.recovery_passes}/"
                    f"{self.config.max_recovery_passes}: {len(missing)} sequences")

        addressable = [seq for seq in missing if 0 <= seq <= MAX_RESEND_SEQUENCE]
        skipped = len(missing) - len(addressable)
        if skipped:
            logger.warning(f"{skipped} sequences cannot be addressed by a resend request "
                           f"(outside 0..{MAX_RESEND_SEQUENCE}), skipping")
            self.metrics.recovery_failures += skipped

        for seq in addressable:
            self._recover(seq)

    def _recover(self, seq: int) -> bool:
        """One request/response round trip for a single sequence"""
        self._ensure_open()

        logger.info(f"Requesting missing packet sequence: {seq}")
        self.transport.send(encode_request(CallType.RESEND_PACKET, seq))
        self.metrics.recovery_requests += 1

        data = self.transport.recv_exact(PACKET_SIZE)
        try:
            packet = decode_packet(data)
        except MalformedPacket as e:
            logger.warning(f"Recovery of sequence {seq} failed: {e}")
            self.metrics.recovery_failures += 1
            if not self.transport.at_eof:
                # A late tail of this response would be read as the start of the next one
                self._close()
            return False

        self._accept(packet)
        if packet.sequence != seq:
            logger.warning(f"Requested sequence {seq}, server sent {packet.sequence}")
            self.metrics.recovery_failures += 1
            return False

        self.metrics.recovered += 1
        return True


def format_sequences(missing: List[int], total: Optional[int] = None, limit: int = 20) -> str:
    """Render a missing list for log output, truncated after limit entries"""
    total = len(missing) if total is None else total
    shown = ', '.join(str(seq) for seq in missing[:limit])
    if total > limit:
        return f"[{shown}, ... {total - limit} more]"
    return f"[{shown}]"
