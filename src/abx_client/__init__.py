"""
ABX Exchange Client - replay, gap detection and recovery for the ABX mock exchange

Connects to the exchange over TCP, requests a full replay of market-data
packets, detects missing sequence numbers and requests each one again,
then writes the complete, ordered packet set as JSON.

Quick Start:
    from abx_client import SessionConfig, SessionController, JSONPacketWriter

    config = SessionConfig(host="127.0.0.1", port=3000)
    result = SessionController(config).run()
    result.assembler.publish(JSONPacketWriter("output.json"))

    if not result.complete:
        print(f"Still missing: {result.missing}")
"""

__version__ = "1.0.0"

from .errors import (
    ABXClientError, ConfigurationError, ExchangeConnectionError,
    TransportError, MalformedPacket,
)
from .wire_codec import (
    CallType, Packet, PACKET_SIZE, REQUEST_SIZE,
    encode_request, decode_packet, encode_packet,
)
from .sequence_tracker import SequenceTracker
from .result_assembler import ResultAssembler
from .output_writer import PacketWriter, JSONPacketWriter
from .transport import StreamTransport
from .session import (
    SessionController, SessionConfig, SessionState,
    SessionMetrics, SessionResult,
)
from .config import ClientConfig, load_config

__all__ = [
    # Errors
    "ABXClientError",
    "ConfigurationError",
    "ExchangeConnectionError",
    "TransportError",
    "MalformedPacket",
    # Wire protocol
    "CallType",
    "Packet",
    "PACKET_SIZE",
    "REQUEST_SIZE",
    "encode_request",
    "decode_packet",
    "encode_packet",
    # Session
    "SequenceTracker",
    "ResultAssembler",
    "StreamTransport",
    "SessionController",
    "SessionConfig",
    "SessionState",
    "SessionMetrics",
    "SessionResult",
    # Collaborators
    "PacketWriter",
    "JSONPacketWriter",
    "ClientConfig",
    "load_config",
]
