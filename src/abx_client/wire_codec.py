#!/usr/bin/env python3
"""
ABX Wire Codec

Encodes 2-byte requests and decodes fixed 16-byte packet records.

Request layout:
    [call_type: uint8][sequence: uint8]

Packet record layout (big-endian, no byte shared between fields):
    offset  size  field
    0       4     symbol     ASCII, space or NUL padded
    4       4     sequence   int32
    8       1     side       raw byte ('B' / 'S')
    9       3     quantity   int24
    12      4     price      int32
"""

import struct
import logging
from enum import IntEnum
from dataclasses import dataclass
from typing import Dict, Any, Union

from .errors import MalformedPacket

logger = logging.getLogger(__name__)

REQUEST_SIZE = 2
PACKET_SIZE = 16

# Resend requests carry the sequence in a single byte
MAX_RESEND_SEQUENCE = 0xFF

PACKET_STRUCT = struct.Struct('>4sic3si')

_QUANTITY_BYTES = 3
_QUANTITY_MIN = -(1 << 23)
_QUANTITY_MAX = (1 << 23) - 1
_INT32_MIN = -(1 << 31)
_INT32_MAX = (1 << 31) - 1


class CallType(IntEnum):
    """Protocol opcodes"""
    STREAM_ALL = 1       # Server replays every packet, then stops
    RESEND_PACKET = 2    # Server sends exactly one packet for a sequence


@dataclass(frozen=True)
class Packet:
    """One decoded market-data record"""
    symbol: str
    side: str
    sequence: int
    quantity: int
    price: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'buySellIndicator': self.side,
            'quantity': self.quantity,
            'price': self.price,
            'sequenceNumber': self.sequence,
        }


def encode_request(call_type: Union[CallType, int], sequence: int = 0) -> bytes:
    """
    Encode a request for the exchange.

    Args:
        call_type: CallType.STREAM_ALL or CallType.RESEND_PACKET
        sequence: Sequence number to resend (ignored by the server for STREAM_ALL)

    Returns:
        Exactly 2 bytes. Sequences above 255 are truncated to their low byte;
        the protocol cannot address them.
    """
    call_type = CallType(call_type)
    if sequence < 0:
        raise ValueError(f"Sequence must be non-negative, got {sequence}")

    if sequence > MAX_RESEND_SEQUENCE:
        logger.debug(f"Sequence {sequence} truncated to {sequence & 0xFF} in request")

    return bytes((int(call_type), sequence & 0xFF))


def decode_packet(buffer: bytes) -> Packet:
    """
    Decode one 16-byte packet record.

    Args:
        buffer: At least PACKET_SIZE bytes; anything past the record is ignored

    Returns:
        Decoded Packet

    Raises:
        MalformedPacket: If fewer than PACKET_SIZE bytes were supplied
    """
    if len(buffer) < PACKET_SIZE:
        raise MalformedPacket(len(buffer), PACKET_SIZE)

    raw_symbol, sequence, raw_side, raw_quantity, price = PACKET_STRUCT.unpack(buffer[:PACKET_SIZE])

    return Packet(
        symbol=raw_symbol.decode('ascii', errors='replace').rstrip(' \x00'),
        side=raw_side.decode('latin-1'),
        sequence=sequence,
        quantity=int.from_bytes(raw_quantity, 'big', signed=True),
        price=price,
    )


def encode_packet(packet: Packet) -> bytes:
    """
    Encode a Packet into its 16-byte wire record (inverse of decode_packet).

    Raises:
        ValueError: If a field does not fit the record layout
    """
    symbol = packet.symbol.encode('ascii')
    if len(symbol) > 4:
        raise ValueError(f"Symbol '{packet.symbol}' longer than 4 characters")
    side = packet.side.encode('latin-1')
    if len(side) != 1:
        raise ValueError(f"Side must be a single character, got '{packet.side}'")
    if not _QUANTITY_MIN <= packet.quantity <= _QUANTITY_MAX:
        raise ValueError(f"Quantity {packet.quantity} does not fit in 24 bits")
    for name in ('sequence', 'price'):
        value = getattr(packet, name)
        if not _INT32_MIN <= value <= _INT32_MAX:
            raise ValueError(f"{name} {value} does not fit in 32 bits")

    return PACKET_STRUCT.pack(
        symbol.ljust(4, b' '),
        packet.sequence,
        side,
        packet.quantity.to_bytes(_QUANTITY_BYTES, 'big', signed=True),
        packet.price,
    )
