#!/usr/bin/env python3
"""
Result Assembler

Collects packets from the replay and from recovery requests, keyed by
sequence number, and produces the final ordered record set.
"""

import logging
from typing import Dict, List, Any

from .wire_codec import Packet
from .output_writer import PacketWriter

logger = logging.getLogger(__name__)


class ResultAssembler:
    """
    Sequence-keyed packet collection with first-write-wins semantics.

    A packet whose sequence is already stored is dropped, whatever its other
    fields contain.
    """

    def __init__(self):
        self._packets: Dict[int, Packet] = {}

    def add(self, packet: Packet) -> bool:
        """
        Store a packet unless its sequence is already present.

        Returns:
            True if the packet was stored
        """
        if packet.sequence in self._packets:
            existing = self._packets[packet.sequence]
            if existing != packet:
                logger.warning(f"Conflicting packet for sequence {packet.sequence} ignored: "
                               f"kept {existing}, dropped {packet}")
            return False

        self._packets[packet.sequence] = packet
        return True

    def packets(self) -> List[Packet]:
        """All stored packets, ascending by sequence"""
        return [self._packets[seq] for seq in sorted(self._packets)]

    def publish(self, writer: PacketWriter) -> Any:
        """Hand the ordered packets to an output writer"""
        packets = self.packets()
        logger.info(f"Publishing {len(packets)} packets")
        return writer.write(packets)

    def __len__(self) -> int:
        return len(self._packets)

    def __contains__(self, sequence: int) -> bool:
        return sequence in self._packets
