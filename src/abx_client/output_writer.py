#!/usr/bin/env python3
"""
Output writers for the final packet set.

The session only needs something implementing PacketWriter; JSON is the
format the exchange tooling expects.
"""

import json
import logging
from pathlib import Path
from typing import Any, List, Protocol, Union, TYPE_CHECKING

if TYPE_CHECKING:
    from .wire_codec import Packet

logger = logging.getLogger(__name__)


class PacketWriter(Protocol):
    """Protocol for output writers"""

    def write(self, packets: List['Packet']) -> Any:
        """Persist the ordered packets. Returns a result (e.g. file path)"""
        ...


class JSONPacketWriter:
    """
    Write packets as an indented JSON array.

    Each element has the fields symbol, buySellIndicator, quantity, price
    and sequenceNumber.
    """

    def __init__(self, path: Union[str, Path], indent: int = 2):
        self.path = Path(path)
        self.indent = indent

    def write(self, packets: List['Packet']) -> Path:
        self.path.parent.mkdir(parents=True, exist_ok=True)

        # Write atomically (write to temp file, then rename)
        temp_file = self.path.with_suffix(self.path.suffix + '.tmp')
        with open(temp_file, 'w') as f:
            json.dump([p.to_dict() for p in packets], f, indent=self.indent)
            f.write('\n')
        temp_file.replace(self.path)

        logger.info(f"Wrote {len(packets)} packets to {self.path}")
        return self.path
