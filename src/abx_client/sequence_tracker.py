#!/usr/bin/env python3
"""
Sequence Tracker - Gap Detection by Range Complement

Tracks which sequence numbers have been observed and reports the ones
missing from the contiguous range [first, max_seen]. Arrival order and
duplicates have no effect on the result.

Gaps are found between neighbours of the sorted seen set, so the cost
depends on the number of packets, not on the numeric span. A bogus far-off
sequence number therefore opens one huge gap range instead of allocating it;
missing() expands at most max_missing sequences and missing_count() reports
the true total.
"""

import numpy as np
import logging
from typing import Optional, Set, List, Tuple

logger = logging.getLogger(__name__)

DEFAULT_MAX_MISSING = 65536


class SequenceTracker:
    """
    Maintain the set of observed sequence numbers.

    The range starts at the lowest sequence seen, or at first_sequence when
    the caller knows where the feed begins (so a lost leading packet is
    still reported as missing).

    Example:
        tracker = SequenceTracker()
        for seq in (3, 1, 2, 5):
            tracker.record_seen(seq)
        tracker.missing()   # [4]
    """

    def __init__(self, first_sequence: Optional[int] = None,
                 max_missing: int = DEFAULT_MAX_MISSING):
        """
        Args:
            first_sequence: Expected first sequence of the feed (None = lowest seen)
            max_missing: Upper bound on sequences expanded by missing()
        """
        self.first_sequence = first_sequence
        self.max_missing = max_missing
        self._seen: Set[int] = set()
        self.duplicates = 0
        self.min_seen: Optional[int] = None
        self.max_seen: Optional[int] = None

    def record_seen(self, sequence: int) -> range:
        """
        Record an observed sequence number. Constant time.

        Args:
            sequence: Sequence number from a decoded packet

        Returns:
            Sequences this observation newly marks as missing (the gap it
            opens below itself or above the previous minimum); empty for
            duplicates and in-range arrivals
        """
        if sequence in self._seen:
            self.duplicates += 1
            logger.debug(f"Duplicate sequence {sequence}")
            return range(0)

        self._seen.add(sequence)

        if self.max_seen is None:
            self.min_seen = self.max_seen = sequence
            if self.first_sequence is not None and sequence > self.first_sequence:
                return range(self.first_sequence, sequence)
            return range(0)

        opened = range(0)
        if sequence > self.max_seen:
            opened = range(self.max_seen + 1, sequence)
            self.max_seen = sequence
        elif sequence < self.min_seen:
            # With a fixed first_sequence the leading gap was reported up front
            if self.first_sequence is None:
                opened = range(sequence + 1, self.min_seen)
            self.min_seen = sequence
        return opened

    def gap_ranges(self) -> List[Tuple[int, int]]:
        """Missing sequences as inclusive (low, high) ranges, ascending"""
        if not self._seen:
            return []

        seen = np.sort(np.fromiter(self._seen, dtype=np.int64, count=len(self._seen)))
        if self.first_sequence is not None:
            seen = seen[seen >= self.first_sequence]
            if seen.size == 0:
                return []

        ranges = []
        if self.first_sequence is not None and seen[0] > self.first_sequence:
            ranges.append((self.first_sequence, int(seen[0]) - 1))

        breaks = np.nonzero(np.diff(seen) > 1)[0]
        ranges.extend((int(seen[i]) + 1, int(seen[i + 1]) - 1) for i in breaks)
        return ranges

    def missing_count(self) -> int:
        """Exact number of missing sequences, regardless of max_missing"""
        return sum(high - low + 1 for low, high in self.gap_ranges())

    def missing(self) -> List[int]:
        """
        Sequence numbers in [first, max_seen) not yet observed, ascending.

        At most max_missing values are returned; compare with
        missing_count() to detect truncation.
        """
        result: List[int] = []
        budget = self.max_missing
        for low, high in self.gap_ranges():
            if budget <= 0:
                break
            upper = min(high, low + budget - 1)
            result.extend(range(low, upper + 1))
            budget -= upper - low + 1
        return result

    @property
    def is_complete(self) -> bool:
        return not self.gap_ranges()

    @property
    def seen_count(self) -> int:
        return len(self._seen)

    def __contains__(self, sequence: int) -> bool:
        return sequence in self._seen

    def get_stats(self) -> dict:
        """Get tracker statistics"""
        return {
            'seen': self.seen_count,
            'duplicates': self.duplicates,
            'min_seen': self.min_seen,
            'max_seen': self.max_seen,
            'missing': self.missing_count(),
        }
