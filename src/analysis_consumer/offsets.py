"""
Per-partition offset bookkeeping for out-of-order acknowledgement.

Deliveries complete in any order when processed concurrently, but Kafka
acknowledges by committing one position per partition. The tracker
only lets that position advance over offsets that were handled; an
offset whose processing failed stays pending until it is redelivered
and succeeds.
"""

from typing import Dict, Iterable, Set

from aiokafka.structs import TopicPartition


class OffsetTracker:
    """
    Tracks pending and completed offsets per partition.

    Usage:
        >>> tracker = OffsetTracker()
        >>> tp = TopicPartition("npms.analysis.pending", 0)
        >>> tracker.track(tp, 10); tracker.track(tp, 11)
        >>> tracker.complete(tp, 11)
        >>> tracker.committable()   # 10 still pending
        {}
        >>> tracker.complete(tp, 10)
        >>> tracker.committable()
        {TopicPartition(topic='npms.analysis.pending', partition=0): 12}
    """

    def __init__(self) -> None:
        self._pending: Dict[TopicPartition, Set[int]] = {}
        self._next: Dict[TopicPartition, int] = {}
        self._committed: Dict[TopicPartition, int] = {}

    def track(self, tp: TopicPartition, offset: int) -> None:
        """Register a delivery as in flight."""
        self._pending.setdefault(tp, set()).add(offset)

    def complete(self, tp: TopicPartition, offset: int) -> None:
        """Mark a delivery as handled (acknowledgeable)."""
        self._pending.get(tp, set()).discard(offset)
        self._next[tp] = max(self._next.get(tp, 0), offset + 1)

    def fail(self, tp: TopicPartition, offset: int) -> None:
        """Mark a delivery as failed; it stays pending and blocks commits past it."""
        self._pending.setdefault(tp, set()).add(offset)

    def committable(self) -> Dict[TopicPartition, int]:
        """
        Return the positions that can be committed and were not yet.

        The position of a partition is its lowest pending offset, or one
        past its highest completed offset when nothing is pending.
        """
        positions: Dict[TopicPartition, int] = {}
        for tp, next_offset in self._next.items():
            pending = self._pending.get(tp)
            position = min(min(pending), next_offset) if pending else next_offset
            if position > self._committed.get(tp, -1):
                positions[tp] = position
        return positions

    def mark_committed(self, offsets: Dict[TopicPartition, int]) -> None:
        for tp, position in offsets.items():
            self._committed[tp] = max(self._committed.get(tp, -1), position)

    def forget(self, partitions: Iterable[TopicPartition]) -> None:
        """Drop state for partitions that are no longer assigned."""
        for tp in partitions:
            self._pending.pop(tp, None)
            self._next.pop(tp, None)
            self._committed.pop(tp, None)

    def partitions(self) -> Set[TopicPartition]:
        return set(self._pending) | set(self._next)
