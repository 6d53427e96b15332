from __future__ import annotations

import threading
from collections import deque
from enum import Enum
from typing import Optional

from ..errors import ChannelError, ChannelFullError
from .models import Event


class _TxState(str, Enum):
    NEW = "new"
    OPEN = "open"
    COMPLETED = "completed"
    CLOSED = "closed"


class MemoryTransaction:
    """
    Transaction over a MemoryChannel.

    Taken events are held aside until commit; rollback puts them back at the head
    of the queue in their original order.
    """

    def __init__(self, channel: "MemoryChannel") -> None:
        self._channel = channel
        self._taken: list[Event] = []
        self._state = _TxState.NEW

    def _require(self, state: _TxState, action: str) -> None:
        if self._state != state:
            raise ChannelError(f"{action}() called when transaction is {self._state.value}")

    def begin(self) -> None:
        self._require(_TxState.NEW, "begin")
        self._state = _TxState.OPEN

    def take(self) -> Optional[Event]:
        self._require(_TxState.OPEN, "take")
        event = self._channel._poll()
        if event is not None:
            self._taken.append(event)
        return event

    def commit(self) -> None:
        self._require(_TxState.OPEN, "commit")
        self._taken = []
        self._state = _TxState.COMPLETED

    def rollback(self) -> None:
        self._require(_TxState.OPEN, "rollback")
        self._channel._requeue(self._taken)
        self._taken = []
        self._state = _TxState.COMPLETED

    def close(self) -> None:
        if self._state == _TxState.OPEN:
            raise ChannelError(
                "close() called when transaction is open - you must either commit or rollback first"
            )
        self._state = _TxState.CLOSED


class MemoryChannel:
    """
    Bounded in-process channel with transactional takes.

    Safe for concurrent producers calling put() while a sink drains it.

    Usage:
        channel = MemoryChannel(capacity=100)
        channel.put(Event(body=b'{"id": 1}'))

        txn = channel.get_transaction()
        txn.begin()
        try:
            event = txn.take()
            txn.commit()
        except Exception:
            txn.rollback()
            raise
        finally:
            txn.close()
    """

    def __init__(self, capacity: int = 100) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.capacity = capacity
        self._queue: deque[Event] = deque()
        self._lock = threading.Lock()

    def put(self, event: Event) -> None:
        """
        Append an event.

        Raises:
            ChannelFullError: If the channel already holds ``capacity`` events
        """
        with self._lock:
            if len(self._queue) >= self.capacity:
                raise ChannelFullError(f"Channel capacity {self.capacity} exceeded")
            self._queue.append(event)

    def get_transaction(self) -> MemoryTransaction:
        return MemoryTransaction(self)

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)

    def _poll(self) -> Optional[Event]:
        with self._lock:
            if not self._queue:
                return None
            return self._queue.popleft()

    def _requeue(self, events: list[Event]) -> None:
        # rolled back events may push the channel above capacity until drained
        with self._lock:
            self._queue.extendleft(reversed(events))
