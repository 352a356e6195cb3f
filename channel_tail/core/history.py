"""Bounded newest-first message history shared between the subscriber and HTTP readers."""

import threading

from channel_tail.core.types import MESSAGE_TYPES, Message

DEFAULT_CAPACITY = 10


class HistoryStore:
    """Capacity-bounded history where index 0 is the most recently inserted message.

    Writers swap in a new tuple under a lock; readers grab the current tuple
    reference, so a snapshot is immutable and never waits behind an insert.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._entries: tuple[Message, ...] = ()
        self._write_lock = threading.Lock()
        self._total_inserted = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def total_inserted(self) -> int:
        """Number of inserts since creation, including entries already evicted."""

        return self._total_inserted

    def insert(self, message: Message) -> None:
        """Prepend ``message`` and evict the oldest entries beyond capacity."""

        if not isinstance(message, MESSAGE_TYPES):
            raise TypeError(f"expected a message variant, got {type(message).__name__}")

        with self._write_lock:
            self._entries = (message, *self._entries[: self._capacity - 1])
            self._total_inserted += 1

    def snapshot(self) -> tuple[Message, ...]:
        """Return the current contents, newest first."""

        return self._entries

    def __len__(self) -> int:
        return len(self._entries)
