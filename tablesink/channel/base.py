from __future__ import annotations

from typing import Optional, Protocol

from .models import Event


class ChannelTransaction(Protocol):
    """
    Protocol for a channel transaction.

    Lifecycle: begin() -> take()* -> commit() or rollback() -> close().
    Events taken inside a transaction are only removed from the channel on
    commit(); rollback() makes them available again.
    """

    def begin(self) -> None:
        """Open the transaction."""
        ...

    def take(self) -> Optional[Event]:
        """Take the next event without blocking, or None if none is available."""
        ...

    def commit(self) -> None:
        """Permanently remove the taken events from the channel."""
        ...

    def rollback(self) -> None:
        """Return the taken events to the channel."""
        ...

    def close(self) -> None:
        """Release the transaction. It must have been committed or rolled back."""
        ...


class Channel(Protocol):
    """Protocol for an upstream buffered channel."""

    def get_transaction(self) -> ChannelTransaction:
        """Create a new, not yet begun, transaction."""
        ...
