class TableSinkError(Exception):
    """Base exception for tablesink errors."""


class ConfigurationError(TableSinkError):
    """Missing or invalid configuration; the sink cannot start."""


class MappingParseError(TableSinkError):
    """A single malformed mapping entry. Collected as a diagnostic, not raised."""

    def __init__(self, entry: str, reason: str) -> None:
        super().__init__(f"Invalid mapping entry {entry!r}: {reason}")
        self.entry = entry
        self.reason = reason


class PayloadDecodeError(TableSinkError):
    """An event body could not be decoded as the configured format."""


class DeliveryError(TableSinkError):
    """A batch could not be written; both transactions were rolled back."""


class SinkStateError(TableSinkError):
    """A lifecycle method was called in the wrong state."""


class ChannelError(TableSinkError):
    """General channel failure."""


class ChannelFullError(ChannelError):
    """The channel has no remaining capacity."""


class QueueError(TableSinkError):
    """General queue-related issues."""
