from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True)
class Event:
    """
    A single record carried by a channel: string headers plus an opaque body.
    """
    body: bytes = b""
    headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # read-only view so an event cannot change after it was put on a channel
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))
