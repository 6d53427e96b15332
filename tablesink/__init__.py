from .channel import Event, MemoryChannel
from .config import QueueConfig, SinkConfig
from .mapping import MappingSpec, parse_mapping
from .render import render_batch
from .runner import SinkRunner
from .sink import BatchSink, LifecycleState, Status

__all__ = [
    "BatchSink",
    "Event",
    "LifecycleState",
    "MappingSpec",
    "MemoryChannel",
    "QueueConfig",
    "SinkConfig",
    "SinkRunner",
    "Status",
    "parse_mapping",
    "render_batch",
]
