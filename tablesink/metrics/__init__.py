from .counter import SinkCounter

__all__ = ["SinkCounter"]
