from __future__ import annotations

import logging
import threading
from typing import Optional

from .errors import DeliveryError
from .sink import BatchSink, Status

logger = logging.getLogger(__name__)

DEFAULT_BACKOFF_INCREMENT_S = 1.0
DEFAULT_MAX_BACKOFF_S = 5.0


class SinkRunner:
    """
    Polling loop that drives a BatchSink.

    Calls process() back to back while batches are written. After an empty channel
    (BACKOFF) or a failed batch the loop sleeps, growing the delay linearly with the
    number of consecutive misses up to max_backoff_s. A READY step resets the delay.

    The runner never retries on its own beyond calling process() again: a failed
    batch was rolled back in the channel, so the next step takes the same events.

    Usage:
        runner = SinkRunner(sink)
        runner.start()      # background thread
        ...
        runner.stop()       # stops the loop and the sink
    """

    def __init__(
        self,
        sink: BatchSink,
        backoff_increment_s: float = DEFAULT_BACKOFF_INCREMENT_S,
        max_backoff_s: float = DEFAULT_MAX_BACKOFF_S,
    ) -> None:
        if backoff_increment_s < 0 or max_backoff_s < 0:
            raise ValueError("backoff values must be >= 0")
        self.sink = sink
        self.backoff_increment_s = backoff_increment_s
        self.max_backoff_s = max_backoff_s
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def backoff_delay(self, consecutive: int) -> float:
        return min(consecutive * self.backoff_increment_s, self.max_backoff_s)

    def run_once(self) -> bool:
        """
        Run a single processing step.

        Returns:
            True if a batch was written, False if the loop should back off
        """
        try:
            return self.sink.process() == Status.READY
        except DeliveryError as exc:
            logger.error("Unable to deliver event. Exception follows.", exc_info=exc)
        except Exception:
            logger.exception("Unhandled exception while processing sink %s", self.sink.name)
        return False

    def run(self) -> None:
        """Start the sink and process until stop() is called. Blocks the caller."""
        self.sink.start()
        consecutive = 0
        while not self._stopping.is_set():
            if self.run_once():
                consecutive = 0
                continue
            consecutive += 1
            delay = self.backoff_delay(consecutive)
            logger.debug("Sink %s backing off for %.2fs", self.sink.name, delay)
            # wakes early on stop()
            self._stopping.wait(delay)

    def start(self) -> None:
        """Run the loop on a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopping.clear()
        self._thread = threading.Thread(
            target=self.run, name=f"SinkRunner-{self.sink.name}", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal the loop to stop, wait for it, then stop the sink."""
        self._stopping.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self.sink.stop()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
