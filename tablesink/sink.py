from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, Optional

from .channel.base import Channel, ChannelTransaction
from .channel.models import Event
from .config import SinkConfig
from .db.tx import DbConnection, DbTransaction
from .errors import DeliveryError, SinkStateError
from .metrics.counter import SinkCounter
from .render import render_batch

logger = logging.getLogger(__name__)


class Status(str, Enum):
    READY = "ready"
    BACKOFF = "backoff"


class LifecycleState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class BatchSink:
    """
    Drains events from a channel and inserts them into a table, one batch per step.

    Each process() call runs one cycle:
    1) begin a channel transaction
    2) take up to batch_size events without blocking
    3) render one INSERT per event
    4) execute the INSERTs in one destination transaction
    5) commit the destination, then commit the channel

    The destination is always resolved before the channel. A crash between the two
    commits redelivers rows that were already written, so delivery is at-least-once
    and a retry may insert duplicates. On any failure both transactions are rolled
    back and DeliveryError is raised; the caller decides when to retry.

    process() is not reentrant: one scheduler thread drives a sink.

    Usage:
        sink = BatchSink(config, channel, name="k1")
        sink.start()
        try:
            status = sink.process()
        finally:
            sink.stop()
    """

    def __init__(
        self,
        config: SinkConfig,
        channel: Channel,
        *,
        name: str = "tablesink",
        connection_factory: Optional[Callable[[SinkConfig], DbConnection]] = None,
    ) -> None:
        """
        Args:
            config: Validated sink configuration
            channel: Channel to drain
            name: Sink name used in logs and metric labels
            connection_factory: Builds the destination connection on start();
                defaults to DbConnection.open
        """
        self.config = config
        self.channel = channel
        self.name = name
        self.counter = SinkCounter(name)
        self._connection_factory = connection_factory or DbConnection.open
        self._db: DbConnection | None = None
        self._state = LifecycleState.IDLE
        self._lifecycle_lock = threading.Lock()

    @property
    def state(self) -> LifecycleState:
        return self._state

    def start(self) -> None:
        """
        Open the destination connection and start accepting process() calls.

        Calling start() on a running sink does nothing.

        Raises:
            SinkStateError: If the sink was already stopped
            ConfigurationError: If the destination driver cannot be loaded
        """
        with self._lifecycle_lock:
            if self._state == LifecycleState.RUNNING:
                return
            if self._state == LifecycleState.STOPPED:
                raise SinkStateError(f"Sink {self.name} is stopped and cannot be restarted")

            try:
                self._db = self._connection_factory(self.config)
            except Exception:
                self.counter.increment_connection_failed()
                raise
            self.counter.increment_connection_created()
            self.counter.start()
            self._state = LifecycleState.RUNNING
            logger.info("Table sink %s started, writing to %s", self.name, self.config.table)

    def stop(self) -> None:
        """Close the destination connection and log the sink's counters."""
        with self._lifecycle_lock:
            if self._state == LifecycleState.STOPPED:
                return
            try:
                if self._db is not None:
                    self._db.close()
                    self.counter.increment_connection_closed()
            finally:
                self._db = None
                self.counter.stop()
                self._state = LifecycleState.STOPPED
                logger.info("Table sink %s stopped. Metrics: %s", self.name, self.counter)

    def process(self) -> Status:
        """
        Run one drain-render-write cycle.

        Returns:
            Status.READY if a batch was written, Status.BACKOFF if the channel was empty

        Raises:
            SinkStateError: If the sink is not running
            DeliveryError: If the batch could not be written; both transactions
                were rolled back and the same events will be taken again
        """
        if self._state != LifecycleState.RUNNING or self._db is None:
            raise SinkStateError(f"Sink {self.name} is {self._state.value}, not running")

        txn = self.channel.get_transaction()
        txn.begin()
        try:
            return self._process(txn, self._db)
        finally:
            try:
                txn.close()
            except Exception:
                logger.exception("Failed to close channel transaction")

    def _process(self, txn: ChannelTransaction, db: DbConnection) -> Status:
        dest_tx: DbTransaction | None = None
        events: list[Event] = []
        try:
            events = self._drain(txn)
            if not events:
                self.counter.increment_batch_empty()
                txn.commit()
                return Status.BACKOFF

            logger.debug("Started to batch %d events.", len(events))
            self.counter.add_to_event_drain_attempt(len(events))

            dest_tx = db.begin()
            descriptions = render_batch(
                self.config.table,
                self.config.mapping,
                events,
                self.config.body_format,
                self.config.malformed_payload,
            )
            dest_tx.execute_batch(descriptions)
            dest_tx.commit()
            txn.commit()
        except Exception as exc:
            logger.error("Failed to insert %d events into %s: %s", len(events), self.config.table, exc)
            self.counter.increment_connection_failed()
            self._rollback(dest_tx, txn)
            raise DeliveryError("Failed to publish events") from exc

        self.counter.add_to_event_drain_success(len(events))
        logger.info("Success to batch %d events.", len(events))
        return Status.READY

    def _drain(self, txn: ChannelTransaction) -> list[Event]:
        events: list[Event] = []
        while len(events) < self.config.batch_size:
            event = txn.take()
            if event is None:
                break
            events.append(event)

        if events and len(events) < self.config.batch_size:
            self.counter.increment_batch_underflow()
        elif events:
            self.counter.increment_batch_complete()
        return events

    def _rollback(self, dest_tx: Optional[DbTransaction], txn: ChannelTransaction) -> None:
        # Destination first, then channel. Failures here are logged and never
        # replace the error that caused the rollback.
        if dest_tx is not None and dest_tx.is_active:
            try:
                dest_tx.rollback()
            except Exception:
                logger.exception("Failed to rollback destination transaction")
        try:
            txn.rollback()
        except Exception:
            logger.exception("Failed to rollback channel transaction")
