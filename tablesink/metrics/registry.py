from prometheus_client import Counter, Histogram

# Sink

SINK_BATCH_TOTAL = Counter(
    "tablesink_sink_batch_total",
    "Processing steps by outcome of the drain (empty, underflow, complete)",
    ["sink", "kind"],
)

SINK_EVENT_DRAIN_ATTEMPT_TOTAL = Counter(
    "tablesink_sink_event_drain_attempt_total",
    "Events taken from the channel and submitted to the destination",
    ["sink"],
)

SINK_EVENT_DRAIN_SUCCESS_TOTAL = Counter(
    "tablesink_sink_event_drain_success_total",
    "Events durably written to the destination",
    ["sink"],
)

SINK_CONNECTION_TOTAL = Counter(
    "tablesink_sink_connection_total",
    "Destination connection events (created, closed, failed)",
    ["sink", "event"],
)

# Destination writes

DB_WRITE_TOTAL = Counter(
    "tablesink_db_write_total",
    "Batched INSERT statements executed against the destination",
    ["table", "status"],
)

DB_WRITE_LATENCY_SECONDS = Histogram(
    "tablesink_db_write_latency_seconds",
    "Latency of a destination batch from first INSERT to commit/rollback",
    ["table"],
)

# Redis Streams channel

QUEUE_MESSAGES_READ_TOTAL = Counter(
    "tablesink_queue_messages_read_total",
    "Entries read from a stream",
    ["stream"],
)

QUEUE_MESSAGES_ACK_TOTAL = Counter(
    "tablesink_queue_messages_ack_total",
    "Entries acknowledged on a stream",
    ["stream"],
)

QUEUE_MESSAGES_PUBLISHED_TOTAL = Counter(
    "tablesink_queue_messages_published_total",
    "Entries appended to a stream",
    ["stream"],
)

QUEUE_READ_LATENCY_SECONDS = Histogram(
    "tablesink_queue_read_latency_seconds",
    "Latency of non-empty stream reads",
    ["stream"],
)
