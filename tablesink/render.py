from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from .channel.models import Event
from .config import (
    MALFORMED_PAYLOAD_FAIL,
    MALFORMED_PAYLOAD_NULL,
    MALFORMED_PAYLOAD_POLICIES,
    SUPPORTED_BODY_FORMATS,
)
from .db.models import InsertDescription
from .errors import ConfigurationError, PayloadDecodeError
from .mapping import MappingSpec, decode_body, evaluate

logger = logging.getLogger(__name__)


def _body_for(event: Event, index: int, malformed_payload: str) -> Optional[dict[str, Any]]:
    try:
        return decode_body(event)
    except PayloadDecodeError as exc:
        if malformed_payload == MALFORMED_PAYLOAD_NULL:
            logger.warning("Event %d has a malformed body; body columns set to NULL: %s", index, exc)
            return None
        raise PayloadDecodeError(f"Event {index} in batch: {exc}") from exc


def render_event(
    table: str,
    spec: MappingSpec,
    event: Event,
    malformed_payload: str = MALFORMED_PAYLOAD_FAIL,
    index: int = 0,
) -> InsertDescription:
    """
    Map one event to one row. Column order follows the mapping.

    The body is decoded once, and only if some column reads from it.
    """
    body = _body_for(event, index, malformed_payload) if spec.reads_body else None
    values = tuple(evaluate(entry.selector, event, body) for entry in spec)
    return InsertDescription(table=table, columns=spec.columns, values=values)


def render_batch(
    table: str,
    spec: MappingSpec,
    events: Sequence[Event],
    body_format: str = "json",
    malformed_payload: str = MALFORMED_PAYLOAD_FAIL,
) -> list[InsertDescription]:
    """
    Render events into insert descriptions, one per event, preserving event order.

    Args:
        table: Destination table
        spec: Parsed mapping
        events: Events to render
        body_format: Event body encoding; only "json" is supported
        malformed_payload: "fail" to raise on an undecodable body (the batch is
            then rolled back by the sink), "null" to log it and use NULL for that
            event's body-sourced columns

    Raises:
        ConfigurationError: If body_format or malformed_payload is unsupported
        PayloadDecodeError: If a body cannot be decoded and the policy is "fail"
    """
    if body_format.lower() not in SUPPORTED_BODY_FORMATS:
        raise ConfigurationError(f"Unsupported body format: {body_format!r}")
    if malformed_payload not in MALFORMED_PAYLOAD_POLICIES:
        raise ConfigurationError(f"Unknown malformed payload policy: {malformed_payload!r}")

    return [
        render_event(table, spec, event, malformed_payload, index)
        for index, event in enumerate(events)
    ]
