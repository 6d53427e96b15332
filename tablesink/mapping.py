"""
Mapping string parsing and selector evaluation.

A mapping string lists destination columns and where to read each value from:

    id:body.id,name:body.name,uid:header.uid

Entries are separated by ``,`` and each entry is ``column:source`` where source is
``header.<key>`` (an event header) or ``body.<key>`` (a top-level key of the JSON
body). Malformed entries are reported and skipped rather than rejecting the whole
mapping.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Optional, Union

from .channel.models import Event
from .errors import ConfigurationError, MappingParseError, PayloadDecodeError

logger = logging.getLogger(__name__)

HEADER_PREFIX = "header."
BODY_PREFIX = "body."
ENTRY_SEPARATOR = ","
PART_SEPARATOR = ":"


@dataclass(frozen=True)
class HeaderRef:
    key: str


@dataclass(frozen=True)
class BodyRef:
    key: str


@dataclass(frozen=True)
class UnknownRef:
    """A source with an unrecognized prefix. Always evaluates to None."""

    raw: str


Selector = Union[HeaderRef, BodyRef, UnknownRef]


@dataclass(frozen=True)
class MappingEntry:
    column: str
    selector: Selector


@dataclass(frozen=True)
class MappingSpec:
    entries: tuple[MappingEntry, ...]

    def __iter__(self) -> Iterator[MappingEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def columns(self) -> tuple[str, ...]:
        return tuple(e.column for e in self.entries)

    @property
    def reads_body(self) -> bool:
        return any(isinstance(e.selector, BodyRef) for e in self.entries)


@dataclass(frozen=True)
class MappingParseResult:
    entries: tuple[MappingEntry, ...]
    diagnostics: tuple[MappingParseError, ...]


def parse_selector(ref: str) -> Selector:
    if ref.startswith(HEADER_PREFIX):
        return HeaderRef(ref[len(HEADER_PREFIX):])
    if ref.startswith(BODY_PREFIX):
        return BodyRef(ref[len(BODY_PREFIX):])
    return UnknownRef(ref)


def parse_mapping_entries(mapping: str) -> MappingParseResult:
    """
    Parse a mapping string into entries, collecting problems instead of raising.

    Every malformed token becomes a MappingParseError in ``diagnostics`` and is left
    out of ``entries``; the remaining entries keep their input order.
    """
    entries: list[MappingEntry] = []
    diagnostics: list[MappingParseError] = []
    seen: set[str] = set()

    for token in mapping.split(ENTRY_SEPARATOR):
        parts = token.split(PART_SEPARATOR)
        if len(parts) != 2:
            diagnostics.append(
                MappingParseError(token, f"expected 'column{PART_SEPARATOR}source', got {len(parts)} part(s)")
            )
            continue

        column, ref = parts[0].strip(), parts[1].strip()
        if not column:
            diagnostics.append(MappingParseError(token, "column name is empty"))
            continue
        if column in seen:
            diagnostics.append(MappingParseError(token, f"column {column!r} is mapped more than once"))
            continue

        selector = parse_selector(ref)
        if isinstance(selector, (HeaderRef, BodyRef)) and not selector.key:
            diagnostics.append(MappingParseError(token, "source key is empty"))
            continue

        seen.add(column)
        entries.append(MappingEntry(column=column, selector=selector))

    return MappingParseResult(entries=tuple(entries), diagnostics=tuple(diagnostics))


def parse_mapping(mapping: str) -> MappingSpec:
    """
    Parse a mapping string into a MappingSpec.

    Malformed entries are logged and skipped. Entries whose source has neither the
    ``header.`` nor the ``body.`` prefix are kept but always map to NULL.

    Raises:
        ConfigurationError: If the mapping is empty or no valid entry remains
    """
    if not mapping or not mapping.strip():
        raise ConfigurationError("sql string must not be empty")

    result = parse_mapping_entries(mapping)
    for diagnostic in result.diagnostics:
        logger.error("fail to resolve the part: %s", diagnostic)

    for entry in result.entries:
        if isinstance(entry.selector, UnknownRef):
            logger.warning(
                "Mapping source %r for column %r has no %r or %r prefix; it will always be NULL",
                entry.selector.raw,
                entry.column,
                HEADER_PREFIX,
                BODY_PREFIX,
            )

    if not result.entries:
        raise ConfigurationError(f"mapping {mapping!r} contains no valid entry")

    return MappingSpec(entries=result.entries)


def decode_body(event: Event) -> dict[str, Any]:
    """
    Decode an event body as a JSON object.

    Raises:
        PayloadDecodeError: If the body is not UTF-8, not valid JSON, or not an object
    """
    try:
        decoded = json.loads(event.body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise PayloadDecodeError(f"Event body is not valid JSON: {exc}") from exc

    if not isinstance(decoded, dict):
        raise PayloadDecodeError(
            f"Event body must be a JSON object, got {type(decoded).__name__}"
        )
    return decoded


def evaluate(selector: Selector, event: Event, body: Optional[Mapping[str, Any]]) -> Any:
    """
    Read the value a selector points at.

    ``body`` is the already decoded event body, or None when it is unavailable; body
    lookups then yield None. Only top-level body keys are supported.
    """
    if isinstance(selector, HeaderRef):
        return event.headers.get(selector.key)
    if isinstance(selector, BodyRef):
        if body is None:
            return None
        return body.get(selector.key)
    return None
