from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from sqlalchemy.dialects import registry
from sqlalchemy.exc import NoSuchModuleError

from .errors import ConfigurationError
from .mapping import MappingSpec, parse_mapping

DEFAULT_BATCH_SIZE = 10
DEFAULT_BODY_FORMAT = "json"
SUPPORTED_BODY_FORMATS = ("json",)

MALFORMED_PAYLOAD_FAIL = "fail"
MALFORMED_PAYLOAD_NULL = "null"
MALFORMED_PAYLOAD_POLICIES = (MALFORMED_PAYLOAD_FAIL, MALFORMED_PAYLOAD_NULL)

# Names accepted for sqlDialect that SQLAlchemy registers under another name.
_DIALECT_ALIASES = {
    "postgres": "postgresql",
    "postgres_10": "postgresql",
    "sqlserver": "mssql",
    "sqlite3": "sqlite",
}

CONF_DRIVER = "driver"
CONF_CONNECTION_URL = "connectionURL"
CONF_BATCH_SIZE = "batchSize"
CONF_MAPPING = "mapping"
CONF_USER = "user"
CONF_PASSWORD = "password"
CONF_TABLE = "table"
CONF_SQL_DIALECT = "sqlDialect"
CONF_BODY_FORMAT = "bodyFormat"
CONF_MALFORMED_PAYLOAD = "malformedPayload"


def normalize_dialect(name: str) -> str:
    """
    Resolve a dialect identifier to the name SQLAlchemy registers it under.

    Raises:
        ConfigurationError: If no such dialect is available
    """
    if not name:
        raise ConfigurationError("sqlDialect must not be empty")
    key = name.strip().lower()
    key = _DIALECT_ALIASES.get(key, key)
    try:
        registry.load(key)
    except NoSuchModuleError as exc:
        raise ConfigurationError(f"Unknown SQL dialect: {name!r}") from exc
    return key


@dataclass(frozen=True)
class SinkConfig:
    driver: str
    connection_url: str
    table: str
    dialect: str
    mapping: MappingSpec
    batch_size: int = DEFAULT_BATCH_SIZE
    user: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    body_format: str = DEFAULT_BODY_FORMAT
    malformed_payload: str = MALFORMED_PAYLOAD_FAIL

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if not self.table:
            raise ConfigurationError("table name must not be empty")
        if not self.driver:
            raise ConfigurationError("driver must not be empty")
        if not self.connection_url:
            raise ConfigurationError("connectionURL must not be empty")
        if not isinstance(self.mapping, MappingSpec) or len(self.mapping) == 0:
            raise ConfigurationError("mapping must contain at least one entry")
        if isinstance(self.batch_size, bool) or not isinstance(self.batch_size, int) or self.batch_size < 1:
            raise ConfigurationError("batchSize must be a positive integer")
        if self.body_format.lower() not in SUPPORTED_BODY_FORMATS:
            raise ConfigurationError(f"Unsupported body format: {self.body_format!r}")
        if self.malformed_payload not in MALFORMED_PAYLOAD_POLICIES:
            raise ConfigurationError(
                f"malformedPayload must be one of {MALFORMED_PAYLOAD_POLICIES}, "
                f"got {self.malformed_payload!r}"
            )
        # frozen dataclass: normalized values go through object.__setattr__
        object.__setattr__(self, "dialect", normalize_dialect(self.dialect))
        object.__setattr__(self, "body_format", self.body_format.lower())

    @property
    def has_credentials(self) -> bool:
        return bool(self.user) and bool(self.password)

    @classmethod
    def from_context(cls, context: Mapping[str, Any], prefix: str = "") -> "SinkConfig":
        """
        Build a configuration from a flat key-value mapping.

        Keys use the connector's property names (``connectionURL``, ``batchSize``,
        ``sqlDialect``...). If ``prefix`` is given, only keys starting with it are
        considered and the prefix is stripped, so a whole agent properties file can
        be passed in with e.g. ``prefix="agent1.sinks.k1."``.

        Raises:
            ConfigurationError: If a required key is missing or a value is invalid
        """
        if prefix:
            context = {k[len(prefix):]: v for k, v in context.items() if k.startswith(prefix)}

        def _get(key: str, default: Optional[str] = None) -> Optional[str]:
            value = context.get(key)
            if value is None:
                return default
            value = str(value).strip()
            return value if value else default

        raw_mapping = _get(CONF_MAPPING)
        if not raw_mapping:
            raise ConfigurationError("sql string must not be empty")

        raw_batch_size = _get(CONF_BATCH_SIZE)
        try:
            batch_size = int(raw_batch_size) if raw_batch_size is not None else DEFAULT_BATCH_SIZE
        except ValueError as exc:
            raise ConfigurationError(f"batchSize must be an integer, got {raw_batch_size!r}") from exc

        return cls(
            driver=_get(CONF_DRIVER, ""),
            connection_url=_get(CONF_CONNECTION_URL, ""),
            table=_get(CONF_TABLE, ""),
            dialect=_get(CONF_SQL_DIALECT, ""),
            mapping=parse_mapping(raw_mapping),
            batch_size=batch_size,
            user=_get(CONF_USER),
            password=_get(CONF_PASSWORD),
            body_format=_get(CONF_BODY_FORMAT, DEFAULT_BODY_FORMAT),
            malformed_payload=_get(CONF_MALFORMED_PAYLOAD, MALFORMED_PAYLOAD_FAIL),
        )


@dataclass
class QueueConfig:
    stream_key: str
    consumer_group: str
    consumer_name: str

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        for name in ("stream_key", "consumer_group", "consumer_name"):
            if not getattr(self, name):
                raise ValueError(f"{name} must not be empty")
