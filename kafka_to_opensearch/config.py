# kafka_to_opensearch/config.py
import os
import re
from typing import Any, Dict, List, Optional

import kafka
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from kafka_to_opensearch import __version__
from kafka_to_opensearch.errors import ConfigError

BINARY_NAME = "kafka_to_opensearch"


def get_env_var(name: str, default=None):
    return os.getenv(name, default)


def get_int_env_var(name: str, default=0):
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def get_float_env_var(name: str, default=0.0):
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def get_list_env_var(name: str, default=None) -> List[str]:
    raw = os.getenv(name)
    if raw is None:
        return list(default or [])
    return [v.strip() for v in raw.split(",") if v.strip()]


def user_agent() -> str:
    return f"{BINARY_NAME}/{__version__} kafka-python/{kafka.__version__}"


def _coerce(value: str) -> Any:
    low = value.lower()
    if low in ("true", "yes", "on"):
        return True
    if low in ("false", "no", "off"):
        return False
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            pass
    return value


def parse_opts(opts: List[str]) -> Dict[str, Any]:
    """Turn repeated `key=value` flags into KafkaConsumer keyword arguments.

    Dashes in keys become underscores so `max-poll-interval-ms=30000` and
    `max_poll_interval_ms=30000` are equivalent. Values are coerced to
    bool/int/float when they look like one.
    """
    parsed: Dict[str, Any] = {}
    for opt in opts:
        key, sep, value = opt.partition("=")
        key = key.strip().replace("-", "_")
        if not sep or not key:
            raise ConfigError(f"invalid consumer option {opt!r}, expected key=value")
        parsed[key] = _coerce(value.strip())
    return parsed


class BridgeConfig(BaseModel):
    bootstrap_servers: List[str]
    lookup_servers: List[str] = Field(default_factory=list)
    topic_pattern: str = ".*"
    group: str = BINARY_NAME
    max_in_flight: int = Field(200, gt=0)
    concurrency: int = Field(10, gt=0)
    refresh_interval: float = Field(60.0, gt=0)
    status_every: int = Field(250, ge=0)

    index_name: str = "logstash-%Y.%m.%d"
    index_type: str = "_doc"
    opensearch: List[str]
    http_timeout: float = Field(20.0, gt=0)

    consumer_opts: Dict[str, Any] = Field(default_factory=dict)
    max_attempts: int = Field(5, ge=0)
    requeue_delay: float = Field(1.0, ge=0)
    max_backoff: float = Field(60.0, ge=0)

    @field_validator("topic_pattern")
    @classmethod
    def _pattern_compiles(cls, v: str) -> str:
        if not v:
            raise ValueError("topic pattern is required")
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"invalid topic pattern: {e}") from e
        return v

    @field_validator("group", "index_name", "index_type")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v

    @model_validator(mode="after")
    def _addresses(self):
        if not self.bootstrap_servers:
            raise ValueError("missing kafka bootstrap servers")
        if not self.opensearch:
            raise ValueError("missing opensearch addresses")
        if not self.lookup_servers:
            self.lookup_servers = list(self.bootstrap_servers)
        return self


def load_config(**values) -> BridgeConfig:
    try:
        return BridgeConfig(**values)
    except ValidationError as e:
        raise ConfigError(str(e)) from e


def config_from_env(overrides: Optional[Dict[str, Any]] = None) -> BridgeConfig:
    values = {
        "bootstrap_servers": get_list_env_var("KAFKA_BOOTSTRAP_SERVERS", ["localhost:9092"]),
        "lookup_servers": get_list_env_var("KAFKA_LOOKUP_SERVERS"),
        "topic_pattern": get_env_var("KAFKA_TOPIC_PATTERN", ".*"),
        "group": get_env_var("KAFKA_GROUP_ID", BINARY_NAME),
        "max_in_flight": get_int_env_var("MAX_IN_FLIGHT", 200),
        "concurrency": get_int_env_var("CONCURRENCY", 10),
        "refresh_interval": get_float_env_var("REFRESH_INTERVAL", 60.0),
        "status_every": get_int_env_var("STATUS_EVERY", 250),
        "index_name": get_env_var("OPENSEARCH_INDEX_NAME", "logstash-%Y.%m.%d"),
        "index_type": get_env_var("OPENSEARCH_INDEX_TYPE", "_doc"),
        "opensearch": get_list_env_var("OPENSEARCH_URL", ["http://localhost:9200"]),
        "http_timeout": get_float_env_var("HTTP_TIMEOUT", 20.0),
        "max_attempts": get_int_env_var("MAX_ATTEMPTS", 5),
        "requeue_delay": get_float_env_var("REQUEUE_DELAY", 1.0),
        "max_backoff": get_float_env_var("MAX_BACKOFF", 60.0),
    }
    values.update({k: v for k, v in (overrides or {}).items() if v is not None})
    return load_config(**values)
