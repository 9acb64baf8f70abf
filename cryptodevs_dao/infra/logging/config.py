from __future__ import annotations

import logging
import os
import sys
from typing import Any, Mapping, MutableMapping, cast

import structlog


def _add_msg_from_event(_: Any, __: str, event_dict: MutableMapping[str, Any]) -> Mapping[str, Any]:
    """Mirror structlog's `event` into `msg` so every line carries ts/level/msg/event."""

    if "msg" not in event_dict and isinstance(event_dict.get("event"), str):
        event_dict["msg"] = event_dict["event"]
    return event_dict


# `token` alone is not listed: token ids are logged on purpose.
_SENSITIVE_KEYS = {
    "private_key",
    "mnemonic",
    "seed_phrase",
    "password",
    "secret",
    "api_key",
    "apikey",
    "access_token",
    "refresh_token",
    "authorization",
    "database_url",
    "dsn",
}


def _mask_sensitive_values(
    _: Any, __: str, event_dict: MutableMapping[str, Any]
) -> Mapping[str, Any]:
    """Redact wallet secrets and credentials, recursing into dicts and lists."""

    def mask_value(key: str, value: Any) -> Any:
        if key.lower() in _SENSITIVE_KEYS:
            return "[REDACTED]"
        if isinstance(value, Mapping):
            typed_mapping = cast(Mapping[str, Any], value)
            return {k: mask_value(str(k), v) for k, v in typed_mapping.items()}
        if isinstance(value, (list, tuple)):
            return [mask_value(key, item) for item in cast(list[Any], value)]
        return value

    return {key: mask_value(key, value) for key, value in event_dict.items()}


def _stringify_wei(_: Any, __: str, event_dict: MutableMapping[str, Any]) -> Mapping[str, Any]:
    """Render `*_wei` integers as strings; uint256 amounts overflow JSON number readers."""

    for key, value in list(event_dict.items()):
        if key.endswith("_wei") and isinstance(value, int) and not isinstance(value, bool):
            event_dict[key] = str(value)
    return event_dict


def configure_logging(level: str | None = None) -> None:
    """Configure structlog/stdlib logging for JSON Lines output.

    - Keys: ts, level, msg, event
    - Timestamp: UTC ISO-8601
    - Output: one JSON object per line on stdout
    """

    raw_level: str = level if level is not None else os.getenv("LOG_LEVEL", "INFO")
    log_level = getattr(logging, raw_level.upper(), logging.INFO)

    # force=True lets tests using capsys rebind the handler to the swapped stdout.
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        stream=sys.stdout,
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            _add_msg_from_event,
            _mask_sensitive_values,
            _stringify_wei,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
