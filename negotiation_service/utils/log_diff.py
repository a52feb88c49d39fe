# negotiation_service/utils/log_diff.py
"""
Content-based change detection for message logs.

Two logs fetched independently are never the same objects, so comparison is
structural: a log is reduced to a tuple of per-message fingerprints holding
every field a participant can observe changing.
"""
from datetime import datetime
from typing import Any, Iterable, Optional, Tuple

FINGERPRINT_FIELDS = (
    "id",
    "sequence",
    "sender_id",
    "message_type",
    "message",
    "offer_status",
    "resolved_by_id",
    "in_reply_to_id",
)


def _normalise(value: Any) -> Any:
    value = getattr(value, "value", value)  # str Enums
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "model_dump"):
        return _normalise(value.model_dump(exclude_none=True))
    if isinstance(value, dict):
        return tuple(sorted((k, _normalise(v)) for k, v in value.items() if v is not None))
    if isinstance(value, (list, tuple)):
        return tuple(_normalise(v) for v in value)
    return value


def _field(message: Any, name: str) -> Any:
    if isinstance(message, dict):
        return message.get(name)
    return getattr(message, name, None)


def message_fingerprint(message: Any) -> Tuple:
    fields = [_normalise(_field(message, name)) for name in FINGERPRINT_FIELDS]
    fields.append(_normalise(_field(message, "offer_data")))
    fields.append(_normalise(_field(message, "attachments") or []))
    return tuple(fields)


def log_fingerprint(messages: Optional[Iterable[Any]]) -> Tuple:
    return tuple(message_fingerprint(m) for m in (messages or []))


def logs_equal(a: Optional[Iterable[Any]], b: Optional[Iterable[Any]]) -> bool:
    """True when both logs hold the same messages with the same content, in order."""
    return log_fingerprint(a) == log_fingerprint(b)
