from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional
from urllib.parse import unquote, unquote_plus

from reelsync.errors import InvalidRequestError

EventKind = Literal["created", "removed"]


@dataclass(slots=True)
class StorageChangeRecord:
    """One storage-change notification, normalised from either envelope shape."""

    event_name: str
    kind: EventKind
    bucket: str
    key: str
    size: Optional[int] = None

    @property
    def filename(self) -> str:
        return self.key.rsplit("/", 1)[-1]


@dataclass(slots=True)
class DirectRequest:
    method: str
    path: str
    path_identifier: Optional[str] = None
    query_params: dict[str, str] = field(default_factory=dict)
    body: Any = None


def decode_key(raw_key: str) -> str:
    """Object keys arrive URL-encoded with ``+`` for spaces."""
    return unquote_plus(raw_key)


def decode_path_segment(raw_segment: str) -> str:
    """Percent-decode a URL path segment; ``+`` is a literal character here."""
    return unquote(raw_segment)


def classify_event_name(event_name: str) -> Optional[EventKind]:
    if event_name.startswith("ObjectCreated:"):
        return "created"
    if event_name.startswith("ObjectRemoved:"):
        return "removed"
    return None


def is_batch_envelope(envelope: Any) -> bool:
    if not isinstance(envelope, dict):
        return False
    return isinstance(envelope.get("records"), list) or isinstance(envelope.get("Records"), list)


def is_direct_envelope(envelope: Any) -> bool:
    if not isinstance(envelope, dict):
        return False
    return bool(envelope.get("method") or envelope.get("httpMethod"))


def parse_batch(envelope: dict[str, Any]) -> list[StorageChangeRecord | InvalidRequestError]:
    """Parse every entry of a batch.

    Entries that cannot be parsed are returned as ``InvalidRequestError`` in
    their slot so one malformed record does not reject its siblings. Event
    kinds other than created/removed are dropped.
    """
    raw_records = envelope.get("records")
    if raw_records is None:
        raw_records = envelope.get("Records")
    parsed: list[StorageChangeRecord | InvalidRequestError] = []
    for raw in raw_records or []:
        try:
            record = parse_record(raw)
        except InvalidRequestError as exc:
            parsed.append(exc)
            continue
        if record is not None:
            parsed.append(record)
    return parsed


def parse_record(raw: Any) -> Optional[StorageChangeRecord]:
    if not isinstance(raw, dict):
        raise InvalidRequestError("storage record must be an object")

    event_name = raw.get("eventName")
    if not isinstance(event_name, str) or not event_name:
        raise InvalidRequestError("storage record missing eventName")
    kind = classify_event_name(event_name)
    if kind is None:
        return None

    s3_section = raw.get("s3")
    if isinstance(s3_section, dict):
        bucket = (s3_section.get("bucket") or {}).get("name")
        obj = s3_section.get("object") or {}
        raw_key = obj.get("key")
        size = obj.get("size")
    else:
        bucket = raw.get("bucket")
        raw_key = raw.get("key")
        size = raw.get("size")

    if not bucket or not isinstance(raw_key, str) or not raw_key:
        raise InvalidRequestError("storage record missing bucket or key")

    return StorageChangeRecord(
        event_name=event_name,
        kind=kind,
        bucket=str(bucket),
        key=decode_key(raw_key),
        size=_coerce_int(size),
    )


def parse_direct_request(envelope: dict[str, Any]) -> DirectRequest:
    method = envelope.get("method") or envelope.get("httpMethod")
    if not isinstance(method, str):
        raise InvalidRequestError("request method is required")

    # pathIdentifier is already a literal key; gateway path parameters are still encoded.
    identifier = envelope.get("pathIdentifier")
    encoded = identifier is None
    if encoded:
        identifier = (envelope.get("pathParameters") or {}).get("id")
    if identifier is not None and not isinstance(identifier, str):
        raise InvalidRequestError("path identifier must be a string")
    if identifier and encoded:
        identifier = decode_path_segment(identifier)

    query_params = envelope.get("queryParams") or envelope.get("queryStringParameters") or {}
    if not isinstance(query_params, dict):
        raise InvalidRequestError("query parameters must be an object")

    return DirectRequest(
        method=method.upper(),
        path=str(envelope.get("path") or ""),
        path_identifier=identifier or None,
        query_params={str(k): str(v) for k, v in query_params.items()},
        body=envelope.get("body"),
    )


def matches_ingest_filter(key: str, *, prefix: str, extension: str) -> bool:
    return key.startswith(prefix) and key.lower().endswith(extension.lower())


def _coerce_int(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


__all__ = [
    "EventKind",
    "StorageChangeRecord",
    "DirectRequest",
    "decode_key",
    "decode_path_segment",
    "classify_event_name",
    "is_batch_envelope",
    "is_direct_envelope",
    "parse_batch",
    "parse_record",
    "parse_direct_request",
    "matches_ingest_filter",
]
