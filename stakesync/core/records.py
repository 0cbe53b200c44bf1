"""Versioned envelopes for persisted records."""

import json
from typing import Any

from stakesync.core.models import SCHEMA_VERSION


class CorruptRecordError(ValueError):
    """Raised when a stored blob cannot be decoded into a current-version envelope."""


def encode_record(**body: Any) -> str:
    """Serialize body into a JSON envelope tagged with the current schema version."""
    return json.dumps({"version": SCHEMA_VERSION, **body}, separators=(",", ":"))


def decode_record(blob: str, field: str) -> Any:
    """Return envelope[field] from a stored blob.

    Raises:
        CorruptRecordError: If the blob is not JSON, is not an object, carries a
            missing or unknown version, or lacks field.
    """
    try:
        envelope = json.loads(blob)
    except (TypeError, ValueError) as e:
        raise CorruptRecordError(f"record is not valid JSON: {e}") from e

    if not isinstance(envelope, dict):
        raise CorruptRecordError(
            f"record must be a JSON object, got {type(envelope).__name__}"
        )

    version = envelope.get("version")
    if version != SCHEMA_VERSION:
        raise CorruptRecordError(
            f"unsupported record version {version!r} (expected {SCHEMA_VERSION})"
        )

    if field not in envelope:
        raise CorruptRecordError(f"record is missing {field!r}")
    return envelope[field]
