"""Persisted data model for StakeSync.

Everything stored on a durable medium is one of these models, wrapped in a
versioned envelope by the component that owns it.
"""

import json
import time
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

# Version tag written into every persisted envelope
SCHEMA_VERSION = 1

# Maximum serialized payload size for a queued operation (64KB)
MAX_PAYLOAD_SIZE = 64_000

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS
WEEK_MS = 7 * DAY_MS


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def generate_operation_id(timestamp: int | None = None) -> str:
    """Build a unique operation identifier of the form ``op_<ms>_<hex>``."""
    stamp = now_ms() if timestamp is None else timestamp
    return f"op_{stamp}_{uuid4().hex[:12]}"


class OperationKind(str, Enum):
    """Kind of state-changing operation that can be queued."""

    STAKE = "stake"
    UNSTAKE = "unstake"
    CLAIM = "claim"


# Payload fields each kind must carry before it can be dispatched
REQUIRED_PAYLOAD_FIELDS: dict[OperationKind, tuple[str, ...]] = {
    OperationKind.STAKE: ("amount", "address"),
    OperationKind.UNSTAKE: ("amount", "address"),
    OperationKind.CLAIM: ("address",),
}


class PositionEntry(BaseModel):
    """A single staking position inside a snapshot."""

    amount: str
    start_time: int
    rewards: str

    model_config = {"frozen": True}


class StakingSnapshot(BaseModel):
    """Cached view of one account's staking position.

    Attributes:
        address: Owner account address.
        staked_amount: Total staked amount as a decimal string.
        rewards: Pending rewards as a decimal string.
        positions: Optional per-position breakdown.
        last_updated: Epoch ms of the last write, stamped by SnapshotCache.save().
    """

    address: str
    staked_amount: str
    rewards: str
    positions: list[PositionEntry] | None = None
    last_updated: int = 0

    model_config = {"frozen": True}

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("address must not be empty")
        return v


class QueuedOperation(BaseModel):
    """A pending operation waiting to be replayed against the ledger.

    The kind is fixed at creation. Only retry_count changes while the item
    lives in the queue, and it only ever goes up.
    """

    id: str = Field(default_factory=generate_operation_id)
    kind: OperationKind
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: int = Field(default_factory=now_ms)
    retry_count: int = Field(default=0, ge=0)

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("id must not be empty")
        return v

    @field_validator("payload")
    @classmethod
    def validate_payload(cls, v: dict[str, Any]) -> dict[str, Any]:
        """Ensure payload is strictly JSON-serializable and within size limits."""
        try:
            serialized = json.dumps(v)
        except (TypeError, ValueError) as e:
            raise ValueError(f"payload must be JSON-serializable: {e}") from e

        byte_length = len(serialized.encode("utf-8"))
        if byte_length > MAX_PAYLOAD_SIZE:
            raise ValueError(
                f"payload exceeds maximum size of {MAX_PAYLOAD_SIZE} bytes "
                f"(got {byte_length} bytes)"
            )
        return v

    def missing_fields(self) -> list[str]:
        """Return the required payload fields for this kind that are absent."""
        return [
            name
            for name in REQUIRED_PAYLOAD_FIELDS[self.kind]
            if self.payload.get(name) is None
        ]

    def with_retry(self, retry_count: int) -> "QueuedOperation":
        return self.model_copy(update={"retry_count": retry_count})


class OfflineStatus(BaseModel):
    """Last observed connectivity state, as persisted for the presentation layer."""

    is_offline: bool
    timestamp: int = Field(default_factory=now_ms)

    model_config = {"frozen": True}
