"""Data models for pairing, verification and activity records."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Literal

PairingStatus = Literal["pending", "accepted", "rejected", "cancelled"]

PENDING = "pending"
ACCEPTED = "accepted"
REJECTED = "rejected"
CANCELLED = "cancelled"

ACTIVE_STATUSES: tuple[str, ...] = (PENDING, ACCEPTED)


@dataclass(frozen=True)
class NexusLink:
    broker_id: str
    nexus_code: str
    totp_secret: str = field(repr=False)
    created_at: str


@dataclass
class PairingRequest:
    id: str
    agent_id: str
    broker_id: str
    status: PairingStatus
    created_at: str
    responded_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(frozen=True)
class ActivityLogEntry:
    id: str
    subject_id: str
    actor_id: str
    actor_role: str
    action_type: str
    description: str
    metadata: dict[str, object]
    created_at: str

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass
class VerificationRecord:
    user_id: str
    outcome: str
    similarity: float | None
    field_count: int
    updated_at: str

    def to_dict(self) -> dict[str, object]:
        return asdict(self)
