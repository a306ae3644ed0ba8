"""Append-only activity log per transaction or verification subject."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from trustate.errors import Forbidden, ValidationError
from trustate.store.db import SqliteStore
from trustate.store.models import ActivityLogEntry
from trustate.utils.masking import redact_sensitive_fields
from trustate.utils.time import utc_now_iso

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

# Written only by the pairing engine and the verification pipeline, always
# under the acting user's own id.
RESERVED_ACTION_PREFIXES: tuple[str, ...] = ("pairing_", "verification_")


def is_reserved_action(action_type: str) -> bool:
    return action_type.strip().lower().startswith(RESERVED_ACTION_PREFIXES)


@dataclass(frozen=True)
class ActivityPage:
    entries: list[ActivityLogEntry]
    page: int
    limit: int
    total: int

    @property
    def has_more(self) -> bool:
        return self.total > self.page * self.limit

    def to_dict(self) -> dict[str, object]:
        return {
            "logs": [entry.to_dict() for entry in self.entries],
            "pagination": {
                "page": self.page,
                "limit": self.limit,
                "total": self.total,
                "hasMore": self.has_more,
            },
        }


class ActivityLog:
    def __init__(self, store: SqliteStore) -> None:
        self._store = store

    def append(
        self,
        subject_id: str,
        action_type: str,
        description: str,
        actor_id: str | None = None,
        actor_role: str | None = None,
        metadata: dict[str, object] | None = None,
    ) -> ActivityLogEntry:
        if not subject_id or not action_type or not description:
            raise ValidationError("subject_id, action_type and description are required")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("metadata must be an object")

        entry = ActivityLogEntry(
            id=str(uuid.uuid4()),
            subject_id=subject_id,
            actor_id=actor_id or "unknown",
            actor_role=actor_role or "system",
            action_type=action_type,
            description=description,
            metadata=redact_sensitive_fields(metadata or {}),
            created_at=utc_now_iso(),
        )
        self._store.append_activity(entry)
        logger.debug("Activity %s recorded for %s", action_type, subject_id)
        return entry

    def check_access(self, subject_id: str, user_id: str, role: str) -> None:
        """Subjects with pairing or verification history are visible to their owner and admins.

        Other subjects (transactions) are shared between the parties working on them.
        """
        if role == "admin" or subject_id == user_id:
            return
        if self._store.has_activity_prefixed(subject_id, RESERVED_ACTION_PREFIXES):
            raise Forbidden("Activity for this subject is restricted to its owner")

    def append_for_caller(
        self,
        subject_id: str,
        action_type: str,
        description: str,
        actor_id: str,
        actor_role: str,
        metadata: dict[str, object] | None = None,
    ) -> ActivityLogEntry:
        """Append an entry submitted over the API; reserved action types are refused."""
        if action_type and is_reserved_action(action_type):
            raise ValidationError(f"action_type {action_type!r} is reserved")
        self.check_access(subject_id, actor_id, actor_role)
        return self.append(
            subject_id,
            action_type,
            description,
            actor_id=actor_id,
            actor_role=actor_role,
            metadata=metadata,
        )

    def list(self, subject_id: str, page: int = 1, limit: int = 20) -> ActivityPage:
        if page < 1:
            raise ValidationError("page must be >= 1")
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        offset = (page - 1) * limit
        entries, total = self._store.list_activity(subject_id, limit=limit, offset=offset)
        return ActivityPage(entries=entries, page=page, limit=limit, total=total)
