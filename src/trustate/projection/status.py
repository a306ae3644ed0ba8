"""Read-side status projection: is this user allowed to proceed."""

from __future__ import annotations

import logging

from trustate.errors import ProviderError
from trustate.providers.base import IdentityDirectory
from trustate.store.db import SqliteStore
from trustate.store.models import ACCEPTED, VerificationRecord
from trustate.utils.time import utc_now_iso

logger = logging.getLogger(__name__)

VERIFIED = "verified"
PENDING_APPROVAL = "pending_approval"

_REVIEW_OUTCOME = "review"


class StatusProjection:
    def __init__(self, store: SqliteStore, directory: IdentityDirectory | None = None) -> None:
        self._store = store
        self._directory = directory

    def get_agent_status(self, agent_id: str) -> str:
        if self._store.agent_has_status(agent_id, ACCEPTED):
            return VERIFIED
        return PENDING_APPROVAL

    def get_verification_status(self, user_id: str) -> str:
        record = self._store.get_verification(user_id)
        if record is not None and record.outcome == VERIFIED:
            return VERIFIED
        return PENDING_APPROVAL

    def get_verification_record(self, user_id: str) -> VerificationRecord | None:
        return self._store.get_verification(user_id)

    def record_verification_outcome(
        self,
        user_id: str,
        outcome: str,
        similarity: float | None,
        field_count: int,
    ) -> VerificationRecord:
        record = VerificationRecord(
            user_id=user_id,
            outcome=outcome,
            similarity=similarity,
            field_count=field_count,
            updated_at=utc_now_iso(),
        )
        self._store.upsert_verification(record)
        if outcome == VERIFIED:
            self.mark_identity_active(user_id)
        return record

    def list_review_queue(self) -> list[VerificationRecord]:
        return self._store.list_verifications_by_outcome(_REVIEW_OUTCOME)

    def mark_identity_active(self, user_id: str) -> bool:
        """Best-effort update of the identity provider's status attribute.

        The local projection is authoritative; a failed directory update is
        logged and never fails the caller.
        """
        if self._directory is None:
            return False
        try:
            return self._directory.mark_active(user_id)
        except ProviderError as exc:
            logger.error(
                "Failed to update identity status for %s: %s (%s)",
                user_id,
                exc.detail,
                exc.provider_code,
            )
            return False
