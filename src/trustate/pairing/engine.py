"""Nexus pairing engine: broker provisioning, TOTP validation, request lifecycle, pardons."""

from __future__ import annotations

import logging
import re
import secrets
import string
import uuid
from dataclasses import dataclass
from typing import Literal

from trustate.config import PairingSettings
from trustate.errors import (
    DuplicateNexus,
    DuplicateRequest,
    InternalError,
    InvalidCode,
    InvalidOrExpiredCode,
    NotFoundOrUnauthorized,
    PardonExhausted,
    ValidationError,
)
from trustate.pairing import totp
from trustate.projection.activity import ActivityLog
from trustate.projection.status import StatusProjection
from trustate.store.db import ConstraintViolation, SqliteStore
from trustate.store.models import (
    ACCEPTED,
    PENDING,
    REJECTED,
    NexusLink,
    PairingRequest,
)
from trustate.utils.time import unix_now, utc_now_iso

logger = logging.getLogger(__name__)

PairingAction = Literal["accept", "reject"]

_ACTION_STATUS = {"accept": ACCEPTED, "reject": REJECTED}
_NEXUS_ALPHABET = string.ascii_uppercase + string.digits
_MAX_CODE_ATTEMPTS = 5


@dataclass(frozen=True)
class LiveCode:
    nexus_code: str
    code: str
    seconds_remaining: int

    def to_dict(self) -> dict[str, object]:
        return {
            "nexusCode": self.nexus_code,
            "code": self.code,
            "secondsRemaining": self.seconds_remaining,
        }


@dataclass(frozen=True)
class CancelResult:
    cancelled: bool
    request_id: str | None = None


def _require(**values: str | None) -> None:
    missing = [name for name, value in values.items() if not value or not str(value).strip()]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


class PairingEngine:
    def __init__(
        self,
        store: SqliteStore,
        projection: StatusProjection,
        activity: ActivityLog,
        settings: PairingSettings | None = None,
    ) -> None:
        self._store = store
        self._projection = projection
        self._activity = activity
        self._settings = settings or PairingSettings()
        self._link_pattern = re.compile(
            rf"^https?://(?:www\.)?{re.escape(self._settings.nexus_link_host)}/nexus/"
            rf"([A-Z0-9]{{{self._settings.nexus_code_length}}})/?$",
            re.IGNORECASE,
        )

    # Provisioning

    def _new_nexus_code(self) -> str:
        return "".join(
            secrets.choice(_NEXUS_ALPHABET) for _ in range(self._settings.nexus_code_length)
        )

    def issue_pairing_material(self, broker_id: str) -> str:
        """Create the broker's nexus code and TOTP secret; returns the nexus code only."""
        _require(broker_id=broker_id)
        if self._store.get_nexus_by_broker(broker_id) is not None:
            raise DuplicateNexus()

        secret = totp.generate_secret()
        for _ in range(_MAX_CODE_ATTEMPTS):
            link = NexusLink(
                broker_id=broker_id,
                nexus_code=self._new_nexus_code(),
                totp_secret=secret,
                created_at=utc_now_iso(),
            )
            try:
                self._store.create_nexus(link)
            except ConstraintViolation as exc:
                if "nexus_code" in str(exc):
                    logger.info("Nexus code collision for broker %s, retrying", broker_id)
                    continue
                raise DuplicateNexus() from exc
            logger.info("Issued nexus %s for broker %s", link.nexus_code, broker_id)
            return link.nexus_code

        logger.error("Could not allocate a unique nexus code for broker %s", broker_id)
        raise InternalError()

    def get_live_code(self, broker_id: str, now: float | None = None) -> LiveCode:
        """The rotating code the broker's own device displays."""
        _require(broker_id=broker_id)
        link = self._store.get_nexus_by_broker(broker_id)
        if link is None:
            raise NotFoundOrUnauthorized("Nexus not found")
        at = unix_now() if now is None else now
        period = self._settings.totp_period_seconds
        return LiveCode(
            nexus_code=link.nexus_code,
            code=totp.generate_code(
                link.totp_secret, at, period=period, digits=self._settings.totp_digits
            ),
            seconds_remaining=totp.seconds_remaining(at, period=period),
        )

    def resolve_nexus_link(self, link: str) -> NexusLink:
        """Accept a share link or a bare nexus code and return the broker it names."""
        _require(nexus_link=link)
        value = link.strip()
        match = self._link_pattern.match(value)
        if match:
            code = match.group(1)
        elif re.fullmatch(r"[A-Za-z0-9]+", value):
            code = value
        else:
            raise ValidationError(
                "Invalid nexus link format. Expected: "
                f"https://{self._settings.nexus_link_host}/nexus/<code>"
            )
        nexus = self._store.get_nexus_by_code(code.upper())
        if nexus is None:
            raise InvalidCode()
        return nexus

    # Request lifecycle

    def validate_pairing(
        self,
        nexus_code: str,
        submitted_code: str,
        agent_id: str,
        now: float | None = None,
    ) -> str:
        """Create a pending request if ``submitted_code`` is current for the broker's secret."""
        _require(nexus_code=nexus_code, code=submitted_code, agent_id=agent_id)

        nexus = self._store.get_nexus_by_code(nexus_code.strip().upper())
        if nexus is None:
            raise InvalidCode()

        at = unix_now() if now is None else now
        if not totp.verify_code(
            nexus.totp_secret,
            submitted_code,
            at,
            period=self._settings.totp_period_seconds,
            digits=self._settings.totp_digits,
            skew_steps=self._settings.totp_skew_steps,
        ):
            logger.info(
                "Rejected pairing code for agent %s on nexus %s", agent_id, nexus.nexus_code
            )
            raise InvalidOrExpiredCode()

        request = PairingRequest(
            id=str(uuid.uuid4()),
            agent_id=agent_id,
            broker_id=nexus.broker_id,
            status=PENDING,
            created_at=utc_now_iso(),
        )
        try:
            self._store.create_pairing_request(request)
        except ConstraintViolation as exc:
            raise DuplicateRequest() from exc

        logger.info(
            "Pairing request %s created: agent=%s broker=%s",
            request.id,
            agent_id,
            nexus.broker_id,
        )
        self._activity.append(
            subject_id=agent_id,
            actor_id=agent_id,
            actor_role="agent",
            action_type="pairing_requested",
            description="Agent requested to pair with broker",
            metadata={"requestId": request.id, "brokerId": nexus.broker_id},
        )
        return request.id

    def respond_to_pairing(
        self,
        request_id: str,
        broker_id: str,
        action: str,
    ) -> PairingRequest:
        _require(request_id=request_id, broker_id=broker_id, action=action)
        status = _ACTION_STATUS.get(action)
        if status is None:
            raise ValidationError("Invalid action")

        updated = self._store.resolve_pending_request(
            request_id, broker_id, status, utc_now_iso()
        )
        if updated is None:
            raise NotFoundOrUnauthorized()

        logger.info("Pairing request %s %s by broker %s", request_id, status, broker_id)
        if status == ACCEPTED:
            self._projection.mark_identity_active(updated.agent_id)
        self._activity.append(
            subject_id=updated.agent_id,
            actor_id=broker_id,
            actor_role="broker",
            action_type=f"pairing_{status}",
            description=f"Broker {status} the pairing request",
            metadata={"requestId": request_id},
        )
        return updated

    def cancel_pairing(self, agent_id: str) -> CancelResult:
        """Spend the agent's one lifetime pardon on their pending request.

        Nothing pending is a no-op and does not consume the pardon.
        """
        _require(agent_id=agent_id)
        if self._store.pardon_used(agent_id):
            raise PardonExhausted()

        try:
            cancelled = self._store.cancel_pending_request(agent_id, utc_now_iso())
        except ConstraintViolation as exc:
            raise PardonExhausted() from exc

        if cancelled is None:
            return CancelResult(cancelled=False)

        logger.info("Agent %s used pardon on request %s", agent_id, cancelled.id)
        self._activity.append(
            subject_id=agent_id,
            actor_id=agent_id,
            actor_role="agent",
            action_type="pairing_cancelled",
            description="Agent cancelled the pending pairing request",
            metadata={"requestId": cancelled.id, "brokerId": cancelled.broker_id},
        )
        return CancelResult(cancelled=True, request_id=cancelled.id)

    def get_agent_status(self, agent_id: str) -> str:
        _require(agent_id=agent_id)
        return self._projection.get_agent_status(agent_id)

    def list_broker_requests(self, broker_id: str) -> list[PairingRequest]:
        _require(broker_id=broker_id)
        return self._store.list_requests_for_broker(broker_id)
