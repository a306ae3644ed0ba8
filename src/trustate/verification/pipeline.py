"""Identity verification pipeline.

document upload -> field extraction -> liveness capture -> face match ->
aggregate decision. Each stage is callable on its own (the UI drives them
step by step) and ``verify_identity`` runs them end to end. Provider
failures surface as ``ProviderError`` and are never turned into a verdict.
"""

from __future__ import annotations

import base64
import binascii
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from trustate.config import VerificationSettings
from trustate.errors import (
    MissingImages,
    MissingSessionId,
    ProviderError,
    ValidationError,
)
from trustate.projection.activity import ActivityLog
from trustate.projection.status import StatusProjection
from trustate.providers.base import BiometricProvider, DocumentAnalyzer, ObjectStore
from trustate.verification import blocks
from trustate.verification.decision import (
    LIVENESS_SUCCEEDED,
    PENDING,
    FaceMatchResult,
    FaceThresholds,
    Outcome,
    aggregate_decision,
    decide_face_match,
)

logger = logging.getLogger(__name__)

_MAX_UPLOAD_EXPIRY_SECONDS = 300

_LIVENESS_STATUS = {
    "CREATED": "created",
    "IN_PROGRESS": "in_progress",
    "SUCCEEDED": "succeeded",
    "FAILED": "failed",
    "EXPIRED": "failed",
}

LIVENESS_ACTIONS = ("create", "get-results")


@dataclass(frozen=True)
class UploadTarget:
    url: str
    key: str
    expires_in: int

    def to_dict(self) -> dict[str, object]:
        return {"uploadUrl": self.url, "key": self.key, "expiresIn": self.expires_in}


@dataclass(frozen=True)
class LivenessResult:
    session_id: str
    status: str
    confidence: float | None
    reference_image: str | None = field(default=None, repr=False)

    @property
    def succeeded(self) -> bool:
        return self.status == LIVENESS_SUCCEEDED

    def to_dict(self) -> dict[str, object]:
        return {
            "sessionId": self.session_id,
            "status": self.status,
            "confidence": self.confidence,
            "referenceImage": self.reference_image,
        }


@dataclass
class VerificationSession:
    user_id: str
    document_key: str
    extracted_fields: dict[str, str] = field(default_factory=dict)
    liveness_session_id: str | None = None
    liveness_status: str | None = None
    similarity: float | None = None
    outcome: Outcome = PENDING

    def to_dict(self) -> dict[str, object]:
        return {
            "userId": self.user_id,
            "documentKey": self.document_key,
            "extractedFields": dict(self.extracted_fields),
            "livenessSessionId": self.liveness_session_id,
            "livenessStatus": self.liveness_status,
            "similarity": self.similarity,
            "outcome": self.outcome,
        }


def _decode_image(value: str) -> bytes:
    payload = value.split(",", 1)[1] if value.startswith("data:") else value
    try:
        decoded = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("livenessImageBytes must be base64 encoded") from exc
    if not decoded:
        raise MissingImages()
    return decoded


def _check_key_segment(name: str, value: str) -> None:
    if "/" in value or value in {".", ".."}:
        raise ValidationError(f"{name} must not contain path separators")


class VerificationPipeline:
    def __init__(
        self,
        storage: ObjectStore,
        analyzer: DocumentAnalyzer,
        biometrics: BiometricProvider,
        projection: StatusProjection,
        activity: ActivityLog,
        settings: VerificationSettings | None = None,
    ) -> None:
        self._storage = storage
        self._analyzer = analyzer
        self._biometrics = biometrics
        self._projection = projection
        self._activity = activity
        self._settings = settings or VerificationSettings()
        self._thresholds = FaceThresholds(
            verified=self._settings.face_verified_threshold,
            review=self._settings.face_review_threshold,
        )

    # Document capture

    def issue_upload_target(
        self,
        user_id: str,
        document_type: str,
        content_type: str,
    ) -> UploadTarget:
        if not user_id or not document_type or not content_type:
            raise ValidationError("Missing required fields")
        _check_key_segment("userId", user_id)
        _check_key_segment("documentType", document_type)

        key = f"temp/{user_id}/{document_type}-{uuid.uuid4()}"
        expires_in = min(self._settings.upload_url_expiry_seconds, _MAX_UPLOAD_EXPIRY_SECONDS)
        url = self._storage.presign_put(key, content_type, expires_in)
        logger.info("Issued upload target %s (expires in %ds)", key, expires_in)
        return UploadTarget(url=url, key=key, expires_in=expires_in)

    # Field extraction

    def extract_fields(self, storage_key: str) -> dict[str, str]:
        if not storage_key:
            raise ValidationError("Missing s3Key")
        raw_blocks = self._analyzer.analyze_forms(storage_key)
        fields = blocks.extract_fields(raw_blocks)
        logger.info("Extracted %d fields from %s", len(fields), storage_key)
        return fields

    # Liveness

    def liveness(self, action: str | None, session_id: str | None = None) -> dict[str, object]:
        """Single entry point for both liveness operations, keyed by ``action``."""
        if action in (None, "", "create"):
            return {"sessionId": self.create_liveness_session()}
        if action == "get-results":
            return self.get_liveness_result(session_id).to_dict()
        raise ValidationError(f"Unknown liveness action: {action}")

    def create_liveness_session(self) -> str:
        session_id = self._biometrics.create_liveness_session()
        logger.info("Created liveness session %s", session_id)
        return session_id

    def get_liveness_result(self, session_id: str | None) -> LivenessResult:
        if not session_id:
            raise MissingSessionId()
        raw = self._biometrics.get_liveness_results(session_id)

        provider_status = raw.get("Status")
        status = _LIVENESS_STATUS.get(provider_status) if isinstance(provider_status, str) else None
        if status is None:
            raise ProviderError(
                "rekognition",
                "get_face_liveness_session_results",
                detail=f"unexpected status {provider_status!r}",
            )

        confidence = raw.get("Confidence")
        return LivenessResult(
            session_id=session_id,
            status=status,
            confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
            reference_image=self._encode_reference_image(raw.get("ReferenceImage")),
        )

    @staticmethod
    def _encode_reference_image(image: Any) -> str | None:
        if not isinstance(image, dict):
            return None
        data = image.get("Bytes")
        if not isinstance(data, (bytes, bytearray)) or not data:
            return None
        return base64.b64encode(bytes(data)).decode("ascii")

    # Face match

    def compare_faces(
        self,
        id_image_key: str | None,
        liveness_image_b64: str | None,
    ) -> FaceMatchResult:
        if not id_image_key or not liveness_image_b64:
            raise MissingImages()
        target = _decode_image(liveness_image_b64)
        source = self._storage.get_bytes(id_image_key)

        matches = self._biometrics.compare_faces(
            source,
            target,
            similarity_threshold=self._thresholds.review,
        )
        result = decide_face_match(matches, self._thresholds)
        logger.info(
            "Face comparison for %s: outcome=%s similarity=%s",
            id_image_key,
            result.outcome,
            result.similarity,
        )
        return result

    # End to end

    def verify_identity(
        self,
        user_id: str,
        document_key: str,
        liveness_session_id: str | None,
        id_image_key: str | None = None,
    ) -> VerificationSession:
        """Run every stage and record the terminal outcome for ``user_id``.

        The liveness session must already be terminal; polling it is the
        caller's job. The face match always uses the reference image the
        provider captured during that session, never a caller-supplied frame.
        """
        if not user_id or not document_key:
            raise ValidationError("Missing required fields")

        session = VerificationSession(
            user_id=user_id,
            document_key=document_key,
            liveness_session_id=liveness_session_id,
        )
        session.extracted_fields = self.extract_fields(document_key)

        liveness = self.get_liveness_result(liveness_session_id)
        session.liveness_status = liveness.status
        if liveness.status in ("created", "in_progress"):
            raise ValidationError("Liveness session has not completed yet")

        if liveness.succeeded:
            if liveness.reference_image is None:
                raise MissingImages("Liveness session returned no reference image")
            face = self.compare_faces(id_image_key or document_key, liveness.reference_image)
            session.similarity = face.similarity
        else:
            face = FaceMatchResult("rejected")

        session.outcome = aggregate_decision(
            session.extracted_fields, face, liveness_status=liveness.status
        )
        self._projection.record_verification_outcome(
            user_id,
            session.outcome,
            session.similarity,
            len(session.extracted_fields),
        )
        self._activity.append(
            subject_id=user_id,
            actor_id=user_id,
            actor_role="user",
            action_type="verification_completed",
            description=f"Identity verification finished: {session.outcome}",
            metadata={
                "outcome": session.outcome,
                "similarity": session.similarity,
                "fieldCount": len(session.extracted_fields),
                "livenessStatus": session.liveness_status,
            },
        )
        logger.info("Verification for %s finished: %s", user_id, session.outcome)
        return session
