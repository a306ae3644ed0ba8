"""Face-match thresholds and the aggregate verification verdict."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from trustate.errors import ProviderError

FaceOutcome = Literal["verified", "review", "rejected", "no_match"]
Outcome = Literal["pending", "verified", "review", "rejected", "no_match"]

VERIFIED = "verified"
REVIEW = "review"
REJECTED = "rejected"
NO_MATCH = "no_match"
PENDING = "pending"

LIVENESS_SUCCEEDED = "succeeded"
LIVENESS_FAILED = "failed"


@dataclass(frozen=True)
class FaceThresholds:
    verified: float = 90.0
    review: float = 80.0


@dataclass(frozen=True)
class FaceMatchResult:
    outcome: FaceOutcome
    similarity: float | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "outcome": self.outcome,
            "similarity": self.similarity,
            "verified": self.outcome == VERIFIED,
            "needsReview": self.outcome == REVIEW,
        }


def classify_similarity(similarity: float, thresholds: FaceThresholds) -> FaceOutcome:
    if similarity >= thresholds.verified:
        return VERIFIED
    if similarity >= thresholds.review:
        return REVIEW
    # Unreachable while the provider is called with the review floor.
    return REJECTED


def decide_face_match(
    matches: list[dict[str, Any]],
    thresholds: FaceThresholds,
) -> FaceMatchResult:
    """Decide on the best (first) candidate only."""
    if not matches:
        return FaceMatchResult(NO_MATCH)
    similarity = matches[0].get("Similarity")
    if isinstance(similarity, bool) or not isinstance(similarity, (int, float)):
        raise ProviderError("rekognition", "compare_faces", detail="match without Similarity")
    similarity = float(similarity)
    return FaceMatchResult(classify_similarity(similarity, thresholds), similarity)


def aggregate_decision(
    fields: dict[str, str],
    face: FaceMatchResult,
    liveness_status: str | None = None,
) -> Outcome:
    """Combine document, liveness and face results into the reported outcome.

    Only a non-empty document plus a ``verified`` face match is ``verified``.
    A verified face on an unreadable document goes to human review.
    """
    if liveness_status is not None and liveness_status != LIVENESS_SUCCEEDED:
        return REJECTED
    if face.outcome == NO_MATCH:
        return NO_MATCH
    if face.outcome == REJECTED:
        return REJECTED
    if face.outcome == REVIEW:
        return REVIEW
    if not fields:
        return REVIEW
    return VERIFIED
