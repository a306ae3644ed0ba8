"""Identity verification decision pipeline."""

from trustate.verification.decision import FaceMatchResult, FaceThresholds
from trustate.verification.pipeline import (
    LivenessResult,
    UploadTarget,
    VerificationPipeline,
    VerificationSession,
)

__all__ = [
    "FaceMatchResult",
    "FaceThresholds",
    "LivenessResult",
    "UploadTarget",
    "VerificationPipeline",
    "VerificationSession",
]
