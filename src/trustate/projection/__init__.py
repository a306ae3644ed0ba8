"""Externally visible status and the append-only activity log."""

from trustate.projection.activity import ActivityLog, ActivityPage
from trustate.projection.status import PENDING_APPROVAL, VERIFIED, StatusProjection

__all__ = [
    "ActivityLog",
    "ActivityPage",
    "PENDING_APPROVAL",
    "StatusProjection",
    "VERIFIED",
]
