"""Contracts for the external collaborators the core calls into."""

from __future__ import annotations

from typing import Any, Protocol


class ObjectStore(Protocol):
    def presign_put(self, key: str, content_type: str, expires_in: int) -> str: ...

    def get_bytes(self, key: str) -> bytes: ...


class DocumentAnalyzer(Protocol):
    def analyze_forms(self, key: str) -> list[dict[str, Any]]:
        """Return the raw block graph for the stored document."""
        ...


class BiometricProvider(Protocol):
    def create_liveness_session(self) -> str: ...

    def get_liveness_results(self, session_id: str) -> dict[str, Any]: ...

    def compare_faces(
        self,
        source_bytes: bytes,
        target_bytes: bytes,
        similarity_threshold: float,
    ) -> list[dict[str, Any]]:
        """Return candidate matches, best first."""
        ...


class IdentityDirectory(Protocol):
    def mark_active(self, user_id: str) -> bool: ...
