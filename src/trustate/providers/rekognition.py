"""Amazon Rekognition face liveness and face comparison."""

from __future__ import annotations

from typing import Any

from trustate.providers.aws_client import call_provider, get_client


class RekognitionBiometrics:
    def __init__(self, client=None) -> None:
        self._client = client

    def _get_client(self):
        if self._client is None:
            self._client = get_client("rekognition")
        return self._client

    def create_liveness_session(self) -> str:
        response = call_provider(
            "rekognition", self._get_client(), "create_face_liveness_session"
        )
        return response["SessionId"]

    def get_liveness_results(self, session_id: str) -> dict[str, Any]:
        return call_provider(
            "rekognition",
            self._get_client(),
            "get_face_liveness_session_results",
            SessionId=session_id,
        )

    def compare_faces(
        self,
        source_bytes: bytes,
        target_bytes: bytes,
        similarity_threshold: float,
    ) -> list[dict[str, Any]]:
        response = call_provider(
            "rekognition",
            self._get_client(),
            "compare_faces",
            SourceImage={"Bytes": source_bytes},
            TargetImage={"Bytes": target_bytes},
            SimilarityThreshold=similarity_threshold,
        )
        return list(response.get("FaceMatches") or [])
