"""Amazon Textract form analysis."""

from __future__ import annotations

import logging
from typing import Any

from trustate.errors import InternalError
from trustate.providers.aws_client import call_provider, get_client

logger = logging.getLogger(__name__)


class TextractDocumentAnalyzer:
    def __init__(self, bucket: str | None, client=None) -> None:
        self._bucket = bucket
        self._client = client

    def _get_client(self):
        if self._client is None:
            self._client = get_client("textract")
        return self._client

    def analyze_forms(self, key: str) -> list[dict[str, Any]]:
        if not self._bucket:
            logger.error("S3_BUCKET is not configured; document analysis unavailable")
            raise InternalError()
        response = call_provider(
            "textract",
            self._get_client(),
            "analyze_document",
            Document={"S3Object": {"Bucket": self._bucket, "Name": key}},
            FeatureTypes=["FORMS"],
        )
        blocks = response.get("Blocks")
        return blocks if isinstance(blocks, list) else []
