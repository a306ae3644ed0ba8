"""Amazon S3 object store for ID documents and capture frames."""

from __future__ import annotations

import logging

from botocore.exceptions import BotoCoreError, ClientError

from trustate.errors import InternalError, ProviderError
from trustate.providers.aws_client import call_provider, get_client

logger = logging.getLogger(__name__)


class S3ObjectStore:
    def __init__(self, bucket: str | None, client=None) -> None:
        self._bucket = bucket
        self._client = client

    def _get_client(self):
        if self._client is None:
            self._client = get_client("s3")
        return self._client

    def _require_bucket(self) -> str:
        if not self._bucket:
            logger.error("S3_BUCKET is not configured; document storage unavailable")
            raise InternalError()
        return self._bucket

    def presign_put(self, key: str, content_type: str, expires_in: int) -> str:
        return call_provider(
            "s3",
            self._get_client(),
            "generate_presigned_url",
            ClientMethod="put_object",
            Params={
                "Bucket": self._require_bucket(),
                "Key": key,
                "ContentType": content_type,
            },
            ExpiresIn=expires_in,
        )

    def get_bytes(self, key: str) -> bytes:
        response = call_provider(
            "s3",
            self._get_client(),
            "get_object",
            Bucket=self._require_bucket(),
            Key=key,
        )
        body = response["Body"]
        try:
            return body.read()
        except (BotoCoreError, ClientError) as exc:
            logger.error("s3.get_object body read failed for key %s: %s", key, exc)
            raise ProviderError("s3", "get_object", detail=str(exc)) from exc
        finally:
            close = getattr(body, "close", None)
            if callable(close):
                close()
