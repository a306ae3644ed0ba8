"""AWS client factory and provider call wrapper."""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from trustate.config import Settings, load_settings
from trustate.errors import ProviderError

logger = logging.getLogger(__name__)

ClientCacheKey = tuple[str, ...]

_CLIENT_CACHE: OrderedDict[ClientCacheKey, tuple[object, float]] = OrderedDict()
_CLIENT_CACHE_LOCK = threading.Lock()
_CLIENT_TTL_SECONDS = 3600  # 1 hour
_CLIENT_CACHE_MAX_SIZE = 32


def _get_cached_client(
    key: ClientCacheKey,
    build_client: Callable[[], object],
) -> object:
    now = time.monotonic()
    with _CLIENT_CACHE_LOCK:
        cached = _CLIENT_CACHE.get(key)
        if cached is not None:
            client, created_at = cached
            if now - created_at < _CLIENT_TTL_SECONDS:
                _CLIENT_CACHE.move_to_end(key)
                return client
            del _CLIENT_CACHE[key]
        client = build_client()
        _CLIENT_CACHE[key] = (client, now)
        while len(_CLIENT_CACHE) > _CLIENT_CACHE_MAX_SIZE:
            _CLIENT_CACHE.popitem(last=False)
        return client


def get_client(
    service: str,
    region: str | None = None,
    profile: str | None = None,
    settings: Settings | None = None,
):
    settings = settings or load_settings()
    key = (
        service,
        region or settings.aws.default_region or "",
        profile or settings.aws.default_profile or "",
    )
    return _get_cached_client(
        key,
        lambda: _create_client(service, region, profile, settings),
    )


def _create_client(
    service: str,
    region: str | None,
    profile: str | None,
    settings: Settings,
):
    session = boto3.Session(
        profile_name=profile or settings.aws.default_profile,
        region_name=region or settings.aws.default_region,
    )
    return session.client(service, config=_get_service_config(service, settings))


def _get_service_config(service: str, settings: Settings) -> Config:
    base: dict[str, object] = {
        "read_timeout": settings.aws.sdk_timeout_seconds,
        "connect_timeout": settings.aws.sdk_timeout_seconds,
        "retries": {"max_attempts": settings.aws.max_retries + 1, "mode": "standard"},
    }
    if service == "s3":
        base["signature_version"] = "s3v4"
        base["request_checksum_calculation"] = "when_required"
        base["response_checksum_validation"] = "when_required"
    return Config(**base)


def call_provider(provider: str, client, method_name: str, **kwargs) -> dict:
    """Invoke ``client.method_name(**kwargs)`` translating SDK failures to ProviderError."""
    method = getattr(client, method_name)
    try:
        return method(**kwargs)
    except ClientError as exc:
        error = exc.response.get("Error", {})
        metadata = exc.response.get("ResponseMetadata", {})
        logger.error(
            "%s.%s failed: code=%s request_id=%s message=%s",
            provider,
            method_name,
            error.get("Code"),
            metadata.get("RequestId"),
            error.get("Message"),
        )
        raise ProviderError(
            provider,
            method_name,
            detail=str(error.get("Message", "")),
            provider_code=error.get("Code"),
        ) from exc
    except BotoCoreError as exc:
        logger.error("%s.%s transport failure: %s", provider, method_name, exc)
        raise ProviderError(provider, method_name, detail=str(exc)) from exc
