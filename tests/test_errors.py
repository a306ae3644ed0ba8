from __future__ import annotations

import pytest

from trustate import errors


@pytest.mark.parametrize(
    ("error_cls", "code", "status"),
    [
        (errors.ValidationError, "validation_error", 400),
        (errors.MissingSessionId, "missing_session_id", 400),
        (errors.MissingImages, "missing_images", 400),
        (errors.InvalidCode, "invalid_code", 404),
        (errors.InvalidOrExpiredCode, "invalid_or_expired_code", 401),
        (errors.NotFoundOrUnauthorized, "not_found_or_unauthorized", 404),
        (errors.DuplicateRequest, "duplicate_request", 409),
        (errors.DuplicateNexus, "duplicate_nexus", 409),
        (errors.PardonExhausted, "pardon_exhausted", 409),
        (errors.InternalError, "internal_error", 500),
        (errors.Forbidden, "forbidden", 403),
    ],
)
def test_error_codes(error_cls, code: str, status: int) -> None:
    error = error_cls()
    assert error.code == code
    assert error.status_code == status
    assert error.to_dict() == {"error": code, "message": error_cls.default_message}


def test_missing_session_id_is_a_validation_error() -> None:
    assert isinstance(errors.MissingSessionId(), errors.ValidationError)
    assert isinstance(errors.MissingImages(), errors.ValidationError)


def test_custom_message() -> None:
    error = errors.ValidationError("Missing s3Key")
    assert error.message == "Missing s3Key"
    assert str(error) == "Missing s3Key"


def test_provider_error_keeps_detail_private() -> None:
    error = errors.ProviderError(
        "rekognition",
        "compare_faces",
        detail="InvalidImageFormatException: bad jpeg",
        provider_code="InvalidImageFormatException",
    )

    body = error.to_dict()
    assert body["error"] == "provider_error"
    assert body["retryable"] is True
    assert "jpeg" not in body["message"]
    assert error.status_code == 502
    assert error.provider == "rekognition"
