from __future__ import annotations

import io
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from trustate.errors import InternalError, ProviderError
from trustate.providers.aws_client import _CLIENT_CACHE, call_provider, get_client
from trustate.providers.cognito import CognitoDirectory
from trustate.providers.rekognition import RekognitionBiometrics
from trustate.providers.s3 import S3ObjectStore
from trustate.providers.textract import TextractDocumentAnalyzer


@pytest.fixture(autouse=True)
def _clear_client_cache() -> None:
    _CLIENT_CACHE.clear()
    yield
    _CLIENT_CACHE.clear()


def _settings() -> SimpleNamespace:
    return SimpleNamespace(
        aws=SimpleNamespace(
            default_profile="default-prof",
            default_region="ap-southeast-1",
            sdk_timeout_seconds=30,
            max_retries=2,
        ),
    )


def _client_error(code: str, message: str, operation: str) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": message},
            "ResponseMetadata": {"RequestId": "req-123"},
        },
        operation,
    )


@patch("trustate.providers.aws_client.load_settings")
@patch("trustate.providers.aws_client.boto3.Session")
def test_get_client_is_cached(mock_session_cls: MagicMock, mock_settings: MagicMock) -> None:
    mock_settings.return_value = _settings()
    mock_session = MagicMock()
    mock_session_cls.return_value = mock_session

    first = get_client("rekognition")
    second = get_client("rekognition")
    get_client("s3", "us-east-1")

    assert first is second
    assert mock_session_cls.call_count == 2
    mock_session_cls.assert_any_call(profile_name="default-prof", region_name="ap-southeast-1")
    s3_config = mock_session.client.call_args.kwargs["config"]
    assert s3_config.signature_version == "s3v4"


def test_call_provider_maps_client_error() -> None:
    client = MagicMock()
    client.compare_faces.side_effect = _client_error(
        "InvalidParameterException", "no face in image", "CompareFaces"
    )

    with pytest.raises(ProviderError) as exc_info:
        call_provider("rekognition", client, "compare_faces", SimilarityThreshold=80)

    error = exc_info.value
    assert error.provider_code == "InvalidParameterException"
    assert error.detail == "no face in image"
    assert error.retryable is True
    # Provider detail stays out of the caller-facing message
    assert "no face" not in error.to_dict()["message"]


def test_call_provider_maps_transport_error() -> None:
    client = MagicMock()
    client.analyze_document.side_effect = EndpointConnectionError(endpoint_url="https://x")

    with pytest.raises(ProviderError) as exc_info:
        call_provider("textract", client, "analyze_document")
    assert exc_info.value.operation == "analyze_document"


def test_s3_presign_put() -> None:
    client = MagicMock()
    client.generate_presigned_url.return_value = "https://signed"

    url = S3ObjectStore("docs-bucket", client=client).presign_put("temp/u/id-1", "image/png", 300)

    assert url == "https://signed"
    client.generate_presigned_url.assert_called_once_with(
        ClientMethod="put_object",
        Params={"Bucket": "docs-bucket", "Key": "temp/u/id-1", "ContentType": "image/png"},
        ExpiresIn=300,
    )


def test_s3_get_bytes_reads_and_closes_body() -> None:
    body = io.BytesIO(b"image")
    client = MagicMock()
    client.get_object.return_value = {"Body": body}

    assert S3ObjectStore("docs-bucket", client=client).get_bytes("temp/u/id-1") == b"image"
    assert body.closed


def test_s3_without_bucket_is_internal_error() -> None:
    with pytest.raises(InternalError):
        S3ObjectStore(None, client=MagicMock()).get_bytes("temp/u/id-1")


def test_textract_analyze_forms() -> None:
    client = MagicMock()
    client.analyze_document.return_value = {"Blocks": [{"Id": "b1"}]}

    blocks = TextractDocumentAnalyzer("docs-bucket", client=client).analyze_forms("temp/u/id-1")

    assert blocks == [{"Id": "b1"}]
    client.analyze_document.assert_called_once_with(
        Document={"S3Object": {"Bucket": "docs-bucket", "Name": "temp/u/id-1"}},
        FeatureTypes=["FORMS"],
    )


def test_rekognition_calls() -> None:
    client = MagicMock()
    client.create_face_liveness_session.return_value = {"SessionId": "s-1"}
    client.compare_faces.return_value = {"FaceMatches": [{"Similarity": 91.0}]}
    biometrics = RekognitionBiometrics(client=client)

    assert biometrics.create_liveness_session() == "s-1"
    assert biometrics.compare_faces(b"a", b"b", similarity_threshold=80.0) == [
        {"Similarity": 91.0}
    ]
    client.compare_faces.assert_called_once_with(
        SourceImage={"Bytes": b"a"},
        TargetImage={"Bytes": b"b"},
        SimilarityThreshold=80.0,
    )


def test_cognito_mark_active() -> None:
    client = MagicMock()
    client.list_users.return_value = {"Users": [{"Username": "juan@example.com"}]}

    assert CognitoDirectory("pool-1", client=client).mark_active("sub-1") is True

    client.list_users.assert_called_once_with(
        UserPoolId="pool-1", Filter='sub = "sub-1"', Limit=1
    )
    client.admin_update_user_attributes.assert_called_once_with(
        UserPoolId="pool-1",
        Username="juan@example.com",
        UserAttributes=[{"Name": "custom:status", "Value": "active"}],
    )


def test_cognito_unknown_user() -> None:
    client = MagicMock()
    client.list_users.return_value = {"Users": []}

    assert CognitoDirectory("pool-1", client=client).mark_active("sub-1") is False
    client.admin_update_user_attributes.assert_not_called()


@pytest.mark.parametrize(("pool", "user_id"), [(None, "sub-1"), ("pool-1", 'sub" or "1')])
def test_cognito_skips_update(pool: str | None, user_id: str) -> None:
    client = MagicMock()
    assert CognitoDirectory(pool, client=client).mark_active(user_id) is False
    client.list_users.assert_not_called()


def test_cognito_errors_propagate_as_provider_error() -> None:
    client = MagicMock()
    client.list_users.side_effect = _client_error("AccessDenied", "denied", "ListUsers")
    with pytest.raises(ProviderError):
        CognitoDirectory("pool-1", client=client).mark_active("sub-1")
