from unittest.mock import MagicMock, patch

from trustate.app import build_app_context, get_app_context
from trustate.config import Settings
from trustate.providers.cognito import CognitoDirectory
from trustate.providers.rekognition import RekognitionBiometrics
from trustate.providers.s3 import S3ObjectStore
from trustate.server import run_entrypoint


def test_build_app_context_defaults_to_aws_providers(store):
    context = build_app_context(Settings(), store)

    assert context.store is store
    assert isinstance(context.projection._directory, CognitoDirectory)
    assert isinstance(context.verification._storage, S3ObjectStore)
    assert isinstance(context.verification._biometrics, RekognitionBiometrics)


def test_build_app_context_shares_store_between_engines(context, store):
    assert context.pairing._store is store
    assert context.activity._store is store
    assert context.projection._store is store


@patch("trustate.app.load_settings")
def test_get_app_context_is_cached(mock_settings, tmp_path):
    settings = Settings()
    settings.storage.sqlite_path = str(tmp_path / "cached.db")
    mock_settings.return_value = settings
    get_app_context.cache_clear()
    try:
        first = get_app_context()
        assert get_app_context() is first
        mock_settings.assert_called_once()
        first.store.close()
    finally:
        get_app_context.cache_clear()


@patch("trustate.server.load_settings")
@patch("trustate.server.configure_logging")
@patch("trustate.transport.http_server.create_http_app")
@patch("trustate.app.get_app_context")
def test_run_entrypoint(mock_context, mock_create_http_app, mock_log, mock_settings):
    settings = MagicMock()
    settings.server.host = "0.0.0.0"
    settings.server.port = 8000
    mock_settings.return_value = settings

    with patch("uvicorn.run") as uvicorn_run:
        run_entrypoint()

    mock_log.assert_called_once()
    mock_create_http_app.assert_called_once_with(mock_context.return_value)
    uvicorn_run.assert_called_once_with(
        mock_create_http_app.return_value,
        host="0.0.0.0",
        port=8000,
        ws="none",
        log_config=None,
    )
    mock_context.return_value.store.close.assert_called_once()
