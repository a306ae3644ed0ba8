from __future__ import annotations

import pytest

from trustate import config


@pytest.fixture
def fresh_settings(monkeypatch: pytest.MonkeyPatch, tmp_path):
    monkeypatch.setattr(config, "load_dotenv", lambda **_: None)
    monkeypatch.setenv("SQLITE_PATH", str(tmp_path / "db" / "trustate.sqlite"))
    config._load_settings_cached.cache_clear()
    yield
    config._load_settings_cached.cache_clear()


def test_split_csv_preserve_case() -> None:
    assert config._split_csv_preserve_case(" https://A.example, B ,,C ") == [
        "https://A.example",
        "B",
        "C",
    ]


def test_resolve_path_relative_to_project_root() -> None:
    root = config._project_root().resolve()
    assert config._resolve_path("data/x.sqlite") == str(root / "data" / "x.sqlite")


def test_env_int_uses_default_for_blank(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_INT_VALUE", "")
    assert config._env_int("TEST_INT_VALUE", 7) == 7


def test_env_int_invalid_value_returns_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_INT_INVALID", "not_a_number")
    assert config._env_int("TEST_INT_INVALID", 42) == 42


def test_env_float_invalid_value_returns_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_FLOAT_INVALID", "not_a_float")
    assert config._env_float("TEST_FLOAT_INVALID", 2.5) == 2.5


@pytest.mark.parametrize(("raw", "expected"), [("1", True), ("YES", True), ("off", False)])
def test_env_bool(monkeypatch: pytest.MonkeyPatch, raw: str, expected: bool) -> None:
    monkeypatch.setenv("TEST_BOOL", raw)
    assert config._env_bool("TEST_BOOL", not expected) is expected


def test_defaults(fresh_settings, tmp_path) -> None:
    settings = config.load_settings()

    assert settings.pairing.nexus_code_length == 8
    assert settings.pairing.totp_period_seconds == 30
    assert settings.pairing.totp_digits == 6
    assert settings.pairing.totp_skew_steps == 1
    assert settings.verification.face_verified_threshold == 90.0
    assert settings.verification.face_review_threshold == 80.0
    assert settings.verification.upload_url_expiry_seconds == 300
    assert settings.security.max_body_size_bytes == 10 * 1024 * 1024
    assert (tmp_path / "db").is_dir()


def test_settings_are_cached(fresh_settings) -> None:
    assert config.load_settings() is config.load_settings()


def test_environment_overrides(fresh_settings, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AWS_REGION", "ap-southeast-1")
    monkeypatch.setenv("S3_BUCKET", "id-docs")
    monkeypatch.setenv("NEXUS_LINK_HOST", "pair.example.org")
    monkeypatch.setenv("FACE_VERIFIED_THRESHOLD", "95")
    monkeypatch.setenv("HTTP_ALLOWED_ORIGINS", "https://app.example.org")

    settings = config.load_settings()

    assert settings.aws.default_region == "ap-southeast-1"
    assert settings.aws.bucket == "id-docs"
    assert settings.pairing.nexus_link_host == "pair.example.org"
    assert settings.verification.face_verified_threshold == 95.0
    assert settings.server.http_allowed_origins == ("https://app.example.org",)


@pytest.mark.parametrize(
    ("key", "value"),
    [
        ("UPLOAD_URL_EXPIRY_SECONDS", "600"),
        ("TOTP_SKEW_STEPS", "2"),
        ("FACE_REVIEW_THRESHOLD", "95"),
        ("TRUSTATE_PORT", "80"),
    ],
)
def test_invalid_configuration(
    fresh_settings, monkeypatch: pytest.MonkeyPatch, key: str, value: str
) -> None:
    monkeypatch.setenv(key, value)
    with pytest.raises(RuntimeError, match="Invalid configuration"):
        config.load_settings()
