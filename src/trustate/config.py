"""Configuration management for the Trustate pairing and verification service."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, model_validator

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class StorageSettings(BaseModel):
    sqlite_path: str = Field(default="./data/trustate.sqlite")
    sqlite_wal: bool = Field(default=True)


class AWSSettings(BaseModel):
    default_region: str | None = Field(default=None)
    default_profile: str | None = Field(default=None)
    bucket: str | None = Field(default=None, description="Bucket holding ID documents")
    cognito_user_pool_id: str | None = Field(default=None)
    sdk_timeout_seconds: int = Field(default=30, ge=1, le=300)
    max_retries: int = Field(default=2, ge=0, le=10)


class PairingSettings(BaseModel):
    nexus_code_length: int = Field(default=8, ge=6, le=16)
    nexus_link_host: str = Field(default="trustate.com")
    totp_period_seconds: int = Field(default=30, ge=10, le=120)
    totp_digits: int = Field(default=6, ge=6, le=8)
    totp_skew_steps: int = Field(
        default=1,
        ge=0,
        le=1,
        description="Accepted time steps either side of the current one.",
    )


class VerificationSettings(BaseModel):
    face_verified_threshold: float = Field(default=90.0, ge=0.0, le=100.0)
    face_review_threshold: float = Field(default=80.0, ge=0.0, le=100.0)
    upload_url_expiry_seconds: int = Field(default=300, ge=1, le=300)

    @model_validator(mode="after")
    def _check_threshold_order(self) -> "VerificationSettings":
        if self.face_review_threshold > self.face_verified_threshold:
            raise ValueError("face_review_threshold must not exceed face_verified_threshold")
        return self


class SecuritySettings(BaseModel):
    rate_limit_per_user: int = Field(default=100, ge=1)
    rate_limit_per_ip: int = Field(default=1000, ge=1)
    pairing_attempts_per_minute: int = Field(default=10, ge=1)
    verification_requests_per_minute: int = Field(default=30, ge=1)
    max_body_size_mb: int = Field(default=10, ge=1)
    request_timeout_seconds: float = Field(default=30.0, ge=0.1)
    max_header_size_kb: int = Field(default=8, ge=1)
    audit_enabled: bool = Field(default=True)

    @property
    def max_body_size_bytes(self) -> int:
        return self.max_body_size_mb * 1024 * 1024

    @property
    def max_header_size_bytes(self) -> int:
        return self.max_header_size_kb * 1024


class ServerSettings(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000, ge=1024, le=65535)
    http_allowed_origins: tuple[str, ...] = Field(default=())
    http_enable_cors: bool = Field(default=False)
    http_trust_forwarded_headers: bool = Field(default=False)


class Settings(BaseModel):
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    aws: AWSSettings = Field(default_factory=AWSSettings)
    pairing: PairingSettings = Field(default_factory=PairingSettings)
    verification: VerificationSettings = Field(default_factory=VerificationSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)


ENV_KEYS = {
    "host": "TRUSTATE_HOST",
    "port": "TRUSTATE_PORT",
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "sqlite_path": "SQLITE_PATH",
    "aws_region": "AWS_DEFAULT_REGION",
    "aws_profile": "AWS_PROFILE",
    "bucket": "S3_BUCKET",
    "user_pool": "COGNITO_USER_POOL_ID",
    "max_retries": "AWS_MAX_RETRIES",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _split_csv_preserve_case(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path)
    if candidate.is_absolute():
        return str(candidate.resolve())
    return str((_project_root() / candidate).resolve())


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    log_file_env = os.getenv(ENV_KEYS["log_file"])

    settings_data: dict[str, object] = {
        "server": {
            "host": os.getenv(ENV_KEYS["host"], ServerSettings().host),
            "port": _env_int(ENV_KEYS["port"], ServerSettings().port),
            "http_allowed_origins": tuple(
                _split_csv_preserve_case(os.getenv("HTTP_ALLOWED_ORIGINS"))
            ),
            "http_enable_cors": _env_bool(
                "HTTP_ENABLE_CORS",
                ServerSettings().http_enable_cors,
            ),
            "http_trust_forwarded_headers": _env_bool(
                "HTTP_TRUST_FORWARDED_HEADERS",
                ServerSettings().http_trust_forwarded_headers,
            ),
        },
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "storage": {
            "sqlite_path": _resolve_path(
                os.getenv(ENV_KEYS["sqlite_path"], StorageSettings().sqlite_path)
            ),
            "sqlite_wal": _env_bool("SQLITE_WAL", StorageSettings().sqlite_wal),
        },
        "aws": {
            "default_region": os.getenv("AWS_REGION") or os.getenv(ENV_KEYS["aws_region"]),
            "default_profile": os.getenv(ENV_KEYS["aws_profile"]),
            "bucket": os.getenv(ENV_KEYS["bucket"]),
            "cognito_user_pool_id": os.getenv(ENV_KEYS["user_pool"]),
            "sdk_timeout_seconds": _env_int(
                "SDK_TIMEOUT_SECONDS",
                AWSSettings().sdk_timeout_seconds,
            ),
            "max_retries": _env_int(ENV_KEYS["max_retries"], AWSSettings().max_retries),
        },
        "pairing": {
            "nexus_code_length": _env_int(
                "NEXUS_CODE_LENGTH", PairingSettings().nexus_code_length
            ),
            "nexus_link_host": os.getenv("NEXUS_LINK_HOST", PairingSettings().nexus_link_host),
            "totp_period_seconds": _env_int(
                "TOTP_PERIOD_SECONDS", PairingSettings().totp_period_seconds
            ),
            "totp_digits": _env_int("TOTP_DIGITS", PairingSettings().totp_digits),
            "totp_skew_steps": _env_int("TOTP_SKEW_STEPS", PairingSettings().totp_skew_steps),
        },
        "verification": {
            "face_verified_threshold": _env_float(
                "FACE_VERIFIED_THRESHOLD",
                VerificationSettings().face_verified_threshold,
            ),
            "face_review_threshold": _env_float(
                "FACE_REVIEW_THRESHOLD",
                VerificationSettings().face_review_threshold,
            ),
            "upload_url_expiry_seconds": _env_int(
                "UPLOAD_URL_EXPIRY_SECONDS",
                VerificationSettings().upload_url_expiry_seconds,
            ),
        },
        "security": {
            "rate_limit_per_user": _env_int(
                "RATE_LIMIT_PER_USER", SecuritySettings().rate_limit_per_user
            ),
            "rate_limit_per_ip": _env_int(
                "RATE_LIMIT_PER_IP", SecuritySettings().rate_limit_per_ip
            ),
            "pairing_attempts_per_minute": _env_int(
                "PAIRING_ATTEMPTS_PER_MINUTE",
                SecuritySettings().pairing_attempts_per_minute,
            ),
            "verification_requests_per_minute": _env_int(
                "VERIFICATION_REQUESTS_PER_MINUTE",
                SecuritySettings().verification_requests_per_minute,
            ),
            "max_body_size_mb": _env_int(
                "MAX_BODY_SIZE_MB", SecuritySettings().max_body_size_mb
            ),
            "request_timeout_seconds": _env_float(
                "REQUEST_TIMEOUT_SECONDS",
                SecuritySettings().request_timeout_seconds,
            ),
            "max_header_size_kb": _env_int(
                "MAX_HEADER_SIZE_KB", SecuritySettings().max_header_size_kb
            ),
            "audit_enabled": _env_bool("AUDIT_ENABLED", SecuritySettings().audit_enabled),
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    Path(settings.storage.sqlite_path).parent.mkdir(parents=True, exist_ok=True)

    return settings
