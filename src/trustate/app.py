"""Application context assembly."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from trustate.config import Settings, load_settings
from trustate.pairing.engine import PairingEngine
from trustate.projection.activity import ActivityLog
from trustate.projection.status import StatusProjection
from trustate.providers.cognito import CognitoDirectory
from trustate.providers.rekognition import RekognitionBiometrics
from trustate.providers.s3 import S3ObjectStore
from trustate.providers.textract import TextractDocumentAnalyzer
from trustate.store.db import SqliteStore
from trustate.verification.pipeline import VerificationPipeline


@dataclass
class AppContext:
    """Application-wide dependency container.

    Initialized once at startup and cached for the lifetime of the process.
    Tests build one directly with fakes in place of the AWS providers.
    """

    settings: Settings
    store: SqliteStore
    activity: ActivityLog
    projection: StatusProjection
    pairing: PairingEngine
    verification: VerificationPipeline


def build_app_context(
    settings: Settings,
    store: SqliteStore,
    storage=None,
    analyzer=None,
    biometrics=None,
    directory=None,
) -> AppContext:
    """Wire the engine and pipeline over ``store``; missing providers use AWS."""
    bucket = settings.aws.bucket
    activity = ActivityLog(store)
    projection = StatusProjection(
        store,
        directory=directory or CognitoDirectory(settings.aws.cognito_user_pool_id),
    )
    pairing = PairingEngine(store, projection, activity, settings=settings.pairing)
    verification = VerificationPipeline(
        storage=storage or S3ObjectStore(bucket),
        analyzer=analyzer or TextractDocumentAnalyzer(bucket),
        biometrics=biometrics or RekognitionBiometrics(),
        projection=projection,
        activity=activity,
        settings=settings.verification,
    )
    return AppContext(
        settings=settings,
        store=store,
        activity=activity,
        projection=projection,
        pairing=pairing,
        verification=verification,
    )


@lru_cache(maxsize=1)
def get_app_context() -> AppContext:
    """Get or create the process-wide application context."""
    settings = load_settings()
    store = SqliteStore(settings.storage.sqlite_path, wal=settings.storage.sqlite_wal)
    return build_app_context(settings, store)
