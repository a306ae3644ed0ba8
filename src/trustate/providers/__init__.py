"""External provider clients (object store, OCR, biometrics, identity directory)."""

from trustate.providers.base import (
    BiometricProvider,
    DocumentAnalyzer,
    IdentityDirectory,
    ObjectStore,
)

__all__ = [
    "BiometricProvider",
    "DocumentAnalyzer",
    "IdentityDirectory",
    "ObjectStore",
]
