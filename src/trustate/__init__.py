"""Trust pairing and identity verification service."""

__version__ = "0.1.0"
