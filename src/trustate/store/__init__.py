"""Relational store for pairing, verification and activity state."""

from trustate.store.db import ConstraintViolation, SqliteStore

__all__ = ["ConstraintViolation", "SqliteStore"]
