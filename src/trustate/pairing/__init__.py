"""Broker/agent pairing over nexus codes and rotating one-time codes."""

from trustate.pairing.engine import CancelResult, LiveCode, PairingEngine

__all__ = ["CancelResult", "LiveCode", "PairingEngine"]
