"""Client for the verification WebSocket protocol."""

from truth_engine.client.client import VerificationClient
from truth_engine.client.reconnect import ConnectionState, ReconnectState, backoff_delay

__all__ = ["VerificationClient", "ConnectionState", "ReconnectState", "backoff_delay"]
