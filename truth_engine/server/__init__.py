"""WebSocket server exposing the session manager."""

from truth_engine.server.app import ClientConnection, create_app

__all__ = ["ClientConnection", "create_app"]
