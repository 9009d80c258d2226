"""FastAPI transport: one WebSocket per client, many sessions per socket."""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import Any, Optional, assert_never

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from truth_engine import __version__
from truth_engine.config.logging import get_logger
from truth_engine.config.settings import settings
from truth_engine.errors import ProtocolError
from truth_engine.extraction import decode_image_payload
from truth_engine.session.manager import EventChannel, SessionManager
from truth_engine.session.protocol import (
    CancelVerification,
    ConnectionEstablished,
    GetSessionStatus,
    Ping,
    Pong,
    ProtocolErrorMessage,
    ResumeSession,
    ServerShutdown,
    StartImageVerification,
    StartTextVerification,
    SubmitFollowUpAnswers,
    parse_inbound,
)

SERVER_CAPABILITIES = [
    "text_verification",
    "image_verification",
    "follow_up_questions",
    "session_resume",
    "session_cancel",
    "capability_routing",
]

logger = get_logger("server")


class ClientConnection:
    """
    Bridges one WebSocket to the session manager.

    Inbound frames are parsed and dispatched; outbound messages from
    every session started on (or resumed onto) this socket go through
    one EventChannel and one writer task, so their order is preserved.
    """

    def __init__(self, websocket: WebSocket, manager: SessionManager):
        self.websocket = websocket
        self.manager = manager
        self.client_id = f"client_{uuid.uuid4().hex[:12]}"
        self.channel = EventChannel(self.client_id)
        self.session_ids: set[str] = set()
        self.logger = logger.bind(client_id=self.client_id)

    async def serve(self) -> None:
        writer = asyncio.create_task(self._write_loop(), name=f"writer:{self.client_id}")
        self.channel.deliver(ConnectionEstablished(
            client_id=self.client_id,
            capabilities=SERVER_CAPABILITIES,
            server_version=__version__,
        ))
        self.logger.info("Client connected")
        try:
            while True:
                raw = await self.websocket.receive_text()
                await self.handle(raw)
        except WebSocketDisconnect as e:
            self.logger.info("Client disconnected", code=e.code)
        finally:
            for session_id in list(self.session_ids):
                await self.manager.detach(session_id, self.channel)
            self.channel.close()
            writer.cancel()
            await asyncio.gather(writer, return_exceptions=True)

    async def handle(self, raw: str) -> None:
        try:
            message = parse_inbound(raw)
            await self.dispatch(message)
        except ProtocolError as e:
            self.logger.warning(f"Protocol error: {e}", message_type=e.message_type)
            self.channel.deliver(ProtocolErrorMessage(error=str(e), message_type=e.message_type))

    async def dispatch(self, message: Any) -> None:
        match message:
            case StartTextVerification():
                session = await self.manager.start_text(
                    message.text, message.options, channel=self.channel
                )
                self.session_ids.add(session.session_id)
            case StartImageVerification():
                image = decode_image_payload(message.image_buffer)
                session = await self.manager.start_image(
                    image, message.filename, message.options, channel=self.channel
                )
                self.session_ids.add(session.session_id)
            case SubmitFollowUpAnswers():
                await self.manager.submit_answers(message.session_id, message.answers)
            case ResumeSession():
                await self.manager.attach(message.session_id, self.channel)
                self.session_ids.add(message.session_id)
            case CancelVerification():
                # Only sessions started on or resumed onto this socket
                if message.session_id not in self.session_ids:
                    raise ProtocolError(
                        f"Unknown session: {message.session_id}", "cancel_verification"
                    )
                await self.manager.cancel(message.session_id)
            case GetSessionStatus():
                self.channel.deliver(await self.manager.status(message.session_id))
            case Ping():
                self.channel.deliver(Pong())
            case _:
                assert_never(message)

    async def notify_shutdown(self) -> None:
        self.channel.deliver(ServerShutdown())

    async def _write_loop(self) -> None:
        while True:
            message = await self.channel.get()
            await self.websocket.send_json(message.to_wire())


def create_app(manager: Optional[SessionManager] = None) -> FastAPI:
    """Build the application around a session manager (a default one if omitted)."""
    manager = manager or SessionManager()
    connections: set[ClientConnection] = set()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        expiry = asyncio.create_task(manager.run_expiry_loop(settings.keepalive_interval_seconds))
        logger.info("Truth engine server started",
                    sources=len(manager.registry), version=__version__)
        try:
            yield
        finally:
            for connection in list(connections):
                await connection.notify_shutdown()
            expiry.cancel()
            await asyncio.gather(expiry, return_exceptions=True)
            await manager.shutdown()
            logger.info("Truth engine server stopped")

    app = FastAPI(title="Truth Engine", version=__version__, lifespan=lifespan)
    app.state.manager = manager

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "healthy",
            "version": __version__,
            "connections": len(connections),
            "sessions": manager.get_statistics(),
            "sources": manager.registry.get_statistics(),
        }

    @app.get("/health/sources")
    async def source_health() -> dict[str, Any]:
        report = await manager.registry.health_check()
        return {
            "healthy": sum(1 for r in report.values() if r["healthy"]),
            "unhealthy": sum(1 for r in report.values() if not r["healthy"]),
            "sources": report,
        }

    @app.websocket("/ws/verification")
    async def verification_socket(websocket: WebSocket) -> None:
        await websocket.accept()
        connection = ClientConnection(websocket, manager)
        connections.add(connection)
        try:
            await connection.serve()
        finally:
            connections.discard(connection)

    return app
