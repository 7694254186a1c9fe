"""WebSocket server for the OCPP 1.6J central system."""

import asyncio
import logging
from typing import Optional
from urllib.parse import unquote, urlsplit

import websockets
from websockets.asyncio.server import Server, ServerConnection

from .handlers import OcppMessageRouter, OcppSessionManager
from .logging_utils import log_error, log_websocket_event

logger = logging.getLogger(__name__)

SUBPROTOCOL = "ocpp1.6"

CLOSE_POLICY_VIOLATION = 1008
CLOSE_GOING_AWAY = 1001


def parse_charge_point_id(path: str) -> Optional[str]:
    """
    Extract the charge point id from ``/ocpp/{id}`` or ``/ocpp/1.6/{id}``.

    Returns None for any other path.
    """
    parts = urlsplit(path).path.strip("/").split("/")
    if len(parts) == 2 and parts[0] == "ocpp":
        charge_point_id = parts[1]
    elif len(parts) == 3 and parts[0] == "ocpp" and parts[1] == "1.6":
        charge_point_id = parts[2]
    else:
        return None
    return unquote(charge_point_id) or None


class OCPPServer:
    """
    OCPP WebSocket server that manages charge point connections.

    Frames of one connection are handled strictly in order: each frame is
    routed and its reply sent before the next frame is read.
    """

    def __init__(
        self,
        session_manager: OcppSessionManager,
        router: Optional[OcppMessageRouter] = None,
        host: str = "0.0.0.0",
        port: int = 9000,
        ping_interval: Optional[float] = 20,
    ):
        self.session_manager = session_manager
        self.router = router or OcppMessageRouter(session_manager)
        self.host = host
        self.port = port
        self.ping_interval = ping_interval
        self._server: Server | None = None
        self._connections: set[ServerConnection] = set()

    async def on_connect(self, connection: ServerConnection):
        path = connection.request.path
        charge_point_id = parse_charge_point_id(path)
        if charge_point_id is None:
            log_websocket_event(logger, "rejected", path=path, reason="invalid path")
            await connection.close(
                CLOSE_POLICY_VIOLATION, "Expected /ocpp/{id} or /ocpp/1.6/{id}"
            )
            return

        session = await self.session_manager.register_session(charge_point_id, connection)
        self._connections.add(connection)
        log_websocket_event(
            logger,
            "connected",
            charge_point_id,
            path=path,
            subprotocol=connection.subprotocol,
            remote_address=str(connection.remote_address),
        )

        try:
            async for raw in connection:
                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8", errors="replace")
                response = await self.router.route_message(charge_point_id, raw)
                if response is not None:
                    await connection.send(response)
        except websockets.exceptions.ConnectionClosed as e:
            log_websocket_event(logger, "closed", charge_point_id, code=e.code, reason=e.reason)
        except Exception as e:
            log_error(
                logger,
                "connection_error",
                f"Error handling charge point {charge_point_id}: {e}",
                cp_id=charge_point_id,
                exc_info=e,
            )
        finally:
            self._connections.discard(connection)
            await self.session_manager.unregister_session(charge_point_id, session)
            log_websocket_event(logger, "disconnected", charge_point_id)

    async def start(self):
        """Serve until cancelled."""
        logger.info(f"Starting OCPP server on {self.host}:{self.port}")

        async with websockets.serve(
            self.on_connect,
            self.host,
            self.port,
            subprotocols=[SUBPROTOCOL],
            ping_interval=self.ping_interval,
        ) as server:
            self._server = server
            logger.info(
                f"OCPP server listening on ws://{self.host}:{self.port}/ocpp/{{cp_id}}"
            )
            await asyncio.Future()  # Run forever

    async def stop(self):
        """Close every open charge point connection."""
        logger.info("Stopping OCPP server")
        for connection in list(self._connections):
            await connection.close(CLOSE_GOING_AWAY, "Server shutting down")
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        logger.info("OCPP server stopped")
