"""
Realtime Routes
===============

WebSocket endpoint accepting client upgrades on any path. Each accepted
connection gets its own BridgeSession relaying to the upstream realtime API.

Dependencies:
    - get_settings: immutable Settings stored on app.state at startup
    - get_upstream_connector: coroutine opening the upstream connection
      (overridable in tests via app.dependency_overrides)
"""

import logging

from fastapi import APIRouter, Depends, WebSocket

from ..config import Settings
from .bridge import BridgeSession, UpstreamConnector, build_connector

logger = logging.getLogger("realtime_proxy.realtime.routes")

realtime_router = APIRouter()


def get_settings(websocket: WebSocket) -> Settings:
    """Return the Settings the application was created with."""
    return websocket.app.state.settings


def get_upstream_connector(settings: Settings = Depends(get_settings)) -> UpstreamConnector:
    """Return the connector used to open upstream connections."""
    return build_connector(settings)


@realtime_router.websocket("/{path:path}")
async def relay_endpoint(
        websocket: WebSocket,
        settings: Settings = Depends(get_settings),
        connector: UpstreamConnector = Depends(get_upstream_connector),
):
    """
    Accept a client WebSocket and relay it to the upstream realtime API.

    The first subprotocol offered by the client, if any, is echoed back so
    browsers that request one still complete the handshake. The session
    ends when either side closes.

    Args:
        websocket: Client WebSocket connection
        settings: Application settings
        connector: Upstream connector
    """
    subprotocols = websocket.scope.get("subprotocols") or []
    await websocket.accept(subprotocol=subprotocols[0] if subprotocols else None)
    logger.debug("Accepted WebSocket upgrade", extra={"path": websocket.url.path})

    session = BridgeSession.from_settings(websocket, settings, connector)
    await session.run()
