"""
Realtime Package

This package contains the WebSocket relay for the proxy service.

Modules:
- bridge: Session bridge pairing one client WebSocket with one upstream connection
- routes: WebSocket endpoint and dependency providers
"""

from .bridge import BridgeSession, Frame, FrameKind, LegState, normalize_upstream_frame
from .routes import realtime_router

__all__ = [
    "BridgeSession",
    "Frame",
    "FrameKind",
    "LegState",
    "normalize_upstream_frame",
    "realtime_router",
]
