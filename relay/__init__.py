"""
Relay Layer - Bus frame relay between the device bus and DevTools clients

Components:
- hub.py: RelayEngine for the client registry and forwarding policy
- sessions.py: WebSocket and raw TCP client sessions
- framing.py: Length-prefixed reframing for the TCP byte stream
- handlers.py: Side-channel JSON control message router
- tcp.py: Raw TCP listening server
- protocols.py: Frame type, message schemas and constants

Usage:
    from relay import RelayEngine, WebSocketSession

    engine = RelayEngine(bus)
    bus.on(FRAME_EVENT, engine.on_bus_frame)

    @app.websocket("/")
    async def websocket_endpoint(ws: WebSocket):
        await ws.accept()
        session = engine.register_client(WebSocketSession(ws))
        try:
            while True:
                message = await ws.receive()
                ...
        finally:
            engine.remove_client(session)
"""

from .protocols import (
    BUS_SENDER,
    ErrorResponse,
    Frame,
    MAX_TCP_FRAME,
    SideMessage,
    parse_side_message,
)
from .framing import FrameTooLargeError, StreamReframer, encode_frame
from .sessions import ClientSession, TcpSession, WebSocketSession
from .handlers import SideChannelRouter
from .hub import RelayEngine
from .tcp import TcpRelayServer

__all__ = [
    # Protocol
    "BUS_SENDER",
    "ErrorResponse",
    "Frame",
    "MAX_TCP_FRAME",
    "SideMessage",
    "parse_side_message",

    # Framing
    "FrameTooLargeError",
    "StreamReframer",
    "encode_frame",

    # Sessions
    "ClientSession",
    "TcpSession",
    "WebSocketSession",

    # Routing
    "SideChannelRouter",
    "RelayEngine",
    "TcpRelayServer",
]
