"""
Client Sessions - One object per remote DevTools connection

Both transports sit behind the same contract so the relay engine and the
side-channel router never look at the underlying socket.

@.architecture
Incoming: app.py (WebSocket endpoint), relay/tcp.py (TCP connections), relay/hub.py --- {WebSocket connections, asyncio.StreamWriter, bytes frames and str messages to deliver}
Processing: send(), close() --- {3 jobs: connection_management, error_handling, frame_encoding}
Outgoing: WebSocket clients, TCP clients, relay/hub.py --- {binary/text WebSocket messages, length-prefixed TCP frames, bool keep-session flags}
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional, Union

from fastapi import WebSocket

from relay.framing import FrameTooLargeError, encode_frame
from relay.protocols import TCP_SEND_TIMEOUT, WS_SEND_TIMEOUT

Message = Union[bytes, str]


class ClientSession(ABC):
    """
    A live remote connection.

    Attributes:
        kind: Transport kind, also the sender tag namespace ("ws" or "tcp")
        sender_tag: Identity used to suppress echo of the session's own frames
        wants_broadcast: Whether broadcast side-channel messages are delivered
    """

    kind: str = ""

    def __init__(self, sender_tag: Optional[str] = None):
        self.sender_tag = sender_tag
        self.wants_broadcast = False
        self._logger = logging.getLogger(f"{__name__}.{type(self).__name__}")

    @abstractmethod
    async def send(self, message: Message) -> bool:
        """
        Deliver a frame (bytes) or side-channel message (str).

        Never raises.

        Returns:
            False if the session is dead and should be removed now
        """
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.sender_tag}>"


class WebSocketSession(ClientSession):
    """Session over a message-oriented WebSocket connection."""

    kind = "ws"

    def __init__(self, ws: WebSocket, sender_tag: Optional[str] = None):
        super().__init__(sender_tag)
        self.ws = ws

    async def send(self, message: Message) -> bool:
        try:
            if isinstance(message, str):
                await asyncio.wait_for(self.ws.send_text(message), timeout=WS_SEND_TIMEOUT)
            else:
                await asyncio.wait_for(self.ws.send_bytes(bytes(message)), timeout=WS_SEND_TIMEOUT)
            return True
        except Exception as e:
            self._logger.debug(f"Failed to send to {self.sender_tag}: {e}")
            return False

    async def close(self) -> None:
        try:
            await self.ws.close()
        except Exception:
            pass


class TcpSession(ClientSession):
    """
    Session over a raw TCP stream.

    Binary only: text messages are not delivered. Each frame is written with a
    one-byte length prefix, so frames over 255 bytes are dropped for this
    session. A failed write closes the stream; the session is removed when its
    read loop sees the connection end.
    """

    kind = "tcp"

    def __init__(self, writer: asyncio.StreamWriter, sender_tag: Optional[str] = None):
        super().__init__(sender_tag)
        self.writer = writer

    @property
    def peer(self) -> str:
        peer = self.writer.get_extra_info("peername")
        return str(peer) if peer else "?"

    async def send(self, message: Message) -> bool:
        if isinstance(message, str):
            return True

        try:
            packet = encode_frame(message)
        except FrameTooLargeError as e:
            self._logger.warning(f"Dropping frame for {self.sender_tag}: {e}")
            return True

        try:
            self.writer.write(packet)
            await asyncio.wait_for(self.writer.drain(), timeout=TCP_SEND_TIMEOUT)
        except Exception as e:
            self._logger.debug(f"Write to {self.sender_tag} failed: {e}")
            await self.close()
        return True

    async def close(self) -> None:
        try:
            self.writer.close()
        except Exception:
            pass
