"""
TCP Relay Server - Raw socket clients

Accepts raw TCP connections, registers each one as a TcpSession and runs its
read loop through a StreamReframer.

@.architecture
Incoming: app.py (startup), TCP clients --- {host/port settings, length-prefixed byte stream}
Processing: start(), stop(), _handle_connection() --- {4 jobs: connection_management, error_handling, frame_decoding, lifecycle_management}
Outgoing: relay/hub.py --- {TcpSession registration/removal, decoded frames via on_client_frame}
"""

import asyncio
from typing import Optional

from monitoring import clear_sender_context, get_logger, set_sender_context
from relay.framing import StreamReframer
from relay.hub import RelayEngine
from relay.sessions import TcpSession

logger = get_logger(__name__)

READ_CHUNK_SIZE = 4096


class TcpRelayServer:
    """
    Listening socket for raw TCP DevTools clients.
    """

    def __init__(self, engine: RelayEngine, host: str, port: int):
        self.engine = engine
        self.host = host
        self.port = port
        self._server: Optional[asyncio.AbstractServer] = None

    @property
    def bound_port(self) -> Optional[int]:
        """Actual port, useful when started with port 0."""
        if not self._server or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        """
        Bind and start accepting connections.

        Raises:
            OSError: If the port cannot be bound
        """
        self._server = await asyncio.start_server(self._handle_connection, self.host, self.port)
        logger.info(f"   tcpsocket: tcp://{self.host}:{self.bound_port}")

    async def stop(self) -> None:
        """Stop listening and close any TCP sessions still open."""
        if self._server is None:
            return
        self._server.close()
        for session in self.engine.snapshot():
            if isinstance(session, TcpSession):
                await session.close()
        await self._server.wait_closed()
        self._server = None

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        session = self.engine.register_client(TcpSession(writer))
        set_sender_context(session.sender_tag)
        reframer = StreamReframer()

        try:
            while True:
                chunk = await reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                for payload in reframer.feed(chunk):
                    await self.engine.on_client_frame(payload, session.sender_tag)
        except (ConnectionError, OSError) as e:
            logger.error(f"tcpclient {session.sender_tag}: {e}")
        finally:
            if reframer.pending:
                logger.debug(f"Discarding {len(reframer.pending)} buffered bytes from {session.sender_tag}")
            self.engine.remove_client(session)
            await session.close()
            clear_sender_context()
