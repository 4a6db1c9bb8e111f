"""
Relay Engine - Client registry and frame forwarding

Central hub between the device bus and every connected DevTools client.

@.architecture
Incoming: app.py (WebSocket endpoint), relay/tcp.py, core/bus (frame events) --- {ClientSession instances, Frame values from the bus, bytes/str from clients}
Processing: register_client(), remove_client(), on_bus_frame(), on_client_frame(), handle_text(), snapshot() --- {5 jobs: connection_management, error_handling, loop_prevention, message_routing, relay}
Outgoing: core/bus (send_frame), relay/handlers.py, ClientSession.send() --- {Frame values to the bus, text messages to the router, frames to clients}

Forwarding policy:
- A bus frame goes to every session whose sender tag differs from the frame's sender
- A client frame goes to the bus tagged with the client's sender tag; the bus
  echoes it back as an ingress frame and the policy above keeps it away from
  the client that sent it
- A failed send removes and closes that session only
"""

import itertools
from typing import Any, Dict, Iterator, List, Optional

from monitoring import get_logger, setup_standard_metrics
from relay.handlers import SideChannelRouter
from relay.protocols import Frame
from relay.sessions import ClientSession

logger = get_logger(__name__)


class RelayEngine:
    """
    Owns the client registry and enforces the forwarding policy.

    All methods run on the event loop thread. Registry mutations are
    synchronous, so relay loops iterate over a snapshot taken up front.
    """

    def __init__(self, bus: Any, metrics: Optional[Dict[str, Any]] = None):
        """
        Initialize relay engine.

        Args:
            bus: Bus handle used to transmit client frames
            metrics: Metric objects from setup_standard_metrics()
        """
        self.bus = bus
        self._clients: List[ClientSession] = []
        self._ids: Iterator[int] = itertools.count(1)
        self.metrics = metrics or setup_standard_metrics()
        self.router = SideChannelRouter(self)

    # Registry

    def register_client(self, session: ClientSession) -> ClientSession:
        """
        Add a session to the registry.

        Assigns the next sender tag in the session's transport namespace
        unless one is already set.

        Args:
            session: Newly accepted session

        Returns:
            The same session
        """
        if not session.sender_tag:
            session.sender_tag = f"{session.kind}{next(self._ids)}"
        if session not in self._clients:
            self._clients.append(session)
            self.metrics['clients'].inc(kind=session.kind)
        logger.info(f"{session.kind}client: connected ({session.sender_tag}, {len(self._clients)} clients)")
        return session

    def remove_client(self, session: ClientSession) -> bool:
        """
        Remove a session from the registry.

        Safe to call from both the disconnect and error paths.

        Args:
            session: Session to remove

        Returns:
            True if this call removed it
        """
        try:
            self._clients.remove(session)
        except ValueError:
            return False
        self.metrics['clients'].dec(kind=session.kind)
        logger.info(f"client: disconnected ({session.sender_tag}, {len(self._clients)} clients)")
        return True

    def snapshot(self) -> List[ClientSession]:
        """Stable copy of the registry for iteration."""
        return list(self._clients)

    def get_client_count(self) -> int:
        return len(self._clients)

    def get_client_tags(self) -> List[str]:
        return [c.sender_tag for c in self._clients]

    # Relay

    async def on_bus_frame(self, frame: Frame) -> int:
        """
        Deliver a bus frame to every session except its sender.

        Args:
            frame: Ingress frame from the bus

        Returns:
            Number of sessions the frame was delivered to
        """
        delivered = 0
        for session in self.snapshot():
            if session.sender_tag == frame.sender:
                continue
            if await self._deliver(session, frame.data):
                delivered += 1
        self.metrics['frames_total'].inc(delivered, direction="bus_to_client")
        return delivered

    async def on_client_frame(self, data: bytes, sender_tag: str) -> None:
        """
        Submit a client frame to the bus.

        Args:
            data: Frame bytes received from the client
            sender_tag: Tag of the session that sent it
        """
        self.metrics['frames_total'].inc(direction="client_to_bus")
        try:
            await self.bus.send_frame(Frame(data=bytes(data), sender=sender_tag))
        except Exception as e:
            logger.error(f"Bus rejected frame from {sender_tag}: {e}")

    async def handle_text(self, session: ClientSession, text: str) -> None:
        """
        Route a side-channel text message.

        Args:
            session: Session that sent it
            text: Raw JSON text
        """
        await self.router.handle(session, text)

    async def send_to_client(self, session: ClientSession, message: Any) -> bool:
        """
        Send one message to a session, removing it on failure.

        Args:
            session: Target session
            message: Frame bytes or text

        Returns:
            True if the session is still registered afterwards
        """
        return await self._deliver(session, message)

    async def _deliver(self, session: ClientSession, message: Any) -> bool:
        try:
            ok = await session.send(message)
        except Exception as e:
            logger.warning(f"Unexpected send error for {session.sender_tag}: {e}")
            ok = False

        if not ok:
            self.metrics['send_failures_total'].inc(kind=session.kind)
            self.remove_client(session)
            # Closing ends the session's receive loop through its disconnect path
            try:
                await session.close()
            except Exception as e:
                logger.debug(f"Error closing {session.sender_tag}: {e}")
        return ok

    async def cleanup_all(self) -> None:
        """
        Close and remove all sessions (for shutdown).
        """
        for session in self.snapshot():
            try:
                await session.close()
            except Exception as e:
                logger.debug(f"Error closing {session.sender_tag}: {e}")
            self.remove_client(session)

        logger.info("All clients cleaned up")
