"""
Side-Channel Router

Interprets JSON control messages sent by clients as WebSocket text, separately
from binary bus traffic.

@.architecture
Incoming: relay/hub.py (handle_text) --- {ClientSession sender, str raw JSON text}
Processing: handle(), register(), _broadcast(), send_error() --- {5 jobs: broadcasting, error_handling, message_parsing, message_routing, validation}
Outgoing: ClientSession.send() via relay/hub.py --- {error replies to the sender, verbatim broadcast text to opted-in sessions}

Rules:
- Text that is not a JSON object with a string "type" is ignored
- "type" selects a handler; an unknown type without "bcast" yields an error reply
- "bcast": true forwards the original text to every other session that sent enableBCast
- Handler exceptions become error replies and never propagate
"""

import logging
import traceback
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, Optional

from relay.protocols import (
    ENABLE_BROADCAST,
    ErrorResponse,
    SideMessage,
    parse_side_message,
)
from relay.sessions import ClientSession

if TYPE_CHECKING:
    from relay.hub import RelayEngine

Handler = Callable[[SideMessage, ClientSession], Awaitable[None]]


async def enable_broadcast(message: SideMessage, sender: ClientSession) -> None:
    """Opt the sender into broadcast side-channel messages."""
    sender.wants_broadcast = True


class SideChannelRouter:
    """
    Dispatches side-channel messages to handlers by type.
    """

    def __init__(self, engine: "RelayEngine"):
        """
        Initialize router.

        Args:
            engine: Relay engine owning the client registry
        """
        self.engine = engine
        self.handlers: Dict[str, Handler] = {
            ENABLE_BROADCAST: enable_broadcast,
        }
        self._logger = logging.getLogger(f"{__name__}.SideChannelRouter")

    def register(self, msg_type: str, handler: Handler) -> None:
        """Register a handler for a message type, replacing any existing one."""
        self.handlers[msg_type] = handler

    async def handle(self, sender: ClientSession, text: str) -> None:
        """
        Handle one side-channel message.

        Args:
            sender: Session that sent the message
            text: Raw JSON text
        """
        message = parse_side_message(text)
        if message is None:
            self._logger.debug(f"Ignoring unparseable side message from {sender.sender_tag}")
            return

        handler = self.handlers.get(message.type)
        if handler:
            try:
                await handler(message, sender)
            except Exception as e:
                self._logger.warning(f"Handler for {message.type} failed: {e}")
                await self.send_error(sender, str(e) or type(e).__name__, traceback.format_exc())

        if message.bcast:
            await self._broadcast(sender, text)
        elif not handler:
            await self.send_error(sender, f"unknown msg type: {message.type}")

    async def _broadcast(self, sender: ClientSession, text: str) -> int:
        delivered = 0
        for session in self.engine.snapshot():
            if session is sender or not session.wants_broadcast:
                continue
            if await self.engine.send_to_client(session, text):
                delivered += 1
        return delivered

    async def send_error(
        self,
        session: ClientSession,
        message: str,
        stack: Optional[str] = None,
    ) -> None:
        """Send a structured error reply to one session."""
        reply = ErrorResponse(message=message, stack=stack)
        await self.engine.send_to_client(session, reply.to_json())
