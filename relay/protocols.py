"""
Relay Protocol Definitions

Defines the frame value type and the side-channel message schemas exchanged
with DevTools clients.

@.architecture
Incoming: relay/hub.py, relay/handlers.py, relay/sessions.py, core/bus/*.py --- {raw frame bytes, raw JSON payloads from WebSocket text messages}
Processing: Frame construction, parse_side_message(), ErrorResponse serialization --- {3 jobs: data_validation, message_parsing, schema_validation}
Outgoing: relay/hub.py, relay/handlers.py --- {Frame values, SideMessage models, ErrorResponse JSON}

Wire formats:
- Binary WebSocket messages carry one bus frame each
- Text WebSocket messages carry JSON control messages: {"type": ..., "bcast"?: bool, ...}
- Raw TCP carries frames as [1 length byte][payload], repeated
"""

import json
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, StrictStr, ValidationError


# Sender value of frames that originate on the bus itself
BUS_SENDER: Optional[str] = None


@dataclass(frozen=True)
class Frame:
    """
    One bus packet, tagged with the session that produced it.

    Attributes:
        data: Raw packet bytes
        sender: Sender tag of the producing session, or BUS_SENDER
    """
    data: bytes
    sender: Optional[str] = BUS_SENDER


class SideMessage(BaseModel):
    """
    Control message received on the side channel.

    Examples:
        {"type": "enableBCast"}
        {"type": "selection", "bcast": true, "deviceId": "..."}
    """
    type: StrictStr
    bcast: Optional[bool] = None

    model_config = ConfigDict(extra="allow")


class ErrorResponse(BaseModel):
    """
    Error reply sent back to the originating session.

    Examples:
        {"type": "error", "message": "unknown msg type: bogus"}
    """
    type: str = "error"
    message: str
    stack: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(self.model_dump(exclude_none=True))


def parse_side_message(text: str) -> Optional[SideMessage]:
    """
    Parse a side-channel message.

    Args:
        text: Raw JSON text

    Returns:
        Parsed message, or None if the text is not a JSON object with a string type
    """
    try:
        payload: Any = json.loads(text)
    except (TypeError, ValueError):
        return None

    if not isinstance(payload, dict):
        return None

    try:
        return SideMessage(**payload)
    except (TypeError, ValidationError):
        return None


# Protocol constants
WS_SEND_TIMEOUT = 3.0  # Timeout for sending to single client
TCP_SEND_TIMEOUT = 3.0  # Timeout for draining a TCP client's write buffer
MAX_TCP_FRAME = 255  # One length byte on the TCP path
ENABLE_BROADCAST = "enableBCast"
