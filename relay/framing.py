"""
Stream Reframing - Length-prefixed frames over raw TCP

TCP preserves no message boundaries, so every frame on the raw socket path is
written as a single length byte followed by that many payload bytes. Frames
longer than 255 bytes cannot be expressed on this transport.

@.architecture
Incoming: relay/tcp.py, relay/sessions.py --- {bytes chunks read from a TCP stream, bytes frames to write}
Processing: StreamReframer.feed(), encode_frame() --- {2 jobs: frame_decoding, frame_encoding}
Outgoing: relay/hub.py (via relay/tcp.py), TCP clients --- {List[bytes] complete frames, bytes length-prefixed frames}
"""

from typing import List, Optional

from relay.protocols import MAX_TCP_FRAME


class FrameTooLargeError(ValueError):
    """Raised when a frame does not fit the one-byte length prefix."""


def encode_frame(payload: bytes) -> bytes:
    """
    Prefix a frame with its length byte.

    Args:
        payload: Frame bytes (at most 255)

    Returns:
        Length-prefixed frame

    Raises:
        FrameTooLargeError: If the frame is longer than 255 bytes
    """
    if len(payload) > MAX_TCP_FRAME:
        raise FrameTooLargeError(
            f"frame of {len(payload)} bytes exceeds TCP limit of {MAX_TCP_FRAME}"
        )
    return bytes([len(payload)]) + bytes(payload)


class StreamReframer:
    """
    Decodes a TCP byte stream into frames.

    Holds at most one partial buffer between chunks. Frames are returned in
    arrival order; a chunk may complete a pending frame, carry several frames,
    or end in the middle of one.
    """

    def __init__(self):
        self._acc: Optional[bytes] = None

    @property
    def pending(self) -> bytes:
        """Bytes held back waiting for the rest of a frame."""
        return self._acc or b""

    def feed(self, chunk: bytes) -> List[bytes]:
        """
        Consume one chunk from the stream.

        Args:
            chunk: Bytes as read from the socket

        Returns:
            Complete frames extracted so far, in order
        """
        frames: List[bytes] = []

        if self._acc is not None:
            buf: Optional[bytes] = self._acc + bytes(chunk)
            self._acc = None
        else:
            buf = bytes(chunk)

        while buf:
            end = buf[0] + 1
            if len(buf) < end:
                self._acc = buf
                break
            frames.append(buf[1:end])
            buf = buf[end:] or None

        return frames
