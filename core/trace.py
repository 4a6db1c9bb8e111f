"""
Frame trace file: one line per bus frame, "<sender> <hex bytes>", where the
sender is the originating session tag or "bus".
"""

from pathlib import Path
from typing import Any, Optional, Union

import aiofiles

from monitoring import get_logger
from relay.protocols import Frame

logger = get_logger(__name__)


def format_trace_line(frame: Frame) -> str:
    return f"{frame.sender or 'bus'} {frame.data.hex()}\n"


class TraceWriter:
    """Appends bus frames to a trace file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._file: Optional[Any] = None

    async def open(self) -> None:
        self._file = await aiofiles.open(self.path, 'w')
        logger.info(f"tracing frames to {self.path}")

    async def write_frame(self, frame: Frame) -> None:
        if self._file is None:
            return
        await self._file.write(format_trace_line(frame))
        await self._file.flush()

    async def close(self) -> None:
        if self._file is not None:
            await self._file.close()
            self._file = None
