"""
Collect step output into a bounded buffer.
"""

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

READ_CHUNK = 64 * 1024

class BoundedOutput:
    """
    Keeps the first `limit` bytes of output.
    Anything past the limit is counted and dropped; the pipe is still drained
    so the step never blocks on a full buffer.

    `margin` extra bytes are held past the limit so a masked value that
    straddles the cut is replaced whole before the output is shortened.
    """

    def __init__(self, limit: int, margin: int = 0):
        self.limit = limit
        self.margin = margin
        self._chunks = []
        self._kept = 0
        self._total = 0

    @property
    def dropped(self) -> int:
        return max(0, self._total - self.limit)

    @property
    def truncated(self) -> bool:
        return self.dropped > 0

    def write(self, data: bytes):
        self._total += len(data)
        room = self.limit + self.margin - self._kept
        if room > 0:
            kept = data[:room]
            self._chunks.append(kept)
            self._kept += len(kept)

    def text(self, mask: Optional[Callable[[str], str]] = None) -> str:
        output = b"".join(self._chunks).decode("utf-8", errors="replace")
        if mask is not None:
            output = mask(output)
        if self.truncated:
            output = output.encode("utf-8")[:self.limit].decode("utf-8", errors="ignore")
            output += f"\n... [output truncated: {self.dropped} bytes omitted]\n"
        return output

async def collect_output(stream: asyncio.StreamReader, buffer: BoundedOutput):
    """Read a process stream to EOF into `buffer`."""
    while True:
        chunk = await stream.read(READ_CHUNK)
        if not chunk:
            break
        buffer.write(chunk)
