"""
File Store

Filesystem access used by both halves of the transfer protocol.

Filenames are opaque strings resolved against a root directory (the
working directory by default). No path validation is performed: the
name a peer sends is the name that gets opened.

Resume offsets are always derived from what is on disk (`size()`), never
from a counter kept alongside the transfer, so a partially written chunk
is accounted for on the next attempt.
"""

import logging
from pathlib import Path
from typing import Union

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)


class FileStore:
    """
    Files addressed by name under a root directory.

    Provides:
    - existence and length queries
    - delete-then-create for new uploads
    - read-with-seek and append handles (aiofiles)
    """

    def __init__(self, root_dir: Union[str, Path] = '.'):
        self.root_dir = Path(root_dir)

    def path(self, filename: str) -> Path:
        """Get filesystem path for a filename."""
        return self.root_dir / filename

    async def exists(self, filename: str) -> bool:
        """Check if a regular file with this name exists."""
        return await aiofiles.os.path.isfile(self.path(filename))

    async def size(self, filename: str) -> int:
        """Byte length of the file, 0 if it does not exist."""
        path = self.path(filename)
        if not await aiofiles.os.path.isfile(path):
            return 0
        return await aiofiles.os.path.getsize(path)

    async def recreate(self, filename: str):
        """Delete the file if present and create it empty."""
        path = self.path(filename)
        if await aiofiles.os.path.exists(path):
            await aiofiles.os.remove(path)
            logger.debug(f"Deleted existing {path}")

        async with aiofiles.open(path, 'wb'):
            pass

    async def delete(self, filename: str) -> bool:
        path = self.path(filename)
        if await aiofiles.os.path.isfile(path):
            await aiofiles.os.remove(path)
            return True
        return False

    def open_read(self, filename: str):
        """Open for reading. Use as `async with store.open_read(name) as f`."""
        return aiofiles.open(self.path(filename), 'rb')

    def open_append(self, filename: str):
        """Open for appending, creating the file if needed."""
        return aiofiles.open(self.path(filename), 'ab')
