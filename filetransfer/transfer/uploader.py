"""
Upload Exchange

Client pushes a file, server appends it to its copy.

Resume Strategy:
- The server answers every upload request with the length of its own
  copy of the file; that is where the client continues.
- "New file" intent truncates the server's copy. It is only honoured
  until the server has acknowledged it once; after that every retry of
  the same upload continues instead of starting over.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..file.storage import FileStore
from .errors import ProtocolError
from .protocol import (
    CHUNK_SIZE, Address, Connector, Opcode, ProgressCallback,
    RejectReason, TransferConnection, TransferOutcome, TransferProgress,
    UploadRequest
)

logger = logging.getLogger(__name__)


@dataclass
class UploadSession:
    """State carried across the attempts of one logical upload."""
    filename: str
    is_new_file: bool = True
    attempts: int = 0
    # Resume offset the server reported to each acknowledged attempt
    offsets: List[int] = field(default_factory=list)
    progress: Optional[TransferProgress] = None

    def __post_init__(self):
        if self.progress is None:
            self.progress = TransferProgress(filename=self.filename, direction='upload')


class FileUploader:
    """
    Client half: runs one upload attempt per call.

    Every network or I/O fault is caught here and turned into a RETRY
    outcome; nothing escapes to the caller.
    """

    def __init__(self, files: FileStore, connector: Connector,
                 chunk_size: int = CHUNK_SIZE):
        self.files = files
        self.connector = connector
        self.chunk_size = chunk_size

    async def attempt(self, address: Address, session: UploadSession,
                      progress_callback: ProgressCallback = None) -> TransferOutcome:
        session.attempts += 1
        filename = session.filename

        if not await self.files.exists(filename):
            logger.error(f"File {filename} does not exist, upload rejected")
            return TransferOutcome.rejected(RejectReason.LOCAL_FILE_MISSING)

        offset = session.offsets[-1] if session.offsets else 0
        conn: Optional[TransferConnection] = None

        try:
            size = await self.files.size(filename)
            conn = await self.connector(address)

            await conn.send_opcode(Opcode.UPLOAD)
            UploadRequest(filename, size, session.is_new_file).write_to(conn.frames_out)
            await conn.frames_out.drain()

            server_offset = await conn.read_int64()
            if server_offset < 0:
                raise ProtocolError(f"Negative resume offset: {server_offset}")

            # Server has applied the new-file intent; never truncate again
            session.is_new_file = False
            session.offsets.append(server_offset)

            if server_offset > size:
                logger.warning(
                    f"Server copy of {filename} is larger than the local file "
                    f"({server_offset:,} > {size:,} bytes), nothing to send"
                )
            offset = min(server_offset, size)

            progress = session.progress
            progress.total_bytes = size
            progress.start_offset = offset
            progress.transferred_bytes = offset
            progress.attempt = session.attempts
            if progress_callback:
                progress_callback(progress)

            logger.info(f"Uploading {filename}: {size:,} bytes, starting at {offset:,}")

            async with self.files.open_read(filename) as f:
                await f.seek(offset)
                while offset < size:
                    data = await f.read(min(self.chunk_size, size - offset))
                    if not data:
                        raise OSError(f"{filename} ended at {offset:,} of {size:,} bytes")

                    await conn.send_chunk(data)
                    offset += len(data)

                    progress.transferred_bytes = offset
                    if progress_callback:
                        progress_callback(progress)
                    logger.debug(f"Sent {filename}: {progress.progress_percent:.2f}%")

            # Server closes once its copy is flushed
            await conn.finish_sending()
            await conn.wait_for_peer_close()

            logger.info(f"Sent {filename}, upload complete")
            return TransferOutcome.completed(offset)

        except OSError as e:
            logger.warning(
                f"Upload attempt {session.attempts} of {filename} failed "
                f"at byte {offset:,}: {e}"
            )
            return TransferOutcome.retry(offset, e)

        finally:
            if conn is not None:
                await conn.close()


class UploadReceiver:
    """
    Server half: appends an uploaded file to the local copy.

    Only one connection appends to a given file at a time. A new upload of
    a name takes over from any earlier connection still holding it: a
    client only reconnects once it has given up on its previous
    connection, so the earlier one is stale even if the server has not
    noticed yet. The earlier task is cancelled and its file closed before
    the new request reads the file's length.
    """

    def __init__(self, files: FileStore, chunk_size: int = CHUNK_SIZE):
        self.files = files
        self.chunk_size = chunk_size
        # filename -> newest connection task uploading it
        self._owners: Dict[str, asyncio.Task] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _take_over(self, filename: str) -> asyncio.Lock:
        previous = self._owners.get(filename)
        if previous is not None and not previous.done():
            logger.warning(f"Abandoning earlier upload of {filename} for a newer connection")
            previous.cancel()

        self._owners[filename] = asyncio.current_task()
        return self._locks.setdefault(filename, asyncio.Lock())

    def _release(self, filename: str):
        if self._owners.get(filename) is asyncio.current_task():
            del self._owners[filename]
            del self._locks[filename]

    async def handle(self, conn: TransferConnection) -> int:
        """
        Serve one upload request.

        Returns:
            Number of content bytes received on this connection
        """
        request = await UploadRequest.read_from(conn.frames_in)
        filename = request.filename

        logger.info(
            f"Upload requested: {filename} ({request.size:,} bytes, "
            f"new file: {request.is_new_file})"
        )

        lock = self._take_over(filename)
        try:
            async with lock:
                return await self._receive(conn, request)
        finally:
            self._release(filename)

    async def _receive(self, conn: TransferConnection, request: UploadRequest) -> int:
        filename = request.filename

        if request.is_new_file:
            await self.files.recreate(filename)

        # Resume where our copy actually ends
        received = await self.files.size(filename)
        await conn.send_int64(received)

        if received > request.size:
            logger.warning(
                f"{filename} is already {received:,} bytes, "
                f"larger than the declared {request.size:,}"
            )
        elif received:
            logger.info(f"Resuming {filename} at {received:,} bytes")

        written = 0
        async with self.files.open_append(filename) as f:
            while received < request.size:
                data = await conn.read_chunk(min(self.chunk_size, request.size - received))
                await f.write(data)
                # On disk before the next chunk, so size() is always current
                await f.flush()

                received += len(data)
                written += len(data)
                logger.debug(
                    f"Receiving {filename}: {received / request.size * 100:.2f}%"
                )

        logger.info(f"Received {filename} complete ({written:,} new bytes)")
        return written
