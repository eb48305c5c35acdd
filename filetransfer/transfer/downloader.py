"""
Download Exchange

Client pulls a file, appending to its partial local copy.

Resume Strategy:
- The client's resume point is the current length of its local file,
  read at the start of every attempt.
- A missing remote file is a terminal rejection; the local filesystem is
  left untouched in that case.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..file.storage import FileStore
from .errors import ProtocolError
from .protocol import (
    CHUNK_SIZE, Address, Connector, DownloadOffer, DownloadRequest, Opcode,
    ProgressCallback, RejectReason, TransferConnection, TransferOutcome,
    TransferProgress
)

logger = logging.getLogger(__name__)


@dataclass
class DownloadSession:
    """State carried across the attempts of one logical download."""
    filename: str
    attempts: int = 0
    # Local length each attempt resumed from
    offsets: List[int] = field(default_factory=list)
    progress: Optional[TransferProgress] = None

    def __post_init__(self):
        if self.progress is None:
            self.progress = TransferProgress(filename=self.filename, direction='download')


class FileDownloader:
    """Client half: runs one download attempt per call."""

    def __init__(self, files: FileStore, connector: Connector,
                 chunk_size: int = CHUNK_SIZE):
        self.files = files
        self.connector = connector
        self.chunk_size = chunk_size

    async def attempt(self, address: Address, session: DownloadSession,
                      progress_callback: ProgressCallback = None) -> TransferOutcome:
        session.attempts += 1
        filename = session.filename
        offset = 0
        conn: Optional[TransferConnection] = None

        try:
            offset = await self.files.size(filename)
            conn = await self.connector(address)

            await conn.send_opcode(Opcode.DOWNLOAD)
            DownloadRequest(filename).write_to(conn.frames_out)
            await conn.frames_out.drain()

            offer = await DownloadOffer.read_from(conn.frames_in)
            if not offer.exists:
                logger.error(f"File {filename} does not exist on server, download rejected")
                return TransferOutcome.rejected(RejectReason.REMOTE_FILE_MISSING)

            if offset > offer.size:
                logger.warning(
                    f"Local {filename} is larger than the server's copy "
                    f"({offset:,} > {offer.size:,} bytes), starting over"
                )
                await self.files.recreate(filename)
                offset = 0

            session.offsets.append(offset)
            await conn.send_int64(offset)

            progress = session.progress
            progress.total_bytes = offer.size
            progress.start_offset = offset
            progress.transferred_bytes = offset
            progress.attempt = session.attempts
            if progress_callback:
                progress_callback(progress)

            logger.info(f"Downloading {filename}: {offer.size:,} bytes, starting at {offset:,}")

            async with self.files.open_append(filename) as f:
                while offset < offer.size:
                    data = await conn.read_chunk(min(self.chunk_size, offer.size - offset))
                    await f.write(data)
                    offset += len(data)

                    progress.transferred_bytes = offset
                    if progress_callback:
                        progress_callback(progress)
                    logger.debug(f"Received {filename}: {progress.progress_percent:.2f}%")

            logger.info(f"Received {filename}, download complete")
            return TransferOutcome.completed(offset)

        except OSError as e:
            logger.warning(
                f"Download attempt {session.attempts} of {filename} failed "
                f"at byte {offset:,}: {e}"
            )
            return TransferOutcome.retry(offset, e)

        finally:
            if conn is not None:
                await conn.close()


class DownloadSender:
    """Server half: streams a file from the client's resume offset."""

    def __init__(self, files: FileStore, chunk_size: int = CHUNK_SIZE):
        self.files = files
        self.chunk_size = chunk_size

    async def handle(self, conn: TransferConnection) -> int:
        """
        Serve one download request.

        Returns:
            Number of content bytes sent on this connection
        """
        request = await DownloadRequest.read_from(conn.frames_in)
        filename = request.filename
        logger.info(f"Download requested: {filename}")

        if not await self.files.exists(filename):
            logger.info(f"{filename} does not exist, request rejected")
            DownloadOffer(exists=False).write_to(conn.frames_out)
            await conn.frames_out.drain()
            return 0

        size = await self.files.size(filename)
        DownloadOffer(exists=True, size=size).write_to(conn.frames_out)
        await conn.frames_out.drain()

        offset = await conn.read_int64()
        if offset < 0 or offset > size:
            raise ProtocolError(f"Invalid start offset {offset} for {size}-byte file")

        logger.info(f"Sending {filename}: {size:,} bytes, starting at {offset:,}")

        sent = 0
        async with self.files.open_read(filename) as f:
            await f.seek(offset)
            while offset < size:
                data = await f.read(min(self.chunk_size, size - offset))
                if not data:
                    logger.warning(f"{filename} shrank to {offset:,} bytes while sending")
                    break

                await conn.send_chunk(data)
                offset += len(data)
                sent += len(data)
                logger.debug(f"Sending {filename}: {offset / size * 100:.2f}%")

        logger.info(f"Sending {filename} complete ({sent:,} bytes)")
        return sent
