"""
Transfer Client

Wires configuration, local files, both exchanges and the resume loop
into the three operations the console needs:
- ping(): check the server is reachable
- upload(filename): push a file, resuming across failures
- download(filename): pull a file, resuming across failures
"""

import asyncio
import functools
import logging
from typing import Optional

from .config import Config
from .file import FileStore
from .transfer import (
    DownloadSession, FileDownloader, FileUploader, Opcode, ResumeController,
    RetryPolicy, TransferOutcome, UploadSession, open_connection
)
from .transfer.protocol import Address, Connector, ProgressCallback
from .transfer.resume import RetryCallback

logger = logging.getLogger(__name__)


class TransferClient:
    """Client for one transfer server."""

    def __init__(self, config: Config = None, address: Optional[Address] = None,
                 connector: Connector = None, policy: RetryPolicy = None,
                 retry_callback: RetryCallback = None):
        self.config = config or Config()
        self.address = address or self.config.server_address
        self.files = FileStore(self.config.root_dir)

        self.connector = connector or functools.partial(
            open_connection,
            connect_timeout=self.config.connect_timeout,
            io_timeout=self.config.socket_timeout,
        )

        self.uploader = FileUploader(self.files, self.connector, self.config.chunk_size)
        self.downloader = FileDownloader(self.files, self.connector, self.config.chunk_size)
        self.controller = ResumeController(
            self.uploader,
            self.downloader,
            policy=policy or RetryPolicy.from_config(self.config),
            retry_callback=retry_callback,
        )

    async def ping(self) -> bool:
        """
        Test the connection to the server.

        Returns:
            True if the server accepted and answered the ping by closing
        """
        conn = None
        try:
            conn = await self.connector(self.address)
            await conn.send_opcode(Opcode.PING)
            await conn.finish_sending()
            await conn.wait_for_peer_close()
            return True
        except (OSError, asyncio.TimeoutError) as e:
            logger.error(f"Cannot reach {self.address[0]}:{self.address[1]}: {e}")
            return False
        finally:
            if conn is not None:
                await conn.close()

    async def upload(self, filename: str, is_new_file: bool = True,
                     progress_callback: ProgressCallback = None) -> TransferOutcome:
        """
        Upload a file, retrying until it completes or is rejected.

        Args:
            filename: Local file, also the name used on the server
            is_new_file: Replace the server's copy (False continues an
                upload interrupted in an earlier run)
            progress_callback: Optional callback for progress updates
        """
        session = UploadSession(filename, is_new_file=is_new_file)
        return await self.controller.upload(self.address, session, progress_callback)

    async def download(self, filename: str, fresh: bool = False,
                       progress_callback: ProgressCallback = None) -> TransferOutcome:
        """
        Download a file, retrying until it completes or is rejected.

        Args:
            filename: Name on the server, also the local file
            fresh: Delete a partial local copy first instead of resuming it
            progress_callback: Optional callback for progress updates
        """
        if fresh and await self.files.delete(filename):
            logger.info(f"A file named {filename} existed locally, it was deleted")

        session = DownloadSession(filename)
        return await self.controller.download(self.address, session, progress_callback)
