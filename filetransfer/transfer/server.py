"""
Transfer Server

Accepts connections, reads the opcode and routes each request to the
matching exchange.

Every accepted connection runs in its own task. The connection, its open
file and its counters are locals of that task. Connections share the
immutable settings (root directory, chunk size, timeout), the statistics
counters, and the upload receiver's record of which connection owns each
file being uploaded.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Set

from ..file.storage import FileStore
from .downloader import DownloadSender
from .protocol import (
    CHUNK_SIZE, DEFAULT_PORT, DEFAULT_SOCKET_TIMEOUT, Opcode, TransferConnection
)
from .uploader import UploadReceiver

logger = logging.getLogger(__name__)

# Type for request handlers
RequestHandler = Callable[[TransferConnection], Awaitable[None]]


class TransferServer:
    """
    TCP server for upload, download and ping requests.

    Any exception while serving a connection is logged and the connection
    abandoned; the server keeps accepting.
    """

    def __init__(self, files: FileStore, host: str = '0.0.0.0',
                 port: int = DEFAULT_PORT, chunk_size: int = CHUNK_SIZE,
                 timeout: Optional[float] = DEFAULT_SOCKET_TIMEOUT):
        self.files = files
        self.host = host
        self.port = port
        self.timeout = timeout
        self.server: Optional[asyncio.AbstractServer] = None
        self._handlers: Dict[Opcode, RequestHandler] = {}
        self._active: Set[asyncio.Task] = set()
        self._running = False

        self.receiver = UploadReceiver(files, chunk_size=chunk_size)
        self.sender = DownloadSender(files, chunk_size=chunk_size)

        # Statistics
        self.connections = 0
        self.uploads = 0
        self.downloads = 0
        self.pings = 0
        self.errors = 0
        self.bytes_received = 0
        self.bytes_sent = 0

        self._setup_handlers()

    @classmethod
    def from_config(cls, config) -> 'TransferServer':
        return cls(
            FileStore(config.root_dir),
            host=config.host,
            port=config.port,
            chunk_size=config.chunk_size,
            timeout=config.socket_timeout,
        )

    def _setup_handlers(self):
        """Register the built-in request handlers."""
        self.set_handler(Opcode.UPLOAD, self._handle_upload)
        self.set_handler(Opcode.DOWNLOAD, self._handle_download)
        self.set_handler(Opcode.PING, self._handle_ping)

    def on_request(self, opcode: Opcode):
        """Decorator to register a request handler."""
        def decorator(handler: RequestHandler):
            self._handlers[opcode] = handler
            return handler
        return decorator

    def set_handler(self, opcode: Opcode, handler: RequestHandler):
        """Set a request handler."""
        self._handlers[opcode] = handler

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def bound_port(self) -> int:
        """Port actually listened on (useful when started with port 0)."""
        if self.server is None or not self.server.sockets:
            return self.port
        return self.server.sockets[0].getsockname()[1]

    @property
    def active_connections(self) -> int:
        return len(self._active)

    async def start(self):
        """Start listening."""
        self.server = await asyncio.start_server(
            self._handle_connection,
            self.host,
            self.port
        )
        self._running = True

        addr = self.server.sockets[0].getsockname()
        logger.info(f"Transfer server listening on {addr}")

    async def serve_forever(self):
        """Start (if needed) and serve until cancelled."""
        if self.server is None:
            await self.start()
        try:
            await self.server.serve_forever()
        finally:
            await self.stop()

    async def stop(self):
        """Stop the server and abandon in-flight connections."""
        if not self._running:
            return
        self._running = False

        self.server.close()
        for task in list(self._active):
            task.cancel()
        if self._active:
            await asyncio.gather(*self._active, return_exceptions=True)
        await self.server.wait_closed()

        logger.info(
            f"Transfer server stopped. Served {self.connections} connections, "
            f"received {self.bytes_received:,} bytes, sent {self.bytes_sent:,} bytes"
        )

    async def _handle_connection(self, reader: asyncio.StreamReader,
                                 writer: asyncio.StreamWriter):
        """Handle an incoming connection."""
        conn = TransferConnection(reader, writer, timeout=self.timeout)
        peer = conn.remote_address
        task = asyncio.current_task()
        self._active.add(task)
        self.connections += 1
        logger.info(f"A client connected from {peer[0]}:{peer[1]}")

        try:
            request = await conn.read_opcode()
            opcode = Opcode.parse(request)
            handler = self._handlers.get(opcode) if opcode else None

            if handler:
                await handler(conn)
            else:
                logger.warning(f"Unknown request {request!r} from {peer[0]}:{peer[1]}")

        except Exception as e:
            self.errors += 1
            logger.error(f"Error handling connection from {peer[0]}:{peer[1]}: {e}")
        finally:
            # Handlers close their files before returning
            await conn.close()
            self._active.discard(task)
            logger.debug(f"Connection closed: {peer[0]}:{peer[1]}")

    async def _handle_upload(self, conn: TransferConnection):
        self.uploads += 1
        self.bytes_received += await self.receiver.handle(conn)

    async def _handle_download(self, conn: TransferConnection):
        self.downloads += 1
        self.bytes_sent += await self.sender.handle(conn)

    async def _handle_ping(self, conn: TransferConnection):
        """Pre-flight reachability test; nothing is sent back."""
        self.pings += 1
        logger.info("Client pinged server connection")

    def get_stats(self) -> dict:
        """Get server statistics."""
        return {
            'port': self.bound_port,
            'connections': self.connections,
            'active_connections': self.active_connections,
            'uploads': self.uploads,
            'downloads': self.downloads,
            'pings': self.pings,
            'errors': self.errors,
            'bytes_received': self.bytes_received,
            'bytes_sent': self.bytes_sent,
        }
