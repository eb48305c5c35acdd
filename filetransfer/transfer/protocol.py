"""
File Transfer Protocol

Design Decision: Transfer Protocol
===================================

Options Considered:
1. HTTP with Range requests
   - Resume comes for free
   - Heavy, requires web server

2. Raw TCP with primitive frames
   - Lightweight, full control
   - Interoperates with existing big-endian stream peers

Decision: Raw TCP, one request per connection
- First frame is the opcode string
- Fixed message shapes per opcode (see below)
- File content follows as raw bytes, no per-chunk framing
- A connection carries exactly one transfer attempt

Message Flow:
```
ping:      C->S  String("ping")                              (close)
upload:    C->S  String("upload") String(name) Int64(size) Bool(new)
           S->C  Int64(resume_offset)
           C->S  (size - resume_offset) raw bytes            (close)
download:  C->S  String("download") String(name)
           S->C  Bool(exists) [Int64(size)]
           C->S  Int64(resume_offset)
           S->C  (size - resume_offset) raw bytes            (close)
```
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional, Tuple

from .codec import FrameReader, FrameWriter
from .errors import ProtocolError, TransportTimeout

logger = logging.getLogger(__name__)

# Unit of every network and file read/write
CHUNK_SIZE = 8192

DEFAULT_PORT = 8469
DEFAULT_SOCKET_TIMEOUT = 30.0
DEFAULT_CONNECT_TIMEOUT = 10.0

Address = Tuple[str, int]


class Opcode(Enum):
    """Request kinds, sent as the first string frame."""
    UPLOAD = "upload"
    DOWNLOAD = "download"
    PING = "ping"

    @classmethod
    def parse(cls, value: str) -> Optional['Opcode']:
        """Case-insensitive lookup; None for unknown opcodes."""
        try:
            return cls(value.lower())
        except ValueError:
            return None


# === Messages ===

@dataclass
class UploadRequest:
    """Leading fields of an upload, sent after the opcode."""
    filename: str
    size: int
    is_new_file: bool

    def write_to(self, frames: FrameWriter):
        frames.write_string(self.filename)
        frames.write_int64(self.size)
        frames.write_bool(self.is_new_file)

    @classmethod
    async def read_from(cls, frames: FrameReader) -> 'UploadRequest':
        filename = await frames.read_string()
        size = await frames.read_int64()
        is_new_file = await frames.read_bool()
        if size < 0:
            raise ProtocolError(f"Negative upload size: {size}")
        return cls(filename=filename, size=size, is_new_file=is_new_file)


@dataclass
class DownloadRequest:
    """A download request, sent after the opcode."""
    filename: str

    def write_to(self, frames: FrameWriter):
        frames.write_string(self.filename)

    @classmethod
    async def read_from(cls, frames: FrameReader) -> 'DownloadRequest':
        return cls(filename=await frames.read_string())


@dataclass
class DownloadOffer:
    """Server reply to a download request. `size` is only sent if the file exists."""
    exists: bool
    size: int = 0

    def write_to(self, frames: FrameWriter):
        frames.write_bool(self.exists)
        if self.exists:
            frames.write_int64(self.size)

    @classmethod
    async def read_from(cls, frames: FrameReader) -> 'DownloadOffer':
        if not await frames.read_bool():
            return cls(exists=False)
        size = await frames.read_int64()
        if size < 0:
            raise ProtocolError(f"Negative file size: {size}")
        return cls(exists=True, size=size)


# === Outcomes ===

class OutcomeKind(Enum):
    COMPLETED = "completed"
    REJECTED = "rejected"
    RETRY = "retry"


class RejectReason(Enum):
    REMOTE_FILE_MISSING = "remote_file_missing"
    LOCAL_FILE_MISSING = "local_file_missing"


@dataclass(frozen=True)
class TransferOutcome:
    """
    Result of one transfer attempt.

    COMPLETED and REJECTED are terminal. RETRY carries the last offset the
    attempt knew about and the fault that ended it.
    """
    kind: OutcomeKind
    offset: int = 0
    reason: Optional[RejectReason] = None
    error: Optional[BaseException] = None

    @classmethod
    def completed(cls, offset: int) -> 'TransferOutcome':
        return cls(kind=OutcomeKind.COMPLETED, offset=offset)

    @classmethod
    def rejected(cls, reason: RejectReason) -> 'TransferOutcome':
        return cls(kind=OutcomeKind.REJECTED, reason=reason)

    @classmethod
    def retry(cls, offset: int, error: BaseException) -> 'TransferOutcome':
        return cls(kind=OutcomeKind.RETRY, offset=offset, error=error)

    @property
    def is_terminal(self) -> bool:
        return self.kind is not OutcomeKind.RETRY


# === Progress ===

@dataclass
class TransferProgress:
    """Track progress of one logical transfer across attempts."""
    filename: str
    direction: str  # 'upload' | 'download'
    total_bytes: int = 0
    transferred_bytes: int = 0
    start_offset: int = 0
    attempt: int = 1
    start_time: float = field(default_factory=time.time)

    @property
    def progress(self) -> float:
        """Progress as 0.0 to 1.0."""
        if self.total_bytes == 0:
            return 1.0
        return self.transferred_bytes / self.total_bytes

    @property
    def progress_percent(self) -> float:
        return self.progress * 100

    @property
    def elapsed_seconds(self) -> float:
        return time.time() - self.start_time

    def to_dict(self) -> dict:
        return {
            'filename': self.filename,
            'direction': self.direction,
            'total_bytes': self.total_bytes,
            'transferred_bytes': self.transferred_bytes,
            'start_offset': self.start_offset,
            'attempt': self.attempt,
            'progress_percent': self.progress_percent,
            'elapsed_seconds': self.elapsed_seconds,
        }


ProgressCallback = Callable[[TransferProgress], None]


# === Connection ===

class TransferConnection:
    """
    One TCP connection carrying one transfer attempt.

    Wraps the asyncio streams with frame readers/writers that share the
    connection's I/O timeout.
    """

    def __init__(self, reader: asyncio.StreamReader,
                 writer: asyncio.StreamWriter,
                 timeout: Optional[float] = DEFAULT_SOCKET_TIMEOUT):
        self.reader = reader
        self.writer = writer
        self.timeout = timeout
        self.frames_in = FrameReader(reader, timeout)
        self.frames_out = FrameWriter(writer, timeout)
        self._closed = False

    @property
    def remote_address(self) -> Tuple[str, int]:
        """Get remote peer address."""
        peer = self.writer.get_extra_info('peername')
        return tuple(peer[:2]) if peer else ('?', 0)

    @property
    def closed(self) -> bool:
        return self._closed

    async def send_opcode(self, opcode: Opcode):
        self.frames_out.write_string(opcode.value)
        await self.frames_out.drain()

    async def read_opcode(self) -> str:
        return await self.frames_in.read_string()

    async def send_int64(self, value: int):
        self.frames_out.write_int64(value)
        await self.frames_out.drain()

    async def read_int64(self) -> int:
        return await self.frames_in.read_int64()

    async def send_chunk(self, data: bytes):
        """Send raw file content."""
        self.frames_out.write_bytes(data)
        await self.frames_out.drain()

    async def read_chunk(self, size: int) -> bytes:
        """Read exactly `size` bytes of raw file content."""
        return await self.frames_in.read_exactly(size)

    async def finish_sending(self):
        """Half-close: tell the peer nothing more will be written."""
        if self.writer.can_write_eof():
            self.writer.write_eof()

    async def wait_for_peer_close(self):
        """Wait until the peer closes its side of the connection."""
        try:
            data = await asyncio.wait_for(self.reader.read(1), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise TransportTimeout(
                f"Peer did not close the connection within {self.timeout}s"
            ) from e
        if data:
            raise ProtocolError("Unexpected data from peer after transfer")

    async def close(self):
        """Close the connection."""
        if self._closed:
            return
        self._closed = True
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            # Peer already gone; nothing left to flush
            logger.debug(f"Error closing connection: {e}")


Connector = Callable[[Address], Awaitable[TransferConnection]]


async def open_connection(address: Address,
                          connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
                          io_timeout: Optional[float] = DEFAULT_SOCKET_TIMEOUT
                          ) -> TransferConnection:
    """
    Connect to a transfer server.

    Raises:
        TransportTimeout: if the connection is not established in time
        OSError: if the connection is refused or the host unreachable
    """
    host, port = address
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout=connect_timeout
        )
    except asyncio.TimeoutError as e:
        raise TransportTimeout(f"Connect to {host}:{port} timed out") from e
    return TransferConnection(reader, writer, timeout=io_timeout)
