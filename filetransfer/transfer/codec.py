"""
Frame Codec

Design Decision: Wire Encoding
==============================

Options Considered:
1. JSON header + binary body (length-prefixed)
   - Self-describing, easy to extend
   - Not what existing clients speak

2. Fixed-width primitives in network byte order
   - Matches the fixed-width framing existing peers already speak
   - No schema, the opcode decides what follows

Decision: Fixed-width primitives, big-endian
- Bool:   1 byte, 0 = false, anything else = true
- Int32:  4 bytes, signed, big-endian
- Int64:  8 bytes, signed, big-endian
- String: Int32 byte length + UTF-8 bytes (no terminator)

A reader always consumes exactly the declared number of bytes. A stream
that ends early is a FrameError, never a short value.
"""

import asyncio
import struct
from typing import Optional

from .errors import FrameError, TransportTimeout

BOOL = struct.Struct('>?')
INT32 = struct.Struct('>i')
INT64 = struct.Struct('>q')

# Filenames are the only strings on the wire
MAX_STRING_LENGTH = 1024 * 1024


def encode_bool(value: bool) -> bytes:
    return BOOL.pack(bool(value))


def encode_int32(value: int) -> bytes:
    return INT32.pack(value)


def encode_int64(value: int) -> bytes:
    return INT64.pack(value)


def encode_string(value: str) -> bytes:
    """Encode a string as Int32 length prefix + UTF-8 bytes."""
    data = value.encode('utf-8')
    return INT32.pack(len(data)) + data


class FrameReader:
    """
    Reads frames from an asyncio stream.

    Every read is bounded by `timeout` seconds (None waits forever).
    """

    def __init__(self, reader: asyncio.StreamReader,
                 timeout: Optional[float] = None):
        self.reader = reader
        self.timeout = timeout

    async def read_exactly(self, count: int) -> bytes:
        """Read exactly `count` bytes or fail."""
        if count == 0:
            return b''
        try:
            return await asyncio.wait_for(
                self.reader.readexactly(count),
                timeout=self.timeout
            )
        except asyncio.IncompleteReadError as e:
            raise FrameError(
                f"Stream closed after {len(e.partial)} of {count} bytes"
            ) from e
        except asyncio.TimeoutError as e:
            raise TransportTimeout(
                f"No data within {self.timeout}s (wanted {count} bytes)"
            ) from e

    async def read_bool(self) -> bool:
        return BOOL.unpack(await self.read_exactly(BOOL.size))[0]

    async def read_int32(self) -> int:
        return INT32.unpack(await self.read_exactly(INT32.size))[0]

    async def read_int64(self) -> int:
        return INT64.unpack(await self.read_exactly(INT64.size))[0]

    async def read_string(self) -> str:
        length = await self.read_int32()
        if length < 0 or length > MAX_STRING_LENGTH:
            raise FrameError(f"Invalid string length: {length}")

        data = await self.read_exactly(length)
        try:
            return data.decode('utf-8')
        except UnicodeDecodeError as e:
            raise FrameError(f"String is not valid UTF-8: {e}") from e


class FrameWriter:
    """
    Writes frames to an asyncio stream.

    Writes are buffered by the transport; call drain() to flush them
    (bounded by `timeout`).
    """

    def __init__(self, writer: asyncio.StreamWriter,
                 timeout: Optional[float] = None):
        self.writer = writer
        self.timeout = timeout

    def write_bool(self, value: bool):
        self.writer.write(encode_bool(value))

    def write_int32(self, value: int):
        self.writer.write(encode_int32(value))

    def write_int64(self, value: int):
        self.writer.write(encode_int64(value))

    def write_string(self, value: str):
        self.writer.write(encode_string(value))

    def write_bytes(self, data: bytes):
        """Write raw (unframed) content bytes."""
        self.writer.write(data)

    async def drain(self):
        try:
            await asyncio.wait_for(self.writer.drain(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise TransportTimeout(
                f"Peer did not accept data within {self.timeout}s"
            ) from e
