"""Shared fixtures: a live transfer server and fault-injecting connections."""

import asyncio
import os
import socket
from pathlib import Path
from typing import List, Optional, Sequence

import pytest
import pytest_asyncio

from filetransfer.client import TransferClient
from filetransfer.config import Config
from filetransfer.file import FileStore
from filetransfer.transfer import TransferServer
from filetransfer.transfer.protocol import TransferConnection

TEST_TIMEOUT = 5.0


class FaultyConnection(TransferConnection):
    """A real connection that records chunks and can fail after a byte budget."""

    def __init__(self, reader, writer, timeout=TEST_TIMEOUT,
                 send_budget: Optional[int] = None,
                 receive_budget: Optional[int] = None):
        super().__init__(reader, writer, timeout=timeout)
        self.send_budget = send_budget
        self.receive_budget = receive_budget
        self.sent_chunks: List[int] = []
        self.received_chunks: List[int] = []

    async def send_chunk(self, data: bytes):
        if self.send_budget is not None and sum(self.sent_chunks) + len(data) > self.send_budget:
            raise ConnectionResetError("injected fault while sending")
        await super().send_chunk(data)
        self.sent_chunks.append(len(data))

    async def read_chunk(self, size: int) -> bytes:
        if self.receive_budget is not None and sum(self.received_chunks) + size > self.receive_budget:
            raise ConnectionResetError("injected fault while receiving")
        data = await super().read_chunk(size)
        self.received_chunks.append(len(data))
        return data


async def wait_until_idle(server: TransferServer, timeout: float = TEST_TIMEOUT):
    """Wait until the server has finished with every open connection."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while server.active_connections:
        if loop.time() > deadline:
            raise AssertionError("server did not finish its connections")
        await asyncio.sleep(0.01)


class ScriptedConnector:
    """
    Connector that refuses the first `refusals` calls, then hands out
    FaultyConnections with the given per-attempt budgets.

    Given a server, it waits before each connect for the server to finish
    the previous connection, which makes the exact chunk sequence of the
    next attempt predictable. Without one it reconnects straight away, as a
    real client does.
    """

    def __init__(self, server: Optional[TransferServer] = None, refusals: int = 0,
                 send_budgets: Sequence[Optional[int]] = (),
                 receive_budgets: Sequence[Optional[int]] = ()):
        self.server = server
        self.refusals = refusals
        self.send_budgets = list(send_budgets)
        self.receive_budgets = list(receive_budgets)
        self.calls = 0
        self.connections: List[FaultyConnection] = []

    async def __call__(self, address) -> FaultyConnection:
        self.calls += 1
        if self.server is not None:
            await wait_until_idle(self.server)
        if self.calls <= self.refusals:
            raise ConnectionRefusedError("injected refusal")

        index = len(self.connections)
        reader, writer = await asyncio.open_connection(*address)
        conn = FaultyConnection(
            reader, writer,
            send_budget=self.send_budgets[index] if index < len(self.send_budgets) else None,
            receive_budget=self.receive_budgets[index] if index < len(self.receive_budgets) else None,
        )
        self.connections.append(conn)
        return conn


def free_port() -> int:
    """A local port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


def write_random(path: Path, size: int) -> bytes:
    data = os.urandom(size)
    path.write_bytes(data)
    return data


@pytest.fixture
def server_dir(tmp_path: Path) -> Path:
    path = tmp_path / "server"
    path.mkdir()
    return path


@pytest.fixture
def client_dir(tmp_path: Path) -> Path:
    path = tmp_path / "client"
    path.mkdir()
    return path


@pytest_asyncio.fixture
async def server(server_dir: Path):
    """A running TransferServer on an ephemeral localhost port."""
    srv = TransferServer(FileStore(server_dir), host='127.0.0.1', port=0,
                         timeout=TEST_TIMEOUT)
    await srv.start()
    yield srv
    await srv.stop()


def make_config(root: Path, port: int) -> Config:
    return Config(
        server_host='127.0.0.1',
        port=port,
        root_dir=root,
        socket_timeout=TEST_TIMEOUT,
        connect_timeout=TEST_TIMEOUT,
    )


@pytest.fixture
def client_config(server, client_dir: Path) -> Config:
    return make_config(client_dir, server.bound_port)


@pytest.fixture
def client(client_config: Config) -> TransferClient:
    return TransferClient(client_config)
