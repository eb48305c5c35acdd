"""Tests for the command line interface."""

import asyncio
import json
import os
import threading
from pathlib import Path

import pytest
from click.testing import CliRunner

from filetransfer.cli import cli
from filetransfer.config import Config
from filetransfer.file import FileStore
from filetransfer.transfer import TransferServer

from tests.conftest import TEST_TIMEOUT, free_port, write_random


class ThreadedServer:
    """A TransferServer running on its own event loop thread."""

    def __init__(self, root: Path):
        self.loop = asyncio.new_event_loop()
        self.server = TransferServer(FileStore(root), host='127.0.0.1', port=0,
                                     timeout=TEST_TIMEOUT)
        self.thread = threading.Thread(target=self.loop.run_forever, daemon=True)

    def start(self) -> int:
        self.thread.start()
        asyncio.run_coroutine_threadsafe(self.server.start(), self.loop).result(TEST_TIMEOUT)
        return self.server.bound_port

    def stop(self):
        asyncio.run_coroutine_threadsafe(self.server.stop(), self.loop).result(TEST_TIMEOUT)
        self.loop.call_soon_threadsafe(self.loop.stop)
        self.thread.join(TEST_TIMEOUT)
        self.loop.close()


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path: Path):
    for key in list(os.environ):
        if key.startswith('FT_'):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def live_server(server_dir: Path):
    srv = ThreadedServer(server_dir)
    port = srv.start()
    yield srv.server, port
    srv.stop()


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


class TestPing:
    """Tests for the ping command."""

    def test_reachable(self, runner: CliRunner, live_server) -> None:
        """A running server is reported reachable."""
        _, port = live_server
        result = runner.invoke(cli, ['ping', '--host', '127.0.0.1', '--port', str(port)])

        assert result.exit_code == 0
        assert "reachable" in result.output

    def test_unreachable(self, runner: CliRunner) -> None:
        """Nothing listening means exit code 1."""
        result = runner.invoke(cli, ['ping', '--host', '127.0.0.1', '--port', str(free_port())])

        assert result.exit_code == 1
        assert "Cannot reach" in result.output


class TestTransfers:
    """Tests for the upload and download commands."""

    def test_upload_missing_file(self, runner: CliRunner, client_dir: Path) -> None:
        """A missing local file is rejected before connecting."""
        result = runner.invoke(cli, [
            'upload', 'ghost.bin', '--port', str(free_port()), '--root', str(client_dir)
        ])

        assert result.exit_code == 1
        assert "upload rejected" in result.output

    def test_upload_then_download(self, runner: CliRunner, live_server,
                                  server_dir: Path, client_dir: Path,
                                  tmp_path: Path) -> None:
        """Files pushed with upload come back identical with download."""
        _, port = live_server
        source = write_random(client_dir / "photo.jpg", 30000)

        result = runner.invoke(cli, [
            'upload', 'photo.jpg', '--host', '127.0.0.1', '--port', str(port),
            '--root', str(client_dir)
        ])
        assert result.exit_code == 0, result.output
        assert "upload complete" in result.output
        assert (server_dir / "photo.jpg").read_bytes() == source

        other = tmp_path / "other"
        other.mkdir()
        result = runner.invoke(cli, [
            'download', 'photo.jpg', '--host', '127.0.0.1', '--port', str(port),
            '--root', str(other)
        ])
        assert result.exit_code == 0, result.output
        assert "download complete" in result.output
        assert (other / "photo.jpg").read_bytes() == source

    def test_download_missing_file(self, runner: CliRunner, live_server,
                                   client_dir: Path) -> None:
        """A file the server lacks is rejected and nothing is created."""
        _, port = live_server
        result = runner.invoke(cli, [
            'download', 'absent.bin', '--host', '127.0.0.1', '--port', str(port),
            '--root', str(client_dir)
        ])

        assert result.exit_code == 1
        assert "download rejected" in result.output
        assert not (client_dir / "absent.bin").exists()

    def test_upload_gives_up_with_bounded_retries(self, runner: CliRunner,
                                                  client_dir: Path, monkeypatch) -> None:
        """With FT_MAX_ATTEMPTS set, an unreachable server fails the command."""
        monkeypatch.setenv('FT_MAX_ATTEMPTS', '2')
        write_random(client_dir / "a.bin", 10)

        result = runner.invoke(cli, [
            'upload', 'a.bin', '--host', '127.0.0.1', '--port', str(free_port()),
            '--root', str(client_dir)
        ])

        assert result.exit_code == 1
        assert "reconnecting" in result.output


class TestShell:
    """Tests for the interactive console."""

    def test_session(self, runner: CliRunner, live_server, server_dir: Path,
                     client_dir: Path) -> None:
        """Commands run in order until exit."""
        _, port = live_server
        source = write_random(client_dir / "notes.txt", 500)

        result = runner.invoke(
            cli,
            ['shell', '--host', '127.0.0.1', '--port', str(port), '--root', str(client_dir)],
            input="upload notes.txt\nfrobnicate\ndownload missing.txt\nexit\n",
        )

        assert result.exit_code == 0, result.output
        assert f"server@127.0.0.1:{port}>" in result.output
        assert "Sent notes.txt, upload complete!" in result.output
        assert "Error: Invalid command." in result.output
        assert "download rejected" in result.output
        assert (server_dir / "notes.txt").read_bytes() == source

    def test_shell_ends_at_end_of_input(self, runner: CliRunner, live_server) -> None:
        """Closing stdin leaves the console cleanly."""
        _, port = live_server
        result = runner.invoke(cli, ['shell', '--host', '127.0.0.1', '--port', str(port)],
                               input="")

        assert result.exit_code == 0

    def test_shell_needs_server(self, runner: CliRunner) -> None:
        """The console refuses to start when the server is unreachable."""
        result = runner.invoke(cli, ['shell', '--host', '127.0.0.1',
                                     '--port', str(free_port())])

        assert result.exit_code == 1


class TestConfigCommand:
    """Tests for printing configuration."""

    def test_example_is_a_loadable_config(self, runner: CliRunner, tmp_path: Path) -> None:
        """The template lists every setting and loads back as a config file."""
        result = runner.invoke(cli, ['config', '--example'])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert set(data) == set(Config().to_dict())

        path = tmp_path / "example.json"
        path.write_text(result.output)
        assert Config.from_file(path).server_host == "192.168.1.100"

    def test_shows_effective_settings(self, runner: CliRunner, tmp_path: Path,
                                      monkeypatch) -> None:
        """File and environment settings are merged into the output."""
        path = tmp_path / "config.json"
        path.write_text(json.dumps({'port': 7000, 'chunk_size': 4096}))
        monkeypatch.setenv('FT_MAX_ATTEMPTS', '4')

        result = runner.invoke(cli, ['--config', str(path), 'config'])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data['port'] == 7000
        assert data['chunk_size'] == 4096
        assert data['max_attempts'] == 4
