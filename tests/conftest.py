"""Shared helpers for transfer tests: listeners, files and loopback transfers."""

import asyncio
import os
import socket
from pathlib import Path

import pytest

from pushfile.transfer import Receiver, Sender, TransferListener

LOOPBACK = '127.0.0.1'


class RecordingListener(TransferListener):
    """Keeps every notification for later assertions."""

    def __init__(self):
        self.statuses = []
        self.progress = []
        self.files = []
        self.cleanups = 0

    def on_status(self, text):
        self.statuses.append(text)

    def on_progress(self, percent):
        self.progress.append(percent)

    def on_file_received(self, file_name):
        self.files.append(file_name)

    def on_cleanup(self):
        self.cleanups += 1


class RecordingSender(Sender):
    """Sender that logs the size of every socket write, tagged by file."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.writes = []
        self._current = None

    async def _send(self, host, port, file_path, checksum):
        self._current = file_path.name
        return await super()._send(host, port, file_path, checksum)

    async def _write(self, writer, data):
        self.writes.append((self._current, len(data)))
        await super()._write(writer, data)

    def write_sizes(self, name=None):
        return [n for f, n in self.writes if name is None or f == name]


@pytest.fixture
def make_file(tmp_path):
    """Factory writing a file with deterministic or random content."""
    src = tmp_path / 'src'
    src.mkdir()

    def _make(name='payload.bin', size=0, content=None):
        path = src / name
        data = content if content is not None else os.urandom(size)
        path.write_bytes(data)
        return path

    return _make


@pytest.fixture
def dest(tmp_path):
    path = tmp_path / 'dest'
    path.mkdir()
    return path


@pytest.fixture
def free_port():
    """A port nothing is listening on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((LOOPBACK, 0))
        return s.getsockname()[1]


async def start_receiver(receiver: Receiver, destination: Path):
    """Run receive_file on port 0; returns (task, port) once listening."""
    ready = asyncio.Event()
    task = asyncio.create_task(receiver.receive_file(LOOPBACK, 0, destination, ready=ready))
    await asyncio.wait_for(ready.wait(), timeout=5)
    return task, receiver.bound_port


async def run_transfer(sender: Sender, receiver: Receiver, file_path: Path,
                       destination: Path, checksum: bool = False):
    """Send file_path through a fresh receiver; returns (send_result, recv_result)."""
    task, port = await start_receiver(receiver, destination)
    sent = await asyncio.wait_for(sender.send_file(LOOPBACK, port, file_path, checksum), timeout=10)
    received = await asyncio.wait_for(task, timeout=10)
    return sent, received


async def capture_raw(send_coro_factory):
    """
    Accept one connection on a plain server and return everything it sent.

    send_coro_factory(port) must return the coroutine that connects.
    """
    loop = asyncio.get_running_loop()
    done = loop.create_future()

    async def handle(reader, writer):
        data = await reader.read()
        writer.close()
        if not done.done():
            done.set_result(data)

    server = await asyncio.start_server(handle, LOOPBACK, 0)
    port = server.sockets[0].getsockname()[1]
    try:
        result = await asyncio.wait_for(send_coro_factory(port), timeout=10)
        data = await asyncio.wait_for(done, timeout=10)
    finally:
        server.close()
        await server.wait_closed()
    return result, data
