"""
File Sender

Pushes one file to a listening Receiver over a fresh TCP connection.

Send Flow:
1. Stat the file (size from metadata, never by reading it)
2. Optionally hash it (streamed SHA-1, 32 KiB reads)
3. First write: header + as much content as fits in buffer_size
4. Remaining content in buffer_size chunks, last one may be shorter
5. Half-close (EOF) and close the connection

Memory use is bounded by buffer_size no matter how large the file is.
"""

import asyncio
import logging
import socket
from pathlib import Path
from typing import Iterable, Optional, Union

import aiofiles

from ..file.digest import sha1_file
from .errors import (
    ConfigurationError,
    ConnectionFailedError,
    FileAccessError,
    FileTooLargeError,
    TransferBusyError,
    classify,
)
from .events import (
    ListenerSet,
    ProgressTracker,
    TransferListener,
    TransferResult,
    TransferState,
)
from .flight import BusyPolicy, SingleFlight
from .protocol import (
    DEFAULT_BUFFER_SIZE,
    MAX_PAYLOAD_LENGTH,
    ZERO_DIGEST,
    FrameHeader,
    check_buffer_size,
)

logger = logging.getLogger(__name__)


class Sender:
    """
    Sends single files to a Receiver.

    One transfer runs at a time per instance; see BusyPolicy for what
    happens to overlapping calls.
    """

    def __init__(self, buffer_size: int = DEFAULT_BUFFER_SIZE,
                 digest_field: bool = True,
                 io_timeout: Optional[float] = None,
                 busy_policy: BusyPolicy = BusyPolicy.BLOCK,
                 listeners: Iterable[TransferListener] = ()):
        """
        Initialize a sender.

        Args:
            buffer_size: Chunk size for socket writes and disk reads
            digest_field: Put the 20-byte digest field on the wire
            io_timeout: Seconds allowed per connect/write (None = forever)
            busy_policy: Block or reject calls made during a transfer
            listeners: Initial notification listeners
        """
        self._buffer_size = check_buffer_size(buffer_size)
        self.digest_field = digest_field
        self.io_timeout = io_timeout
        self.state = TransferState.IDLE

        self._flight = SingleFlight(busy_policy)
        self._events = ListenerSet(listeners)

    @classmethod
    def from_config(cls, config, listeners: Iterable[TransferListener] = ()) -> 'Sender':
        """Build a sender from a pushfile.config.Config."""
        return cls(
            buffer_size=config.buffer_size,
            digest_field=config.digest_field,
            io_timeout=config.io_timeout,
            busy_policy=BusyPolicy(config.busy_policy),
            listeners=listeners,
        )

    # === Settings ===

    @property
    def buffer_size(self) -> int:
        return self._buffer_size

    @buffer_size.setter
    def buffer_size(self, value: int):
        if self._flight.busy:
            raise TransferBusyError("Cannot change buffer size while a transfer is running")
        self._buffer_size = check_buffer_size(value)

    async def set_buffer_size(self, value: int):
        """Change the buffer size once any running transfer has finished."""
        check_buffer_size(value)
        async with self._flight.hold(BusyPolicy.BLOCK):
            self._buffer_size = value

    @property
    def is_busy(self) -> bool:
        return self._flight.busy

    def add_listener(self, listener: TransferListener):
        self._events.add(listener)

    def remove_listener(self, listener: TransferListener):
        self._events.remove(listener)

    # === Sending ===

    async def send_file(self, host: str, port: int, file_path: Union[str, Path],
                        checksum: bool = False) -> TransferResult:
        """
        Send a file to host:port.

        Never raises for transfer failures: the outcome is reported in
        the returned TransferResult and in the last status notification.
        on_cleanup fires exactly once per call. Task cancellation
        propagates after cleanup.

        Args:
            host: Receiver address
            port: Receiver port
            file_path: File to send
            checksum: Compute and send a SHA-1 of the file

        Returns:
            TransferResult describing the outcome
        """
        try:
            async with self._flight.hold():
                try:
                    return await self._send(host, port, Path(file_path), checksum)
                finally:
                    self.state = TransferState.IDLE
        except TransferBusyError as e:
            logger.warning(f"Send of {file_path} rejected: {e}")
            self._events.status(str(e))
            return TransferResult.failure(e, file_name=Path(file_path).name)
        finally:
            self._events.cleanup()

    async def _send(self, host: str, port: int, file_path: Path,
                    checksum: bool) -> TransferResult:
        # Snapshot; the guard keeps it from changing until we return
        buffer_size = self._buffer_size
        progress = ProgressTracker(buffer_size, self._events.progress)
        progress.reset()

        file_name = file_path.name
        sent = 0
        writer: Optional[asyncio.StreamWriter] = None

        try:
            self.state = TransferState.CONNECTING
            size = self._file_size(file_path)

            if checksum and not self.digest_field:
                raise ConfigurationError("Checksum requested but the digest field is disabled")
            digest = await sha1_file(file_path) if checksum else ZERO_DIGEST

            header = FrameHeader(
                payload_length=size,
                file_name=file_name,
                digest=digest,
                digest_field=self.digest_field,
            )
            header_bytes = header.to_bytes()

            self._events.status("Connecting...")
            writer = await self._connect(host, port, buffer_size)
            local = writer.get_extra_info('sockname')
            self._events.status(
                f"Sending {file_name} to {host}:{port} from {local[0]}:{local[1]}"
            )

            self.state = TransferState.TRANSFERRING
            progress.begin(size)

            async with aiofiles.open(file_path, 'rb') as f:
                # First packet: header followed by as much content as fits
                room = max(0, buffer_size - len(header_bytes))
                first = await f.read(min(room, size)) if size else b''
                await self._write(writer, header_bytes + first)
                sent = len(first)
                progress.advance(len(first))

                while sent < size:
                    chunk = await f.read(min(buffer_size, size - sent))
                    if not chunk:
                        raise FileAccessError(
                            f"{file_name} shrank while sending: "
                            f"{sent:,} of {size:,} bytes read"
                        )
                    await self._write(writer, chunk)
                    sent += len(chunk)
                    progress.advance(len(chunk))

            await self._shutdown(writer)
            writer = None

            self.state = TransferState.COMPLETED
            logger.info(f"Sent {file_name} ({sent:,} bytes) to {host}:{port}")
            self._events.status("File sent")
            progress.complete()

            return TransferResult(
                ok=True,
                status="File sent",
                file_name=file_name,
                bytes_transferred=sent,
                digest=digest if header.has_checksum else None,
                path=file_path,
            )

        except Exception as e:
            error = classify(e)
            self.state = TransferState.FAILED
            logger.error(f"Sending {file_name} to {host}:{port} failed: {error}")
            self._events.status(str(error))
            return TransferResult.failure(error, file_name=file_name, bytes_transferred=sent)

        finally:
            if writer is not None:
                await self._abort(writer)

    # === Helpers ===

    def _file_size(self, file_path: Path) -> int:
        """File size from metadata."""
        try:
            stat = file_path.stat()
        except OSError as e:
            raise FileAccessError(f"Cannot read {file_path}: {e.strerror or e}") from e
        if not file_path.is_file():
            raise FileAccessError(f"Not a regular file: {file_path}")
        if stat.st_size > MAX_PAYLOAD_LENGTH:
            raise FileTooLargeError(
                f"{file_path.name} is {stat.st_size:,} bytes, "
                f"the limit is {MAX_PAYLOAD_LENGTH:,}"
            )
        return stat.st_size

    async def _io(self, aw):
        """Await an I/O step, bounded by io_timeout when set."""
        if self.io_timeout is None:
            return await aw
        return await asyncio.wait_for(aw, timeout=self.io_timeout)

    async def _connect(self, host: str, port: int, buffer_size: int) -> asyncio.StreamWriter:
        """
        Open the connection with SO_SNDBUF already set to buffer_size.

        The socket is created here rather than by open_connection so the
        option is in place before the handshake.
        """
        loop = asyncio.get_running_loop()
        try:
            infos = await self._io(loop.getaddrinfo(host, port, type=socket.SOCK_STREAM))
            sock = await self._io(self._open_socket(loop, infos, buffer_size))
        except asyncio.TimeoutError:
            raise
        except OSError as e:
            raise ConnectionFailedError(f"Could not connect to {host}:{port}: {e}") from e

        try:
            _, writer = await asyncio.open_connection(sock=sock)
        except BaseException:
            sock.close()
            raise
        return writer

    async def _open_socket(self, loop: asyncio.AbstractEventLoop, infos,
                           buffer_size: int) -> socket.socket:
        """Try each resolved address in turn; the last error wins."""
        last_error: Optional[OSError] = None
        for family, type_, proto, _, address in infos:
            try:
                sock = socket.socket(family, type_, proto)
            except OSError as e:
                last_error = e
                continue
            try:
                try:
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_SNDBUF, buffer_size)
                except OSError as e:
                    logger.warning(f"Could not set send buffer to {buffer_size}: {e}")
                sock.setblocking(False)
                await loop.sock_connect(sock, address)
                return sock
            except OSError as e:
                sock.close()
                last_error = e
                logger.debug(f"Connect to {address} failed: {e}")
            except BaseException:
                sock.close()
                raise
        raise last_error or OSError("No addresses to connect to")

    async def _write(self, writer: asyncio.StreamWriter, data: bytes):
        writer.write(data)
        await self._io(writer.drain())
        logger.debug(f"Wrote {len(data):,} bytes")

    async def _shutdown(self, writer: asyncio.StreamWriter):
        """Orderly close: signal EOF, flush, close."""
        if writer.can_write_eof():
            writer.write_eof()
        writer.close()
        await self._io(writer.wait_closed())

    async def _abort(self, writer: asyncio.StreamWriter):
        # Drop unsent data; a stalled peer must not keep us here
        writer.transport.abort()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug(f"Error while closing connection: {e}")
