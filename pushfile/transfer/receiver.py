"""
File Receiver

Listens for exactly one inbound connection and stores the file it
carries in a destination folder.

Receive Flow:
1. Bind and listen, report "Listening on host:port"
2. Accept one connection, stop accepting further ones
3. Read the full header (looping until every byte is buffered)
4. Create destination/<name> and append content until EOF
5. Verify length (and SHA-1 when one was sent)
6. Report the new file, stop listening

Hardening over a naive reader:
- The header is never assumed to arrive in a single read
- The received name is reduced to a bare component (no traversal)
- Declared lengths are bounded before anything is allocated
- More bytes than declared aborts the transfer

A failed receive leaves any partially written file on disk.
"""

import asyncio
import hashlib
import logging
import socket
from pathlib import Path
from typing import Iterable, Optional, Tuple, Union

import aiofiles

from .errors import (
    ChecksumError,
    ConnectionFailedError,
    FileAccessError,
    FileTooLargeError,
    MalformedFrameError,
    TransferBusyError,
    TransferTimeoutError,
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
    MAX_NAME_LENGTH,
    MAX_PAYLOAD_LENGTH,
    check_buffer_size,
    read_header,
    sanitize_file_name,
)

logger = logging.getLogger(__name__)

Connection = Tuple[asyncio.StreamReader, asyncio.StreamWriter]


class Receiver:
    """
    Receives single files from a Sender.

    Each receive_file() call listens, takes one file and releases the
    port again. One call runs at a time per instance.
    """

    def __init__(self, buffer_size: int = DEFAULT_BUFFER_SIZE,
                 digest_field: bool = True,
                 accept_timeout: Optional[float] = None,
                 io_timeout: Optional[float] = None,
                 max_name_length: int = MAX_NAME_LENGTH,
                 max_payload_length: int = MAX_PAYLOAD_LENGTH,
                 busy_policy: BusyPolicy = BusyPolicy.BLOCK,
                 listeners: Iterable[TransferListener] = ()):
        """
        Initialize a receiver.

        Args:
            buffer_size: Chunk size for socket reads
            digest_field: Expect the 20-byte digest field on the wire
            accept_timeout: Seconds to wait for a sender (None = forever)
            io_timeout: Seconds allowed per read (None = forever)
            max_name_length: Largest declared name length accepted
            max_payload_length: Largest declared file size accepted
            busy_policy: Block or reject calls made during a transfer
            listeners: Initial notification listeners
        """
        self._buffer_size = check_buffer_size(buffer_size)
        self.digest_field = digest_field
        self.accept_timeout = accept_timeout
        self.io_timeout = io_timeout
        self.max_name_length = max_name_length
        self.max_payload_length = min(max_payload_length, MAX_PAYLOAD_LENGTH)
        self.state = TransferState.IDLE

        # Port actually bound by the last/current call (useful with port 0)
        self.bound_port: Optional[int] = None

        self._flight = SingleFlight(busy_policy)
        self._events = ListenerSet(listeners)

    @classmethod
    def from_config(cls, config, listeners: Iterable[TransferListener] = ()) -> 'Receiver':
        """Build a receiver from a pushfile.config.Config."""
        return cls(
            buffer_size=config.buffer_size,
            digest_field=config.digest_field,
            accept_timeout=config.accept_timeout,
            io_timeout=config.io_timeout,
            max_name_length=config.max_name_length,
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

    # === Receiving ===

    async def receive_file(self, host: str, port: int,
                           destination: Union[str, Path],
                           ready: Optional[asyncio.Event] = None) -> TransferResult:
        """
        Listen on host:port and receive one file into destination.

        Never raises for transfer failures: the outcome is reported in
        the returned TransferResult and in the last status notification.
        on_cleanup fires exactly once per call. Task cancellation stops
        listening and propagates after cleanup.

        Args:
            host: Local address to listen on
            port: Local port (0 picks a free one, see bound_port)
            destination: Existing folder the file is written to
            ready: Set once the socket is listening

        Returns:
            TransferResult describing the outcome
        """
        try:
            async with self._flight.hold():
                try:
                    return await self._receive(host, port, Path(destination), ready)
                finally:
                    self.state = TransferState.IDLE
        except TransferBusyError as e:
            logger.warning(f"Receive on {host}:{port} rejected: {e}")
            self._events.status(str(e))
            return TransferResult.failure(e)
        finally:
            self._events.cleanup()

    async def _receive(self, host: str, port: int, destination: Path,
                       ready: Optional[asyncio.Event]) -> TransferResult:
        # Snapshot; the guard keeps it from changing until we return
        buffer_size = self._buffer_size
        progress = ProgressTracker(buffer_size, self._events.progress)
        progress.reset()

        loop = asyncio.get_running_loop()
        accepted: asyncio.Future = loop.create_future()

        def on_connect(reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
            if accepted.done():
                peer = writer.get_extra_info('peername')
                logger.warning(f"Refusing extra connection from {peer}")
                writer.transport.abort()
                return
            accepted.set_result((reader, writer))

        server: Optional[asyncio.AbstractServer] = None
        writer: Optional[asyncio.StreamWriter] = None
        file_name = ''
        received = 0

        try:
            self.state = TransferState.LISTENING
            if not destination.is_dir():
                raise FileAccessError(f"Destination folder does not exist: {destination}")

            server = await self._listen(on_connect, host, port)
            self.bound_port = server.sockets[0].getsockname()[1]
            self._events.status(f"Listening on {host}:{self.bound_port}")
            if ready is not None:
                ready.set()

            reader, writer = await self._accept(accepted)
            # One file per call: no further connections
            server.close()
            self._set_receive_buffer(writer, buffer_size)

            peer = writer.get_extra_info('peername')
            self._events.status("Receiving file...")
            self.state = TransferState.TRANSFERRING

            header = await self._io(read_header(reader, self.digest_field, self.max_name_length))
            if header.payload_length > self.max_payload_length:
                raise FileTooLargeError(
                    f"Peer announced {header.payload_length:,} bytes, "
                    f"limit is {self.max_payload_length:,}"
                )
            file_name = sanitize_file_name(header.file_name)

            self._events.status(
                f"Receiving {file_name} on {host}:{self.bound_port} from {peer[0]}:{peer[1]}"
            )
            progress.begin(header.payload_length)

            target = destination / file_name
            sha = hashlib.sha1() if header.has_checksum else None

            async with aiofiles.open(target, 'wb') as out:
                while True:
                    chunk = await self._io(reader.read(buffer_size))
                    if not chunk:
                        break
                    received += len(chunk)
                    if received > header.payload_length:
                        raise MalformedFrameError(
                            f"Peer sent more than the {header.payload_length:,} bytes announced"
                        )
                    await out.write(chunk)
                    if sha is not None:
                        sha.update(chunk)
                    progress.advance(len(chunk))

            if received < header.payload_length:
                raise MalformedFrameError(
                    f"Connection closed after {received:,} of "
                    f"{header.payload_length:,} bytes"
                )

            if sha is not None and sha.digest() != header.digest:
                raise ChecksumError(
                    f"Checksum mismatch for {file_name}: expected "
                    f"{header.digest.hex()}, got {sha.hexdigest()}"
                )

            self.state = TransferState.COMPLETED
            logger.info(f"Received {file_name} ({received:,} bytes) into {destination}")
            self._events.file_received(file_name)
            self._events.status("File received")
            progress.complete()

            return TransferResult(
                ok=True,
                status="File received",
                file_name=file_name,
                bytes_transferred=received,
                digest=header.digest if header.has_checksum else None,
                path=target,
            )

        except Exception as e:
            error = classify(e)
            self.state = TransferState.FAILED
            logger.error(f"Receiving on {host}:{port} failed: {error}")
            self._events.status(str(error))
            return TransferResult.failure(error, file_name=file_name, bytes_transferred=received)

        finally:
            if not accepted.done():
                accepted.cancel()
            if writer is not None:
                await self._close(writer)
            if server is not None:
                # Stop listening, release the port
                server.close()
                await server.wait_closed()

    # === Helpers ===

    async def _io(self, aw):
        """Await a read, bounded by io_timeout when set."""
        if self.io_timeout is None:
            return await aw
        return await asyncio.wait_for(aw, timeout=self.io_timeout)

    async def _listen(self, on_connect, host: str, port: int) -> asyncio.AbstractServer:
        """
        Listen on the first address host resolves to.

        A name such as 'localhost' may resolve to both ::1 and 127.0.0.1;
        binding all of them with port 0 would give each socket its own
        port, so exactly one socket is bound and bound_port is unambiguous.
        """
        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(
                host or None, port,
                type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE,
            )
            family, _, _, _, address = infos[0]
            if len(infos) > 1:
                logger.debug(f"{host} resolves to {len(infos)} addresses, using {address[0]}")
            return await asyncio.start_server(
                on_connect, address[0], port, family=family, reuse_address=True,
            )
        except OSError as e:
            raise ConnectionFailedError(f"Could not listen on {host}:{port}: {e}") from e

    async def _accept(self, accepted: asyncio.Future) -> Connection:
        if self.accept_timeout is None:
            return await accepted
        try:
            return await asyncio.wait_for(accepted, timeout=self.accept_timeout)
        except asyncio.TimeoutError:
            raise TransferTimeoutError(
                f"No sender connected within {self.accept_timeout} seconds"
            ) from None

    def _set_receive_buffer(self, writer: asyncio.StreamWriter, buffer_size: int):
        sock = writer.get_extra_info('socket')
        if sock is None:
            return
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, buffer_size)
        except OSError as e:
            logger.warning(f"Could not set receive buffer to {buffer_size}: {e}")

    async def _close(self, writer: asyncio.StreamWriter):
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug(f"Error while closing connection: {e}")
