"""
Transfer Errors

Every failure a transfer can hit is mapped onto one of a handful of
kinds so callers can react programmatically instead of parsing
status strings.

| Kind          | Typical cause                                  |
|---------------|------------------------------------------------|
| CONNECTION    | connect refused, host unreachable, port in use |
| IO            | disk read/write failure, permission denied     |
| PROTOCOL      | header inconsistent with the actual stream     |
| CHECKSUM      | received bytes do not match the sent digest    |
| RESOURCE      | file too large for the 32-bit length field     |
| TIMEOUT       | accept/connect/read/write took too long        |
| BUSY          | transfer already running and policy is reject  |
| CONFIGURATION | invalid settings for the requested operation   |
"""

import asyncio
from enum import Enum


class ErrorKind(Enum):
    """Categories of transfer failures."""
    CONNECTION = "connection"
    IO = "io"
    PROTOCOL = "protocol"
    CHECKSUM = "checksum"
    RESOURCE = "resource"
    TIMEOUT = "timeout"
    BUSY = "busy"
    CONFIGURATION = "configuration"


class TransferError(Exception):
    """Base class for all transfer errors."""
    kind = ErrorKind.IO


class ConnectionFailedError(TransferError):
    kind = ErrorKind.CONNECTION


class FileAccessError(TransferError):
    kind = ErrorKind.IO


class MalformedFrameError(TransferError):
    kind = ErrorKind.PROTOCOL


class ChecksumError(TransferError):
    kind = ErrorKind.CHECKSUM


class FileTooLargeError(TransferError):
    kind = ErrorKind.RESOURCE


class TransferTimeoutError(TransferError):
    kind = ErrorKind.TIMEOUT


class TransferBusyError(TransferError):
    kind = ErrorKind.BUSY


class ConfigurationError(TransferError):
    kind = ErrorKind.CONFIGURATION


def classify(exc: BaseException) -> TransferError:
    """
    Map a raw exception onto the transfer error hierarchy.

    Already-classified errors are returned unchanged.
    """
    if isinstance(exc, TransferError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return TransferTimeoutError("Operation timed out")
    if isinstance(exc, asyncio.IncompleteReadError):
        return MalformedFrameError(
            f"Stream ended after {len(exc.partial)} of {exc.expected} expected bytes"
        )
    # ConnectionError is a subclass of OSError, check it first
    if isinstance(exc, ConnectionError):
        return ConnectionFailedError(str(exc) or exc.__class__.__name__)
    if isinstance(exc, OSError):
        return FileAccessError(str(exc) or exc.__class__.__name__)
    return TransferError(str(exc) or exc.__class__.__name__)
