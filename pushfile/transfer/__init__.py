"""
Transfer Module - Sending and Receiving Files

Streams one file per TCP connection, prefixed by a small binary header.
"""

from .errors import (
    ErrorKind,
    TransferError,
    ConnectionFailedError,
    FileAccessError,
    MalformedFrameError,
    ChecksumError,
    FileTooLargeError,
    TransferTimeoutError,
    TransferBusyError,
    ConfigurationError,
)
from .events import (
    TransferState,
    TransferListener,
    CallbackListener,
    ProgressTracker,
    TransferResult,
)
from .flight import BusyPolicy
from .protocol import FrameHeader, DEFAULT_BUFFER_SIZE, DIGEST_SIZE, ZERO_DIGEST
from .sender import Sender
from .receiver import Receiver

__all__ = [
    'Sender',
    'Receiver',
    'FrameHeader',
    'DEFAULT_BUFFER_SIZE',
    'DIGEST_SIZE',
    'ZERO_DIGEST',
    'BusyPolicy',
    'TransferState',
    'TransferListener',
    'CallbackListener',
    'ProgressTracker',
    'TransferResult',
    'ErrorKind',
    'TransferError',
    'ConnectionFailedError',
    'FileAccessError',
    'MalformedFrameError',
    'ChecksumError',
    'FileTooLargeError',
    'TransferTimeoutError',
    'TransferBusyError',
    'ConfigurationError',
]
