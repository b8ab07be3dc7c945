"""
Transfer Notifications and Results

Design Decision: Observer Interface
===================================

Options Considered:
1. Bare callbacks passed to each call
   - Simple, but four optional arguments per call
2. Observer object with one method per notification
   - One registration, easy to subclass or mock
3. Queue of tagged messages drained by the caller
   - Good for UIs, forces the caller to run a drain loop

Decision: Observer object (TransferListener)
- Zero or more status/progress notifications per call
- Exactly one on_cleanup per call, regardless of outcome
- CallbackListener adapts plain functions for quick use

Progress Accounting:
- Every full chunk adds 100 / (file_length / buffer_size) points
- A short chunk adds the same rate scaled by its length
- Observers only hear about whole-percent advances (no event storms)
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from .errors import ErrorKind, TransferError

logger = logging.getLogger(__name__)


class TransferState(Enum):
    """Lifecycle of a transfer component."""
    IDLE = 'idle'
    CONNECTING = 'connecting'
    LISTENING = 'listening'
    TRANSFERRING = 'transferring'
    COMPLETED = 'completed'
    FAILED = 'failed'


class TransferListener:
    """
    Receives notifications from a Sender or Receiver.

    All methods are no-ops; override the ones you care about.
    Methods are called on the event loop running the transfer, so
    UI code must marshal them to its own thread.
    """

    def on_status(self, text: str) -> None:
        pass

    def on_progress(self, percent: float) -> None:
        pass

    def on_file_received(self, file_name: str) -> None:
        pass

    def on_cleanup(self) -> None:
        pass


class CallbackListener(TransferListener):
    """Listener built from plain callables."""

    def __init__(self, status: Optional[Callable[[str], None]] = None,
                 progress: Optional[Callable[[float], None]] = None,
                 file_received: Optional[Callable[[str], None]] = None,
                 cleanup: Optional[Callable[[], None]] = None):
        self._status = status
        self._progress = progress
        self._file_received = file_received
        self._cleanup = cleanup

    def on_status(self, text: str) -> None:
        if self._status:
            self._status(text)

    def on_progress(self, percent: float) -> None:
        if self._progress:
            self._progress(percent)

    def on_file_received(self, file_name: str) -> None:
        if self._file_received:
            self._file_received(file_name)

    def on_cleanup(self) -> None:
        if self._cleanup:
            self._cleanup()


class ListenerSet:
    """
    Fans notifications out to registered listeners.

    A listener that raises is logged and skipped; it never aborts the
    transfer that is notifying it.
    """

    def __init__(self, listeners: Iterable[TransferListener] = ()):
        self._listeners: List[TransferListener] = list(listeners)

    def add(self, listener: TransferListener):
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove(self, listener: TransferListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def __len__(self) -> int:
        return len(self._listeners)

    def _emit(self, method: str, *args):
        for listener in list(self._listeners):
            try:
                getattr(listener, method)(*args)
            except Exception as e:
                logger.error(f"Listener {listener!r} failed in {method}: {e}")

    def status(self, text: str):
        logger.debug(f"Status: {text}")
        self._emit('on_status', text)

    def progress(self, percent: float):
        self._emit('on_progress', percent)

    def file_received(self, file_name: str):
        self._emit('on_file_received', file_name)

    def cleanup(self):
        self._emit('on_cleanup')


class ProgressTracker:
    """
    Running progress of one transfer session.

    Keeps the exact fractional percentage and emits whole-percent
    values only when they advance by at least one point.
    """

    def __init__(self, buffer_size: int, emit: Callable[[float], None]):
        self.buffer_size = buffer_size
        self._emit = emit
        self.increment = math.inf
        self.value = 0.0
        self.last_emitted = 0

    def reset(self):
        """Start over at 0 and notify."""
        self.value = 0.0
        self.last_emitted = 0
        self._emit(0.0)

    def begin(self, total_bytes: int):
        """Set the payload size once it is known."""
        # Points added per full chunk
        if total_bytes > 0:
            self.increment = 100.0 / (total_bytes / self.buffer_size)
        else:
            self.increment = math.inf

    def advance(self, nbytes: int):
        """Account for a chunk of nbytes that has been sent or written."""
        if nbytes <= 0:
            return
        step = self.increment * (nbytes / self.buffer_size)
        self.value = min(100.0, self.value + step)

        whole = int(self.value)
        if whole >= self.last_emitted + 1:
            self.last_emitted = whole
            self._emit(float(whole))

    def complete(self):
        """Mark the session finished; the last emitted value is always 100."""
        self.value = 100.0
        if self.last_emitted < 100:
            self.last_emitted = 100
            self._emit(100.0)


@dataclass
class TransferResult:
    """
    Outcome of one send_file/receive_file call.

    ``ok`` is the programmatic success flag; ``status`` is the same text
    that was last sent to listeners.
    """
    ok: bool
    status: str
    file_name: str = ''
    bytes_transferred: int = 0
    digest: Optional[bytes] = None
    path: Optional[Path] = None
    error_kind: Optional[ErrorKind] = None
    error: Optional[TransferError] = None

    @classmethod
    def failure(cls, error: TransferError, file_name: str = '',
                bytes_transferred: int = 0) -> 'TransferResult':
        return cls(
            ok=False,
            status=str(error) or error.kind.value,
            file_name=file_name,
            bytes_transferred=bytes_transferred,
            error_kind=error.kind,
            error=error,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for display/JSON."""
        return {
            'ok': self.ok,
            'status': self.status,
            'file_name': self.file_name,
            'bytes_transferred': self.bytes_transferred,
            'digest': self.digest.hex() if self.digest else None,
            'path': str(self.path) if self.path else None,
            'error_kind': self.error_kind.value if self.error_kind else None,
        }
