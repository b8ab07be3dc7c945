"""
Single-Flight Guard

At most one transfer runs per component instance. The guard also
protects the component's settings so the chunk size cannot change
under a running transfer.

Overlapping calls follow an explicit policy:
- BLOCK: wait until the running transfer finishes (default)
- REJECT: fail fast with TransferBusyError
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum

from .errors import TransferBusyError

logger = logging.getLogger(__name__)


class BusyPolicy(Enum):
    """What a second call does while a transfer is running."""
    BLOCK = 'block'
    REJECT = 'reject'


class SingleFlight:
    """Async mutual exclusion with a busy policy."""

    def __init__(self, policy: BusyPolicy = BusyPolicy.BLOCK):
        self.policy = BusyPolicy(policy)
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def hold(self, policy: BusyPolicy = None):
        """
        Hold the guard for the duration of the block.

        Raises:
            TransferBusyError: if busy and the policy is REJECT
        """
        policy = self.policy if policy is None else policy
        if policy is BusyPolicy.REJECT and self._lock.locked():
            raise TransferBusyError("Another transfer is already in progress")

        if self._lock.locked():
            logger.debug("Transfer in progress, waiting for it to finish")

        async with self._lock:
            yield
