"""Fair serialization locks for provider resources that cannot be mutated concurrently.

Three lock domains exist per client:
- GENERAL: cloud service resolution and deployment/role submission
- NETWORK: read-modify-write of the topology document and gateway changes
- STORAGE: attaching, creating and detaching data disks

Waiters are served in arrival order. A lock is reentrant for the thread that
holds it, so a workflow holding the network lock can call helpers that take
it again.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum

from .deadline import Deadline
from .errors import LockTimeoutError

logger = logging.getLogger(__name__)


class LockDomain(str, Enum):
    GENERAL = "general"
    NETWORK = "network"
    STORAGE = "storage"


def _thread_identity() -> str:
    current = threading.current_thread()
    return f"{current.name}[{current.ident}]"


class FairLock:
    """A first-come-first-served reentrant mutex with timed acquisition."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._condition = threading.Condition(threading.Lock())
        self._waiters: deque[object] = deque()
        self._owner: int | None = None
        self._count = 0

    @property
    def locked(self) -> bool:
        with self._condition:
            return self._owner is not None

    @property
    def held_by_current_thread(self) -> bool:
        with self._condition:
            return self._owner == threading.get_ident()

    def acquire(self, timeout: float) -> bool:
        """Acquire the lock, waiting at most `timeout` seconds.

        A non-positive timeout only succeeds if the lock is immediately
        available. Returns False on timeout.
        """
        me = threading.get_ident()
        with self._condition:
            if self._owner == me:
                self._count += 1
                return True

            token = object()
            self._waiters.append(token)
            expires_at = time.monotonic() + timeout
            try:
                while self._owner is not None or self._waiters[0] is not token:
                    remaining = expires_at - time.monotonic()
                    if remaining <= 0:
                        return False
                    self._condition.wait(remaining)
                self._owner = me
                self._count = 1
                return True
            finally:
                self._waiters.remove(token)
                # The next waiter may now be at the head of the queue
                self._condition.notify_all()

    def release(self) -> None:
        with self._condition:
            if self._owner != threading.get_ident():
                raise RuntimeError(f"{self.name} lock released by a thread that does not hold it")
            self._count -= 1
            if self._count == 0:
                self._owner = None
                self._condition.notify_all()


class ProvisioningLocks:
    """The three lock domains owned by one client instance."""

    def __init__(self) -> None:
        self._locks = {domain: FairLock(domain.value) for domain in LockDomain}

    def __getitem__(self, domain: LockDomain) -> FairLock:
        return self._locks[domain]

    @contextmanager
    def hold(self, domain: LockDomain, deadline: Deadline, headroom: float = 0.0) -> Iterator[None]:
        """Hold the `domain` lock for the duration of the block.

        The wait is bounded by the time left before `deadline` minus
        `headroom`. If that is already negative no wait is attempted.

        Raises:
            LockTimeoutError: If the lock could not be acquired in time.
        """
        lock = self._locks[domain]
        timeout = deadline.lock_timeout(headroom)
        if timeout < 0 and not lock.held_by_current_thread:
            raise LockTimeoutError(
                domain.value,
                0.0,
                f"Aborted request waiting for the {domain.value} lock: "
                f"{deadline.remaining():.1f} seconds left, {headroom:.1f} seconds required",
            )

        logger.debug(
            "Waiting for lock",
            extra={"lock_domain": domain.value, "thread": _thread_identity(), "timeout": timeout},
        )
        started = time.monotonic()
        if not lock.acquire(timeout):
            waited = time.monotonic() - started
            logger.warning(
                "Lock acquisition timed out",
                extra={"lock_domain": domain.value, "thread": _thread_identity(), "waited": waited},
            )
            raise LockTimeoutError(domain.value, waited)

        logger.debug("Lock acquired", extra={"lock_domain": domain.value, "thread": _thread_identity()})
        try:
            yield
        finally:
            lock.release()
            logger.debug("Lock released", extra={"lock_domain": domain.value, "thread": _thread_identity()})
