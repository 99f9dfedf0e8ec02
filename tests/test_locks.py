"""Tests for the fair serialization locks."""

from __future__ import annotations

import threading
import time

import pytest

from provisioner.deadline import Deadline
from provisioner.errors import LockTimeoutError
from provisioner.locks import FairLock, LockDomain, ProvisioningLocks


class TestFairLock:
    """Tests for FairLock acquisition order and ownership."""

    def test_acquire_and_release(self) -> None:
        """Test that a free lock is acquired immediately."""
        lock = FairLock("general")

        assert lock.acquire(0) is True
        assert lock.locked
        assert lock.held_by_current_thread

        lock.release()
        assert not lock.locked

    def test_reentrant_for_owner(self) -> None:
        """Test that the owning thread can acquire again without waiting."""
        lock = FairLock("network")

        assert lock.acquire(0)
        assert lock.acquire(0)
        lock.release()
        assert lock.locked
        lock.release()
        assert not lock.locked

    def test_timeout_when_held_elsewhere(self) -> None:
        """Test that acquisition returns False once the timeout passes."""
        lock = FairLock("storage")
        acquired = threading.Event()
        done = threading.Event()

        def holder() -> None:
            lock.acquire(1)
            acquired.set()
            done.wait(5)
            lock.release()

        thread = threading.Thread(target=holder)
        thread.start()
        acquired.wait(5)

        started = time.monotonic()
        assert lock.acquire(0.05) is False
        assert time.monotonic() - started >= 0.05

        done.set()
        thread.join(5)

    def test_release_by_non_owner(self) -> None:
        """Test that releasing a lock held by another thread raises."""
        lock = FairLock("general")
        lock.acquire(0)
        errors: list[Exception] = []

        def release() -> None:
            try:
                lock.release()
            except RuntimeError as e:
                errors.append(e)

        thread = threading.Thread(target=release)
        thread.start()
        thread.join(5)

        assert len(errors) == 1
        assert "does not hold it" in str(errors[0])
        lock.release()

    def test_waiters_served_in_arrival_order(self) -> None:
        """Test that waiters acquire the lock first-come-first-served."""
        lock = FairLock("general")
        lock.acquire(0)
        order: list[int] = []
        threads = []

        def waiter(index: int) -> None:
            assert lock.acquire(5)
            order.append(index)
            lock.release()

        for index in range(4):
            thread = threading.Thread(target=waiter, args=(index,))
            thread.start()
            threads.append(thread)
            # Let each thread enqueue before the next one arrives
            time.sleep(0.05)

        lock.release()
        for thread in threads:
            thread.join(5)

        assert order == [0, 1, 2, 3]


class TestProvisioningLocks:
    """Tests for deadline-bounded lock holding."""

    def test_domains_are_independent(self) -> None:
        """Test that each domain has its own lock."""
        locks = ProvisioningLocks()
        deadline = Deadline.after(5)

        with locks.hold(LockDomain.GENERAL, deadline):
            with locks.hold(LockDomain.NETWORK, deadline):
                assert locks[LockDomain.GENERAL].locked
                assert locks[LockDomain.NETWORK].locked
            assert not locks[LockDomain.STORAGE].locked

        assert not locks[LockDomain.GENERAL].locked

    def test_fail_fast_when_headroom_exceeds_deadline(self) -> None:
        """Test that no wait is attempted when the headroom is already gone."""
        locks = ProvisioningLocks()

        with pytest.raises(LockTimeoutError) as exc_info:
            with locks.hold(LockDomain.GENERAL, Deadline.after(10), headroom=300):
                pass

        assert exc_info.value.domain == "general"
        assert exc_info.value.waited_seconds == 0.0
        assert "Aborted request" in str(exc_info.value)
        assert not locks[LockDomain.GENERAL].locked

    def test_reentrant_hold_after_deadline(self) -> None:
        """Test that the owner can re-enter even after the deadline passed."""
        locks = ProvisioningLocks()
        deadline = Deadline.after(0.05)

        with locks.hold(LockDomain.NETWORK, deadline):
            time.sleep(0.1)
            with locks.hold(LockDomain.NETWORK, deadline):
                assert locks[LockDomain.NETWORK].held_by_current_thread

        assert not locks[LockDomain.NETWORK].locked

    def test_timeout_raises_lock_timeout(self) -> None:
        """Test that a wait bounded by the deadline raises LockTimeoutError."""
        locks = ProvisioningLocks()
        acquired = threading.Event()
        done = threading.Event()

        def holder() -> None:
            with locks.hold(LockDomain.STORAGE, Deadline.after(5)):
                acquired.set()
                done.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        acquired.wait(5)

        try:
            with pytest.raises(LockTimeoutError) as exc_info:
                with locks.hold(LockDomain.STORAGE, Deadline.after(0.1)):
                    pass
        finally:
            done.set()
            thread.join(5)

        assert exc_info.value.domain == "storage"
        assert exc_info.value.waited_seconds > 0

    def test_released_when_block_raises(self) -> None:
        """Test that the lock is released if the critical section fails."""
        locks = ProvisioningLocks()

        with pytest.raises(ValueError):
            with locks.hold(LockDomain.GENERAL, Deadline.after(5)):
                raise ValueError("boom")

        assert not locks[LockDomain.GENERAL].locked

    def test_mutual_exclusion(self) -> None:
        """Test that critical sections of one domain never overlap."""
        locks = ProvisioningLocks()
        active = 0
        max_active = 0
        guard = threading.Lock()

        def worker() -> None:
            nonlocal active, max_active
            with locks.hold(LockDomain.GENERAL, Deadline.after(10)):
                with guard:
                    active += 1
                    max_active = max(max_active, active)
                time.sleep(0.01)
                with guard:
                    active -= 1

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(10)

        assert max_active == 1
