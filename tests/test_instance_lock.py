"""Tests for the single-instance lock."""

import os

import pytest

from instance_lock import InstanceLock, InstanceLockError


class TestInstanceLock:
    def test_acquire_writes_pid(self, tmp_path):
        lock = InstanceLock(tmp_path / "run" / "proximity.lock")

        with lock:
            assert lock.locked
            assert lock.path.read_text().strip() == str(os.getpid())

        assert not lock.locked

    def test_second_instance_rejected(self, tmp_path):
        path = tmp_path / "proximity.lock"
        first = InstanceLock(path)
        second = InstanceLock(path)

        first.acquire()
        try:
            with pytest.raises(InstanceLockError, match="already running"):
                second.acquire()
            assert not second.locked
        finally:
            first.release()

    def test_reacquire_after_release(self, tmp_path):
        path = tmp_path / "proximity.lock"
        first = InstanceLock(path)
        first.acquire()
        first.release()

        with InstanceLock(path) as second:
            assert second.locked

    def test_acquire_twice_is_noop(self, tmp_path):
        lock = InstanceLock(tmp_path / "proximity.lock")
        lock.acquire()
        lock.acquire()
        lock.release()
        lock.release()

        assert not lock.locked
