"""
Tests for per-automation run locks.
"""
import threading

import pytest

from automation.locks import LockRegistry
from errors import ConcurrentRunConflict


def test_second_acquire_is_rejected():
    registry = LockRegistry()

    run_id = registry.try_acquire("wf-1")
    assert run_id is not None
    assert registry.try_acquire("wf-1") is None
    assert registry.is_running("wf-1")
    assert registry.running_since("wf-1") is not None

    # Other automations are independent
    assert registry.try_acquire("wf-2") is not None
    assert sorted(registry.active_ids()) == ["wf-1", "wf-2"]

    registry.release("wf-1", run_id)
    assert not registry.is_running("wf-1")
    assert registry.try_acquire("wf-1") is not None


def test_release_with_wrong_run_id_keeps_lock():
    registry = LockRegistry()
    registry.try_acquire("wf-1")

    registry.release("wf-1", "some-other-run")
    assert registry.is_running("wf-1")

    registry.release("wf-1")
    assert not registry.is_running("wf-1")
    # Releasing an unheld lock is a no-op
    registry.release("wf-1")


def test_hold_context_manager():
    registry = LockRegistry()

    with registry.hold("wf-1") as run_id:
        assert run_id
        with pytest.raises(ConcurrentRunConflict):
            with registry.hold("wf-1"):
                pass

    assert not registry.is_running("wf-1")


def test_only_one_thread_acquires():
    registry = LockRegistry()
    barrier = threading.Barrier(8)
    acquired = []

    def worker():
        barrier.wait()
        if registry.try_acquire("wf-1"):
            acquired.append(threading.current_thread().name)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(acquired) == 1
