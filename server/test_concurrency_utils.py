import threading

import pytest

from concurrency_utils import atomic, new_lock


def test_atomic_releases_on_error():
    lock = new_lock()
    with pytest.raises(RuntimeError):
        with atomic(lock):
            raise RuntimeError("boom")
    assert not lock.locked()


def test_atomic_serializes_increments():
    lock = new_lock()
    box = {"n": 0}

    def _bump():
        for _ in range(1000):
            with atomic(lock):
                v = box["n"]
                box["n"] = v + 1

    threads = [threading.Thread(target=_bump) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert box["n"] == 8000
