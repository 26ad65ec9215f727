import threading
import time

import pytest

from utils.locks import KeyedLocks


def test_entries_live_only_while_held():
    locks = KeyedLocks()
    with locks.hold("STU001"):
        with locks.hold("STU001"):
            assert len(locks) == 1
        with locks.hold("STU002"):
            assert len(locks) == 2
        assert len(locks) == 1
    assert len(locks) == 0


def test_same_key_is_serialised_across_threads():
    locks = KeyedLocks()
    order = []
    entered = threading.Event()

    def first():
        with locks.hold("scope"):
            entered.set()
            time.sleep(0.05)
            order.append("first")

    def second():
        entered.wait(5)
        with locks.hold("scope"):
            order.append("second")

    threads = [threading.Thread(target=first), threading.Thread(target=second)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5)

    assert order == ["first", "second"]
    assert len(locks) == 0


def test_release_after_an_error():
    locks = KeyedLocks()
    with pytest.raises(RuntimeError):
        with locks.hold("scope"):
            raise RuntimeError("boom")
    assert len(locks) == 0
