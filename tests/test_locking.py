"""
Tests for the keyed lock manager
"""

import threading
import time

from svbank.locking import KeyedLockManager, account_key, loan_key


class TestKeyedLockManager:
    """Test per-key serialization"""

    def setup_method(self):
        self.locks = KeyedLockManager()

    def test_keys(self):
        assert account_key("abc") == "account:abc"
        assert loan_key("abc") == "loan:abc"

    def test_entries_dropped_when_released(self):
        with self.locks.hold("account:a", "account:b"):
            assert self.locks.active_keys() == ["account:a", "account:b"]
        assert self.locks.active_keys() == []

    def test_reentrant_and_duplicate_keys(self):
        with self.locks.hold("account:a", "account:a"):
            with self.locks.hold("account:a"):
                assert self.locks.active_keys() == ["account:a"]
        assert self.locks.active_keys() == []

    def test_released_after_exception(self):
        try:
            with self.locks.hold("account:a"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert self.locks.active_keys() == []

    def test_same_key_serializes(self):
        """Read-modify-write under the same key never interleaves"""
        counter = {"value": 0}

        def increment():
            for _ in range(200):
                with self.locks.hold("account:a"):
                    current = counter["value"]
                    time.sleep(0)
                    counter["value"] = current + 1

        threads = [threading.Thread(target=increment) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert counter["value"] == 800

    def test_different_keys_do_not_block(self):
        inside_a = threading.Event()
        finished_b = threading.Event()

        def hold_a():
            with self.locks.hold("account:a"):
                inside_a.set()
                finished_b.wait(timeout=5)

        thread = threading.Thread(target=hold_a)
        thread.start()
        assert inside_a.wait(timeout=5)

        with self.locks.hold("account:b"):
            finished_b.set()

        thread.join(timeout=5)
        assert finished_b.is_set()

    def test_opposite_order_does_not_deadlock(self):
        """Two holders naming the same keys in opposite order both finish"""
        done = []

        def transfer(first, second):
            for _ in range(100):
                with self.locks.hold(first, second):
                    pass
            done.append(first)

        threads = [
            threading.Thread(target=transfer, args=("account:a", "account:b")),
            threading.Thread(target=transfer, args=("account:b", "account:a")),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert sorted(done) == ["account:a", "account:b"]
