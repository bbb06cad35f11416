"""Tests for the pending deferred-call registry."""

import threading

import pytest

from bifrost.core.errors import DuplicatePendingKeyError
from bifrost.ide.pending import EXPIRED, SESSION_CLOSED, PendingAsyncRegistry


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    return PendingAsyncRegistry(clock=clock)


class TestRegisterResolve:
    """Tests for register and resolve."""

    def test_resolve_fires_once(self, registry):
        """The callback runs exactly once; later resolves are no-ops."""
        results = []
        registry.register("tab", results.append)

        assert registry.resolve("tab", "first") is True
        assert registry.resolve("tab", "second") is False
        assert results == ["first"]
        assert "tab" not in registry

    def test_unknown_key(self, registry):
        assert registry.resolve("nothing", 1) is False

    def test_duplicate_key(self, registry):
        registry.register("tab", lambda r: None)

        with pytest.raises(DuplicatePendingKeyError) as exc_info:
            registry.register("tab", lambda r: None)
        assert exc_info.value.key == "tab"
        assert len(registry) == 1

    def test_discard_does_not_fire(self, registry):
        results = []
        registry.register("tab", results.append)

        assert registry.discard("tab") is True
        assert registry.discard("tab") is False
        assert registry.resolve("tab", "late") is False
        assert results == []

    def test_callback_error_contained(self, registry):
        """A failing callback neither propagates nor leaves the entry behind."""

        def boom(result):
            raise RuntimeError("peer gone")

        registry.register("tab", boom)
        assert registry.resolve("tab", "x") is True
        assert len(registry) == 0

    def test_callback_may_reenter(self, registry):
        """Callbacks run outside the lock."""
        seen = []

        def chain(result):
            registry.register("second", seen.append)
            registry.resolve("second", result + 1)

        registry.register("first", chain)
        registry.resolve("first", 1)
        assert seen == [2]

    def test_concurrent_resolve_fires_once(self, registry):
        """Racing resolvers deliver a single completion."""
        results = []
        registry.register("tab", results.append)
        barrier = threading.Barrier(8)

        def resolve():
            barrier.wait()
            registry.resolve("tab", "done")

        threads = [threading.Thread(target=resolve) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results == ["done"]


class TestUniqueKey:
    """Tests for unique_key."""

    def test_free_name(self, registry):
        assert registry.unique_key("Diff: a vs a") == "Diff: a vs a"

    def test_numbered_suffix(self, registry):
        registry.register("Diff: a vs a", lambda r: None)
        assert registry.unique_key("Diff: a vs a") == "Diff: a vs a (2)"

        registry.register("Diff: a vs a (2)", lambda r: None)
        assert registry.unique_key("Diff: a vs a") == "Diff: a vs a (3)"


class TestExpiryAndTeardown:
    """Tests for expire and cancel_all."""

    def test_expire_only_old_entries(self, registry, clock):
        results = {}
        registry.register("old", lambda r: results.setdefault("old", r))
        clock.now += 50
        registry.register("young", lambda r: results.setdefault("young", r))
        clock.now += 20

        expired = registry.expire(60, EXPIRED)

        assert expired == ["old"]
        assert results == {"old": EXPIRED}
        assert registry.pending_keys() == ["young"]

    def test_cancel_all(self, registry):
        results = []
        registry.register("a", results.append)
        registry.register("b", results.append)

        assert registry.cancel_all(SESSION_CLOSED) == 2
        assert results == [SESSION_CLOSED, SESSION_CLOSED]
        assert len(registry) == 0
        assert registry.cancel_all(SESSION_CLOSED) == 0
