import pytest

from services.senders import KnownSenders


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_first_sighting_is_new():
    senders = KnownSenders(max_size=10)
    assert senders.mark_seen("a") is True
    assert senders.mark_seen("a") is False
    assert "a" in senders


def test_entries_expire_after_ttl():
    clock = FakeClock()
    senders = KnownSenders(max_size=10, ttl_seconds=60, clock=clock)
    senders.mark_seen("a")

    clock.now = 59
    assert senders.mark_seen("a") is False

    clock.now = 59 + 60
    assert "a" not in senders
    assert senders.mark_seen("a") is True


def test_least_recently_seen_is_evicted():
    senders = KnownSenders(max_size=2)
    senders.mark_seen("a")
    senders.mark_seen("b")
    senders.mark_seen("a")
    senders.mark_seen("c")

    assert len(senders) == 2
    assert "b" not in senders
    assert senders.mark_seen("a") is False
    assert senders.mark_seen("b") is True


def test_max_size_must_be_positive():
    with pytest.raises(ValueError):
        KnownSenders(max_size=0)
