from __future__ import annotations

import threading

import pytest

from core.ratelimits import RateLedger, coarse_origin, identity


@pytest.mark.parametrize(
    "remote, forwarded, expected",
    [
        ("10.0.0.5", None, "10.0.0.5"),
        ("10.0.0.5:51234", None, "10.0.0.5"),
        ("10.0.0.5", "203.0.113.9, 10.0.0.1", "203.0.113.9"),
        ("10.0.0.5", "203.0.113.9:4444", "203.0.113.9"),
        ("2001:db8:1:2:3:4:5:6", None, "2001:db8:1:2::/64"),
        ("[2001:db8:1:2::9]:443", None, "2001:db8:1:2::/64"),
    ],
)
def test_coarse_origin(remote, forwarded, expected) -> None:
    assert coarse_origin(remote, forwarded) == expected


def test_ipv6_neighbours_share_an_origin() -> None:
    assert coarse_origin("2001:db8:1:2::1") == coarse_origin("2001:db8:1:2:ffff::2")


def test_identity_lowercases_and_trims_handle() -> None:
    assert identity("1.2.3.4", "  Alice ") == "1.2.3.4|alice"
    assert identity("1.2.3.4", "") == "1.2.3.4|"


def test_ledger_enforces_cooldown() -> None:
    ledger = RateLedger()
    assert ledger.try_acquire("room", "id", 2.0, now=10.0) == 0.0
    assert ledger.try_acquire("room", "id", 2.0, now=11.5) == pytest.approx(0.5)
    assert ledger.try_acquire("room", "id", 2.0, now=12.0) == 0.0
    assert ledger.last_accepted("room", "id") == 12.0


def test_rejected_attempt_does_not_move_the_window() -> None:
    ledger = RateLedger()
    ledger.try_acquire("room", "id", 2.0, now=0.0)
    ledger.try_acquire("room", "id", 2.0, now=1.9)
    assert ledger.last_accepted("room", "id") == 0.0


def test_ledger_is_scoped_per_room() -> None:
    ledger = RateLedger()
    assert ledger.try_acquire("a", "id", 2.0, now=0.0) == 0.0
    assert ledger.try_acquire("b", "id", 2.0, now=0.0) == 0.0
    assert len(ledger) == 2


def test_concurrent_acquire_admits_exactly_one() -> None:
    ledger = RateLedger()
    barrier = threading.Barrier(16)
    results = []
    lock = threading.Lock()

    def _worker():
        barrier.wait()
        wait = ledger.try_acquire("room", "same", 2.0, now=50.0)
        with lock:
            results.append(wait)

    threads = [threading.Thread(target=_worker) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(0.0) == 1


def test_ledger_sweeps_entries_older_than_retention() -> None:
    ledger = RateLedger(sweep_interval=60.0)
    assert ledger.try_acquire("r", "a", 2.0, 0.0, retention=2.0) == 0.0
    assert ledger.try_acquire("r", "b", 2.0, 1.0, retention=2.0) == 0.0
    assert len(ledger) == 2

    # Inside the sweep interval nothing is dropped.
    assert ledger.try_acquire("r", "c", 2.0, 30.0, retention=2.0) == 0.0
    assert len(ledger) == 3

    assert ledger.try_acquire("r", "d", 2.0, 61.0, retention=2.0) == 0.0
    assert len(ledger) == 1
    assert ledger.last_accepted("r", "a") is None
    assert ledger.last_accepted("r", "d") == 61.0


def test_ledger_without_retention_keeps_everything() -> None:
    ledger = RateLedger(sweep_interval=1.0)
    for i in range(5):
        ledger.try_acquire("r", f"k{i}", 2.0, float(i * 100))
    assert len(ledger) == 5


def test_sweep_keeps_entries_inside_a_long_cooldown() -> None:
    ledger = RateLedger(sweep_interval=60.0)
    ledger.try_acquire("r", "x", 600.0, 0.0, retention=600.0)

    wait = ledger.try_acquire("r", "x", 600.0, 100.0, retention=600.0)

    assert wait == pytest.approx(500.0)
    assert ledger.last_accepted("r", "x") == 0.0
