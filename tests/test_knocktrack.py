"""
Tests for KnockTrack, the per-address state owner.

Covers:
- Access granter fires exactly once per completed sequence
- Isolation between addresses
- Expiry sweep
- Serialization of concurrent knocks for one address
"""

import itertools
import logging
import threading
import time

from knockgate.granter import CallbackGranter
from knockgate.knocktrack import KnockTrack
from knockgate.knockutil import KnockSequence
from knockgate.matcher import ClientState, Outcome


SEQUENCE = KnockSequence([(7001, 3), (8002, 1), (9003, 2)])
FULL = [7001, 7001, 7001, 8002, 9003, 9003]


def make_track(logger, granter=None, timeout=5.0, sequence=SEQUENCE):
    return KnockTrack(sequence, timeout, logger, granter)


class TestRecordKnock:

    def test_complete_sequence_grants_once(self, logger, granter) -> None:
        track = make_track(logger, granter)
        outcomes = [track.record_knock("10.0.0.1", p, now=float(i)) for i, p in enumerate(FULL)]

        assert outcomes[-1] is Outcome.SEQUENCE_COMPLETE
        assert granter.grants == [("10.0.0.1", 5.0)]
        assert track.pending("10.0.0.1") is None
        assert len(track) == 0

    def test_granter_not_called_on_other_outcomes(self, logger, granter) -> None:
        track = make_track(logger, granter)
        for i, p in enumerate([7001, 7001, 7001, 8002, 9003, 1234]):
            track.record_knock("10.0.0.1", p, now=float(i))

        assert granter.grants == []

    def test_repeat_sequence_grants_again(self, logger, granter) -> None:
        track = make_track(logger, granter)
        for i, p in enumerate(FULL + FULL):
            track.record_knock("10.0.0.1", p, now=float(i))

        assert [g[0] for g in granter.grants] == ["10.0.0.1", "10.0.0.1"]

    def test_mismatch_removes_state(self, logger) -> None:
        track = make_track(logger)
        track.record_knock("10.0.0.1", 7001, now=0.0)
        track.record_knock("10.0.0.1", 7001, now=1.0)
        outcome = track.record_knock("10.0.0.1", 9003, now=2.0)

        assert outcome is Outcome.MISMATCH
        assert track.pending("10.0.0.1") is None

        track.record_knock("10.0.0.1", 7001, now=3.0)
        assert track.pending("10.0.0.1") == ClientState(0, 1, 3.0)

    def test_expired_state_restarts(self, logger) -> None:
        track = make_track(logger)
        track.record_knock("10.0.0.1", 7001, now=0.0)
        outcome = track.record_knock("10.0.0.1", 7001, now=6.0)

        assert outcome is Outcome.PROGRESSED
        assert track.pending("10.0.0.1").hit_count == 1

    def test_uses_clock_when_now_omitted(self, logger) -> None:
        track = KnockTrack(SEQUENCE, 5.0, logger, clock=lambda: 42.0)
        track.record_knock("10.0.0.1", 7001)

        assert track.pending("10.0.0.1").last_knock == 42.0

    def test_progress_logged_at_info(self, logger, caplog) -> None:
        track = make_track(logger)
        with caplog.at_level(logging.INFO, logger="knockgate.tests"):
            track.record_knock("10.0.0.1", 7001, now=0.0)

        assert "Knock OK 10.0.0.1 | port 7001 (1/3) step 1/3" in caplog.text

    def test_failing_granter_does_not_raise(self, logger) -> None:
        def explode(address, ts):
            raise RuntimeError("firewall unavailable")

        track = make_track(logger, CallbackGranter(explode), sequence=KnockSequence([(7001,)]))
        outcome = track.record_knock("10.0.0.1", 7001, now=0.0)

        assert outcome is Outcome.SEQUENCE_COMPLETE
        assert len(track) == 0


class TestIsolation:

    def test_interleaved_addresses(self, logger, granter) -> None:
        """Knocks from one address never affect another's progress."""
        track = make_track(logger, granter)
        a, b = "10.0.0.1", "10.0.0.2"
        t = 0.0
        for port in FULL:
            track.record_knock(a, port, now=t)
            track.record_knock(b, port, now=t)
            t += 0.1

        assert sorted(g[0] for g in granter.grants) == [a, b]

    def test_mismatch_from_other_address(self, logger, granter) -> None:
        track = make_track(logger, granter)
        a, b = "10.0.0.1", "10.0.0.2"
        for i, port in enumerate(FULL):
            track.record_knock(a, port, now=float(i))
            # b only ever knocks wrong ports
            assert track.record_knock(b, 1, now=float(i)) is Outcome.MISMATCH

        assert granter.grants == [(a, 5.0)]

    def test_concurrent_addresses(self, logger, granter) -> None:
        track = make_track(logger, granter, timeout=1000.0)
        rounds = 50

        def worker(address):
            for _ in range(rounds):
                for port in FULL:
                    track.record_knock(address, port)

        addresses = [f"10.0.1.{i}" for i in range(8)]
        threads = [threading.Thread(target=worker, args=(a,)) for a in addresses]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(granter.grants) == len(addresses) * rounds
        assert len(track) == 0


class TestSerialization:

    def test_concurrent_knocks_same_address(self, logger, granter) -> None:
        """Every second knock completes a two-hit step when updates serialize."""
        track = make_track(logger, granter, timeout=1000.0, sequence=KnockSequence([(7001, 2)]))
        per_thread = 500
        n_threads = 4

        def worker():
            for _ in range(per_thread):
                track.record_knock("10.0.0.1", 7001)

        threads = [threading.Thread(target=worker) for _ in range(n_threads)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(granter.grants) == per_thread * n_threads // 2
        assert track.pending("10.0.0.1") is None

    def test_last_knock_never_moves_backwards(self, logger) -> None:
        """Timestamps are taken in the same order knocks are applied."""
        ticks = itertools.count()
        track = KnockTrack(KnockSequence([(7001, 100000)]), 1e9, logger, clock=lambda: next(ticks))
        per_thread = 500
        n_threads = 4

        def worker():
            for _ in range(per_thread):
                track.record_knock("10.0.0.1", 7001)

        threads = [threading.Thread(target=worker) for _ in range(n_threads)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        state = track.pending("10.0.0.1")
        assert state.hit_count == per_thread * n_threads
        assert state.last_knock == per_thread * n_threads - 1


class TestSweep:

    def test_sweep_removes_expired(self, logger) -> None:
        track = make_track(logger)
        track.record_knock("10.0.0.1", 7001, now=0.0)
        track.record_knock("10.0.0.2", 7001, now=4.0)

        removed = track.sweep(now=8.0)

        assert removed == 1
        assert track.pending("10.0.0.1") is None
        assert track.pending("10.0.0.2") is not None

    def test_sweep_keeps_fresh_state(self, logger) -> None:
        track = make_track(logger)
        track.record_knock("10.0.0.1", 7001, now=0.0)
        track.record_knock("10.0.0.1", 7001, now=4.0)

        assert track.sweep(now=8.0) == 0
        assert track.pending("10.0.0.1").hit_count == 2

    def test_sweep_empty(self, logger) -> None:
        assert make_track(logger).sweep(now=100.0) == 0

    def test_sweeper_thread(self, logger) -> None:
        clock = {"now": 0.0}
        track = KnockTrack(SEQUENCE, 1.0, logger, clock=lambda: clock["now"])
        track.record_knock("10.0.0.1", 7001)
        clock["now"] = 10.0

        track.start_sweeper(0.01)
        try:
            deadline = time.monotonic() + 5.0
            while len(track) and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            track.stop_sweeper(timeout=2.0)

        assert len(track) == 0
        assert track._sweep_thread is None

    def test_sweep_racing_knocks_keeps_fresh_state(self, logger, granter) -> None:
        """A sweep running alongside live knocking never drops the session."""
        ticks = itertools.count()
        seq = KnockSequence([(7001, 300), (8002, 1)])
        track = KnockTrack(seq, 1.0, logger, granter, clock=lambda: next(ticks) * 0.001)
        stop = threading.Event()
        sweeps = []

        def sweeper():
            while not stop.is_set():
                sweeps.append(track.sweep())

        t = threading.Thread(target=sweeper)
        t.start()
        try:
            outcomes = [track.record_knock("10.0.0.1", p) for p in seq.knock_ports()]
        finally:
            stop.set()
            t.join(5.0)

        assert Outcome.MISMATCH not in outcomes
        assert outcomes[-1] is Outcome.SEQUENCE_COMPLETE
        assert len(granter.grants) == 1
        assert sum(sweeps) == 0
