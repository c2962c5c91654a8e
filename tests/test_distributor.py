from __future__ import annotations

import io
import itertools
import multiprocessing
import os
import re
import signal
import threading
import time
from pathlib import Path
from typing import Dict, List

import pytest

from Zpr_Solver import (
    RangeTask,
    RendezvousChannel,
    _worker_loop,
    held_range,
    range_stream,
    run_distributor,
)


def _tsv_files(d: Path) -> Dict[str, str]:
    return {f.name: f.read_text(encoding="utf-8") for f in sorted(d.glob("zprs_*.tsv")) if f.is_file()}


def _finished(d: Path, t: RangeTask) -> bool:
    path = d / f"zprs_{t.start}_{t.stop}.tsv"
    if not path.is_file():
        return False
    text = path.read_text(encoding="utf-8")
    return text.endswith("\n") and len(text.splitlines()) == t.stop - t.start + 1


def test_range_stream_is_contiguous() -> None:
    first = list(itertools.islice(range_stream(1, 5), 4))
    assert first == [RangeTask(1, 6), RangeTask(6, 11), RangeTask(11, 16), RangeTask(16, 21)]
    assert all(t.attempt == 1 for t in first)


def test_range_stream_rejects_empty_ranges() -> None:
    with pytest.raises(ValueError):
        next(range_stream(1, 0))


def test_rendezvous_send_waits_for_a_receiver() -> None:
    ch = RendezvousChannel(multiprocessing.get_context())
    sent = threading.Event()

    def producer() -> None:
        ch.send(RangeTask(1, 2))
        sent.set()

    t = threading.Thread(target=producer, daemon=True)
    t.start()
    try:
        assert not sent.wait(0.3)
        assert ch.receive() == RangeTask(1, 2)
        assert sent.wait(5)
    finally:
        t.join(timeout=5)


def test_rendezvous_keeps_send_order() -> None:
    ch = RendezvousChannel(multiprocessing.get_context())
    items = [RangeTask(a, a + 1) for a in range(1, 6)]
    t = threading.Thread(target=lambda: [ch.send(x) for x in items], daemon=True)
    t.start()
    got = [ch.receive() for _ in items]
    t.join(timeout=5)
    assert got == items


def test_rendezvous_abandoned_send_takes_its_item_back() -> None:
    ch = RendezvousChannel(multiprocessing.get_context())
    assert ch.send(RangeTask(1, 2), abandon=lambda: True) is False

    claimed: List[RangeTask] = []
    t = threading.Thread(target=lambda: ch.send(RangeTask(2, 3), abandon=lambda: False), daemon=True)
    t.start()
    assert ch.receive(on_take=claimed.append) == RangeTask(2, 3)
    t.join(timeout=5)
    assert not t.is_alive()
    assert claimed == [RangeTask(2, 3)]


def test_worker_ignores_stop_signals_and_finishes_its_range(tmp_path: Path) -> None:
    ctx = multiprocessing.get_context()
    ch = RendezvousChannel(ctx)
    results = ctx.Queue()
    held = ctx.Array("q", 3)
    p = ctx.Process(target=_worker_loop, args=(0, ch, results, held, str(tmp_path), False, False), daemon=True)
    p.start()
    try:
        # handlers are installed before the first receive
        assert ch.send(RangeTask(1, 60))
        assert held_range(held, 0) == RangeTask(1, 60)
        os.kill(p.pid, signal.SIGTERM)
        os.kill(p.pid, signal.SIGINT)

        res = results.get(timeout=60)
        assert res.ok, res.error
        assert res.primes == 59
        assert p.is_alive()

        ch.send(None)
        p.join(timeout=10)
        assert p.exitcode == 0
    finally:
        if p.is_alive():
            p.kill()
            p.join()


def test_producer_never_runs_ahead_of_the_pool(tmp_path: Path) -> None:
    workers = 2
    handed: List[RangeTask] = []
    unfinished: List[int] = []

    def watched():
        # When the next range is pulled every earlier one has been taken by a
        # worker, and a worker takes a new range only after writing its last.
        for task in itertools.islice(range_stream(3000, 3), 6):
            unfinished.append(sum(1 for t in handed if not _finished(tmp_path, t)))
            handed.append(task)
            yield task

    stats, unprocessed = run_distributor(watched(), workers, str(tmp_path), io.StringIO())

    assert unprocessed == []
    assert stats["ranges_done"] == stats["ranges_sent"] == 6
    assert len(unfinished) == 6
    assert max(unfinished) <= workers
    assert all(_finished(tmp_path, t) for t in handed)


def test_killed_worker_range_is_reported_and_run_finishes(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    logf = io.StringIO()
    box = {}
    tasks = [RangeTask(60000, 60200), RangeTask(1, 3), RangeTask(3, 5)]

    def run() -> None:
        box["out"] = run_distributor(tasks, 2, str(tmp_path), logf, max_range_attempts=1)

    t = threading.Thread(target=run, daemon=True)
    t.start()
    try:
        # one worker sits on the large range; the other does both small ones
        out = ""
        deadline = time.time() + 60
        while not ("range=[1,3)" in out and "range=[3,5)" in out):
            assert time.time() < deadline, out
            time.sleep(0.1)
            out += capsys.readouterr().out
        idle = {int(pid) for pid in re.findall(r"pid=(\d+)", out)}
        busy = [c for c in multiprocessing.active_children()
                if c.name.startswith("zpr-worker-") and c.pid not in idle]
        assert len(busy) == 1
        busy[0].kill()

        t.join(timeout=30)
        assert not t.is_alive()
    finally:
        for c in multiprocessing.active_children():
            if c.name.startswith("zpr-worker-"):
                c.kill()

    stats, unprocessed = box["out"]
    assert stats["ranges_done"] == 2
    assert stats["range_failures"] == 1
    assert [(r.task.start, r.task.stop) for r in unprocessed] == [(60000, 60200)]
    assert "exited with exitcode=" in unprocessed[0].error
    assert "ERROR worker=zpr-worker-" in logf.getvalue()
    assert _finished(tmp_path, RangeTask(1, 3)) and _finished(tmp_path, RangeTask(3, 5))
    # the large range's partial file is left for the next attempt to rewrite
    assert not _finished(tmp_path, tasks[0])


def test_one_worker_and_four_workers_write_identical_files(tmp_path: Path) -> None:
    d1, d4 = tmp_path / "n1", tmp_path / "n4"

    stats1, unp1 = run_distributor(itertools.islice(range_stream(1, 7), 6), 1, str(d1), io.StringIO())
    stats4, unp4 = run_distributor(itertools.islice(range_stream(1, 7), 6), 4, str(d4), io.StringIO())

    assert unp1 == [] and unp4 == []
    assert stats1["ranges_done"] == stats4["ranges_done"] == 6
    assert stats1["primes_done"] == stats4["primes_done"] == 42
    assert stats1["primes_with_zprs"] == stats4["primes_with_zprs"]
    assert stats1["total_zprs"] == stats4["total_zprs"]

    files1, files4 = _tsv_files(d1), _tsv_files(d4)
    assert sorted(files1) == sorted(f"zprs_{a}_{a + 7}.tsv" for a in range(1, 43, 7))
    assert files1 == files4
    for text in files1.values():
        assert len(text.splitlines()) == 8


def test_preset_stop_sends_nothing(tmp_path: Path) -> None:
    stop = threading.Event()
    stop.set()
    stats, unprocessed = run_distributor(range_stream(1, 5), 2, str(tmp_path), io.StringIO(), stop=stop)

    assert stats["ranges_sent"] == 0
    assert stats["stopped"] is True
    assert unprocessed == []
    assert _tsv_files(tmp_path) == {}


def test_stop_halts_unbounded_stream_and_finishes_in_flight_ranges(tmp_path: Path) -> None:
    stop = threading.Event()
    timer = threading.Timer(1.0, stop.set)
    timer.start()
    try:
        stats, unprocessed = run_distributor(range_stream(1, 3), 2, str(tmp_path), io.StringIO(), stop=stop)
    finally:
        timer.cancel()

    assert stats["stopped"] is True
    assert unprocessed == []
    assert stats["ranges_done"] == stats["ranges_sent"]
    files = _tsv_files(tmp_path)
    assert len(files) == stats["ranges_sent"]
    for text in files.values():
        assert len(text.splitlines()) == 4


def test_failed_range_is_retried_then_reported(tmp_path: Path) -> None:
    (tmp_path / "zprs_3_5.tsv").mkdir()
    logf = io.StringIO()

    stats, unprocessed = run_distributor(
        itertools.islice(range_stream(1, 2), 3), 2, str(tmp_path), logf, max_range_attempts=2,
    )

    assert stats["ranges_done"] == 2
    assert stats["range_failures"] == 2
    assert stats["ranges_requeued"] == 1
    assert stats["ranges_sent"] == 4
    assert stats["unprocessed_ranges"] == 1
    assert [(r.task.start, r.task.stop, r.task.attempt) for r in unprocessed] == [(3, 5, 2)]
    assert "IsADirectoryError" in unprocessed[0].error
    assert "ERROR range=[3,5) attempt=1" in logf.getvalue()
    assert "ERROR range=[3,5) attempt=2" in logf.getvalue()
    assert sorted(_tsv_files(tmp_path)) == ["zprs_1_3.tsv", "zprs_5_7.tsv"]


def test_log_records_start_and_progress(tmp_path: Path) -> None:
    logf = io.StringIO()
    run_distributor(itertools.islice(range_stream(1, 2), 4), 2, str(tmp_path), logf, progress_every=2)

    lines = logf.getvalue().splitlines()
    assert " START workers=2 " in lines[0]
    progress = [ln for ln in lines if " progress " in ln]
    assert len(progress) == 3
    assert "ranges_done=4" in progress[-1]


def test_rejects_empty_pool(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        run_distributor([RangeTask(1, 2)], 0, str(tmp_path), io.StringIO())
