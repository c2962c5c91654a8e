#!/usr/bin/env python3
# Zpr_Solver.py version 1
"""
z-primitive root enumerator over consecutive ranges of primes

Purpose
-------
For each prime p, list the primitive roots modulo p that are NOT primitive
roots modulo p^2 ("z-primitive roots").  Zhuo Zhang conjectures that the
proportion of primes having at least one z-primitive root tends to Artin's
constant (~0.3739558) as p grows; this program produces the raw tables for
testing that conjecture over long runs.

Mathematical framework
----------------------
The units mod an odd prime p form a cyclic group of order p-1.  An element n
generates it iff n^d != 1 (mod p) for every proper divisor d of p-1.  Once one
generator g is known, the full set of generators is

    { g^k mod p : 1 <= k < p-1, gcd(k, p-1) = 1 }       (phi(p-1) elements)

Mod p^2 the unit group is cyclic of order p(p-1).  Since gcd(p, p-1) = 1 its
divisors are exactly {1, p} x divisors(p-1), so the divisor list of p(p-1) is
built from the divisor list of p-1 that was already computed for the search
mod p.  A primitive root n mod p stays primitive mod p^2 iff no proper divisor
d of p(p-1) has n^d == 1 (mod p^2).  Equivalently n fails to lift iff
n^(p-1) == 1 (mod p^2); the tests and the --assertions switch use that
identity as an independent check.

Work distribution
-----------------
The prime index line is cut into ranges [start, start+increment).  One
producer hands ranges, in increasing order, to a fixed pool of worker
processes through a rendezvous channel (zero buffer): a send completes only
when an idle worker has taken the range, so the producer never runs ahead of
the pool.  Each range is processed end-to-end by one worker, which owns the
range's TSV file.  The producer never terminates on its own; Ctrl-C (or
SIGTERM) stops it between ranges and lets in-flight ranges finish.  Workers
ignore both signals.  A worker that dies anyway (OOM killer, SIGKILL) has its
range failed and requeued like any other failed range.

How to run
----------
    python3 Zpr_Solver.py 1 1000 --workers 4 --outdir zpr_runs

writes zpr_runs/zprs_1_1001.tsv, zpr_runs/zprs_1001_2001.tsv, ... until
stopped, plus a run log and (on shutdown) a JSON summary.  Re-verify output
with zprs_Checker.py.

Use --version to print a machine-readable environment/version block.

Version 1
---------
* Residue-class ordered generator search (mod 8 heuristic)
* Divisors of p(p-1) reused from divisors of p-1
* Rendezvous hand-off to a fixed process pool with per-range results,
  bounded retries and an unprocessed-range report
"""

from __future__ import annotations

import argparse
import csv
import hashlib
import itertools
import json
import math
import os
import platform
import queue
import signal
import subprocess
import sys
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from multiprocessing import get_context
from typing import Callable, Deque, Dict, Iterable, Iterator, List, Optional, Set, Tuple

import sympy


program_name, program_version = "Zpr_Solver", 1

DEFAULT_WORKERS = 4
TSV_HEADER = ("p", "zprs", "n_zprs")


# ----------------------------- switches (set by args) -----------------------------
DEBUG = False
ASSERTIONS = False
ENV: Dict[str, object] = {}


# ----------------------------- small utilities -----------------------------
def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()

def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)

def sha256_file(path: str) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1 << 20), b""):
            h.update(chunk)
    return h.hexdigest()

def get_git_commit() -> Optional[str]:
    # Best effort: if this file is inside a git repo, return HEAD commit hash.
    try:
        r = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            check=True,
            cwd=os.path.dirname(os.path.abspath(__file__)),
        )
        s = (r.stdout or "").strip()
        return s if s else None
    except (OSError, subprocess.CalledProcessError):
        return None

def env_block(script_path: str, argv: List[str]) -> Dict[str, object]:
    return {
        "script_path": os.path.abspath(script_path),
        "script_sha256": sha256_file(script_path),
        "git_commit": get_git_commit(),
        "command_line": " ".join(argv),
        "python_version": sys.version.replace("\n", " "),
        "platform": platform.platform(),
        "sympy_version": sympy.__version__,
    }


# ----------------------------- external collaborators -----------------------------
def nth_prime(i: int) -> int:
    """Return the i-th prime, 1-based: nth_prime(1) == 2."""
    return int(sympy.prime(i))

def divisors_of(n: int) -> List[int]:
    """All positive divisors of n, ascending, including 1 and n."""
    return [int(d) for d in sympy.divisors(n)]


# ----------------------------- modular arithmetic -----------------------------
def gcd(a: int, b: int) -> int:
    return math.gcd(a, b)

def mod_pow(base: int, exponent: int, modulus: int) -> int:
    # built-in pow is square-and-multiply and already reduces into [0, modulus)
    return pow(base, exponent, modulus)

def is_quadratic_residue(n: int, p: int) -> bool:
    """Euler's criterion for an odd prime p.  n == 0 (mod p) gives False."""
    return mod_pow(n, (p - 1) // 2, p) == 1


# ----------------------------- primitive roots mod p -----------------------------
class InvalidInput(ValueError):
    """A root search was asked for a p that is not an odd prime."""


def candidate_order(p: int) -> Iterable[int]:
    """Order in which find_generator tries candidates, by residue class of p mod 8.

    The order only shapes the expected number of trials.  Any complete order
    over [2, p-1) finds a generator, and find_all_generators returns the same
    set whichever one is found first.

    Raises InvalidInput immediately (not lazily) when p is even.
    """
    r = p % 8
    third = max(p // 3, 2)
    if r == 1:
        return itertools.chain((2,), range(third, p - 1), range(3, third))
    if r == 3:
        # p = 3: [2, p-1) is empty and 2 = p-1 is the only generator
        return range(max(p - 2, 2), 1, -1)
    if r == 5:
        return itertools.chain(range(third, p - 1), range(2, third))
    if r == 7:
        return itertools.chain((2,), range(p - 3, 2, -1))
    raise InvalidInput(f"p={p} is not an odd prime (p mod 8 = {r})")


def find_generator(p: int, divs: List[int]) -> int:
    """Return one primitive root of the odd prime p.

    divs must hold the divisors of p-1 (p-1 itself may be present; it is
    skipped).  Quadratic residues are rejected before any order test since
    their order divides (p-1)/2.
    """
    proper = [d for d in divs if d < p - 1]
    for n in candidate_order(p):
        if is_quadratic_residue(n, p):
            continue
        for d in proper:
            if mod_pow(n, d, p) == 1:
                break
        else:
            return n
    raise RuntimeError(f"no primitive root found for p={p}: p is not prime or divisors are wrong")


def find_all_generators(p: int, divs: List[int]) -> List[int]:
    g = find_generator(p, divs)
    return [mod_pow(g, k, p) for k in range(1, p) if gcd(k, p - 1) == 1]


# ----------------------------- lifting to p^2 -----------------------------
def lift_divisors(p: int, divs: List[int]) -> List[int]:
    """Divisors of p(p-1) from the divisors of p-1.

    p is prime and coprime to p-1, so divisors(p(p-1)) = {1, p} x divisors(p-1).
    The result includes p(p-1) itself.
    """
    out = set(divs)
    out.add(p)
    out.add(p - 1)
    out.update(d * p for d in divs)
    return sorted(out)


def lifts_to_p_squared(p: int, n: int, lift_divs: List[int]) -> bool:
    """True iff the primitive root n mod p is also a primitive root mod p^2."""
    p2 = p * p
    order = p * (p - 1)
    for d in lift_divs:
        if d < order and mod_pow(n, d, p2) == 1:
            return False
    return True


# ----------------------------- per-prime rows -----------------------------
@dataclass(frozen=True)
class ZprRow:
    p: int
    zprs: Tuple[int, ...]
    n_prs: int

    @property
    def n_zprs(self) -> int:
        return len(self.zprs)


def zpr_row(i: int) -> ZprRow:
    p = nth_prime(i)
    if p == 2:
        # units mod 2 are {1}, generated by 1; 1 does not generate the units mod 4
        return ZprRow(p=2, zprs=(1,), n_prs=1)

    divs = divisors_of(p - 1)
    prs = find_all_generators(p, divs)
    lift = lift_divisors(p, divs)
    zprs = tuple(n for n in prs if not lifts_to_p_squared(p, n, lift))

    if ASSERTIONS:
        assert len(prs) == len(set(prs)) == int(sympy.totient(p - 1)), \
            f"p={p}: {len(prs)} primitive roots, expected phi(p-1)={sympy.totient(p - 1)}"
        for n in zprs:
            assert mod_pow(n, p - 1, p * p) == 1, f"p={p}: {n} listed but lifts to p^2"
    return ZprRow(p=p, zprs=zprs, n_prs=len(prs))


def process_range(start: int, stop: int) -> Iterator[ZprRow]:
    """Rows for prime indices [start, stop), in ascending p."""
    for i in range(start, stop):
        yield zpr_row(i)


def format_zprs(zprs: Tuple[int, ...]) -> str:
    return repr(list(zprs))


# ----------------------------- range tasks -----------------------------
# A range is the unit of work: a half-open block [start, stop) of prime indices.
# One worker computes every prime in it and owns its TSV file for the whole
# range.  Ranges are cheap to describe and expensive to compute (the
# generator-power loop alone is O(p) per prime), so the channel carries only
# the two bounds and the attempt counter.

@dataclass(frozen=True)
class RangeTask:
    start: int
    stop: int
    attempt: int = 1


@dataclass
class RangeResult:
    ok: bool
    task: RangeTask
    path: str
    primes: int = 0
    primes_with_zprs: int = 0
    total_prs: int = 0
    total_zprs: int = 0
    elapsed_sec: float = 0.0
    worker: str = ""
    error: Optional[str] = None


def range_path(outdir: str, start: int, stop: int) -> str:
    return os.path.join(outdir, f"zprs_{start}_{stop}.tsv")


def range_stream(start: int, increment: int) -> Iterator[RangeTask]:
    """Unbounded stream of consecutive ranges [start + j*increment, start + (j+1)*increment)."""
    if increment < 1:
        raise ValueError(f"increment must be >= 1, got {increment}")
    for cursor in itertools.count(start, increment):
        yield RangeTask(cursor, cursor + increment)


def worker_range(task: RangeTask, outdir: str) -> RangeResult:
    """Compute one range and write its TSV file.  Never raises; failures come back as ok=False."""
    path = range_path(outdir, task.start, task.stop)
    res = RangeResult(ok=False, task=task, path=path, worker=f"pid={os.getpid()}")
    t0 = time.time()
    try:
        with open(path, "w", newline="", encoding="utf-8") as f:
            w = csv.writer(f, delimiter="\t", lineterminator="\n")
            w.writerow(TSV_HEADER)
            f.flush()
            for row in process_range(task.start, task.stop):
                w.writerow([row.p, format_zprs(row.zprs), row.n_zprs])
                f.flush()
                res.primes += 1
                res.total_prs += row.n_prs
                res.total_zprs += row.n_zprs
                if row.zprs:
                    res.primes_with_zprs += 1
        res.ok = True
    except Exception as e:
        if DEBUG:
            res.error = f"range=[{task.start},{task.stop}) attempt={task.attempt} primes_written={res.primes} err={e!r}"
        else:
            res.error = repr(e)
    res.elapsed_sec = time.time() - t0
    return res


# ----------------------------- rendezvous channel -----------------------------
class RendezvousChannel:
    """Zero-capacity multi-consumer hand-off between processes.

    A one-slot queue carries the item; the "taken" semaphore is released by
    the receiver once it owns the item, and send() waits on it, so a send
    completes only when some receiver has committed to that item.  The send
    lock keeps at most one item in flight when several producers share the
    channel.
    """

    def __init__(self, ctx) -> None:
        self._slot = ctx.Queue(maxsize=1)
        self._taken = ctx.Semaphore(0)
        self._send_lock = ctx.Lock()

    def send(self, item, abandon: Optional[Callable[[], bool]] = None) -> bool:
        """Block until a receiver has taken item.

        With abandon, the wait is re-checked every half second; once abandon()
        is true the item is taken back out of the slot and False is returned.
        If a receiver got there first the send still counts and True is
        returned.
        """
        with self._send_lock:
            self._slot.put(item)
            if abandon is None:
                self._taken.acquire()
                return True
            while not self._taken.acquire(timeout=0.5):
                if not abandon():
                    continue
                try:
                    self._slot.get(timeout=0.5)
                except queue.Empty:
                    # lost the race: a receiver holds it and is about to release
                    self._taken.acquire(timeout=5)
                    return True
                return False
            return True

    def receive(self, on_take: Optional[Callable[[object], None]] = None):
        # on_take runs before the sender is released, so whatever it records
        # is visible by the time send() returns.
        item = self._slot.get()
        if on_take is not None:
            on_take(item)
        self._taken.release()
        return item


def _ignore_stop_signals() -> None:
    # Ctrl-C and SIGTERM reach the whole process group; the supervisor turns
    # them into a stop and lets the workers finish their in-flight ranges.
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    signal.signal(signal.SIGTERM, signal.SIG_IGN)


def held_range(held, w: int) -> Optional[RangeTask]:
    """Last range worker w took from the channel, or None if it never took one."""
    with held.get_lock():
        start, stop, attempt = held[3 * w:3 * w + 3]
    if stop == 0:
        return None
    return RangeTask(start, stop, attempt)


def _worker_loop(w: int, channel: RendezvousChannel, results, held, outdir: str,
                 debug: bool, assertions: bool) -> None:
    _ignore_stop_signals()
    global DEBUG, ASSERTIONS
    DEBUG = debug
    ASSERTIONS = assertions

    def claim(task) -> None:
        if task is not None:
            with held.get_lock():
                held[3 * w:3 * w + 3] = [task.start, task.stop, task.attempt]

    while True:
        task = channel.receive(on_take=claim)
        if task is None:
            break
        results.put(worker_range(task, outdir))


# ----------------------------- supervisor / producer -----------------------------
def new_stats(workers: int) -> Dict[str, object]:
    return {
        "workers": workers,
        "ranges_sent": 0,
        "ranges_done": 0,
        "range_failures": 0,
        "ranges_requeued": 0,
        "unprocessed_ranges": 0,
        "primes_done": 0,
        "primes_with_zprs": 0,
        "total_prs": 0,
        "total_zprs": 0,
        "zpr_prime_fraction": None,
        "stopped": False,
        "err_samples": [],
    }


def run_distributor(
    ranges: Iterable[RangeTask],
    workers: int,
    outdir: str,
    logf,
    stop: Optional[threading.Event] = None,
    max_range_attempts: int = 3,
    progress_every: int = 10,
) -> Tuple[Dict[str, object], List[RangeResult]]:
    """Feed ranges to a fixed pool of worker processes until ranges run out or stop is set.

    ranges may be unbounded (see range_stream); the loop then only ends via
    stop.  Returns (stats, unprocessed) where unprocessed holds the last
    failed result of every range that used up max_range_attempts.
    """
    if workers < 1:
        raise ValueError(f"workers must be >= 1, got {workers}")
    if stop is None:
        stop = threading.Event()
    ensure_dir(outdir)

    ctx = get_context("fork") if sys.platform == "darwin" else get_context()
    channel = RendezvousChannel(ctx)
    results = ctx.Queue()
    # (start, stop, attempt) of the range each worker last took
    held = ctx.Array("q", 3 * workers)

    stats = new_stats(workers)
    unprocessed: List[RangeResult] = []
    retry: Deque[RangeTask] = deque()
    in_flight: Set[RangeTask] = set()
    reaped: Set[int] = set()

    def log(line: str) -> None:
        logf.write(f"{utc_now_iso()} {line}\n")
        logf.flush()

    def log_progress() -> None:
        done_primes = int(stats["primes_done"])
        if done_primes:
            stats["zpr_prime_fraction"] = int(stats["primes_with_zprs"]) / done_primes
        log(
            f"progress ranges_sent={stats['ranges_sent']} ranges_done={stats['ranges_done']} "
            f"failures={stats['range_failures']} requeued={stats['ranges_requeued']} "
            f"unprocessed={stats['unprocessed_ranges']} primes={done_primes} "
            f"with_zprs={stats['primes_with_zprs']} fraction={stats['zpr_prime_fraction']}"
        )

    def handle(res: RangeResult) -> None:
        t = res.task
        if t not in in_flight:
            # already written off when its worker was reaped
            log(f"WARN late result for range=[{t.start},{t.stop}) attempt={t.attempt} {res.worker} ignored")
            return
        in_flight.discard(t)
        if res.ok:
            stats["ranges_done"] = int(stats["ranges_done"]) + 1
            stats["primes_done"] = int(stats["primes_done"]) + res.primes
            stats["primes_with_zprs"] = int(stats["primes_with_zprs"]) + res.primes_with_zprs
            stats["total_prs"] = int(stats["total_prs"]) + res.total_prs
            stats["total_zprs"] = int(stats["total_zprs"]) + res.total_zprs
            print(
                f"[>] range=[{t.start},{t.stop}) primes={res.primes} "
                f"with_zprs={res.primes_with_zprs} {res.worker} runtime={res.elapsed_sec:.2f}s"
            )
            if int(stats["ranges_done"]) % progress_every == 0:
                log_progress()
            return

        stats["range_failures"] = int(stats["range_failures"]) + 1
        es = stats["err_samples"]
        if isinstance(es, list) and len(es) < 80:
            es.append(res.error)
        log(f"ERROR range=[{t.start},{t.stop}) attempt={t.attempt} {res.worker} error={res.error}")
        print(f"[!] ERROR range=[{t.start},{t.stop}) attempt={t.attempt}: {res.error}")
        if t.attempt < max_range_attempts and not stop.is_set():
            retry.append(RangeTask(t.start, t.stop, t.attempt + 1))
            stats["ranges_requeued"] = int(stats["ranges_requeued"]) + 1
        else:
            unprocessed.append(res)
            stats["unprocessed_ranges"] = len(unprocessed)

    def no_live_workers() -> bool:
        return not any(p.is_alive() for p in procs)

    def reap() -> bool:
        # A worker that died mid-range never reports; its range is failed here
        # so the usual requeue / unprocessed policy applies to it.
        found = False
        for w, p in enumerate(procs):
            if w in reaped or p.is_alive():
                continue
            reaped.add(w)
            t = held_range(held, w)
            log(f"ERROR worker={p.name} exited exitcode={p.exitcode}")
            print(f"[!] ERROR worker {p.name} exited (exitcode={p.exitcode})")
            if t is None or t not in in_flight:
                continue
            found = True
            handle(RangeResult(ok=False, task=t, path=range_path(outdir, t.start, t.stop),
                               worker=f"pid={p.pid}",
                               error=f"worker {p.name} exited with exitcode={p.exitcode}"))
        return found

    def drain(block: bool) -> None:
        # Blocking drains wait for at least one result or reaped worker, so a
        # dead worker or a dead pool cannot hang the supervisor.
        while True:
            try:
                res = results.get(timeout=0.5) if block else results.get_nowait()
            except queue.Empty:
                if reap() or not block:
                    return
                if no_live_workers():
                    raise RuntimeError(f"all workers exited with {len(in_flight)} ranges outstanding")
                continue
            handle(res)
            block = False

    def abandon_send() -> bool:
        return stop.is_set() or no_live_workers()

    procs = [
        ctx.Process(
            target=_worker_loop,
            args=(w, channel, results, held, outdir, DEBUG, ASSERTIONS),
            name=f"zpr-worker-{w}",
            daemon=True,
        )
        for w in range(workers)
    ]
    for p in procs:
        p.start()

    log(f"START workers={workers} outdir={outdir} max_range_attempts={max_range_attempts} "
        f"debug={DEBUG} assertions={ASSERTIONS}")

    source = iter(ranges)
    try:
        while not stop.is_set():
            drain(block=False)
            if retry:
                task = retry.popleft()
            else:
                task = next(source, None)
                if task is None:
                    if not in_flight:
                        break
                    drain(block=True)
                    continue
            if not channel.send(task, abandon=abandon_send):
                if task.attempt > 1:
                    retry.appendleft(task)
                if stop.is_set():
                    break
                raise RuntimeError(f"all workers exited with {len(in_flight)} ranges outstanding")
            in_flight.add(task)
            stats["ranges_sent"] = int(stats["ranges_sent"]) + 1

        stats["stopped"] = stop.is_set()
        while in_flight:
            drain(block=True)
    except BaseException:
        for p in procs:
            if p.is_alive():
                p.kill()
        raise
    finally:
        for p in procs:
            if p.is_alive():
                channel.send(None, abandon=no_live_workers)
        for p in procs:
            p.join(timeout=5)
            if p.is_alive():
                p.kill()
                p.join()
        results.close()

    for task in retry:
        # only reachable after a stop: requeued but never handed out again
        tried = RangeTask(task.start, task.stop, task.attempt - 1)
        unprocessed.append(RangeResult(ok=False, task=tried, path=range_path(outdir, task.start, task.stop),
                                       error="not retried: run stopped"))
    stats["unprocessed_ranges"] = len(unprocessed)
    log_progress()
    return stats, unprocessed


# ----------------------------- run artifacts -----------------------------
def write_unprocessed(path: str, unprocessed: List[RangeResult]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write("# start\tstop\tattempts\terror\n")
        for res in sorted(unprocessed, key=lambda r: r.task.start):
            f.write(f"{res.task.start}\t{res.task.stop}\t{res.task.attempt}\t{res.error}\n")


def write_summary_json(
    path: str,
    start: int,
    increment: int,
    workers: int,
    outdir: str,
    start_utc: str,
    end_utc: str,
    runtime_sec: float,
    env: Dict[str, object],
    stats: Dict[str, object],
    log_file: str,
    unprocessed_file: Optional[str],
) -> None:
    summary = {
        "environment": env,
        "start_index": start,
        "increment": increment,
        "workers": workers,
        "outdir": outdir,
        "start_utc": start_utc,
        "end_utc": end_utc,
        "runtime_seconds": runtime_sec,
        "stats": stats,
        "artifacts": {
            "log_file": log_file,
            "log_file_sha256": sha256_file(log_file),
            "unprocessed_file": unprocessed_file,
            "unprocessed_file_sha256": sha256_file(unprocessed_file) if unprocessed_file else None,
        },
        "complete_ranges": int(stats.get("unprocessed_ranges", 0)) == 0,
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(summary, f, indent=2, sort_keys=True)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Zpr_Solver: stream the z-primitive roots of consecutive primes to TSV files.",
    )
    ap.add_argument("start", type=int, nargs="?",
                    help="1-based index of the first prime to process (1 -> p=2)")
    ap.add_argument("increment", type=int, nargs="?",
                    help="primes per range, i.e. rows per output file")
    ap.add_argument("--version", action="store_true",
                    help="Print version/environment info and exit")
    ap.add_argument("--workers", type=int, default=DEFAULT_WORKERS,
                    help=f"worker processes (default {DEFAULT_WORKERS})")
    ap.add_argument("--outdir", default=".")
    ap.add_argument("--max_range_attempts", type=int, default=3,
                    help="attempts per range before it is reported as unprocessed")
    ap.add_argument("--progress_every", type=int, default=10,
                    help="log a progress line every N completed ranges")
    ap.add_argument("--debug", action="store_true")
    ap.add_argument("--assertions", action="store_true",
                    help="re-verify every row (phi(p-1) count, n^(p-1) == 1 mod p^2)")
    return ap


def main(argv: Optional[List[str]] = None) -> None:
    global DEBUG, ASSERTIONS, ENV

    argv = list(sys.argv[1:] if argv is None else argv)
    ap = build_parser()
    args = ap.parse_args(argv)

    if args.version:
        info = env_block(__file__, [sys.argv[0]] + argv)
        print(json.dumps(info, indent=2, sort_keys=True))
        return

    if args.start is None or args.increment is None:
        ap.error("START and INCREMENT are required")
    if args.start < 1:
        ap.error(f"START must be >= 1 (got {args.start})")
    if args.increment < 1:
        ap.error(f"INCREMENT must be >= 1 (got {args.increment})")
    if args.workers < 1:
        ap.error(f"--workers must be >= 1 (got {args.workers})")
    if args.max_range_attempts < 1:
        ap.error(f"--max_range_attempts must be >= 1 (got {args.max_range_attempts})")
    if args.progress_every < 1:
        ap.error(f"--progress_every must be >= 1 (got {args.progress_every})")

    DEBUG = bool(args.debug)
    ASSERTIONS = bool(args.assertions)
    ENV = env_block(__file__, [sys.argv[0]] + argv)

    outdir = args.outdir
    ensure_dir(outdir)
    log_path = os.path.join(outdir, f"run_zprs_{args.start}.log")
    summary_path = os.path.join(outdir, f"summary_zprs_{args.start}.json")
    unproc_path = os.path.join(outdir, f"unprocessed_ranges_{args.start}.tsv")

    stop = threading.Event()

    def request_stop(signum, frame) -> None:
        if stop.is_set():
            raise KeyboardInterrupt
        print(f"\n[!] signal {signum}: no new ranges will be sent; finishing in-flight ranges "
              f"(repeat to abort)")
        stop.set()

    signal.signal(signal.SIGINT, request_stop)
    signal.signal(signal.SIGTERM, request_stop)

    print(f"[+] {program_name} v{program_version}")
    print(f"[+] start={args.start} increment={args.increment} outdir={outdir}")
    print(f"[+] workers={args.workers} max_range_attempts={args.max_range_attempts}")
    print(f"[+] debug={DEBUG} assertions={ASSERTIONS}")
    print(f"[+] start time (UTC): {utc_now_iso()}")
    print("[+] runs until interrupted (Ctrl-C)\n")

    start_utc = utc_now_iso()
    t0 = time.time()

    with open(log_path, "a", encoding="utf-8") as logf:
        try:
            stats, unprocessed = run_distributor(
                range_stream(args.start, args.increment),
                workers=args.workers,
                outdir=outdir,
                logf=logf,
                stop=stop,
                max_range_attempts=args.max_range_attempts,
                progress_every=args.progress_every,
            )
        except Exception as e:
            logf.write(f"{utc_now_iso()} ERROR supervisor error={e!r}\n")
            logf.flush()
            print(f"[!] ERROR: {e!r} (see {log_path})")
            raise

        unprocessed_file: Optional[str] = None
        if unprocessed:
            unprocessed_file = unproc_path
            write_unprocessed(unproc_path, unprocessed)

        end_utc = utc_now_iso()
        runtime = time.time() - t0
        logf.write(
            f"{end_utc} DONE ranges_done={stats['ranges_done']} primes={stats['primes_done']} "
            f"with_zprs={stats['primes_with_zprs']} unprocessed={len(unprocessed)} "
            f"runtime_sec={runtime:.3f}\n"
        )
        logf.flush()

    write_summary_json(
        path=summary_path,
        start=args.start,
        increment=args.increment,
        workers=args.workers,
        outdir=outdir,
        start_utc=start_utc,
        end_utc=end_utc,
        runtime_sec=runtime,
        env=ENV,
        stats=stats,
        log_file=log_path,
        unprocessed_file=unprocessed_file,
    )
    print(f"\n[+] stopped after {stats['ranges_done']} ranges, {stats['primes_done']} primes; "
          f"summary in {summary_path}")


if __name__ == "__main__":
    main()
