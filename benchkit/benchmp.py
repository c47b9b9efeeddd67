"""Calibrated repetition of benchmark kernels, alone or in parallel processes."""

from __future__ import annotations

import multiprocessing
import os
import queue
import re
import signal
import time
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache, partial
from typing import Any, Callable, Optional

from benchkit.timing import Results, Sample, Stopwatch

TRIES = 11
SHORT = 1_000_000

# Below this interval the timer overhead is not lost in the noise.
_NOISE_LIMIT = 50000
_POSSIBILITIES = (5000, 10000, 50000, 100000)
_TEST_POINTS = (1.015, 1.02, 1.035)
_MAX_BATCH = 1 << 27

BenchFunc = Callable[[int, Any], None]

_INT = re.compile(r"\s*([+-]?\d+)")
_FLOAT = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def _atoi(text: str) -> int:
    match = _INT.match(text)
    return int(match.group(1)) if match else 0


def _atof(text: str) -> float:
    match = _FLOAT.match(text)
    return float(match.group(1)) if match else 0.0


def _chain() -> list:
    """A cell that refers to itself, for chasing references."""
    cell: list = []
    cell.append(cell)
    return cell


def _one_op(n: int, p: list) -> list:
    for _ in range(n):
        p = p[0]
    return p


def _two_op(n: int, p: list) -> list:
    for _ in range(n):
        p = p[0]
        p = p[0]
    return p


def _chase_ten(n: int, p: list) -> list:
    for _ in range(n):
        p = p[0]
        p = p[0]
        p = p[0]
        p = p[0]
        p = p[0]
        p = p[0]
        p = p[0]
        p = p[0]
        p = p[0]
        p = p[0]
    return p


def _read_clock(n: int) -> None:
    for _ in range(n):
        time.perf_counter()


def _time_work(work: Callable[[int], Any], enough: int) -> Sample:
    """Run ``work(n)`` with a growing ``n`` until it takes ``enough`` microseconds."""
    watch = Stopwatch()
    n = 1
    while True:
        watch.start()
        work(n)
        usecs = watch.stop()
        if usecs >= enough or n >= _MAX_BATCH:
            return Sample(usecs, n)
        n *= 2


class _IntervalFinder:
    """Searches for the amount of work that fills a given interval."""

    def __init__(self) -> None:
        self.n = 10000
        self.usecs = 0

    @staticmethod
    def _duration(n: int) -> int:
        p = _chain()
        watch = Stopwatch()
        watch.start()
        _chase_ten(n, p)
        return watch.stop()

    def time_n(self, n: int) -> int:
        """The fastest of several timings of ``n`` units of work."""
        results = Results()
        for _ in range(1, TRIES):
            results.insert(self._duration(n), n)
        return results.minimum().usecs

    def find_n(self, enough: int) -> int:
        if not self.usecs:
            self.usecs = self.time_n(self.n)
        for _ in range(10):
            if 0.98 * enough < self.usecs < 1.02 * enough:
                return self.n
            if self.usecs < 1000:
                self.n *= 10
            else:
                self.n = int(self.n / self.usecs * enough) + 1
            self.usecs = self.time_n(self.n)
        return 0

    def test_time(self, enough: int) -> bool:
        """Whether small changes in work change the time proportionally."""
        n = self.find_n(enough)
        if n == 0:
            return False
        baseline = self.time_n(n)
        for point in _TEST_POINTS:
            usecs = self.time_n(int(n * point))
            expected = int(baseline * point)
            if expected == 0 or abs(expected - usecs) / expected > 0.0025:
                return False
        return True


def compute_enough() -> int:
    """The shortest interval, in microseconds, that the clock times accurately."""
    env = os.environ.get("ENOUGH")
    if env is not None:
        return _atoi(env)
    finder = _IntervalFinder()
    for candidate in _POSSIBILITIES:
        if finder.test_time(candidate):
            return candidate
    return SHORT


class Calibration:
    """Timing interval and measurement overheads, computed on first use."""

    def __init__(
        self,
        enough: Optional[int] = None,
        timing_o: Optional[int] = None,
        loop_o: Optional[float] = None,
    ) -> None:
        self._enough = enough
        self._timing = timing_o
        self._loop = loop_o

    def get_enough(self, e: int = 0) -> int:
        """The larger of ``e`` and the calibrated timing interval."""
        if self._enough is None:
            self._enough = compute_enough()
        return max(self._enough, e)

    def timing_overhead(self) -> int:
        """Microseconds one clock reading costs, when it is not in the noise."""
        if self._timing is None:
            enough = self.get_enough(0)
            if enough <= _NOISE_LIMIT:
                samples = Results()
                for _ in range(TRIES):
                    sample = _time_work(_read_clock, enough)
                    samples.insert(sample.usecs, sample.n)
                best = samples.minimum()
                self._timing = best.usecs // best.n
            else:
                self._timing = 0
        return self._timing

    def loop_overhead(self) -> float:
        """Microseconds one pass of an empty loop costs."""
        if self._loop is None:
            enough = self.get_enough(0)
            t_o = self.timing_overhead()
            one, two = Results(), Results()
            p = _chain()
            for _ in range(TRIES):
                for results, op in ((one, _one_op), (two, _two_op)):
                    sample = _time_work(partial(op, p=p), enough)
                    if sample.usecs > t_o:
                        results.insert(sample.usecs - t_o, sample.n)
            # u1 = n1 * (overhead + work), u2 = n2 * (overhead + 2 * work)
            a, b = one.minimum(), two.minimum()
            overhead = 2.0 * a.usecs / a.n - b.usecs / b.n
            self._loop = max(overhead, 0.0)
        return self._loop


@lru_cache(maxsize=None)
def _calibration_for(
    enough: Optional[str], timing: Optional[str], loop: Optional[str]
) -> Calibration:
    return Calibration(
        enough=None if enough is None else _atoi(enough),
        timing_o=None if timing is None else int(_atof(timing)),
        loop_o=None if loop is None else _atof(loop),
    )


def calibration() -> Calibration:
    """The shared calibration, honouring ENOUGH, TIMING_O and LOOP_O."""
    env = os.environ
    return _calibration_for(env.get("ENOUGH"), env.get("TIMING_O"), env.get("LOOP_O"))


class _Phase(Enum):
    WARMUP = "warmup"
    TIMING = "timing_interval"
    COOLDOWN = "cooldown"


class _Finished(Exception):
    """The measuring loop has handed back its results."""


class _ChildFailure(Exception):
    """A worker process went away before the run was over."""


class _LocalChannel:
    """Coordination for a single worker running in this process."""

    def __init__(self, warmup: int) -> None:
        self.warmup = warmup
        self._ready_at: Optional[float] = None
        self._done = False

    def parent_gone(self) -> bool:
        return False

    def ready(self) -> None:
        self._ready_at = time.monotonic()

    def start_requested(self) -> bool:
        return (
            self._ready_at is not None
            and time.monotonic() - self._ready_at >= self.warmup / 1000000.0
        )

    def done(self) -> None:
        self._done = True

    def results_requested(self) -> bool:
        return self._done

    def send_results(self, results: Results) -> None:
        pass

    def wait_exit(self) -> None:
        pass


class _ProcessChannel:
    """Coordination between the parent and forked worker processes."""

    def __init__(self, ctx) -> None:
        self.responses = ctx.Queue()
        self.start = ctx.Event()
        self.collect = ctx.Event()
        self.exit = ctx.Event()
        self.parent_pid = os.getpid()

    def parent_gone(self) -> bool:
        return os.getppid() != self.parent_pid

    def ready(self) -> None:
        self.responses.put(("ready",))

    def start_requested(self) -> bool:
        return self.start.is_set()

    def done(self) -> None:
        self.responses.put(("done",))

    def results_requested(self) -> bool:
        return self.collect.is_set()

    def send_results(self, results: Results) -> None:
        self.responses.put(("results", [(s.usecs, s.n) for s in results]))

    def wait_exit(self) -> None:
        self.exit.wait()


@dataclass
class _ChildRun:
    initialize: Optional[BenchFunc]
    benchmark: BenchFunc
    cleanup: Optional[BenchFunc]
    cookie: Any
    channel: Any
    enough: int
    iterations: int
    parallel: int
    repetitions: int
    calib: Calibration
    batch: int = 1
    phase: _Phase = _Phase.WARMUP
    need_warmup: bool = True
    completed: int = 0
    results: Results = field(default_factory=Results)
    watch: Stopwatch = field(default_factory=Stopwatch)

    def run(self) -> Results:
        if self.initialize:
            self.initialize(0, self.cookie)
        try:
            while True:
                self.benchmark(self.interval(), self.cookie)
        except _Finished:
            return self.results

    def interval(self) -> int:
        """Account for the last batch and decide how much work comes next."""
        iterations = self.iterations if self.phase is _Phase.TIMING else self.batch
        result = 0.0
        measured = Sample(0, self.iterations)
        if not self.need_warmup:
            result = float(self.watch.stop())
            if self.cleanup:
                self.cleanup(iterations, self.cookie)
            result -= (
                self.calib.timing_overhead()
                + self.iterations * self.calib.loop_overhead()
            )
            measured = Sample(int(result) if result >= 0 else 0, self.iterations)

        if self.channel.parent_gone():
            if self.cleanup:
                self.cleanup(0, self.cookie)
            raise _Finished

        if self.phase is _Phase.WARMUP:
            iterations = self.batch
            if self.channel.start_requested():
                self.phase = _Phase.TIMING
                iterations = self.iterations
            if self.need_warmup:
                self.need_warmup = False
                self.channel.ready()
        elif self.phase is _Phase.TIMING:
            iterations = self.iterations
            if self.parallel > 1 or result > 0.95 * self.enough:
                self.results.insert(measured.usecs, measured.n)
                self.completed += 1
                if self.completed >= self.repetitions:
                    self.phase = _Phase.COOLDOWN
            if self.parallel == 1 and (
                result < 0.99 * self.enough or result > 1.2 * self.enough
            ):
                if result > 150.0:
                    iterations = int(iterations / result * 1.1 * self.enough + 1)
                else:
                    iterations <<= 3
                    if iterations > _MAX_BATCH or (result < 0 and iterations > 1 << 20):
                        self.phase = _Phase.COOLDOWN
            self.iterations = iterations
            if self.phase is _Phase.COOLDOWN:
                self.channel.done()
                iterations = self.batch
        else:
            iterations = self.batch
            if self.channel.results_requested():
                self.channel.send_results(self.results)
                if self.cleanup:
                    self.cleanup(0, self.cookie)
                self.channel.wait_exit()
                raise _Finished

        if self.initialize:
            self.initialize(iterations, self.cookie)
        self.watch.start()
        return iterations


def _child_main(run: _ChildRun) -> None:
    def on_term(signum, frame):
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
        if run.cleanup:
            run.cleanup(0, run.cookie)
        os._exit(0)

    signal.signal(signal.SIGTERM, on_term)
    run.run()


def _await(channel: _ProcessChannel, procs: list, kind: str, count: int) -> list:
    received = []
    while len(received) < count:
        try:
            message = channel.responses.get(timeout=1.0)
        except queue.Empty:
            message = None
        if any(proc.exitcode is not None for proc in procs):
            raise _ChildFailure
        if message is not None and message[0] == kind:
            received.append(message)
    return received


def _kill(procs: list) -> None:
    for proc in procs:
        if proc.is_alive():
            proc.terminate()
    for proc in procs:
        proc.join()


def _reap(procs: list, enough: int) -> None:
    """Give workers time to exit on their own, then kill the stragglers."""
    timeout = max(int(2 * enough / 1000000) + 2, 5)
    for proc in reversed(procs):
        proc.join(timeout)
        if proc.is_alive():
            proc.terminate()
            proc.join()
            timeout = 1


def _run_parallel(make_run, parallel: int, warmup: int, enough: int) -> Results:
    ctx = multiprocessing.get_context("fork")
    channel = _ProcessChannel(ctx)
    procs: list = []
    merged = Results()
    try:
        for _ in range(parallel):
            proc = ctx.Process(target=_child_main, args=(make_run(channel),))
            proc.start()
            procs.append(proc)
        _await(channel, procs, "ready", parallel)
        if warmup > 0:
            time.sleep(warmup / 1000000.0)
        channel.start.set()
        _await(channel, procs, "done", parallel)
        channel.collect.set()
        for message in _await(channel, procs, "results", parallel):
            for usecs, n in message[1]:
                merged.insert(usecs, n)
        channel.exit.set()
    except _ChildFailure:
        _kill(procs)
        return Results()
    except BaseException:
        _kill(procs)
        raise
    _reap(procs, enough)
    return merged


def benchmp(
    initialize: Optional[BenchFunc],
    benchmark: BenchFunc,
    cleanup: Optional[BenchFunc],
    enough: int = 0,
    parallel: int = 1,
    warmup: int = 0,
    repetitions: int = TRIES,
    cookie: Any = None,
) -> Results:
    """Time ``benchmark`` repeatedly, in ``parallel`` workers, and return the results.

    Each function is called as ``f(iterations, cookie)``; ``initialize`` and
    ``cleanup`` also receive 0 once, before and after all the work.
    """
    if parallel < 1:
        return Results()
    calib = calibration()
    enough = calib.get_enough(enough)
    iterations = 1

    if parallel > 1:
        baseline = benchmp(initialize, benchmark, cleanup, enough, 1, warmup, repetitions, cookie)
        sample = baseline.median()
        if sample.usecs == 0:
            return baseline
        iterations = sample.n
        if enough < SHORT:
            iterations = int(SHORT * sample.n / sample.usecs) + 1

    def make_run(channel) -> _ChildRun:
        return _ChildRun(
            initialize=initialize,
            benchmark=benchmark,
            cleanup=cleanup,
            cookie=cookie,
            channel=channel,
            enough=enough,
            iterations=iterations,
            parallel=parallel,
            repetitions=repetitions,
            calib=calib,
        )

    if parallel == 1:
        return make_run(_LocalChannel(warmup)).run()
    return _run_parallel(make_run, parallel, warmup, enough)