"""Timed block copying with patterns, random offsets and latency histograms."""

from __future__ import annotations

import mmap
import os
import random
import re
import struct
import sys
import time
from dataclasses import dataclass, field
from typing import Optional, TextIO

from benchkit.timing import Stopwatch, bandwidth, kb, latency, mb, micro, p64sz

_WORD_MASK = 0xFFFFFFFF
_NOREPEAT_WINDOW = 10 << 10
_NUMBER = re.compile(r"\s*([+-]?\d+)")
_MULTIPLIERS = {
    "K": 1000,
    "k": 1 << 10,
    "M": 1000000,
    "m": 1 << 20,
    "G": 1000000000,
    "g": 1 << 30,
}


def _commands() -> tuple[str, ...]:
    cmds = ["bs", "bufs", "count"]
    if hasattr(os, "O_DIRECT"):
        cmds += ["direct", "idirect", "odirect"]
    cmds += [
        "flush", "fork", "fsync", "if", "ipat", "label", "mismatch", "move",
        "of", "opat", "print", "rand", "poff", "skip", "sync", "touch",
        "usleep", "hash", "append", "rtmax", "wtmax", "rtmin", "wtmin",
        "realtime", "notrunc", "end", "start", "time", "srand", "padin",
        "norepeat", "timeopen", "nocreate",
    ]
    if hasattr(os, "O_SYNC"):
        cmds.append("osync")
    return tuple(cmds)


COMMANDS = _commands()


class LmddError(ValueError):
    """A bad combination of arguments."""


class _Done(Exception):
    """The copy loop has finished."""


def getarg(name: str, argv) -> Optional[int]:
    """The number given as ``name`` (e.g. ``"bs="``), with k/m/g or K/M/G multiplier."""
    for arg in argv:
        if arg.startswith(name):
            match = _NUMBER.match(arg[len(name):])
            value = int(match.group(1)) if match else 0
            return value * _MULTIPLIERS.get(arg[-1], 1)
    return None


def _getstr(name: str, argv) -> Optional[str]:
    for arg in argv:
        if arg.startswith(name):
            return arg[len(name):]
    return None


def check_args(argv) -> None:
    """Reject any argument that is not ``<command>=<value>``."""
    for arg in argv:
        key, sep, _ = arg.partition("=")
        if sep and any(cmd.startswith(key) for cmd in COMMANDS):
            continue
        raise LmddError(
            "Bad arg: %s, possible arguments are: %s" % (arg, " ".join(COMMANDS))
        )


def _align(value: int, bs: int) -> int:
    return (value + (bs - 1)) & ~(bs - 1)


@dataclass
class Histogram:
    """Operation latencies in milliseconds, in ten buckets plus two overflow ones."""

    minimum: int
    maximum: int
    counts: list = field(default_factory=lambda: [0] * 12)

    @property
    def step(self) -> int:
        return (self.maximum - self.minimum) // 10

    def add(self, millis: int) -> None:
        if millis >= self.maximum:
            self.counts[11] += 1
        elif millis < self.minimum:
            self.counts[0] += 1
        else:
            step = self.step
            for bucket in range(1, 11):
                if millis < bucket * step + self.minimum:
                    self.counts[bucket] += 1
                    break

    def lines(self, title: str) -> list[str]:
        out = [title]
        step = self.step
        if self.counts[0]:
            out.append("%d- ms: %d" % (self.minimum, self.counts[0]))
        size = self.minimum
        for bucket in range(1, 11):
            if self.counts[bucket]:
                out.append("%d to %d ms: %d" % (size, size + step - 1, self.counts[bucket]))
            size += step
        if self.counts[11]:
            out.append("%d+ ms: %d" % (self.maximum, self.counts[11]))
        return out


@dataclass
class LmddOptions:
    bs: int = 8192
    bufs: int = 1
    count: Optional[int] = None
    infile: Optional[str] = None
    outfile: Optional[str] = None
    ipat: bool = False
    opat: bool = False
    mismatch: Optional[int] = None
    print_mode: Optional[int] = None
    rand: Optional[int] = None
    rand_span: int = 0
    start: Optional[int] = None
    end: Optional[int] = None
    time: Optional[int] = None
    srand: Optional[int] = None
    skip: Optional[int] = None
    usleep: Optional[int] = None
    label: Optional[str] = None
    rtmax: Optional[int] = None
    rtmin: Optional[int] = None
    wtmax: Optional[int] = None
    wtmin: Optional[int] = None
    poff: bool = False
    fork: bool = False
    fsync: bool = False
    sync: bool = False
    flush: bool = False
    touch: bool = False
    hash: bool = False
    norepeat: bool = False
    timeopen: bool = False
    padin: bool = False
    append: bool = False
    notrunc: bool = False
    nocreate: bool = False
    osync: bool = False
    direct: bool = False
    idirect: bool = False
    odirect: bool = False
    realtime: bool = False


def _shown(value: Optional[int]) -> int:
    return -1 if value is None else value


def parse_args(argv) -> LmddOptions:
    """Check and interpret ``name=value`` arguments."""
    argv = list(argv)
    check_args(argv)

    def given(name: str) -> bool:
        return getarg(name + "=", argv) is not None

    def positive(name: str) -> bool:
        return (getarg(name + "=", argv) or 0) > 0

    bs = getarg("bs=", argv)
    if bs is None or bs < 0:
        bs = 8192
    rand = getarg("rand=", argv)
    end = getarg("end=", argv)
    if end is not None and rand is not None and end > rand:
        end = rand
    if end is not None and rand is None:
        raise LmddError("end= needs rand= to go with it.")

    rtmax = getarg("rtmax=", argv)
    if rtmax is not None and rtmax < 10:
        rtmax = 10
    rtmin = getarg("rtmin=", argv)
    if rtmax is not None and rtmin is None:
        rtmin = 0
    wtmax = getarg("wtmax=", argv)
    if wtmax is not None and wtmax < 10:
        wtmax = 10
    wtmin = getarg("wtmin=", argv)
    if wtmax is not None and wtmin is None:
        wtmin = 0
    if (rtmin is not None and rtmax is None) or (wtmin is not None and wtmax is None):
        raise LmddError("Need a max to go with that min.")
    if (rtmax is not None and rtmin > rtmax) or (wtmax is not None and wtmin > wtmax):
        raise LmddError(
            "min has to be less than max, R=%d,%d W=%d,%d"
            % (_shown(rtmax), _shown(rtmin), _shown(wtmax), _shown(wtmin))
        )

    bufs = getarg("bufs=", argv)
    if bufs is None:
        bufs = 1
    if bufs > 10:
        raise LmddError("Too many bufs")
    if bufs < 1:
        raise LmddError("Need at least one buf")

    count = getarg("count=", argv)
    move = getarg("move=", argv)
    if move is not None:
        count = move // bs if bs else 0

    ipat, opat = given("ipat"), given("opat")
    if (ipat or opat) and bs & 3:
        raise LmddError("Block size 0x%x must be word aligned" % bs)
    if bs >> 2 == 0:
        raise LmddError("Block size must be at least 4.")

    return LmddOptions(
        bs=bs,
        bufs=bufs,
        count=count,
        infile=_getstr("if=", argv),
        outfile=_getstr("of=", argv),
        ipat=ipat,
        opat=opat,
        mismatch=getarg("mismatch=", argv),
        print_mode=getarg("print=", argv),
        rand=rand,
        rand_span=_align(rand - bs, bs) if rand is not None else 0,
        start=getarg("start=", argv),
        end=end,
        time=getarg("time=", argv),
        srand=getarg("srand=", argv),
        skip=getarg("skip=", argv),
        usleep=getarg("usleep=", argv),
        label=_getstr("label=", argv),
        rtmax=rtmax,
        rtmin=rtmin,
        wtmax=wtmax,
        wtmin=wtmin,
        poff=given("poff"),
        fork=given("fork"),
        fsync=positive("fsync"),
        sync=positive("sync"),
        flush=positive("flush"),
        touch=given("touch"),
        hash=given("hash"),
        norepeat=given("norepeat"),
        timeopen=given("timeopen"),
        padin=bool(getarg("padin=", argv)),
        append=given("append"),
        notrunc=given("notrunc"),
        nocreate=given("nocreate"),
        osync=given("osync"),
        direct=given("direct"),
        idirect=given("idirect"),
        odirect=given("odirect"),
        realtime=given("realtime"),
    )


class Lmdd:
    """One copy run, described by an :class:`LmddOptions`."""

    def __init__(
        self,
        options: LmddOptions,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
    ) -> None:
        self.opts = options
        self.stdout = stdout or sys.stdout
        self.stderr = stderr or sys.stderr
        self.watch = Stopwatch()
        self._op_watch = Stopwatch()
        self.int_count = 0
        self.read_hist = (
            Histogram(options.rtmin, options.rtmax) if options.rtmax is not None else None
        )
        self.write_hist = (
            Histogram(options.wtmin, options.wtmax) if options.wtmax is not None else None
        )
        self.output_path: Optional[str] = None
        self._owned: list[int] = []
        self._seen: set[int] = set()
        self._in: Optional[int] = None
        self._out: Optional[int] = None

    # -- files -----------------------------------------------------------

    def _open_input(self) -> Optional[int]:
        o = self.opts
        spec = o.infile
        if spec is None or spec == "internal":
            return None
        if spec in ("stdin", "0", "-"):
            return 0
        flags = os.O_RDONLY
        if (o.idirect or o.direct) and hasattr(os, "O_DIRECT"):
            flags |= os.O_DIRECT
        fd = os.open(spec, flags)
        self._owned.append(fd)
        return fd

    def _open_output(self) -> Optional[int]:
        o = self.opts
        spec = o.outfile
        if spec is None or spec == "internal":
            return None
        if spec in ("stdout", "1", "-"):
            return 1
        if spec in ("stderr", "2"):
            return 2
        flags = os.O_WRONLY
        if not (o.notrunc or o.append):
            flags |= os.O_TRUNC
        if not o.nocreate:
            flags |= os.O_CREAT
        if o.append:
            flags |= os.O_APPEND
        if o.osync:
            flags |= getattr(os, "O_SYNC", 0)
        fd = os.open(spec, flags, 0o644)
        if (o.odirect or o.direct) and hasattr(os, "O_DIRECT"):
            os.close(fd)
            fd = os.open(spec, flags | os.O_DIRECT, 0o644)
        self._owned.append(fd)
        self.output_path = spec
        return fd

    @staticmethod
    def _seek(fd: Optional[int], off: int) -> None:
        if fd is None:
            return
        try:
            os.lseek(fd, off, os.SEEK_SET)
        except OSError:
            pass

    @staticmethod
    def _position(fd: int) -> int:
        try:
            return os.lseek(fd, 0, os.SEEK_CUR)
        except OSError:
            return 0

    def _warn(self, message: str) -> None:
        if self.opts.label is not None:
            self.stderr.write("%s: " % self.opts.label)
        self.stderr.write(message + "\n")

    def _flush_output(self) -> None:
        """Write the mapped output file back to storage."""
        if self.output_path is None:
            self._warn("No output file")
            return
        try:
            fd = os.open(self.output_path, os.O_RDWR)
        except OSError as exc:
            self._warn("No output file: %s" % exc.strerror)
            return
        try:
            size = os.fstat(fd).st_size
            if size == 0:
                self._warn("%s: empty file" % self.output_path)
                return
            with mmap.mmap(fd, size, mmap.MAP_SHARED, mmap.PROT_READ | mmap.PROT_WRITE) as area:
                area.flush()
        finally:
            os.close(fd)

    # -- the copy loop ------------------------------------------------------

    def _been_there(self, off: int) -> bool:
        if off in self._seen:
            self.stderr.write("norepeat on %u\n" % (off & _WORD_MASK))
            return True
        return False

    def _remember(self, off: int) -> None:
        self._seen.add(off)
        if self.opts.count is None and len(self._seen) == _NOREPEAT_WINDOW:
            self._seen.clear()

    def _time_op(self, hist: Histogram, fd: int, kind: str) -> None:
        mics = self._op_watch.stop()
        millis = mics // 1000
        if millis > hist.maximum or millis < hist.minimum:
            self.stderr.write(
                "%s: %.02f milliseconds offset %s\n"
                % (kind, mics / 1000, p64sz(self._position(fd)))
            )
        hist.add(millis)

    def _check_pattern(self, buf: bytearray, moved: int, off: int) -> None:
        words = moved // 4
        for index, got in enumerate(struct.unpack_from("=%dI" % words, buf)):
            want = (off + index * 4) & _WORD_MASK
            if got != want:
                self.stderr.write(
                    "off=%u want=%x got=%x\n" % (off & _WORD_MASK, want, got)
                )
                if self._misses is not None:
                    self._misses -= 1
                    if self._misses == 0:
                        raise _Done

    def _write_block(self, buf: bytearray, moved: int, off: int) -> None:
        o = self.opts
        if o.opat:
            words = moved // 4
            struct.pack_into(
                "=%dI" % words, buf, 0,
                *((off + i * 4) & _WORD_MASK for i in range(words)),
            )
        if self.write_hist:
            self._op_watch.start()
        try:
            written = os.write(self._out, memoryview(buf)[:moved])
        except OSError as exc:
            self.stderr.write("write: %s\n" % exc.strerror)
            written = -1
        if written != moved:
            self.stderr.write("write: wanted=%d got=%d\n" % (moved, written))
            raise _Done
        if self.write_hist:
            self._time_op(self.write_hist, self._out, "WRITE")
        if o.touch:
            for index in range(0, moved, 4096):
                buf[index] = 0

    def _next_offset(self, rng: random.Random, end_base: int) -> int:
        o = self.opts
        extra = o.start if o.start is not None else 0
        while True:
            if o.end is not None:
                off = _align(int(rng.random() * o.end), o.bs) + end_base + extra
            else:
                off = _align(int(rng.random() * (o.rand_span - o.bs)) + extra, o.bs)
            if not (o.norepeat and self._been_there(off)):
                break
        if o.norepeat:
            self._remember(off)
        return off

    def _loop(self) -> None:
        o = self.opts
        rng = random.Random(o.srand if o.srand is not None else 0)
        deadline = time.monotonic() + o.time if o.time is not None else None
        bufs = [bytearray(o.bs) for _ in range(o.bufs)]
        next_buf = 0
        remaining = o.count
        pad = o.padin
        end_base = 0
        off = 0

        if o.skip is not None:
            off = o.skip * o.bs
            self._seek(self._in, off)
            self._seek(self._out, off)
            if o.poff:
                self.stderr.write("%s " % p64sz(off))

        while True:
            if remaining is not None:
                if remaining <= 0:
                    return
                remaining -= 1
            if deadline is not None and time.monotonic() >= deadline:
                return

            if o.end is not None or o.rand is not None:
                if o.end is not None:
                    end_base = 0 if end_base else o.rand - o.end
                off = self._next_offset(rng, end_base)
                self._seek(self._in, off)
                self._seek(self._out, off)
            if o.poff:
                self.stderr.write("%s " % p64sz(off))

            buf = bufs[next_buf]
            next_buf = (next_buf + 1) % len(bufs)

            if self._in is not None:
                if self.read_hist:
                    self._op_watch.start()
                try:
                    data = os.read(self._in, o.bs)
                except OSError as exc:
                    self.stderr.write("read: %s\n" % exc.strerror)
                    return
                moved = len(data)
                buf[:moved] = data
                if pad:
                    pad = False
                    if remaining is not None:
                        remaining += 1
                    self.watch.start()
                    continue
                if self.read_hist:
                    self._time_op(self.read_hist, self._in, "READ")
            else:
                moved = o.bs
            if moved <= 0:
                return

            if o.ipat:
                self._check_pattern(buf, moved, off)
            if self._in is not None and o.touch:
                for index in range(0, moved, 4096):
                    buf[index] = 0

            if self._out is not None:
                if o.fork:
                    if self._child:
                        os.waitpid(self._child, 0)
                    self._child = os.fork()
                    if self._child:
                        off += moved
                        self.int_count += moved >> 2
                        continue
                    self._child_write(buf, moved, off)
                self._write_block(buf, moved, off)

            off += moved
            self.int_count += moved >> 2
            if o.usleep is not None:
                time.sleep(o.usleep / 1000000.0)
            if o.hash:
                self.stderr.write("#")

    def _child_write(self, buf: bytearray, moved: int, off: int) -> None:
        try:
            self._write_block(buf, moved, off)
            if self.opts.usleep is not None:
                time.sleep(self.opts.usleep / 1000000.0)
            if self.opts.hash:
                self.stderr.write("#")
        except BaseException:
            pass
        finally:
            try:
                self.stderr.flush()
            finally:
                os._exit(0)

    # -- reporting ------------------------------------------------------------

    def _report(self, usecs: int) -> None:
        o = self.opts
        total = self.int_count << 2
        blocks = total // o.bs
        mode = o.print_mode
        text: Optional[str] = None
        if mode == 0:
            text = None
        elif mode == 1:
            text = latency(blocks, o.bs, usecs) if blocks else None
        elif mode == 2:
            text = micro("", blocks, usecs) if blocks else None
        elif mode == 3:
            text = kb(total, usecs)
        elif mode == 4:
            text = mb(total, usecs)
        elif mode == 5:
            text = bandwidth(total, usecs, 1, False)
        else:
            text = bandwidth(total, usecs, 1, True)
        if text:
            self.stderr.write(text)
        for hist, title in (
            (self.read_hist, "READ operation latencies"),
            (self.write_hist, "WRITE operation latencies"),
        ):
            if hist:
                self.stdout.write("\n".join(hist.lines(title)) + "\n")

    def _finish(self) -> int:
        o = self.opts
        if o.sync:
            os.sync()
        if o.fsync and self._out is not None:
            try:
                os.fsync(self._out)
            except OSError:
                pass
        if o.flush:
            self._flush_output()
        usecs = self.watch.stop()
        if self._child:
            os.waitpid(self._child, 0)
            self._child = 0
        if o.hash or o.poff:
            self.stderr.write("\n")
        if o.label is not None:
            self.stderr.write(o.label)
        self._report(usecs)
        return self.int_count << 2

    def run(self) -> int:
        """Copy until done, print the report and return the bytes moved."""
        o = self.opts
        self._misses = o.mismatch
        self._child = 0
        try:
            if o.timeopen:
                self.watch.start()
            self._in = self._open_input()
            self._out = self._open_output()
            if not o.timeopen:
                self.watch.start()
            if o.rtmax is not None and self._in is None:
                raise LmddError("I think you wanted wtmax, not rtmax")
            if o.wtmax is not None and self._out is None:
                raise LmddError("I think you wanted rtmax, not wtmax")
            try:
                self._loop()
            except (_Done, KeyboardInterrupt):
                pass
            return self._finish()
        finally:
            for fd in self._owned:
                os.close(fd)
            self._owned.clear()


def main(argv=None) -> int:
    """Command-line entry point."""
    args = sys.argv[1:] if argv is None else list(argv)
    label = _getstr("label=", args)
    try:
        Lmdd(parse_args(args)).run()
    except LmddError as exc:
        sys.stderr.write("%s\n" % exc)
        return 1
    except OSError as exc:
        if label is not None:
            sys.stderr.write("%s: " % label)
        sys.stderr.write("%s: %s\n" % (exc.filename, exc.strerror))
        return 1
    return 0