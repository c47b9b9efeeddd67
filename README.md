# benchkit

A collection of small benchmarks for Unix systems together with the
timing library they share. Each command measures one thing: raw
read/write throughput, disk seek time, usable memory, CPU clock rate,
instruction-level parallelism or memory bandwidth. There is also a
minimal HTTP server to benchmark against and a launcher for remote
HTTP clients.

Sizes and bandwidths are reported in powers of ten (1 MB = 1,000,000
bytes), as disks and networks are usually quoted.

The package has no dependencies outside the standard library. Parallel
runs fork worker processes, so a POSIX system is needed.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Commands

### `lmdd` — a `dd`-like throughput tester

Arguments are `name=value` pairs. Unknown names are rejected with a list
of the accepted ones.

```
lmdd if=/some/file of=internal bs=64k count=1000 print=1
lmdd if=internal of=/tmp/out bs=8k move=100m fsync=1
```

* `bs=` block size (default 8192); `count=` number of blocks; `move=`
  total amount to transfer instead of a count; `skip=` blocks to skip
  first; `time=` stop after that many seconds.
* `if=` / `of=` input and output; `internal` (or leaving them out) is a
  built-in source of zeros and sink. `stdin`, `-`, `0`, `stdout`, `1`,
  `stderr` and `2` are also understood.
* `ipat=` / `opat=` check or write an offset pattern; `mismatch=` stops
  after that many pattern errors.
* `rand=`, `start=`, `end=`, `norepeat=`, `srand=` do random I/O over a
  region.
* `rtmax=`, `rtmin=`, `wtmax=`, `wtmin=` build read and write latency
  histograms in milliseconds, printed at the end.
* `print=` chooses the report: 0 none, 1 latency, 2 microseconds per
  operation, 3 KB/sec, 4 MB/sec, 5 plot-friendly; any other value, or
  none, gives a verbose bandwidth line.
* Size suffixes: `k`, `m`, `g` are powers of two; `K`, `M`, `G` are
  powers of ten.

### `lmhttp` — a minimal HTTP server

Serves `GET` requests for files in the current directory (or `$DOCROOT`).
The last argument is the port (default 80).

```
lmhttp -l 8080
```

Flags: `-D` allow directory listings, `-d` debug output, `-f<n>` number
of server processes, `-l` log requests to `/usr/tmp/lmhttp.log`, `-n`
send zero bytes of the file's size instead of its contents, `-z` read
each request and answer nothing. A request starting with `EXIT` stops
the server.

### `rhttp` — drive HTTP clients on remote hosts

```
rhttp server.example.com 8080 client1 client2 -p index.html logo.gif
```

Starts one remote `http` client per listed host through `rsh`, prints
each command, waits for all of them and lets their output through. It
does not total their results, and always exits with status 1.

### `msleep` — sleep for a number of milliseconds

```
msleep 250
```

### `benchkit-seek` — seek time as a function of distance

```
benchkit-seek /dev/sdb 100M
```

Reads alternately from the two ends of the region, closing in by 1 MB
each step, and prints distance (MB) and time (ms) for each seek.

### `memsize` — how much memory can be used

```
memsize 512
```

Finds the largest allocation that succeeds (up to the given number of
MB, default 1024) and then the largest part of it that can be touched
quickly, printing the result in MB.

### `mhz` — CPU clock rate

```
mhz
mhz -c
```

Times several dependent expression loops and derives the clock from
their greatest common divisor. `-c` prints the cycle time in
nanoseconds; `-d` dumps the raw measurements. Prints
`-1 System too busy` if the measurements do not agree.

### `par-ops` — instruction-level parallelism

```
par-ops -N 11
```

Reports the achievable parallelism for integer, 64-bit integer, float
and double add, multiply, divide, modulo and bit operations.

### `benchkit-stream` — memory bandwidth kernels

```
benchkit-stream -v 1 -M 24M -P 2
```

Version 1 reports copy, scale, add and triad; version 2 reports fill,
copy, daxpy and sum. `-M` sets the total size of the three arrays and
`-P` the number of parallel workers.

### `loop-o` and `timing-o`

Print the measured loop overhead and clock-reading overhead used to
correct measurements.

Common options for the benchmarks: `-W <usecs>` warm-up time and
`-N <n>` number of repetitions.

## Environment

* `ENOUGH` — timing interval in microseconds, skipping the search for
  one that the clock resolves accurately.
* `TIMING_O` — clock-reading overhead in microseconds.
* `LOOP_O` — per-iteration loop overhead in microseconds (`mhz` and
  `timing-o` set it to 0).

## Library

The commands are built on a few modules that can also be used directly:

* `benchkit.timing` — `Stopwatch` for microsecond timing, `Results` for
  keeping `Sample`s sorted by time per iteration with `median()` and
  `minimum()`, report formatters such as `bandwidth`, `latency`, `micro`
  and `nano` (they return the report text, or `None` when no time was
  recorded), `parse_size` for sizes like `64k` or `2m`, `p64sz` for
  compact sizes, and `permutation`, `touch`, `bread` and `copy_file`.
* `benchkit.benchmp` — `benchmp` runs a benchmark in one or more worker
  processes, scaling the iteration count until each run lasts long
  enough, and returns its `Results`; `calibration()` gives the shared
  `Calibration` with the timing interval and overheads.
* `benchkit.stats` — `median`, `mean` and weighted linear `regression`
  returning a `Fit`.
* `benchkit.sockets` — `udp_server`, `udp_connect`, `unix_server`,
  `unix_accept`, `unix_connect` and `unix_done`.

## Limits

The socket helpers take explicit port numbers; nothing registers or
looks up services by program number. The package has no network
latency or bandwidth benchmarks that use these sockets, and no cache
line, TLB or memory-parallelism measurements.