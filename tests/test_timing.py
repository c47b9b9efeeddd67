import random
from array import array

import pytest

from benchkit.timing import (
    Results,
    Sample,
    Stopwatch,
    bandwidth,
    bread,
    context,
    copy_file,
    kb,
    latency,
    mb,
    micro,
    micromb,
    milli,
    nano,
    now,
    p64sz,
    parse_size,
    permutation,
    ptime,
    touch,
    tvdelta,
)


def test_results_sorted_slowest_first():
    results = Results()
    for usecs, n in [(50, 10), (300, 2), (7, 7), (1000, 100), (90, 3)]:
        results.insert(usecs, n)
    ratios = [s.usecs / s.n for s in results]
    assert ratios == sorted(ratios, reverse=True)
    assert len(results) == 5


def test_results_ignore_zero_time():
    results = Results()
    results.insert(0, 5)
    assert len(results) == 0
    assert list(results) == []


def test_median_odd():
    results = Results()
    for usecs in (10, 30, 20):
        results.insert(usecs, 1)
    assert results.median() == Sample(20, 1)


def test_median_even_averages_middle():
    results = Results()
    results.insert(40, 1)
    results.insert(20, 1)
    assert results.median() == Sample(30, 1)


def test_empty_results_defaults():
    results = Results()
    assert results.median() == Sample(0, 1)
    assert results.minimum() == Sample(0, 1)


def test_minimum_is_fastest():
    results = Results()
    for usecs, n in [(100, 1), (5, 1), (60, 2)]:
        results.insert(usecs, n)
    assert results.minimum() == Sample(5, 1)


def test_stopwatch_settime_roundtrip():
    watch = Stopwatch()
    watch.settime(1234567)
    assert watch.gettime() == 1234567
    assert watch.timespent() * 1000000 == pytest.approx(watch.gettime())


def test_stopwatch_start_stop():
    watch = Stopwatch()
    watch.start()
    elapsed = watch.stop()
    assert elapsed >= 0
    assert watch.gettime() == elapsed


def test_tvdelta_never_negative():
    assert tvdelta(10, 5) == 0
    assert tvdelta(5, 12) == 7


def test_now_advances():
    before = now()
    assert now() >= before


def test_reports_skip_zero_time():
    assert kb(1000, 0) is None
    assert mb(1000, 0) is None
    assert latency(1, 1000, 0) is None
    assert context(5, 0) is None
    assert nano("x", 1, 0) is None
    assert micro("x", 1, 0) is None
    assert micromb(10, 1, 0) is None
    assert ptime(3, 0) is None


def test_report_formats():
    assert kb(5000, 1000000).endswith(" KB/sec\n")
    assert mb(5000000, 1000000).endswith(" MB/sec\n")
    assert "MB in" in bandwidth(2000000, 1000000, 1, True)
    assert len(bandwidth(2000000, 1000000, 1, False).split()) == 2
    assert nano("copy", 10, 100).startswith("copy: ")
    assert micro("op", 10, 100).endswith(" microseconds\n")
    assert len(micromb(1000000, 1, 50).split()) == 2
    assert context(4, 2000000).startswith("4 context switches")
    assert ptime(9, 3000000).startswith("9 in ")


def test_latency_singular_and_plural():
    assert "/xfer" in latency(4, 8000, 1000000)
    single = latency(1, 8000, 1000000)
    assert "/xfer" not in single and "millisecs" in single


def test_milli_below_one_ms_is_none():
    assert milli("op", 1, 999) is None
    assert milli("op", 1, 5000).startswith("op: ")


def test_p64sz_tags():
    assert p64sz(0) == "0"
    assert p64sz(512).endswith(" ")
    assert p64sz(4 * 1024).endswith("K")
    assert p64sz(3 * 1024 ** 3).endswith("G")


def test_parse_size_suffixes():
    assert parse_size("4k") == parse_size("4") * 1024
    assert parse_size("4K") == parse_size("4k")
    assert parse_size("3m") == parse_size("3k") * 1024
    assert parse_size("3M") == parse_size("3m")


def test_parse_size_invalid_is_zero():
    assert parse_size("abc") == 0


def test_bread_sums_words_and_ignores_tail():
    values = [1, 2, 3, 40, -5]
    data = array("l", values).tobytes()
    assert bread(data) == sum(values)
    assert bread(data + b"\x07") == bread(data)


def test_touch_marks_each_page():
    pagesize = 64
    buf = bytearray(pagesize * 3)
    touch(buf, len(buf), pagesize)
    marked = [i for i, b in enumerate(buf) if b]
    assert marked == [0, pagesize, 2 * pagesize]


def test_permutation_is_permutation():
    result = permutation(50, 8, random.Random(3))
    assert sorted(result) == list(range(0, 50 * 8, 8))


def test_permutation_deterministic_with_seed():
    first = permutation(20, 1, random.Random(9))
    second = permutation(20, 1, random.Random(9))
    assert sorted(first) == list(range(20))
    assert list(first) == list(second)


def test_copy_file(tmp_path):
    src = tmp_path / "src.bin"
    dst = tmp_path / "dst.bin"
    payload = bytes(range(256)) * 100
    src.write_bytes(payload)
    copy_file(src, dst, 0o600)
    assert dst.read_bytes() == payload


def test_copy_file_missing_source(tmp_path):
    with pytest.raises(FileNotFoundError):
        copy_file(tmp_path / "missing", tmp_path / "out", 0o644)