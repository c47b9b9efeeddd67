from benchkit.seek import STRIDE, main, parse_disk_size, seek_offsets


def test_parse_disk_size_suffixes():
    assert parse_disk_size("4k") == 4 << 10
    assert parse_disk_size("2M") == 2 * 1000000
    assert parse_disk_size("1g") == 1 << 30
    assert parse_disk_size("100") == 100


def test_seek_offsets_small_example():
    assert list(seek_offsets(4, 1)) == [(3, 3), (2, 1), (1, 2), (0, 2)]


def test_seek_offsets_invariants():
    pairs = list(seek_offsets(30, 3))
    assert len(pairs) % 2 == 0
    distances = [d for d, _ in pairs]
    assert distances == sorted(distances, reverse=True)
    assert all(0 <= off < 30 for _, off in pairs)


def test_seek_offsets_empty_for_zero():
    assert list(seek_offsets(0)) == []


def test_main_prints_one_line_per_seek(tmp_path, capsys):
    disk = tmp_path / "disk"
    with open(disk, "wb") as f:
        f.truncate(2 * STRIDE)
    assert main([str(disk), "2m"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert len(lines) == 2
    assert lines[1].split()[0] == "0.0000"


def test_main_bad_arguments(tmp_path):
    assert main([]) == 1
    assert main([str(tmp_path / "absent"), "1k"]) == 1