from benchkit import memsize


def test_small_allocation_succeeds():
    assert memsize.test_malloc(1 << 20) is True


def test_impossible_allocation_fails():
    assert memsize.test_malloc(1 << 62) is False


def test_find_size_keeps_reachable_maximum():
    assert memsize.find_size(4 << 20) == 4 << 20


def test_find_size_never_exceeds_maximum():
    for wanted in (1 << 20, 3 << 20, 5 << 20):
        assert memsize.find_size(wanted) <= wanted


def test_main_with_one_megabyte(capsys):
    assert memsize.main(["1"]) == 0
    assert capsys.readouterr().out == "1\n"


def test_main_with_three_megabytes(capsys):
    assert memsize.main(["3"]) == 0
    assert capsys.readouterr().out == "3\n"