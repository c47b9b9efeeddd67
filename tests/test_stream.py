from array import array

import pytest

from benchkit.stream import (
    StreamState,
    add,
    cleanup,
    copy,
    daxpy,
    fill,
    initialize,
    main,
    scale,
    total,
    triad,
)


@pytest.fixture
def state():
    s = StreamState(length=10)
    initialize(0, s)
    return s


def test_initialize_fills_arrays(state):
    assert len(state.a) == len(state.b) == len(state.c) == 10
    assert list(state.a) == [1.0] * 10
    assert list(state.b) == [2.0] * 10
    assert list(state.c) == [0.0] * 10


def test_initialize_with_iterations_does_nothing():
    s = StreamState(length=5)
    initialize(3, s)
    assert len(s.a) == 0


def test_cleanup_only_on_zero_iterations(state):
    cleanup(2, state)
    assert len(state.a) == 10
    cleanup(0, state)
    assert len(state.a) == len(state.b) == len(state.c) == 0


def test_kernels_rotate_arrays(state):
    a, b, c = state.a, state.b, state.c
    scale(1, state)
    assert state.a is b and state.b is c and state.c is a


def test_three_passes_restore_order(state):
    a, b, c = state.a, state.b, state.c
    fill(3, state)
    assert (state.a, state.b, state.c) == (a, b, c)
    assert state.a is a


def test_copy_writes_first_into_third(state):
    copy(1, state)
    assert list(state.b) == [1.0] * 10


def test_fill_zeroes_first(state):
    fill(1, state)
    assert list(state.c) == [0.0] * 10


def test_scale_and_add_preserve_length(state):
    scale(2, state)
    add(2, state)
    assert len(state.a) == len(state.b) == len(state.c) == 10


def test_add_sums_first_two(state):
    add(1, state)
    assert list(state.b) == [3.0] * 10


def test_triad_and_daxpy_match_elementwise(state):
    before_b, before_c = array("d", state.b), array("d", state.c)
    triad(1, state)
    assert list(state.c) == [y + 3.0 * z for y, z in zip(before_b, before_c)]
    s2 = StreamState(length=4)
    initialize(0, s2)
    a0, b0 = array("d", s2.a), array("d", s2.b)
    daxpy(1, s2)
    assert list(s2.c) == [x + 3.0 * y for x, y in zip(a0, b0)]


def test_total_sums_first_array(state):
    assert total(1, state) == float(state.length)


def test_total_of_nothing_is_zero(state):
    assert total(0, state) == 0.0


@pytest.mark.parametrize("args", [["-v", "3"], ["-P", "0"], ["-x"]])
def test_usage_errors(args, capsys):
    assert main(args) == 255
    assert "Usage" in capsys.readouterr().err