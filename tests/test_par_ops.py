import pytest

from benchkit.par_ops import FAMILIES, MAX_LOAD_PARALLELISM, OpsState, main, make_benchmarks

_OPERATIONS = [
    "integer_bit", "integer_add", "integer_mul", "integer_div", "integer_mod",
    "int64_bit", "int64_add", "int64_mul", "int64_div", "int64_mod",
    "float_add", "float_mul", "float_div",
    "double_add", "double_mul", "double_div",
]


def test_every_family_has_sixteen_benchmarks():
    for family in FAMILIES:
        assert len(make_benchmarks(family)) == MAX_LOAD_PARALLELISM


@pytest.mark.parametrize("family", _OPERATIONS)
def test_every_operation_builds_sixteen_benchmarks(family):
    bench = make_benchmarks(family)
    assert len(bench) == 16
    assert family in FAMILIES


def test_unknown_family_rejected():
    with pytest.raises(ValueError):
        make_benchmarks("quad_sqrt")


@pytest.mark.parametrize("family", FAMILIES)
def test_benchmarks_are_deterministic(family):
    bench = make_benchmarks(family)
    first = bench[3](5, OpsState())
    second = bench[3](5, OpsState())
    assert first == second


def test_division_chain_returns_to_start_after_whole_iterations():
    bench = make_benchmarks("integer_div")[0]
    assert bench(0, OpsState()) == bench(3, OpsState())


def test_identical_chains_add_up():
    bench = make_benchmarks("integer_div")
    one = bench[0](2, OpsState())
    for k in (1, 4, 15):
        assert bench[k](2, OpsState()) == (k + 1) * one


def test_float_multiply_chain_is_stable():
    bench = make_benchmarks("double_mul")[0]
    assert bench(0, OpsState()) == bench(4, OpsState())


def test_results_accumulate_in_sink():
    state = OpsState()
    bench = make_benchmarks("integer_add")[2]
    a = bench(3, state)
    b = bench(3, state)
    assert state.sink == a + b


def test_results_fit_in_32_bits():
    for family in FAMILIES:
        value = make_benchmarks(family)[15](7, OpsState())
        assert -(1 << 31) <= value < (1 << 31)


def test_bad_option_is_usage_error(capsys):
    assert main(["-x"]) == 255
    assert "Usage" in capsys.readouterr().err