import pytest

from benchkit.stats import Fit, mean, median, regression


def test_median_odd():
    assert median([5.0, 1.0, 3.0]) == 3.0


def test_median_even_averages_middle():
    assert median([4.0, 1.0, 2.0, 3.0]) == 2.5


def test_median_empty_raises():
    with pytest.raises(ValueError):
        median([])


def test_mean():
    assert mean([1.0, 2.0, 3.0, 6.0]) == 3.0


def test_mean_empty_raises():
    with pytest.raises(ValueError):
        mean([])


def test_regression_exact_line():
    fit = regression([0.0, 1.0, 2.0, 3.0], [1.0, 3.0, 5.0, 7.0])
    assert isinstance(fit, Fit)
    assert fit.a == pytest.approx(1.0)
    assert fit.b == pytest.approx(2.0)
    assert fit.chi2 == pytest.approx(0.0, abs=1e-12)


def test_regression_with_unit_sigma_matches_unweighted_line():
    x = [0.0, 1.0, 2.0, 3.0, 4.0]
    y = [0.1, 0.9, 2.2, 2.8, 4.1]
    plain = regression(x, y)
    weighted = regression(x, y, [1.0] * 5)
    assert weighted.a == pytest.approx(plain.a)
    assert weighted.b == pytest.approx(plain.b)
    assert weighted.chi2 == pytest.approx(plain.chi2)


def test_regression_chi2_scales_with_sigma():
    x = [0.0, 1.0, 2.0, 3.0, 4.0]
    y = [0.1, 0.9, 2.2, 2.8, 4.1]
    one = regression(x, y, [1.0] * 5)
    two = regression(x, y, [2.0] * 5)
    assert two.chi2 == pytest.approx(one.chi2 / 4.0)
    assert two.sig_b == pytest.approx(one.sig_b * 2.0)


def test_regression_length_mismatch():
    with pytest.raises(ValueError):
        regression([1.0, 2.0], [1.0])


def test_regression_needs_distinct_x():
    with pytest.raises(ValueError):
        regression([1.0, 1.0, 1.0], [1.0, 2.0, 3.0])


def test_regression_needs_two_points():
    with pytest.raises(ValueError):
        regression([1.0], [1.0])