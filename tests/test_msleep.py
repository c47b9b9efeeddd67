import time

from benchkit.msleep import main


def test_sleeps_at_least_requested():
    began = time.monotonic()
    assert main(["50"]) == 0
    assert time.monotonic() - began >= 0.045


def test_zero_and_garbage_return_quickly():
    began = time.monotonic()
    assert main(["0"]) == 0
    assert main(["abc"]) == 0
    assert time.monotonic() - began < 1.0


def test_missing_argument(capsys):
    assert main([]) == 1
    assert "usage" in capsys.readouterr().err