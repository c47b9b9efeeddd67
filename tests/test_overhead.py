import os
import re

import pytest

from benchkit.overhead import loop_main, timing_main


@pytest.fixture
def quick_env(monkeypatch):
    monkeypatch.setenv("ENOUGH", "5000")
    monkeypatch.setenv("TIMING_O", "1")
    monkeypatch.setenv("LOOP_O", "0.0")


def test_loop_main_prints_eight_decimals(quick_env, capsys):
    assert loop_main([]) == 0
    out = capsys.readouterr().out
    assert re.fullmatch(r"-?\d+\.\d{8}\n", out)


def test_loop_overhead_is_not_negative(quick_env, capsys):
    loop_main()
    assert float(capsys.readouterr().out) >= 0.0


def test_timing_main_prints_whole_number(quick_env, capsys):
    assert timing_main([]) == 0
    out = capsys.readouterr().out
    assert re.fullmatch(r"\d+\n", out)


def test_timing_main_clears_loop_overhead(quick_env, monkeypatch, capsys):
    monkeypatch.setenv("LOOP_O", "2.5")
    assert timing_main() == 0
    assert re.fullmatch(r"\d+\n", capsys.readouterr().out)
    assert os.environ["LOOP_O"] == "0.0"