from unittest import mock

import pytest

from benchkit.rhttp import build_command, main, parse_args


def test_parse_args_with_port():
    assert parse_args(["host", "8080", "c1", "c2", "-p", "a", "b"]) == (
        "host",
        "8080",
        ["c1", "c2"],
        ["a", "b"],
    )


def test_parse_args_default_port():
    server, port, clients, files = parse_args(["host", "c1", "-p", "a"])
    assert (server, port, clients, files) == ("host", "80", ["c1"], ["a"])


def test_parse_args_without_files():
    _, _, clients, files = parse_args(["host", "c1", "c2", "c3"])
    assert clients == ["c1", "c2", "c3"]
    assert files == []


def test_parse_args_too_few():
    with pytest.raises(ValueError):
        parse_args(["host", "c1", "-p"])


def test_build_command():
    assert build_command("srv", "80", "c1", ["x", "y"]) == [
        "rsh", "c1", "http", "srv", "x", "y", "80",
    ]


@mock.patch("subprocess.Popen")
def test_main_starts_one_client_each(popen, capsys):
    result = main(["srv", "c1", "c2", "-p", "f1"])
    commands = [call.args[0] for call in popen.call_args_list]
    assert commands == [
        build_command("srv", "80", "c1", ["f1"]),
        build_command("srv", "80", "c2", ["f1"]),
    ]
    assert capsys.readouterr().out.splitlines()[0] == "rsh c1 http srv f1 80 "
    assert result == 1


def test_main_usage(capsys):
    assert main(["srv"]) == 1
    assert "Usage" in capsys.readouterr().err