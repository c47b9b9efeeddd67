import os

import pytest

from benchkit.sockets import (
    udp_connect,
    udp_server,
    unix_accept,
    unix_connect,
    unix_done,
    unix_server,
)


def test_udp_round_trip():
    server = udp_server(0)
    try:
        port = server.getsockname()[1]
        client = udp_connect("localhost", port)
        try:
            client.send(b"ping")
            data, _ = server.recvfrom(64)
        finally:
            client.close()
    finally:
        server.close()
    assert data == b"ping"


def test_udp_server_binds_requested_port():
    first = udp_server(0)
    port = first.getsockname()[1]
    first.close()
    second = udp_server(port)
    try:
        assert second.getsockname()[1] == port
    finally:
        second.close()


def test_unix_round_trip(tmp_path):
    path = tmp_path / "s"
    server = unix_server(path)
    try:
        client = unix_connect(path)
        conn = unix_accept(server)
        try:
            client.sendall(b"hello")
            assert conn.recv(16) == b"hello"
            conn.sendall(b"back")
            assert client.recv(16) == b"back"
        finally:
            conn.close()
            client.close()
    finally:
        unix_done(server, path)
    assert not os.path.exists(path)


def test_unix_done_tolerates_missing_path(tmp_path):
    path = tmp_path / "s"
    server = unix_server(path)
    os.unlink(path)
    unix_done(server, path)
    assert server.fileno() == -1


def test_unix_connect_missing_server(tmp_path):
    with pytest.raises(OSError):
        unix_connect(tmp_path / "absent")