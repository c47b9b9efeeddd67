"""Small helpers for UDP and UNIX-domain stream sockets."""

from __future__ import annotations

import contextlib
import os
import socket


def udp_server(port: int = 0) -> socket.socket:
    """A UDP socket bound to ``port`` on every local address."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        sock.bind(("", port))
    except BaseException:
        sock.close()
        raise
    return sock


def udp_connect(host: str, port: int) -> socket.socket:
    """A UDP socket connected to ``port`` on ``host``."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        address = socket.gethostbyname(host)
        sock.connect((address, port))
    except BaseException:
        sock.close()
        raise
    return sock


def unix_server(path) -> socket.socket:
    """A listening UNIX stream socket bound to ``path``."""
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.bind(os.fspath(path))
        sock.listen(100)
    except BaseException:
        sock.close()
        raise
    return sock


def unix_done(sock: socket.socket, path) -> None:
    """Close the listening socket and remove its path."""
    sock.close()
    with contextlib.suppress(FileNotFoundError):
        os.unlink(path)


def unix_accept(sock: socket.socket) -> socket.socket:
    """Accept one connection and return it."""
    conn, _ = sock.accept()
    return conn


def unix_connect(path) -> socket.socket:
    """A UNIX stream socket connected to the server at ``path``."""
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.connect(os.fspath(path))
    except BaseException:
        sock.close()
        raise
    return sock