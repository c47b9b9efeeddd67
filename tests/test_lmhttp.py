import io
import socket
import threading
import time

import pytest

from benchkit.lmhttp import (
    LAST_MODIFIED,
    BadRequest,
    ExitRequest,
    HttpOptions,
    RequestLog,
    content_type,
    directory_index,
    http_time,
    parse_args,
    parse_get,
    serve,
)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("pic.gif", "image/gif"),
        ("photo.jpeg", "image/jpeg"),
        ("index.html", "text/html"),
        ("notes.txt", "text/plain"),
    ],
)
def test_content_type(name, expected):
    assert content_type(name) == expected


def test_content_type_directory(tmp_path):
    assert content_type(str(tmp_path), allow_dirs=True) == "text/html"
    assert content_type(str(tmp_path), allow_dirs=False) == "text/plain"


def test_http_time_epoch():
    assert http_time(0) == "Thu, 01 Jan 70 00:00:00 GMT"


def test_http_time_shape_matches_last_modified():
    assert len(http_time(1234567890)) == len(LAST_MODIFIED)
    assert http_time(1234567890).endswith(" GMT")


def test_parse_get():
    assert parse_get(b"GET /index.html HTTP/1.0\r\nHost: x\r\n\r\n") == "index.html"
    assert parse_get("GET /a/b.txt\n") == "a/b.txt"


def test_parse_get_exit():
    with pytest.raises(ExitRequest):
        parse_get(b"EXIT")


def test_parse_get_rejects_other_methods():
    with pytest.raises(BadRequest):
        parse_get(b"POST /x HTTP/1.0\r\n")


def test_directory_index():
    page = directory_index("pub", [".", "a.txt"])
    assert page.startswith("<HTML><HEAD>\n<TITLE>Index of /pub</TITLE>")
    assert '<A HREF="/pub/a.txt">a.txt</A><BR>\n' in page
    assert page.count("<BR>") == 2


def test_request_log_buffers_until_flush():
    sink = io.BytesIO()
    log = RequestLog(sink)
    log.append("0.0.0.0", 5, "a.html", 10)
    assert sink.getvalue() == b""
    log.flush()
    assert sink.getvalue() == b"0 5 a.html 10\n"


def test_request_log_flushes_when_full():
    sink = io.BytesIO()
    log = RequestLog(sink, capacity=20)
    log.append("0.0.0.0", 5, "a.html", 10)
    log.append("0.0.0.0", 6, "b.html", 11)
    assert sink.getvalue() == b"0 5 a.html 10\n"


def test_parse_args_flags_and_port():
    options = parse_args(["-l", "-f4", "-n", "8080"])
    assert options.log and options.fake
    assert options.forks == 4
    assert options.port == 8080


def test_parse_args_default_port():
    assert parse_args([]).port == 80
    assert parse_args(["-d"]).port == 80


def test_parse_args_unknown_flag():
    with pytest.raises(ValueError):
        parse_args(["-x"])


def _free_port():
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _request(port, payload):
    deadline = time.monotonic() + 5
    while True:
        try:
            conn = socket.create_connection(("127.0.0.1", port), timeout=5)
            break
        except ConnectionRefusedError:
            if time.monotonic() > deadline:
                raise
            time.sleep(0.05)
    with conn:
        conn.sendall(payload)
        chunks = []
        while True:
            data = conn.recv(4096)
            if not data:
                break
            chunks.append(data)
    return b"".join(chunks)


def test_serve_file_then_exit(tmp_path, monkeypatch):
    (tmp_path / "hello.txt").write_bytes(b"hello world")
    monkeypatch.chdir(tmp_path)
    port = _free_port()
    server = threading.Thread(
        target=serve, args=(HttpOptions(port=port, host="127.0.0.1"),), daemon=True
    )
    server.start()
    reply = _request(port, b"GET /hello.txt HTTP/1.0\r\n\r\n")
    missing = _request(port, b"GET /missing.txt HTTP/1.0\r\n\r\n")
    _request(port, b"EXIT")
    server.join(5)
    assert reply.startswith(b"HTTP/1.0 200 OK\r\n")
    assert b"Content-Type: text/plain\r\n" in reply
    assert reply.endswith(b"\r\n\r\nhello world")
    assert missing == b""
    assert not server.is_alive()