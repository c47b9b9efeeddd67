"""A minimal HTTP server that answers GET requests for files."""

from __future__ import annotations

import os
import re
import signal
import socket
import stat
import struct
import sys
import threading
import time
from dataclasses import dataclass
from typing import BinaryIO, Optional

LOGFILE = "/usr/tmp/lmhttp.log"
LAST_MODIFIED = "Tue, 28 Jan 97 01:20:30 GMT"
_XFERSIZE = 64 * 1024
_LOG_CAPACITY = 64 << 10
_NAME_LIMIT = 100
_DAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTHS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)
_INT = re.compile(r"\s*([+-]?\d+)")
_STOP_SIGNALS = tuple(
    sig
    for sig in (
        getattr(signal, "SIGINT", None),
        getattr(signal, "SIGTERM", None),
        getattr(signal, "SIGHUP", None),
    )
    if sig is not None
)


class ExitRequest(Exception):
    """A client asked the server to stop."""


class BadRequest(ValueError):
    """A request that is not a GET of a path."""


class _Shutdown(Exception):
    """A termination signal arrived."""


def _atoi(text: str) -> int:
    match = _INT.match(text)
    return int(match.group(1)) if match else 0


def content_type(name: str, allow_dirs: bool = False) -> str:
    """The MIME type served for ``name``."""
    if name.endswith(".gif"):
        return "image/gif"
    if name.endswith(".jpeg"):
        return "image/jpeg"
    if name.endswith(".html"):
        return "text/html"
    if allow_dirs and os.path.isdir(name):
        return "text/html"
    return "text/plain"


def http_time(when: Optional[float] = None) -> str:
    """A date such as ``Tue, 28 Jan 97 01:20:30 GMT``."""
    t = time.gmtime(when)
    return "%s, %02d %s %02d %02d:%02d:%02d GMT" % (
        _DAYS[t.tm_wday],
        t.tm_mday,
        _MONTHS[t.tm_mon - 1],
        t.tm_year % 100,
        t.tm_hour,
        t.tm_min,
        t.tm_sec,
    )


def parse_get(request) -> str:
    """The path asked for by a ``GET /path`` request."""
    text = request.decode("latin-1") if isinstance(request, (bytes, bytearray)) else request
    if text.startswith("EXIT"):
        raise ExitRequest
    if not text.startswith("GET /"):
        raise BadRequest(text)
    line = re.split(r"[\r\n]", text, maxsplit=1)[0]
    return line[5:].split(" ", 1)[0]


def directory_index(name: str, entries) -> str:
    """An HTML page linking to each entry of directory ``name``."""
    parts = [
        "<HTML><HEAD>\n<TITLE>Index of /%s</TITLE></HEAD><BODY><H1>Index of /%s</H1>\n"
        % (name, name)
    ]
    for entry in entries:
        parts.append('<A HREF="/%s/%s">%s</A><BR>\n' % (name, entry, entry))
    return "".join(parts)


class RequestLog:
    """Buffered log of served requests, one compact line per request."""

    def __init__(self, sink: Optional[BinaryIO] = None, capacity: int = _LOG_CAPACITY) -> None:
        self.sink = sink
        self.capacity = capacity
        self._buffer = bytearray()

    def append(self, address: str, when: int, name: str, size: int) -> None:
        raw = struct.unpack("=I", socket.inet_aton(address))[0]
        line = ("%d %d %s %d\n" % (raw, when, name, size)).encode("latin-1", "replace")
        if len(self._buffer) + len(line) >= self.capacity:
            self.flush()
        self._buffer += line

    def flush(self) -> None:
        if self._buffer and self.sink is not None:
            self.sink.write(bytes(self._buffer))
            self.sink.flush()
        self._buffer.clear()


@dataclass
class HttpOptions:
    allow_dirs: bool = False
    debug: bool = False
    forks: int = 0
    log: bool = False
    fake: bool = False
    zero: bool = False
    port: int = 80
    host: str = ""
    log_path: str = LOGFILE


def parse_args(argv) -> HttpOptions:
    """Interpret ``[-D] [-d] [-f#] [-l] [-n] [-z] [port]``."""
    argv = list(argv)
    options = HttpOptions()
    for arg in argv:
        if not arg.startswith("-"):
            break
        flag = arg[1:2]
        if flag == "D":
            options.allow_dirs = True
        elif flag == "d":
            options.debug = True
        elif flag == "f":
            options.forks = _atoi(arg[2:])
        elif flag == "l":
            options.log = True
        elif flag == "n":
            options.fake = True
        elif flag == "z":
            options.zero = True
        else:
            raise ValueError("Barf.")
    last = _atoi(argv[-1]) if argv else 0
    options.port = last if last != 0 else 80
    return options


def _send_fake(conn: socket.socket, size: int) -> None:
    while size > 0:
        chunk = min(size, _XFERSIZE)
        conn.sendall(bytes(chunk))
        size -= chunk


def _handle(conn: socket.socket, options: HttpOptions, log: RequestLog) -> None:
    data = conn.recv(_XFERSIZE)
    if not data:
        sys.stderr.write("control nbytes: connection closed\n")
        return
    if options.debug:
        print(data.decode("latin-1"))
    if options.zero:
        return
    try:
        name = parse_get(data)
    except BadRequest as exc:
        sys.stderr.write("bad request: %s\n" % exc)
        return
    if options.debug:
        print("OPEN %s" % name)
    is_dir = options.allow_dirs and os.path.isdir(name)
    source = None
    try:
        if is_dir:
            size = os.stat(name).st_size
        else:
            source = open(name, "rb")
            size = os.fstat(source.fileno()).st_size
    except OSError as exc:
        sys.stderr.write("%s: %s\n" % (name, exc.strerror))
        return
    try:
        header = (
            "HTTP/1.0 200 OK\r\n%s\r\nServer: lmhttp/0.1\r\n"
            "Content-Type: %s\r\nLast-Modified: %s\r\n\r\n"
            % (http_time(), content_type(name, options.allow_dirs), LAST_MODIFIED)
        )
        conn.sendall(header.encode("latin-1"))
        if is_dir:
            if options.debug:
                print("dodir(%s)" % name)
            entries = sorted({".", "..", *os.listdir(name)})
            conn.sendall(directory_index(name, entries).encode("latin-1", "replace"))
        elif options.fake:
            _send_fake(conn, size)
        elif stat.S_ISREG(os.fstat(source.fileno()).st_mode):
            conn.sendfile(source)
        if options.log:
            log.append(conn.getpeername()[0], int(time.time()), name[:_NAME_LIMIT], size)
    finally:
        if source is not None:
            source.close()


def serve(options: HttpOptions) -> None:
    """Accept and answer connections until a client sends ``EXIT``.

    A termination signal flushes the request log and ends the server.
    """
    with socket.create_server((options.host, options.port), backlog=100) as server:
        for _ in range(1, options.forks):
            try:
                if os.fork() == 0:
                    break
            except OSError:
                break
        sink = None
        if options.log:
            try:
                sink = open(options.log_path, "ab")
            except OSError:
                sink = None
        log = RequestLog(sink)

        def die(signum, frame) -> None:
            log.flush()
            raise _Shutdown(signum)

        previous = {}
        if threading.current_thread() is threading.main_thread():
            previous = {sig: signal.signal(sig, die) for sig in _STOP_SIGNALS}
        try:
            while True:
                conn, _ = server.accept()
                with conn:
                    try:
                        _handle(conn, options, log)
                    except ExitRequest:
                        return
                    except OSError as exc:
                        sys.stderr.write("write on socket: %s\n" % exc.strerror)
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
            log.flush()
            if sink is not None:
                sink.close()


def main(argv=None) -> int:
    """Command-line entry point."""
    args = sys.argv[1:] if argv is None else list(argv)
    try:
        options = parse_args(args)
    except ValueError as exc:
        sys.stderr.write("%s\n" % exc)
        return 1
    docroot = os.environ.get("DOCROOT")
    if docroot:
        try:
            os.chdir(docroot)
        except OSError as exc:
            sys.stderr.write("%s: %s\n" % (docroot, exc.strerror))
            return 1
    try:
        serve(options)
    except _Shutdown:
        return 1
    return 0