"""Run an HTTP client on several remote machines at once through rsh."""

from __future__ import annotations

import re
import subprocess
import sys

_USAGE = "Usage: rhttp hostname [port] remote-clients -p file ..."
_INT = re.compile(r"\s*([+-]?\d+)")


def _atoi(text: str) -> int:
    match = _INT.match(text)
    return int(match.group(1)) if match else 0


def parse_args(argv) -> tuple[str, str, list[str], list[str]]:
    """Split arguments into server, port, remote clients and files."""
    argv = list(argv)
    if len(argv) < 4:
        raise ValueError(_USAGE)
    server, rest = argv[0], argv[1:]
    if _atoi(rest[0]) != 0:
        port, rest = rest[0], rest[1:]
    else:
        port = "80"
    if "-p" in rest:
        split = rest.index("-p")
        clients, files = rest[:split], rest[split + 1:]
    else:
        clients, files = rest, []
    return server, port, clients, files


def build_command(server: str, port: str, client: str, files) -> list[str]:
    """The command that runs the HTTP client on ``client``."""
    return ["rsh", client, "http", server, *files, port]


def main(argv=None) -> int:
    """Command-line entry point; always reports failure, as the tool does."""
    args = sys.argv[1:] if argv is None else list(argv)
    try:
        server, port, clients, files = parse_args(args)
    except ValueError as exc:
        sys.stderr.write("%s\n" % exc)
        return 1
    procs = []
    for client in clients:
        cmd = build_command(server, port, client, files)
        print(" ".join(cmd) + " ")
        sys.stdout.flush()
        try:
            procs.append(subprocess.Popen(cmd, stderr=subprocess.STDOUT))
        except OSError as exc:
            sys.stderr.write("%s: %s\n" % (cmd[0], exc.strerror))
    for proc in procs:
        proc.wait()
    return 1