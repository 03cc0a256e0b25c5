"""Server side of the secure channel: accepts one client and relays stdin/stdout."""

from __future__ import annotations

import re
import selectors
import signal
import socket
import sys
from contextlib import contextmanager

from tlvsec.crypto import KeyFileError
from tlvsec.security import HandshakeError, SecureSession, State

BUFFER_SIZE = 5000
POLL_INTERVAL = 0.01
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")
_SIGNALS = tuple(
    sig for sig in (getattr(signal, "SIGTERM", None), getattr(signal, "SIGQUIT", None))
    if sig is not None
)


class _Terminated(Exception):
    def __init__(self, signum: int):
        super().__init__(signum)
        self.signum = int(signum)


def _raise_terminated(signum, _frame):
    raise _Terminated(signum)


@contextmanager
def _signal_handlers():
    previous = {}
    for signum in _SIGNALS:
        try:
            previous[signum] = signal.signal(signum, _raise_terminated)
        except (ValueError, OSError):
            pass
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def _atoi(text: str) -> int:
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


def run_server(port, bad_mac=False) -> int:
    """Accept one client on port and run the session until it disconnects."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as listener:
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        listener.bind(("", port))
        listener.listen(1)
        conn, _ = listener.accept()
        with conn:
            conn.setblocking(False)
            session = SecureSession(State.SERVER_CLIENT_HELLO_AWAIT, None, bad_mac)
            with selectors.DefaultSelector() as selector:
                selector.register(conn, selectors.EVENT_READ)
                while True:
                    if not selector.select(POLL_INTERVAL):
                        outgoing = session.input(BUFFER_SIZE)
                        if outgoing:
                            conn.sendall(outgoing)
                        continue
                    try:
                        data = conn.recv(BUFFER_SIZE)
                    except BlockingIOError:
                        continue
                    except OSError as exc:
                        print(f"connection went bad: {exc}", file=sys.stderr)
                        break
                    if not data:
                        break
                    print(f"received {len(data)} bytes", file=sys.stderr)
                    session.output(data)
    return 0


def main(argv=None) -> int:
    """Command entry point; returns the process exit status."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) < 1:
        print("Usage: server <port>", file=sys.stderr)
        return 1
    with _signal_handlers():
        try:
            return run_server(_atoi(args[0]), len(args) > 1)
        except KeyFileError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 255
        except HandshakeError as exc:
            print(exc, file=sys.stderr)
            return exc.exit_code
        except (OSError, OverflowError) as exc:
            print(f"server failed: {exc}", file=sys.stderr)
            return int(signal.SIGTERM)
        except KeyboardInterrupt:
            print(f"Received signal {int(signal.SIGINT)}")
            return int(signal.SIGINT)
        except _Terminated as exc:
            print(f"Received signal {exc.signum}")
            return exc.signum


if __name__ == "__main__":
    sys.exit(main())