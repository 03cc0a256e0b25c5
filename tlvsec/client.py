"""Client side of the secure channel: connects, handshakes, relays stdin/stdout."""

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


def resolve_hostname(hostname: str) -> str:
    """Return the first IPv4 address of hostname."""
    try:
        return socket.gethostbyname(hostname)
    except (OSError, UnicodeError) as exc:
        raise ValueError("Invalid hostname") from exc


def _send(sock: socket.socket, data: bytes) -> None:
    if data:
        sock.sendall(data)


def run_client(hostname, port, bad_mac=False) -> int:
    """Connect to hostname:port and run the session until the peer closes."""
    address = resolve_hostname(hostname)
    session = SecureSession(State.CLIENT_CLIENT_HELLO_SEND, hostname, bad_mac)
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.connect((address, port))
        sock.setblocking(False)
        with selectors.DefaultSelector() as selector:
            selector.register(sock, selectors.EVENT_READ)
            while True:
                _send(sock, session.input(BUFFER_SIZE))
                if not selector.select(POLL_INTERVAL):
                    continue
                try:
                    data = sock.recv(BUFFER_SIZE)
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
    if len(args) < 2:
        print("Usage: client <hostname> <port> ", file=sys.stderr)
        return 1
    with _signal_handlers():
        try:
            return run_client(args[0], _atoi(args[1]), len(args) > 2)
        except ValueError:
            print("Error: Invalid hostname", file=sys.stderr)
            return 255
        except KeyFileError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 255
        except HandshakeError as exc:
            print(exc, file=sys.stderr)
            return exc.exit_code
        except (OSError, OverflowError) as exc:
            print(f"connect failed: {exc}", file=sys.stderr)
            return 1
        except KeyboardInterrupt:
            print(f"Received signal {int(signal.SIGINT)}")
            return int(signal.SIGINT)
        except _Terminated as exc:
            print(f"Received signal {exc.signum}")
            return exc.signum


if __name__ == "__main__":
    sys.exit(main())