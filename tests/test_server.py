import socket
import threading
import time

import pytest
from cryptography.hazmat.primitives import serialization

from tlvsec import crypto
from tlvsec.gen_cert import build_certificate
from tlvsec.security import HandshakeError, SecureSession, State
from tlvsec.server import main, run_server


class _BufferIO:
    def __init__(self, data=b""):
        self.pending = data
        self.written = bytearray()

    def read(self, max_length):
        chunk, self.pending = self.pending[:max_length], self.pending[max_length:]
        return chunk

    def write(self, data):
        self.written += data


def _write_private(path, key):
    path.write_bytes(
        key.private_bytes(
            serialization.Encoding.DER,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )


def _prepare(tmp_path):
    server_key = crypto.generate_private_key()
    ca_key = crypto.generate_private_key()
    now = int(time.time())
    (tmp_path / "server_cert.bin").write_bytes(
        build_certificate(server_key, ca_key, "localhost", now - 60, now + 3600)
    )
    _write_private(tmp_path / "server_key.bin", server_key)
    (tmp_path / "ca_public_key.bin").write_bytes(crypto.public_key_der(ca_key))


def _free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
        probe.bind(("127.0.0.1", 0))
        return probe.getsockname()[1]


def _run(port, bad_mac, result):
    try:
        result["code"] = run_server(port, bad_mac)
    except HandshakeError as exc:
        result["error"] = exc


def _start(port, bad_mac=False):
    result = {}
    thread = threading.Thread(target=_run, args=(port, bad_mac, result), daemon=True)
    thread.start()
    return thread, result


def _connect(port):
    deadline = time.monotonic() + 5
    while True:
        try:
            return socket.create_connection(("127.0.0.1", port), timeout=5)
        except OSError:
            if time.monotonic() > deadline:
                raise
            time.sleep(0.05)


def _client_session(tmp_path, plaintext, bad_mac=False):
    return SecureSession(
        State.CLIENT_CLIENT_HELLO_SEND,
        "localhost",
        bad_mac,
        io=_BufferIO(plaintext),
        ca_public_key_path=tmp_path / "ca_public_key.bin",
    )


def test_main_usage(capsys):
    assert main([]) == 1
    assert "Usage" in capsys.readouterr().err


def test_run_server_delivers_plaintext(tmp_path, monkeypatch, capfd):
    _prepare(tmp_path)
    monkeypatch.chdir(tmp_path)
    port = _free_port()
    thread, result = _start(port)
    client = _client_session(tmp_path, b"hello over the channel")
    with _connect(port) as sock:
        sock.sendall(client.input(5000))
        client.output(sock.recv(5000))
        sock.sendall(client.input(5000))
    thread.join(10)
    assert result == {"code": 0}
    assert client.state == State.DATA
    assert "hello over the channel" in capfd.readouterr().out


def test_run_server_rejects_bad_mac(tmp_path, monkeypatch):
    _prepare(tmp_path)
    monkeypatch.chdir(tmp_path)
    port = _free_port()
    thread, result = _start(port)
    client = _client_session(tmp_path, b"tampered", bad_mac=True)
    with _connect(port) as sock:
        sock.sendall(client.input(5000))
        client.output(sock.recv(5000))
        sock.sendall(client.input(5000))
        thread.join(10)
    assert result["error"].exit_code == 5


def test_run_server_rejects_malformed_hello(tmp_path, monkeypatch):
    _prepare(tmp_path)
    monkeypatch.chdir(tmp_path)
    port = _free_port()
    thread, result = _start(port)
    with _connect(port) as sock:
        sock.sendall(b"\x00\x01\x00")
        thread.join(10)
    assert result["error"].exit_code == 6

    server_side = SecureSession(
        State.SERVER_CLIENT_HELLO_AWAIT,
        None,
        False,
        io=_BufferIO(),
        certificate_path=tmp_path / "server_cert.bin",
    )
    with pytest.raises(HandshakeError) as excinfo:
        server_side.output(b"\x00\x01\x00")
    assert excinfo.value.exit_code == 6