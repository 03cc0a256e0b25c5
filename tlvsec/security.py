"""Handshake and record protection for a two-party secure channel."""

from __future__ import annotations

import hmac
import sys
import time
from enum import IntEnum

from tlvsec import crypto
from tlvsec.channel_io import StdIO
from tlvsec.tlv import PROTOCOL_VERSION, MalformedTlvError, Tlv, TlvType, parse_tlv

DEFAULT_CA_PUBLIC_KEY_PATH = "ca_public_key.bin"
DEFAULT_CERTIFICATE_PATH = "server_cert.bin"
DEFAULT_SERVER_KEY_PATH = "server_key.bin"
PLAINTEXT_CHUNK = 1024
LIFETIME_SIZE = 16


class State(IntEnum):
    """Stages of a session."""

    SERVER_CLIENT_HELLO_AWAIT = 0
    CLIENT_CLIENT_HELLO_SEND = 1
    SERVER_SERVER_HELLO_SEND = 2
    CLIENT_SERVER_HELLO_AWAIT = 3
    DATA = 4


class HandshakeError(Exception):
    """Raised when a peer's message fails a check; exit_code tells which one.

    1: bad certificate, 2: bad identity, 3: bad handshake signature,
    5: bad MAC, 6: malformed input.
    """

    def __init__(self, message: str, exit_code: int = 6):
        super().__init__(message)
        self.exit_code = exit_code


def _log(text: str) -> None:
    print(text, file=sys.stderr)


def parse_lifetime_window(life: Tlv | None) -> tuple[int, int]:
    """Return (not_before, not_after) from a LIFETIME record."""
    if (
        life is None
        or life.type != TlvType.LIFETIME
        or life.value is None
        or len(life.value) != LIFETIME_SIZE
    ):
        raise HandshakeError("Malformed lifetime field", 6)
    start = int.from_bytes(life.value[:8], "big")
    end = int.from_bytes(life.value[8:], "big")
    if start > end:
        raise HandshakeError("Malformed lifetime field", 6)
    return start, end


def enforce_lifetime_valid(life: Tlv | None, now: int | None = None) -> tuple[int, int]:
    """Check that now lies inside the lifetime window and return the window."""
    start, end = parse_lifetime_window(life)
    current = int(time.time()) if now is None else int(now)
    if current < start or current > end:
        raise HandshakeError("Certificate expired or not valid yet", 1)
    return start, end


def _name_matches(dns_value: bytes, hostname: str, limit: int) -> bool:
    """Compare like a bounded C string comparison of at most limit bytes."""
    expected = (hostname.encode() + b"\0")[:limit].split(b"\0", 1)[0]
    actual = dns_value[:limit].split(b"\0", 1)[0]
    return actual == expected


def _parse_message(data: bytes, expected: TlvType, what: str) -> Tlv:
    try:
        message = parse_tlv(data)
    except MalformedTlvError as exc:
        raise HandshakeError(f"Malformed {what}", 6) from exc
    if message.type != expected:
        raise HandshakeError(f"Malformed {what}", 6)
    return message


class SecureSession:
    """One side of the channel: produces outgoing and consumes incoming messages."""

    def __init__(
        self,
        state,
        hostname=None,
        bad_mac=False,
        io=None,
        ca_public_key_path=DEFAULT_CA_PUBLIC_KEY_PATH,
        certificate_path=DEFAULT_CERTIFICATE_PATH,
        server_key_path=DEFAULT_SERVER_KEY_PATH,
    ):
        self.state = State(state)
        self.hostname = hostname
        self.bad_mac = bool(bad_mac)
        self.io = io if io is not None else StdIO()
        self._server_key_path = server_key_path
        self._ca_public_key = None
        self._certificate = b""
        if self.state == State.CLIENT_CLIENT_HELLO_SEND:
            self._ca_public_key = crypto.load_ca_public_key(ca_public_key_path)
        elif self.state == State.SERVER_CLIENT_HELLO_AWAIT:
            self._certificate = crypto.load_certificate(certificate_path)
        self._private_key = crypto.generate_private_key()
        self._public_key = crypto.public_key_der(self._private_key)
        self._peer_public_key = None
        self._client_hello: Tlv | None = None
        self._client_nonce = b""
        self._server_nonce = b""
        self._enc_key = b""
        self._mac_key = b""

    # Outgoing messages

    def input(self, capacity: int = 5000) -> bytes:
        """Return the next message to send, or b"" when there is none."""
        if self.state == State.CLIENT_CLIENT_HELLO_SEND:
            return self._send_client_hello(capacity)
        if self.state == State.SERVER_SERVER_HELLO_SEND:
            return self._send_server_hello(capacity)
        if self.state == State.DATA:
            return self._send_data(capacity)
        return b""

    def _send_client_hello(self, capacity: int) -> bytes:
        _log("SEND CLIENT HELLO")
        self._client_nonce = crypto.generate_nonce(crypto.NONCE_SIZE)
        hello = Tlv(TlvType.CLIENT_HELLO)
        hello.add(Tlv(TlvType.VERSION_TAG, bytes([PROTOCOL_VERSION])))
        hello.add(Tlv(TlvType.NONCE, self._client_nonce))
        hello.add(Tlv(TlvType.PUBLIC_KEY, self._public_key))
        encoded = hello.serialize()
        if len(encoded) > capacity:
            raise HandshakeError("CLIENT_HELLO exceeds output buffer capacity", 6)
        self._client_hello = hello
        self.state = State.CLIENT_SERVER_HELLO_AWAIT
        return encoded

    def _send_server_hello(self, capacity: int) -> bytes:
        _log("SEND SERVER HELLO")
        self._server_nonce = crypto.generate_nonce(crypto.NONCE_SIZE)
        nonce_tlv = Tlv(TlvType.NONCE, self._server_nonce)
        cert_tlv = Tlv(TlvType.CERTIFICATE, self._certificate)
        pubkey_tlv = Tlv(TlvType.PUBLIC_KEY, self._public_key)

        signed = (
            self._client_hello.serialize()
            + nonce_tlv.serialize()
            + pubkey_tlv.serialize()
        )
        identity_key = crypto.load_private_key(self._server_key_path)
        signature = crypto.sign(identity_key, signed)

        hello = Tlv(TlvType.SERVER_HELLO)
        hello.add(nonce_tlv)
        hello.add(cert_tlv)
        hello.add(pubkey_tlv)
        hello.add(Tlv(TlvType.HANDSHAKE_SIGNATURE, signature))
        encoded = hello.serialize()
        if len(encoded) > capacity:
            raise HandshakeError("SERVER_HELLO exceeds output buffer capacity", 6)

        self._client_hello = None
        self._establish_keys()
        self.state = State.DATA
        return encoded

    def _send_data(self, capacity: int) -> bytes:
        plaintext = self.io.read(PLAINTEXT_CHUNK)
        if not plaintext:
            return b""
        iv, ciphertext = crypto.encrypt_data(self._enc_key, plaintext)
        iv_tlv = Tlv(TlvType.IV, iv)
        cipher_tlv = Tlv(TlvType.CIPHERTEXT, ciphertext)
        mac = bytearray(
            crypto.hmac_sha256(self._mac_key, iv_tlv.serialize() + cipher_tlv.serialize())
        )
        if self.bad_mac:
            mac[0] ^= 0xFF

        message = Tlv(TlvType.DATA)
        message.add(iv_tlv)
        message.add(Tlv(TlvType.MAC, bytes(mac)))
        message.add(cipher_tlv)
        encoded = message.serialize()
        if len(encoded) > capacity:
            raise HandshakeError("DATA exceeds output buffer capacity", 6)
        return encoded

    # Incoming messages

    def output(self, data: bytes) -> None:
        """Consume a message received from the peer."""
        if self.state == State.SERVER_CLIENT_HELLO_AWAIT:
            self._receive_client_hello(data)
        elif self.state == State.CLIENT_SERVER_HELLO_AWAIT:
            self._receive_server_hello(data)
        elif self.state == State.DATA:
            self._receive_data(data)

    def _receive_client_hello(self, data: bytes) -> None:
        _log("RECV CLIENT HELLO")
        hello = _parse_message(data, TlvType.CLIENT_HELLO, "CLIENT_HELLO")

        version = hello.find(TlvType.VERSION_TAG)
        if version is None or not version.value or version.value[0] != PROTOCOL_VERSION:
            raise HandshakeError("Unsupported protocol version", 6)

        nonce = hello.find(TlvType.NONCE)
        if nonce is None or nonce.value is None or len(nonce.value) < crypto.NONCE_SIZE:
            raise HandshakeError("CLIENT_HELLO missing nonce", 6)

        pubkey = hello.find(TlvType.PUBLIC_KEY)
        if pubkey is None or pubkey.value is None:
            raise HandshakeError("CLIENT_HELLO missing public key", 6)
        try:
            self._peer_public_key = crypto.load_public_key_der(pubkey.value)
        except ValueError as exc:
            raise HandshakeError("CLIENT_HELLO has an invalid public key", 6) from exc

        self._client_nonce = nonce.value[: crypto.NONCE_SIZE]
        self._client_hello = hello
        self.state = State.SERVER_SERVER_HELLO_SEND

    def _receive_server_hello(self, data: bytes) -> None:
        _log("RECV SERVER HELLO")
        hello = _parse_message(data, TlvType.SERVER_HELLO, "SERVER_HELLO")

        cert = hello.find(TlvType.CERTIFICATE)
        if cert is None:
            raise HandshakeError("SERVER_HELLO missing certificate", 6)
        dns = cert.find(TlvType.DNS_NAME)
        cert_pubkey = cert.find(TlvType.PUBLIC_KEY)
        life = cert.find(TlvType.LIFETIME)
        cert_sig = cert.find(TlvType.SIGNATURE)
        if None in (dns, cert_pubkey, life, cert_sig):
            raise HandshakeError("Malformed certificate in SERVER_HELLO", 6)

        signed_cert = dns.serialize() + cert_pubkey.serialize() + life.serialize()
        if not crypto.verify(self._ca_public_key, cert_sig.value or b"", signed_cert):
            raise HandshakeError("Failed certificate signature verification", 1)
        enforce_lifetime_valid(life)

        if not _name_matches(dns.value or b"", self.hostname or "", dns.length):
            raise HandshakeError("DNS name does not match expected hostname", 2)

        nonce = hello.find(TlvType.NONCE)
        pubkey = hello.find(TlvType.PUBLIC_KEY)
        handshake_sig = hello.find(TlvType.HANDSHAKE_SIGNATURE)
        if None in (nonce, pubkey, handshake_sig):
            raise HandshakeError(
                "SERVER_HELLO missing fields for handshake signature verification", 6
            )

        signed = self._client_hello.serialize() + nonce.serialize() + pubkey.serialize()
        try:
            identity_key = crypto.load_public_key_der(cert_pubkey.value or b"")
        except ValueError as exc:
            raise HandshakeError("Failed handshake signature verification", 3) from exc
        if not crypto.verify(identity_key, handshake_sig.value or b"", signed):
            raise HandshakeError("Failed handshake signature verification", 3)

        if nonce.value is None or len(nonce.value) < crypto.NONCE_SIZE:
            raise HandshakeError("SERVER_HELLO has a short nonce", 6)
        try:
            self._peer_public_key = crypto.load_public_key_der(pubkey.value or b"")
        except ValueError as exc:
            raise HandshakeError("SERVER_HELLO has an invalid public key", 6) from exc
        self._server_nonce = nonce.value[: crypto.NONCE_SIZE]

        self._establish_keys()
        self._client_hello = None
        self.state = State.DATA

    def _receive_data(self, data: bytes) -> None:
        message = _parse_message(data, TlvType.DATA, "DATA message")
        iv = message.find(TlvType.IV)
        ciphertext = message.find(TlvType.CIPHERTEXT)
        mac = message.find(TlvType.MAC)
        if None in (iv, ciphertext, mac):
            raise HandshakeError("Malformed DATA", 6)

        expected = crypto.hmac_sha256(self._mac_key, iv.serialize() + ciphertext.serialize())
        if not hmac.compare_digest(expected, mac.value or b""):
            raise HandshakeError("Failed MAC verification", 5)

        try:
            plaintext = crypto.decrypt_cipher(self._enc_key, ciphertext.value, iv.value)
        except ValueError as exc:
            raise HandshakeError("Malformed DATA", 6) from exc
        self.io.write(plaintext)

    def _establish_keys(self) -> None:
        secret = crypto.derive_secret(self._private_key, self._peer_public_key)
        self._enc_key, self._mac_key = crypto.derive_keys(
            secret, self._client_nonce + self._server_nonce
        )