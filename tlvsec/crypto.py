"""Key handling, key agreement, signatures, encryption and MACs."""

from __future__ import annotations

import hmac
import os
from pathlib import Path

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, padding, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

NONCE_SIZE = 32
SECRET_SIZE = 32
MAC_SIZE = 32
IV_SIZE = 16


class KeyFileError(Exception):
    """Raised when a key or certificate file is missing or unreadable."""


def _read_file(path: str | os.PathLike, what: str) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as exc:
        raise KeyFileError(f"invalid {what} filename") from exc


def load_private_key(path):
    """Load a DER-encoded private key from a file."""
    data = _read_file(path, "private key")
    try:
        return serialization.load_der_private_key(data, password=None)
    except (ValueError, TypeError) as exc:
        raise KeyFileError("invalid private key") from exc


def generate_private_key():
    """Create a fresh P-256 key pair."""
    return ec.generate_private_key(ec.SECP256R1())


def public_key_der(private_key) -> bytes:
    """Return the DER SubjectPublicKeyInfo of a private key's public half."""
    return private_key.public_key().public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def load_public_key_der(data: bytes):
    """Load a public key from DER SubjectPublicKeyInfo bytes."""
    try:
        return serialization.load_der_public_key(bytes(data))
    except (ValueError, TypeError) as exc:
        raise ValueError("invalid public key") from exc


def load_ca_public_key(path):
    """Load the certificate authority's DER public key from a file."""
    data = _read_file(path, "certificate authority public key")
    try:
        return serialization.load_der_public_key(data)
    except (ValueError, TypeError) as exc:
        raise KeyFileError("invalid certificate authority public key") from exc


def load_certificate(path) -> bytes:
    """Return the raw bytes of a certificate file."""
    return _read_file(path, "certificate")


def derive_secret(private_key, peer_public_key) -> bytes:
    """Compute the ECDH shared secret."""
    return private_key.exchange(ec.ECDH(), peer_public_key)[:SECRET_SIZE]


def _hkdf(secret: bytes, salt: bytes, info: bytes) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(), length=SECRET_SIZE, salt=bytes(salt), info=info
    ).derive(bytes(secret))


def derive_keys(secret: bytes, salt: bytes) -> tuple[bytes, bytes]:
    """Derive the (encryption key, MAC key) pair from the shared secret."""
    return _hkdf(secret, salt, b"enc"), _hkdf(secret, salt, b"mac")


def sign(private_key, data: bytes) -> bytes:
    """Sign data with ECDSA over SHA-256."""
    return private_key.sign(bytes(data), ec.ECDSA(hashes.SHA256()))


def verify(public_key, signature: bytes, data: bytes) -> bool:
    """Return True when signature is valid for data under public_key."""
    try:
        public_key.verify(bytes(signature), bytes(data), ec.ECDSA(hashes.SHA256()))
    except (InvalidSignature, ValueError):
        return False
    return True


def generate_nonce(size: int) -> bytes:
    """Return size random bytes."""
    return os.urandom(size)


def encrypt_data(enc_key: bytes, data: bytes) -> tuple[bytes, bytes]:
    """Encrypt with AES-256-CBC and PKCS#7 padding; return (iv, ciphertext)."""
    iv = generate_nonce(IV_SIZE)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(bytes(data)) + padder.finalize()
    encryptor = Cipher(algorithms.AES(bytes(enc_key)), modes.CBC(iv)).encryptor()
    return iv, encryptor.update(padded) + encryptor.finalize()


def decrypt_cipher(enc_key: bytes, cipher: bytes, iv: bytes) -> bytes:
    """Decrypt AES-256-CBC ciphertext and strip its padding."""
    decryptor = Cipher(algorithms.AES(bytes(enc_key)), modes.CBC(bytes(iv))).decryptor()
    padded = decryptor.update(bytes(cipher)) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    return unpadder.update(padded) + unpadder.finalize()


def hmac_sha256(mac_key: bytes, data: bytes) -> bytes:
    """Return the HMAC-SHA256 of data."""
    return hmac.digest(bytes(mac_key), bytes(data), "sha256")