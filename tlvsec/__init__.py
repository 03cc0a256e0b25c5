"""TLV-framed secure channel: ECDH handshake, certificate checks, AES-CBC with HMAC."""

__version__ = "0.1.0"