"""Issue a server certificate signed by a certificate authority key."""

from __future__ import annotations

import re
import sys
import time
from pathlib import Path

from tlvsec import crypto
from tlvsec.crypto import KeyFileError
from tlvsec.tlv import Tlv, TlvType

DEFAULT_VALIDITY_SECONDS = 31536000
_UINT64_MAX = (1 << 64) - 1
_LEADING_NUMBER = re.compile(r"\s*\+?(\d+)")


def _parse_uint(text: str) -> int:
    """Read a leading unsigned decimal number; 0 when there is none."""
    match = _LEADING_NUMBER.match(text)
    if match is None:
        return 0
    return min(int(match.group(1)), _UINT64_MAX)


def build_certificate(subject_key, ca_key, dns_name, not_before, not_after) -> bytes:
    """Return the encoded CERTIFICATE record for subject_key, signed by ca_key."""
    if not_before < 0 or not_after < 0:
        raise ValueError("certificate lifetime must not be negative")
    if not_after < not_before:
        raise ValueError("certificate lifetime invalid (not_after < not_before)")
    name = dns_name.encode() if isinstance(dns_name, str) else bytes(dns_name)

    dns = Tlv(TlvType.DNS_NAME, name + b"\0")
    public_key = Tlv(TlvType.PUBLIC_KEY, crypto.public_key_der(subject_key))
    lifetime = Tlv(
        TlvType.LIFETIME,
        (not_before & _UINT64_MAX).to_bytes(8, "big")
        + (not_after & _UINT64_MAX).to_bytes(8, "big"),
    )
    signed = dns.serialize() + public_key.serialize() + lifetime.serialize()
    signature = Tlv(TlvType.SIGNATURE, crypto.sign(ca_key, signed))

    certificate = Tlv(TlvType.CERTIFICATE)
    for record in (dns, public_key, lifetime, signature):
        certificate.add(record)
    return certificate.serialize()


def main(argv=None) -> int:
    """Command entry point; returns the process exit status."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) < 4:
        print(
            "Usage: gen_cert server_private_key ca_private_key dns_name output "
            "[not_before not_after]",
            file=sys.stderr,
        )
        return 1

    try:
        subject_key = crypto.load_private_key(args[0])
        ca_key = crypto.load_private_key(args[1])
    except KeyFileError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 255

    not_before = int(time.time())
    not_after = not_before + DEFAULT_VALIDITY_SECONDS
    if len(args) >= 5:
        not_before = _parse_uint(args[4])
    if len(args) >= 6:
        not_after = _parse_uint(args[5])

    try:
        certificate = build_certificate(subject_key, ca_key, args[2], not_before, not_after)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    Path(args[3]).write_bytes(certificate)
    return 0


if __name__ == "__main__":
    sys.exit(main())