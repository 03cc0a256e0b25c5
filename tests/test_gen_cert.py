import pytest
from cryptography.hazmat.primitives import serialization

from tlvsec import crypto
from tlvsec.gen_cert import build_certificate, main
from tlvsec.security import parse_lifetime_window
from tlvsec.tlv import TlvType, parse_tlv


def _write_private(path, key):
    path.write_bytes(
        key.private_bytes(
            serialization.Encoding.DER,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )


@pytest.fixture
def keys():
    return crypto.generate_private_key(), crypto.generate_private_key()


@pytest.fixture
def key_files(tmp_path, keys):
    subject_key, ca_key = keys
    subject_path = tmp_path / "server_key.bin"
    ca_path = tmp_path / "ca_key.bin"
    _write_private(subject_path, subject_key)
    _write_private(ca_path, ca_key)
    return subject_path, ca_path


def test_certificate_children_in_order(keys):
    subject_key, ca_key = keys
    cert = parse_tlv(build_certificate(subject_key, ca_key, "example.com", 1000, 2000))
    assert cert.type == TlvType.CERTIFICATE
    assert [child.type for child in cert.children] == [
        TlvType.DNS_NAME,
        TlvType.PUBLIC_KEY,
        TlvType.LIFETIME,
        TlvType.SIGNATURE,
    ]


def test_dns_name_is_nul_terminated(keys):
    subject_key, ca_key = keys
    cert = parse_tlv(build_certificate(subject_key, ca_key, "example.com", 1000, 2000))
    assert cert.find(TlvType.DNS_NAME).value == b"example.com\x00"


def test_lifetime_window_round_trips(keys):
    subject_key, ca_key = keys
    cert = parse_tlv(build_certificate(subject_key, ca_key, "example.com", 1000, 2000))
    assert parse_lifetime_window(cert.find(TlvType.LIFETIME)) == (1000, 2000)


def test_public_key_is_subject_key(keys):
    subject_key, ca_key = keys
    cert = parse_tlv(build_certificate(subject_key, ca_key, "example.com", 1000, 2000))
    assert cert.find(TlvType.PUBLIC_KEY).value == crypto.public_key_der(subject_key)


def test_signature_verifies_with_ca_key(keys):
    subject_key, ca_key = keys
    cert = parse_tlv(build_certificate(subject_key, ca_key, "example.com", 1000, 2000))
    signed = b"".join(
        cert.find(kind).serialize()
        for kind in (TlvType.DNS_NAME, TlvType.PUBLIC_KEY, TlvType.LIFETIME)
    )
    signature = cert.find(TlvType.SIGNATURE).value
    assert crypto.verify(ca_key.public_key(), signature, signed)
    assert not crypto.verify(subject_key.public_key(), signature, signed)


def test_encoding_round_trips(keys):
    subject_key, ca_key = keys
    encoded = build_certificate(subject_key, ca_key, "example.com", 1000, 2000)
    assert parse_tlv(encoded).serialize() == encoded


def test_inverted_lifetime_rejected(keys):
    subject_key, ca_key = keys
    with pytest.raises(ValueError):
        build_certificate(subject_key, ca_key, "example.com", 2000, 1000)


def test_main_writes_certificate(tmp_path, keys, key_files):
    subject_key, ca_key = keys
    subject_path, ca_path = key_files
    out = tmp_path / "server_cert.bin"
    code = main([str(subject_path), str(ca_path), "example.com", str(out), "1000", "5000"])
    assert code == 0
    cert = parse_tlv(out.read_bytes())
    assert cert.find(TlvType.DNS_NAME).value == b"example.com\x00"
    assert parse_lifetime_window(cert.find(TlvType.LIFETIME)) == (1000, 5000)
    assert cert.find(TlvType.PUBLIC_KEY).value == crypto.public_key_der(subject_key)


def test_main_default_validity_is_one_year(tmp_path, key_files):
    subject_path, ca_path = key_files
    out = tmp_path / "cert.bin"
    assert main([str(subject_path), str(ca_path), "example.com", str(out)]) == 0
    start, end = parse_lifetime_window(parse_tlv(out.read_bytes()).find(TlvType.LIFETIME))
    assert end - start == 31536000


def test_main_not_before_only(tmp_path, key_files):
    subject_path, ca_path = key_files
    out = tmp_path / "cert.bin"
    assert main([str(subject_path), str(ca_path), "example.com", str(out), "1000"]) == 0
    start, end = parse_lifetime_window(parse_tlv(out.read_bytes()).find(TlvType.LIFETIME))
    assert start == 1000
    assert end > start


def test_main_usage(capsys):
    assert main(["a", "b", "c"]) == 1
    assert "Usage" in capsys.readouterr().err


def test_main_inverted_lifetime(tmp_path, key_files):
    subject_path, ca_path = key_files
    out = tmp_path / "cert.bin"
    code = main([str(subject_path), str(ca_path), "example.com", str(out), "5000", "1000"])
    assert code == 1
    assert not out.exists()


def test_main_missing_key_file(tmp_path, key_files):
    _, ca_path = key_files
    out = tmp_path / "cert.bin"
    code = main([str(tmp_path / "absent.bin"), str(ca_path), "example.com", str(out)])
    assert code == 255
    assert not out.exists()