"""Tests for TLS material generation and ssl contexts."""
import ssl
import stat

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import NameOID

from chatproto import crypto


@pytest.fixture(scope="module")
def self_signed():
    return crypto.generate_self_signed("chat.example")


def test_certificate_names(self_signed):
    cert_pem, _ = self_signed
    cert = x509.load_pem_x509_certificate(cert_pem)

    cn = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
    assert cn == "chat.example"
    assert cert.issuer == cert.subject

    sans = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    assert set(sans.get_values_for_type(x509.DNSName)) == {"chat.example", "localhost"}
    assert [str(ip) for ip in sans.get_values_for_type(x509.IPAddress)] == ["127.0.0.1"]


def test_key_matches_certificate(self_signed):
    cert_pem, key_pem = self_signed
    key = crypto.load_privkey_pem(key_pem)
    cert = x509.load_pem_x509_certificate(cert_pem)

    fmt = serialization.PublicFormat.SubjectPublicKeyInfo
    enc = serialization.Encoding.PEM
    assert key.public_key().public_bytes(enc, fmt) == cert.public_key().public_bytes(enc, fmt)
    assert key.key_size == 2048


def test_write_tls_material_reuses_existing(tmp_path):
    cert_path, key_path = crypto.write_tls_material(tmp_path)
    first = cert_path.read_bytes()
    assert stat.S_IMODE(key_path.stat().st_mode) == 0o600

    assert crypto.write_tls_material(tmp_path) == (cert_path, key_path)
    assert cert_path.read_bytes() == first

    crypto.write_tls_material(tmp_path, overwrite=True)
    assert cert_path.read_bytes() != first
    assert crypto.load_certificate(cert_path).serial_number != x509.load_pem_x509_certificate(first).serial_number


def test_mismatched_or_corrupt_pair_is_replaced(tmp_path, self_signed):
    cert_path, key_path = crypto.write_tls_material(tmp_path)
    assert crypto.pair_matches(cert_path, key_path)

    # key from some other certificate
    key_path.write_bytes(self_signed[1])
    assert not crypto.pair_matches(cert_path, key_path)
    crypto.write_tls_material(tmp_path)
    assert crypto.pair_matches(cert_path, key_path)

    key_path.write_bytes(b"not a key")
    assert not crypto.pair_matches(cert_path, key_path)
    crypto.write_tls_material(tmp_path)
    assert crypto.pair_matches(cert_path, key_path)


def test_pair_matches_missing_files(tmp_path):
    assert not crypto.pair_matches(tmp_path / "cert.pem", tmp_path / "key.pem")


def test_ssl_contexts(tmp_path):
    cert_path, key_path = crypto.write_tls_material(tmp_path)

    server_ctx = crypto.server_ssl_context(str(cert_path), str(key_path))
    assert server_ctx.minimum_version == ssl.TLSVersion.TLSv1_2

    verified = crypto.client_ssl_context(cafile=str(cert_path))
    assert verified.verify_mode == ssl.CERT_REQUIRED
    assert verified.check_hostname

    insecure = crypto.client_ssl_context(insecure=True)
    assert insecure.verify_mode == ssl.CERT_NONE
    assert not insecure.check_hostname
