"""
crypto.py — TLS material for the chat transport.

Why this exists:
- The protocol core never encrypts anything itself; confidentiality is the
  transport's job. This module keeps all the key/certificate fiddling in one
  place so node.py only ever sees an ssl.SSLContext.
- `generate_self_signed()` gives a working server identity for local runs
  and tests without reaching for openssl on the command line.

Notes:
- RSA keys (2048-bit by default; pass key_size=4096 if you want parity with
  production keys) and SHA-256 certificate signatures.
- Private keys are written as unencrypted PKCS#8 PEM. Fine for local testing;
  protect the file (or use a real CA-issued pair) anywhere else.
"""

import datetime
import ipaddress
import os
import ssl
from pathlib import Path
from typing import Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

DEFAULT_KEY_DIR = Path.home() / ".chatproto"
CERT_FILENAME = "server_cert.pem"
KEY_FILENAME = "server_key.pem"


# -------------
# Key + certificate generation
# -------------

def generate_private_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    """Fresh RSA private key (public exponent 65537)."""
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def export_privkey_pem(priv: rsa.RSAPrivateKey) -> bytes:
    """Unencrypted PKCS#8 PEM."""
    return priv.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def load_privkey_pem(pem_bytes: bytes) -> rsa.RSAPrivateKey:
    return serialization.load_pem_private_key(pem_bytes, password=None)


def generate_self_signed(
    common_name: str = "localhost",
    days: int = 365,
    key_size: int = 2048,
) -> Tuple[bytes, bytes]:
    """
    Build a self-signed server certificate.

    The certificate lists `common_name` plus localhost/127.0.0.1 as subject
    alternative names so clients verifying against it can connect locally.

    Returns:
        (cert_pem, key_pem)
    """
    key = generate_private_key(key_size)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])

    alt_names = {common_name, "localhost"}
    sans = [x509.DNSName(n) for n in sorted(alt_names)]
    sans.append(x509.IPAddress(ipaddress.ip_address("127.0.0.1")))

    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)  # self-signed: issuer == subject
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + datetime.timedelta(days=days))
        .add_extension(x509.SubjectAlternativeName(sans), critical=False)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True, content_commitment=False, key_encipherment=True,
                data_encipherment=False, key_agreement=False, key_cert_sign=True,
                crl_sign=False, encipher_only=False, decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(key.public_key()), critical=False
        )
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM), export_privkey_pem(key)


def write_tls_material(
    directory: Optional[Path] = None,
    common_name: str = "localhost",
    overwrite: bool = False,
) -> Tuple[Path, Path]:
    """
    Create (or reuse) a certificate/key pair on disk.

    An existing pair is kept unless `overwrite` is set, so repeated server
    starts present the same identity. A pair that no longer matches (or no
    longer parses) is replaced.

    Returns:
        (cert_path, key_path)
    """
    directory = Path(directory) if directory is not None else DEFAULT_KEY_DIR
    directory.mkdir(parents=True, exist_ok=True)
    cert_path = directory / CERT_FILENAME
    key_path = directory / KEY_FILENAME

    if not overwrite and pair_matches(cert_path, key_path):
        return cert_path, key_path

    cert_pem, key_pem = generate_self_signed(common_name)
    cert_path.write_bytes(cert_pem)
    key_path.write_bytes(key_pem)
    os.chmod(key_path, 0o600)  # private key: owner only
    return cert_path, key_path


def load_certificate(cert_path: Path) -> x509.Certificate:
    return x509.load_pem_x509_certificate(Path(cert_path).read_bytes())


def pair_matches(cert_path: Path, key_path: Path) -> bool:
    """True when both files exist, parse, and the key belongs to the certificate."""
    if not (Path(cert_path).exists() and Path(key_path).exists()):
        return False
    try:
        cert = load_certificate(cert_path)
        key = load_privkey_pem(Path(key_path).read_bytes())
    except (ValueError, TypeError):
        return False

    fmt = serialization.PublicFormat.SubjectPublicKeyInfo
    enc = serialization.Encoding.DER
    return key.public_key().public_bytes(enc, fmt) == cert.public_key().public_bytes(enc, fmt)


# -------------
# ssl contexts
# -------------

def server_ssl_context(certfile: str, keyfile: str) -> ssl.SSLContext:
    """TLS server context presenting the given certificate."""
    ctx = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    ctx.load_cert_chain(certfile=certfile, keyfile=keyfile)
    return ctx


def client_ssl_context(cafile: Optional[str] = None, insecure: bool = False) -> ssl.SSLContext:
    """
    TLS client context.

    Args:
        cafile: trust only this certificate (e.g. the server's self-signed
            one) instead of the system store.
        insecure: skip verification entirely. Testing only; anyone on the
            path can impersonate the server.
    """
    ctx = ssl.create_default_context(ssl.Purpose.SERVER_AUTH, cafile=cafile)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    if insecure:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    return ctx
