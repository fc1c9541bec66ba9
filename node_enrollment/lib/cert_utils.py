"""Certificate utility functions for key generation, serialization, and chain inspection."""

import base64
import binascii
import hashlib
import re
from typing import NamedTuple

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePrivateKey

_PEM_BLOCK = re.compile(
    rb"-----BEGIN (?P<type>[A-Z0-9 ]+)-----\r?\n(?P<body>.*?)-----END (?P=type)-----",
    re.DOTALL,
)


class PEMBlock(NamedTuple):
    """Decoded PEM block."""

    type: str
    der: bytes


def generate_private_key() -> EllipticCurvePrivateKey:
    """Generate EC P-256 private key."""
    return ec.generate_private_key(ec.SECP256R1())


def serialize_private_key(key: EllipticCurvePrivateKey) -> bytes:
    """Serialize private key to PEM format (PKCS8, no encryption)."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def compute_ski(public_key: ec.EllipticCurvePublicKey) -> bytes:
    """Return SHA-256 over the uncompressed public point.

    This is the subject key identifier the CA client uses to name key files
    and HSM key objects.
    """
    point = public_key.public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )
    return hashlib.sha256(point).digest()


def serialize_certificate(cert: x509.Certificate) -> bytes:
    """Serialize certificate to PEM format."""
    return cert.public_bytes(serialization.Encoding.PEM)


def serialize_csr(csr: x509.CertificateSigningRequest) -> bytes:
    """Serialize CSR to PEM format."""
    return csr.public_bytes(serialization.Encoding.PEM)


def base64_to_bytes(data: str) -> bytes:
    """Decode standard base64 text.

    Raises:
        ValueError: If the text is not valid base64
    """
    try:
        return base64.b64decode(data, validate=True)
    except binascii.Error as e:
        raise ValueError(f"invalid base64 data: {e}") from e


def split_pem_blocks(data: bytes) -> list[PEMBlock]:
    """Split concatenated PEM data into decoded blocks.

    Walks the data in order and stops at the first chunk that does not
    decode as a PEM block; whatever follows is ignored.

    Args:
        data: Concatenated PEM data

    Returns:
        List of PEMBlock with the block type and DER payload
    """
    blocks = []
    pos = 0
    while pos < len(data):
        match = _PEM_BLOCK.search(data, pos)
        if match is None:
            break
        try:
            der = base64.b64decode(b"".join(match.group("body").split()), validate=True)
        except binascii.Error:
            break
        blocks.append(PEMBlock(match.group("type").decode(), der))
        pos = match.end()
    return blocks


def encode_pem(block: PEMBlock) -> bytes:
    """Encode a block back to PEM with 64 character lines."""
    body = base64.b64encode(block.der)
    lines = [body[i : i + 64] for i in range(0, len(body), 64)]
    return (
        b"-----BEGIN " + block.type.encode() + b"-----\n"
        + b"".join(line + b"\n" for line in lines)
        + b"-----END " + block.type.encode() + b"-----\n"
    )


def is_ca_certificate(cert: x509.Certificate) -> bool:
    """Return True if BasicConstraints is present with ca=True."""
    try:
        constraints = cert.extensions.get_extension_for_class(x509.BasicConstraints)
    except x509.ExtensionNotFound:
        return False
    return constraints.value.ca


def is_root_certificate(cert: x509.Certificate) -> bool:
    """Return True for a self-identifying CA certificate.

    A certificate is a root when its authority key identifier extension is
    missing or has no key identifier, or when the key identifier equals its
    subject key identifier.
    """
    try:
        aki = cert.extensions.get_extension_for_class(x509.AuthorityKeyIdentifier)
    except x509.ExtensionNotFound:
        return True
    if aki.value.key_identifier is None:
        return True

    try:
        ski = cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
    except x509.ExtensionNotFound:
        return False

    return aki.value.key_identifier == ski.value.digest
