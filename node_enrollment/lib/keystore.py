"""Key stores backing the CA client: software files and PKCS#11 tokens."""

import os
from pathlib import Path

import pkcs11
import pkcs11.util.ec as ec_util
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from pkcs11 import Attribute, KeyType, Mechanism

from .cert_utils import (
    compute_ski,
    generate_private_key,
    serialize_private_key,
    split_pem_blocks,
)
from .config import PKCS11Options
from .errors import KeystoreError

_ECDSA_MECHANISMS = {
    hashes.SHA256.name: Mechanism.ECDSA_SHA256,
    hashes.SHA384.name: Mechanism.ECDSA_SHA384,
    hashes.SHA512.name: Mechanism.ECDSA_SHA512,
}


class SoftwareKeyStore:
    """File based key store, one PKCS#8 PEM file per key."""

    def __init__(self, keystore_dir: str | Path) -> None:
        self.keystore_dir = Path(keystore_dir)

    def generate_key(self) -> ec.EllipticCurvePrivateKey:
        """Generate a P-256 key and store it as <hex SKI>_sk.

        Returns:
            The generated private key
        """
        key = generate_private_key()
        ski = compute_ski(key.public_key())
        key_path = self.keystore_dir / f"{ski.hex()}_sk"

        self.keystore_dir.mkdir(parents=True, exist_ok=True)
        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(serialize_private_key(key))

        return key

    def close(self) -> None:
        pass


class PKCS11ECPrivateKey(ec.EllipticCurvePrivateKey):
    """EC private key that lives on a PKCS#11 token.

    Lets cryptography builders sign with a token key. Only signing and public
    key access are supported; the private scalar never leaves the token.
    """

    def __init__(self, private_key: pkcs11.PrivateKey, public_key: pkcs11.PublicKey) -> None:
        self._private_key = private_key
        self._public_key = serialization.load_der_public_key(
            ec_util.encode_ec_public_key(public_key)
        )
        if not isinstance(self._public_key, ec.EllipticCurvePublicKey):
            raise KeystoreError("token returned a non EC public key")

    def sign(
        self, data: bytes, signature_algorithm: ec.EllipticCurveSignatureAlgorithm
    ) -> bytes:
        if not isinstance(signature_algorithm, ec.ECDSA):
            raise KeystoreError(f"unsupported signature algorithm {signature_algorithm!r}")
        mechanism = _ECDSA_MECHANISMS.get(signature_algorithm.algorithm.name)
        if mechanism is None:
            raise KeystoreError(
                f"unsupported hash algorithm '{signature_algorithm.algorithm.name}'"
            )

        try:
            raw = self._private_key.sign(data, mechanism=mechanism)
        except pkcs11.PKCS11Error as e:
            raise KeystoreError(f"failed to sign with HSM key: {e}") from e

        return ec_util.encode_ecdsa_signature(raw)

    def public_key(self) -> ec.EllipticCurvePublicKey:
        return self._public_key

    @property
    def curve(self) -> ec.EllipticCurve:
        return self._public_key.curve

    @property
    def key_size(self) -> int:
        return self._public_key.key_size

    def exchange(
        self, algorithm: ec.ECDH, peer_public_key: ec.EllipticCurvePublicKey
    ) -> bytes:
        raise KeystoreError("key exchange is not supported for HSM keys")

    def private_numbers(self) -> ec.EllipticCurvePrivateNumbers:
        raise KeystoreError("HSM private keys cannot be exported")

    def private_bytes(
        self,
        encoding: serialization.Encoding,
        format: serialization.PrivateFormat,
        encryption_algorithm: serialization.KeySerializationEncryption,
    ) -> bytes:
        raise KeystoreError("HSM private keys cannot be exported")

    def __copy__(self) -> "PKCS11ECPrivateKey":
        return self

    def __deepcopy__(self, memo: dict) -> "PKCS11ECPrivateKey":
        return self


class PKCS11KeyStore:
    """Key store generating token keys through a PKCS#11 library."""

    def __init__(self, options: PKCS11Options) -> None:
        """Open a R/W session on the configured token.

        Args:
            options: PKCS#11 library path, token label and PIN

        Raises:
            KeystoreError: If the library, token or session cannot be opened
        """
        self.options = options
        try:
            lib = pkcs11.lib(options.library)
            token = lib.get_token(token_label=options.label)
            self.session = token.open(user_pin=options.pin, rw=True)
        except (RuntimeError, pkcs11.PKCS11Error) as e:
            raise KeystoreError(
                f"failed to open PKCS11 token '{options.label}' with library "
                f"'{options.library}': {e}"
            ) from e

    def generate_key(self) -> PKCS11ECPrivateKey:
        """Generate a P-256 key pair stored on the token.

        The key objects are labelled and identified by the SKI of the public key.

        Returns:
            Adapter signing through the token key

        Raises:
            KeystoreError: If key generation fails
        """
        try:
            parameters = self.session.create_domain_parameters(
                KeyType.EC,
                {Attribute.EC_PARAMS: ec_util.encode_named_curve_parameters("secp256r1")},
                local=True,
            )
            public_key, private_key = parameters.generate_keypair(store=True)
            key = PKCS11ECPrivateKey(private_key, public_key)

            ski = compute_ski(key.public_key())
            for obj in (public_key, private_key):
                obj[Attribute.ID] = ski
                obj[Attribute.LABEL] = ski.hex()
        except pkcs11.PKCS11Error as e:
            raise KeystoreError(f"failed to generate HSM key: {e}") from e

        return key

    def close(self) -> None:
        self.session.close()


def read_private_key(keystore_dir: str | Path) -> bytes:
    """Read back the single private key written by a software enrollment.

    Args:
        keystore_dir: msp/keystore directory of the CA client home

    Returns:
        PEM encoded private key

    Raises:
        KeystoreError: If the directory does not hold exactly one key file,
            or the file is not a PKCS#8 private key
    """
    keystore_dir = Path(keystore_dir)
    try:
        files = sorted(p for p in keystore_dir.iterdir() if p.is_file())
    except OSError as e:
        raise KeystoreError(f"failed to read private key: {e}") from e

    if len(files) > 1:
        raise KeystoreError(
            f"expecting only one key file to present in keystore '{keystore_dir}', "
            "but found multiple"
        )
    if not files:
        raise KeystoreError(f"failed to read private key: no key file in '{keystore_dir}'")

    key_bytes = files[0].read_bytes()
    blocks = split_pem_blocks(key_bytes)
    if not blocks or blocks[0].type != "PRIVATE KEY":
        raise KeystoreError(
            f"failed to read private key: '{files[0].name}' is not a PKCS#8 PEM key"
        )
    try:
        serialization.load_der_private_key(blocks[0].der, password=None)
    except (ValueError, TypeError) as e:
        raise KeystoreError(f"failed to read private key: {e}") from e

    return key_bytes
