# localcert/crypto/keys.py
"""
Key pair generation and loading.

Provides:
 - generate_key(spec, min_rsa_bits) -> KeyPair
 - load_private_key(pem_bytes, passphrase=None)
 - load_key_pair(pem_bytes, passphrase=None) -> KeyPair
 - normalize_curve(name) -> canonical curve name ("P-256", ...)
"""
import logging

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from localcert import config
from localcert.common.errors import (
    CryptoBackendError,
    UnsupportedParameterError,
    WeakParameterError,
)
from localcert.common.models import KeyAlgorithm, KeySpec

logger = logging.getLogger(__name__)

RSA_PUBLIC_EXPONENT = 65537

CURVES = {
    "P-256": ec.SECP256R1,
    "P-384": ec.SECP384R1,
    "P-521": ec.SECP521R1,
}

CURVE_ALIASES = {
    "P256": "P-256",
    "PRIME256V1": "P-256",
    "SECP256R1": "P-256",
    "P384": "P-384",
    "SECP384R1": "P-384",
    "P521": "P-521",
    "SECP521R1": "P-521",
}

WEAK_CURVES = {"P-192", "P192", "P-224", "P224", "SECP192R1", "PRIME192V1", "SECP224R1"}


class KeyPair:
    """Private/public key objects for one invocation. repr never shows key material."""

    def __init__(self, algorithm: KeyAlgorithm, strength: str, private_key):
        self.algorithm = algorithm
        self.strength = strength
        self.private_key = private_key
        self.public_key = private_key.public_key()

    def __repr__(self):
        return f"KeyPair(algorithm={self.algorithm.value}, strength={self.strength})"

    def public_pem(self) -> bytes:
        return self.public_key.public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )


def normalize_curve(name: str) -> str:
    key = name.strip().upper()
    if key in CURVES:
        return key
    if key in CURVE_ALIASES:
        return CURVE_ALIASES[key]
    if key in WEAK_CURVES:
        raise WeakParameterError(f"curve {name} is below the P-256 minimum")
    raise UnsupportedParameterError(
        f"unsupported curve '{name}' (choose from {', '.join(CURVES)})"
    )


def curve_label(name: str) -> str:
    """Display name for any curve; unlike normalize_curve it never rejects."""
    key = name.strip().upper()
    if key in CURVES:
        return key
    return CURVE_ALIASES.get(key, name)


def _check_rsa_bits(bits: int, min_bits: int) -> None:
    if bits < min_bits:
        raise WeakParameterError(f"RSA key size {bits} is below the minimum of {min_bits} bits")
    if bits % 256:
        raise UnsupportedParameterError(f"RSA key size {bits} is not a multiple of 256")


def generate_key(spec: KeySpec, min_rsa_bits: int = None) -> KeyPair:
    """Generate a fresh key pair. Nothing is written to disk here."""
    if min_rsa_bits is None:
        min_rsa_bits = config.MIN_RSA_BITS
    if spec.algorithm == KeyAlgorithm.RSA:
        _check_rsa_bits(spec.rsa_bits, min_rsa_bits)
        logger.info("Generating %d-bit RSA private key", spec.rsa_bits)
        try:
            priv = rsa.generate_private_key(
                public_exponent=RSA_PUBLIC_EXPONENT, key_size=spec.rsa_bits
            )
        except (ValueError, TypeError) as e:
            raise CryptoBackendError("RSA key generation", e) from e
        return KeyPair(KeyAlgorithm.RSA, str(spec.rsa_bits), priv)

    curve = normalize_curve(spec.curve)
    logger.info("Generating ECDSA private key on %s", curve)
    try:
        priv = ec.generate_private_key(CURVES[curve]())
    except (ValueError, TypeError) as e:
        raise CryptoBackendError("EC key generation", e) from e
    return KeyPair(KeyAlgorithm.ECDSA, curve, priv)


def load_private_key(pem_bytes: bytes, passphrase: bytes = None):
    """
    Load a PEM-encoded private key (optionally encrypted).
    """
    try:
        return serialization.load_pem_private_key(pem_bytes, password=passphrase)
    except (ValueError, TypeError) as e:
        raise CryptoBackendError("private key load", e) from e


def load_key_pair(pem_bytes: bytes, passphrase: bytes = None, min_rsa_bits: int = None) -> KeyPair:
    """Wrap an existing key so it can be certified; same strength rules as generation."""
    if min_rsa_bits is None:
        min_rsa_bits = config.MIN_RSA_BITS
    priv = load_private_key(pem_bytes, passphrase)
    if isinstance(priv, rsa.RSAPrivateKey):
        if priv.key_size < min_rsa_bits:
            raise WeakParameterError(
                f"RSA key size {priv.key_size} is below the minimum of {min_rsa_bits} bits"
            )
        return KeyPair(KeyAlgorithm.RSA, str(priv.key_size), priv)
    if isinstance(priv, ec.EllipticCurvePrivateKey):
        curve = normalize_curve(priv.curve.name)
        return KeyPair(KeyAlgorithm.ECDSA, curve, priv)
    raise UnsupportedParameterError(f"unsupported key type {type(priv).__name__}")
