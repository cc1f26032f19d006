# localcert/crypto/dh.py
"""
Diffie-Hellman parameters for servers that still offer DHE cipher suites.

Exports:
 - RFC3526_2048_P / DEFAULT_G (RFC 3526 group 14, generator 2)
 - generate_dh_parameters(bits, generator, min_bits) -> DHParameters
 - named_group(name) -> DHParameters
 - dh_parameters_pem(params) / load_dh_parameters(pem)
 - check_dh_parameters(params, min_bits) -> DHCheck   (like `openssl dhparam -check`)
"""
import logging
from dataclasses import dataclass

from Crypto.Util.number import isPrime
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import dh

from localcert import config
from localcert.common.errors import (
    CryptoBackendError,
    UnsupportedParameterError,
    WeakParameterError,
)

logger = logging.getLogger(__name__)

# 2048-bit MODP Group (RFC 3526, group 14) as integer
RFC3526_2048_P = int(
    "FFFFFFFFFFFFFFFFC90FDAA22168C234C4C6628B80DC1CD1"
    "29024E088A67CC74020BBEA63B139B22514A08798E3404DD"
    "EF9519B3CD3A431B302B0A6DF25F14374FE1356D6D51C245"
    "E485B576625E7EC6F44C42E9A637ED6B0BFF5CB6F406B7ED"
    "EE386BFB5A899FA5AE9F24117C4B1FE649286651ECE45B3D"
    "C2007CB8A163BF0598DA48361C55D39A69163FA8FD24CF5F"
    "83655D23DCA3AD961C62F356208552BB9ED529077096966D"
    "670C354E4ABC9804F1746C08CA18217C32905E462E36CE3B"
    "E39E772C180E86039B2783A2EC07A28FB5C55DF06F4C52C9"
    "DE2BCBF6955817183995497CEA956AE515D2261898FA0510"
    "15728E5A8AACAA68FFFFFFFFFFFFFFFF", 16
)
DEFAULT_G = 2

NAMED_GROUPS = {
    "rfc3526-2048": (RFC3526_2048_P, DEFAULT_G),
}

ALLOWED_GENERATORS = (2, 5)


@dataclass
class DHCheck:
    bits: int
    generator: int
    p_prime: bool
    safe_prime: bool
    generator_ok: bool

    @property
    def ok(self) -> bool:
        return self.p_prime and self.safe_prime and self.generator_ok


def generate_dh_parameters(bits: int = None, generator: int = DEFAULT_G, min_bits: int = None):
    """
    Generate fresh safe-prime parameters. Slow: a 2048-bit group can take
    minutes, use named_group() when any well-known group will do.
    """
    if bits is None:
        bits = config.DEFAULT_DH_BITS
    if min_bits is None:
        min_bits = config.MIN_DH_BITS
    if bits < min_bits:
        raise WeakParameterError(f"DH group size {bits} is below the minimum of {min_bits} bits")
    if generator not in ALLOWED_GENERATORS:
        raise UnsupportedParameterError(f"DH generator must be 2 or 5, got {generator}")
    logger.info("Generating %d-bit DH parameters (generator %d), this may take a while", bits, generator)
    try:
        return dh.generate_parameters(generator=generator, key_size=bits)
    except ValueError as e:
        raise CryptoBackendError("DH parameter generation", e) from e


def named_group(name: str):
    """Well-known group by name, no generation needed."""
    try:
        p, g = NAMED_GROUPS[name.lower()]
    except KeyError:
        raise UnsupportedParameterError(
            f"unknown DH group '{name}' (choose from {', '.join(NAMED_GROUPS)})"
        )
    logger.info("Using predefined DH group %s", name.lower())
    return dh.DHParameterNumbers(p, g).parameters()


def dh_parameters_pem(params) -> bytes:
    return params.parameter_bytes(serialization.Encoding.PEM, serialization.ParameterFormat.PKCS3)


def load_dh_parameters(pem_bytes: bytes):
    try:
        return serialization.load_pem_parameters(pem_bytes)
    except ValueError as e:
        raise CryptoBackendError("DH parameter load", e) from e


def check_dh_parameters(params, min_bits: int = None) -> DHCheck:
    """
    Check p is a safe prime (p and (p-1)/2 prime) and g is 2 or 5.
    Raises WeakParameterError when the group is too small or fails a check.
    """
    if min_bits is None:
        min_bits = config.MIN_DH_BITS
    nums = params.parameter_numbers()
    p, g = nums.p, nums.g
    bits = p.bit_length()
    if bits < min_bits:
        raise WeakParameterError(f"DH group size {bits} is below the minimum of {min_bits} bits")
    p_prime = bool(isPrime(p))
    result = DHCheck(
        bits=bits,
        generator=g,
        p_prime=p_prime,
        safe_prime=p_prime and bool(isPrime((p - 1) // 2)),
        generator_ok=g in ALLOWED_GENERATORS,
    )
    logger.debug("DH check: %s", result)
    if not result.ok:
        raise WeakParameterError(
            f"DH parameters failed check (prime={result.p_prime}, safe_prime={result.safe_prime}, "
            f"generator={g})"
        )
    return result
