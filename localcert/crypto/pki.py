# localcert/crypto/pki.py
"""
Self-signed X.509 certificates: building, loading and inspecting.
"""
import datetime
import ipaddress
import logging
import re
from typing import List, Optional, Set

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from localcert.common.errors import (
    CryptoBackendError,
    InvalidRequestError,
    InvalidSANError,
    InvalidSubjectError,
    InvalidValidityError,
    MissingSANError,
)
from localcert.common.models import (
    CertificateRequest,
    CertificateSummary,
    KeyAlgorithm,
    SANEntry,
    SubjectIdentity,
)
from localcert.common.utils import now_utc, sha256_hex, unique_sans
from localcert.crypto.keys import KeyPair, curve_label, normalize_curve

logger = logging.getLogger(__name__)

KEY_USAGE_FLAGS = {
    "digital_signature",
    "content_commitment",
    "key_encipherment",
    "data_encipherment",
    "key_agreement",
}
EXTENDED_USAGE = {
    "server_auth": ExtendedKeyUsageOID.SERVER_AUTH,
    "client_auth": ExtendedKeyUsageOID.CLIENT_AUTH,
}
DEFAULT_USAGE = {
    KeyAlgorithm.RSA: {"digital_signature", "key_encipherment", "server_auth"},
    KeyAlgorithm.ECDSA: {"digital_signature", "server_auth"},
}

SUBJECT_OIDS = [
    ("country", NameOID.COUNTRY_NAME),
    ("state", NameOID.STATE_OR_PROVINCE_NAME),
    ("locality", NameOID.LOCALITY_NAME),
    ("organization", NameOID.ORGANIZATION_NAME),
    ("organizational_unit", NameOID.ORGANIZATIONAL_UNIT_NAME),
    ("common_name", NameOID.COMMON_NAME),
]

_LABEL = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")


class IssuedCertificate:
    """A signed certificate plus the request facts it was built from."""

    def __init__(self, certificate: x509.Certificate, san: List[SANEntry]):
        self.certificate = certificate
        self.san = san

    @property
    def subject(self) -> SubjectIdentity:
        return _subject_identity(self.certificate.subject)

    @property
    def serial_number(self) -> int:
        return self.certificate.serial_number

    @property
    def not_before(self) -> datetime.datetime:
        return self.certificate.not_valid_before_utc

    @property
    def not_after(self) -> datetime.datetime:
        return self.certificate.not_valid_after_utc

    @property
    def fingerprint_sha256(self) -> str:
        return cert_fingerprint_hex(self.certificate)

    def pem(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.PEM)

    def der(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.DER)

    def __repr__(self):
        return f"IssuedCertificate(serial={self.serial_number:x}, not_after={self.not_after.isoformat()})"


# ---------------------------------------------------------------------------
# request validation
# ---------------------------------------------------------------------------
def _check_subject(subject: SubjectIdentity) -> None:
    if not subject.common_name or not subject.common_name.strip():
        raise InvalidSubjectError("common name must not be empty")
    if subject.country is not None:
        c = subject.country.strip()
        if len(c) != 2 or not c.isalpha():
            raise InvalidSubjectError(f"country must be a two-letter code, got '{subject.country}'")


def check_dns_name(name: str) -> None:
    """Raise InvalidSANError unless name is a plausible DNS name (leftmost '*' allowed)."""
    if len(name) > 253:
        raise InvalidSANError(f"DNS name too long: '{name[:40]}...'")
    labels = name.lower().split(".")
    for i, label in enumerate(labels):
        if label == "*" and i == 0 and len(labels) > 1:
            continue
        if not _LABEL.match(label):
            raise InvalidSANError(f"invalid DNS name '{name}'")


def _normalize_san(entry: SANEntry) -> SANEntry:
    """Canonical form of one entry; raises InvalidSANError when the value does not fit its kind."""
    if entry.kind == "IP":
        try:
            return SANEntry(kind="IP", value=str(ipaddress.ip_address(entry.value.strip())))
        except ValueError:
            raise InvalidSANError(f"'{entry.value}' is not an IP address")
    value = entry.value.strip().lower().rstrip(".")
    if not value:
        raise InvalidSANError("empty DNS name in SAN entry")
    check_dns_name(value)
    return SANEntry(kind="DNS", value=value)


def _san_covers(cn: str, sans: List[SANEntry]) -> bool:
    host = cn.lower().rstrip(".")
    for e in sans:
        if e.kind == "IP":
            try:
                if ipaddress.ip_address(host) == ipaddress.ip_address(e.value):
                    return True
            except ValueError:
                continue
        elif e.value == host:
            return True
        elif e.value.startswith("*.") and host.partition(".")[2] == e.value[2:] and "." in host:
            return True
    return False


def _resolve_usage(request: CertificateRequest, algorithm: KeyAlgorithm) -> Set[str]:
    usage = set(request.key_usage) or set(DEFAULT_USAGE[algorithm])
    unknown = usage - KEY_USAGE_FLAGS - set(EXTENDED_USAGE)
    if unknown:
        raise InvalidRequestError(f"unknown key usage: {', '.join(sorted(unknown))}")
    if algorithm == KeyAlgorithm.ECDSA and "key_encipherment" in usage:
        raise InvalidRequestError("key_encipherment is not valid for an ECDSA key")
    return usage


def _signature_hash(key_pair: KeyPair):
    if key_pair.algorithm == KeyAlgorithm.ECDSA:
        curve = normalize_curve(key_pair.strength)
        if curve == "P-384":
            return hashes.SHA384()
        if curve == "P-521":
            return hashes.SHA512()
    return hashes.SHA256()


def subject_name(subject: SubjectIdentity) -> x509.Name:
    attrs = []
    for field, oid in SUBJECT_OIDS:
        value = getattr(subject, field)
        if value:
            attrs.append(x509.NameAttribute(oid, value.strip()))
    return x509.Name(attrs)


def _general_names(sans: List[SANEntry]) -> List[x509.GeneralName]:
    out = []
    for e in sans:
        if e.kind == "IP":
            out.append(x509.IPAddress(ipaddress.ip_address(e.value)))
        else:
            out.append(x509.DNSName(e.value))
    return out


# ---------------------------------------------------------------------------
# building
# ---------------------------------------------------------------------------
def build_certificate(
    key_pair: KeyPair,
    request: CertificateRequest,
    now: Optional[datetime.datetime] = None,
) -> IssuedCertificate:
    """
    Build and self-sign a certificate for key_pair.

    not_after is exactly not_before + validity_days. The SAN extension holds
    exactly the requested entries (deduplicated, order kept).
    """
    _check_subject(request.subject)
    if request.validity_days <= 0:
        raise InvalidValidityError(f"validity must be at least 1 day, got {request.validity_days}")

    sans = unique_sans([_normalize_san(e) for e in request.san])
    cn = request.subject.common_name.strip()
    if not request.allow_missing_san:
        if not sans:
            raise MissingSANError(
                f"no Subject Alternative Names for '{cn}'; browsers ignore the common name "
                "(pass allow_missing_san to issue anyway)"
            )
        if not _san_covers(cn, sans):
            raise MissingSANError(
                f"common name '{cn}' is not covered by the SAN entries "
                f"[{', '.join(str(e) for e in sans)}] (pass allow_missing_san to issue anyway)"
            )
    elif sans and not _san_covers(cn, sans):
        logger.warning("Common name %s is not among the SAN entries; clients will not match it", cn)

    usage = _resolve_usage(request, key_pair.algorithm)

    not_before = (now or now_utc()).replace(microsecond=0)
    try:
        not_after = not_before + datetime.timedelta(days=request.validity_days)
    except OverflowError:
        raise InvalidValidityError(f"validity of {request.validity_days} days is out of range")

    name = subject_name(request.subject)
    builder = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)  # self-signed
        .public_key(key_pair.public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature="digital_signature" in usage,
                content_commitment="content_commitment" in usage,
                key_encipherment="key_encipherment" in usage,
                data_encipherment="data_encipherment" in usage,
                key_agreement="key_agreement" in usage,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key_pair.public_key), critical=False)
    )
    eku = [EXTENDED_USAGE[u] for u in ("server_auth", "client_auth") if u in usage]
    if eku:
        builder = builder.add_extension(x509.ExtendedKeyUsage(eku), critical=False)
    if sans:
        builder = builder.add_extension(x509.SubjectAlternativeName(_general_names(sans)), critical=False)

    try:
        cert = builder.sign(key_pair.private_key, _signature_hash(key_pair))
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CryptoBackendError("certificate signing", e) from e

    issued = IssuedCertificate(cert, sans)
    logger.info(
        "Self-signed certificate for %s: serial %x, valid %s -> %s, SAN [%s]",
        cn, issued.serial_number, not_before.isoformat(), not_after.isoformat(),
        ", ".join(str(e) for e in sans),
    )
    return issued


# ---------------------------------------------------------------------------
# loading / inspection
# ---------------------------------------------------------------------------
def load_cert(pem_bytes: bytes) -> x509.Certificate:
    """Load a PEM-encoded certificate and return an x509.Certificate object."""
    try:
        return x509.load_pem_x509_certificate(pem_bytes)
    except ValueError as e:
        raise CryptoBackendError("certificate load", e) from e


def verify_self_signed(cert: x509.Certificate) -> None:
    """
    Verify that `cert` is signed by its own key.

    Raises:
      - ValueError if issuer does not match subject
      - InvalidSignature (propagated) if the signature does not verify
    """
    if cert.issuer != cert.subject:
        raise ValueError("certificate issuer does not match its subject")
    cert.verify_directly_issued_by(cert)


def check_cn(cert: x509.Certificate, expected_cn: str) -> None:
    """Check the Common Name (CN) in cert subject matches expected_cn. Raises ValueError on mismatch."""
    attrs = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not attrs:
        raise ValueError("certificate has no Common Name (CN)")
    cn = attrs[0].value
    if cn != expected_cn:
        raise ValueError(f"CN mismatch: expected '{expected_cn}', got '{cn}'")


def cert_fingerprint_hex(cert: x509.Certificate) -> str:
    """Return the SHA-256 fingerprint of the certificate as a hex string."""
    return sha256_hex(cert.public_bytes(serialization.Encoding.DER))


def cert_sans(cert: x509.Certificate) -> List[SANEntry]:
    try:
        ext = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return []
    out = []
    for gn in ext.value:
        if isinstance(gn, x509.IPAddress):
            out.append(SANEntry(kind="IP", value=str(gn.value)))
        elif isinstance(gn, x509.DNSName):
            out.append(SANEntry(kind="DNS", value=gn.value))
    return out


def _subject_identity(name: x509.Name) -> SubjectIdentity:
    fields = {}
    for field, oid in SUBJECT_OIDS:
        attrs = name.get_attributes_for_oid(oid)
        if attrs:
            fields[field] = attrs[0].value
    fields.setdefault("common_name", "")
    return SubjectIdentity(**fields)


def summarize(cert: x509.Certificate) -> CertificateSummary:
    pub = cert.public_key()
    if isinstance(pub, rsa.RSAPublicKey):
        algorithm, strength = KeyAlgorithm.RSA, str(pub.key_size)
    elif isinstance(pub, ec.EllipticCurvePublicKey):
        algorithm, strength = KeyAlgorithm.ECDSA, curve_label(pub.curve.name)
    else:
        raise InvalidRequestError(f"unsupported public key type {type(pub).__name__}")
    try:
        verify_self_signed(cert)
        self_signed = True
    except (ValueError, TypeError, InvalidSignature):
        self_signed = False
    return CertificateSummary(
        subject=_subject_identity(cert.subject),
        serial_number=cert.serial_number,
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        san=cert_sans(cert),
        key_algorithm=algorithm,
        key_strength=strength,
        fingerprint_sha256=cert_fingerprint_hex(cert),
        self_signed=self_signed,
    )
