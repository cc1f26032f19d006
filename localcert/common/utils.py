# localcert/common/utils.py
import datetime
import hashlib
import ipaddress
from typing import Iterable, List

from localcert.common.errors import InvalidSANError
from localcert.common.models import SANEntry


def now_utc() -> datetime.datetime:
    """Current UTC time truncated to whole seconds (X.509 time precision)."""
    return datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)


def sha256_hex(data: bytes) -> str:
    """Return SHA256(data) as hex string."""
    return hashlib.sha256(data).hexdigest()


def colon_hex(hex_str: str) -> str:
    """'a1b2c3' -> 'A1:B2:C3' (the form openssl and browsers show)."""
    s = hex_str.upper()
    return ":".join(s[i:i + 2] for i in range(0, len(s), 2))


def is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def parse_san(text: str) -> SANEntry:
    """
    Parse one SAN entry: 'DNS:example.test', 'IP:127.0.0.1' or a bare value.
    Bare IP literals become IP entries, everything else a DNS name.
    """
    raw = text.strip()
    if not raw:
        raise InvalidSANError("empty SAN entry")
    prefix, sep, rest = raw.partition(":")
    kind = prefix.upper()
    if sep and kind in ("DNS", "IP"):
        value = rest.strip()
    else:
        # bare value; IPv6 literals contain ':' so they land here too
        kind = "IP" if is_ip(raw) else "DNS"
        value = raw
    if not value:
        raise InvalidSANError(f"empty value in SAN entry '{text}'")
    if kind == "IP":
        try:
            value = str(ipaddress.ip_address(value))
        except ValueError:
            raise InvalidSANError(f"'{value}' is not an IP address")
    else:
        value = value.lower().rstrip(".")
    return SANEntry(kind=kind, value=value)


def san_for_host(host: str) -> SANEntry:
    """SAN entry for a bare host name or address."""
    return parse_san(host)


def unique_sans(entries: Iterable[SANEntry]) -> List[SANEntry]:
    """Drop duplicates, keep first-seen order."""
    seen = set()
    out: List[SANEntry] = []
    for e in entries:
        k = (e.kind, e.value)
        if k in seen:
            continue
        seen.add(k)
        out.append(e)
    return out
