# localcert/common/models.py
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Literal, Optional, Set

from pydantic import BaseModel, Field, field_validator


class KeyAlgorithm(str, Enum):
    RSA = "RSA"
    ECDSA = "ECDSA"


class KeySpec(BaseModel):
    algorithm: KeyAlgorithm = KeyAlgorithm.RSA
    rsa_bits: int = 2048
    curve: str = "P-256"  # ECDSA only


class SubjectIdentity(BaseModel):
    common_name: str
    country: Optional[str] = None
    state: Optional[str] = None
    locality: Optional[str] = None
    organization: Optional[str] = None
    organizational_unit: Optional[str] = None


class SANEntry(BaseModel):
    kind: Literal["DNS", "IP"]
    value: str

    @field_validator("kind", mode="before")
    @classmethod
    def _upper_kind(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    def __str__(self):
        return f"{self.kind}:{self.value}"


class CertificateRequest(BaseModel):
    subject: SubjectIdentity
    san: List[SANEntry] = Field(default_factory=list)
    validity_days: int = 365
    key_usage: Set[str] = Field(default_factory=set)  # empty -> algorithm default
    allow_missing_san: bool = False


class ArtifactPaths(BaseModel):
    key: Path
    cert: Path
    dhparam: Optional[Path] = None
    der: Optional[Path] = None
    pfx: Optional[Path] = None
    bundle: Optional[Path] = None


class CertificateSummary(BaseModel):
    subject: SubjectIdentity
    serial_number: int
    not_before: datetime
    not_after: datetime
    san: List[SANEntry]
    key_algorithm: KeyAlgorithm
    key_strength: str
    fingerprint_sha256: str
    self_signed: bool

    @property
    def validity_days(self) -> float:
        return (self.not_after - self.not_before).total_seconds() / 86400
