# localcert/storage/store.py
"""
Persists keys, certificates and DH parameters.

Every artifact is written to a temp file in the destination directory and
then moved into place with os.replace, so readers see either the old file or
the new one, never a partial write. Repeated saves overwrite.
"""
import logging
import os
import tempfile
import threading
import weakref
from pathlib import Path
from typing import Dict, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from localcert import config
from localcert.common.errors import ArtifactNotFoundError, CryptoBackendError, PathUnwritableError
from localcert.common.models import ArtifactPaths
from localcert.crypto import dh as dhmod
from localcert.crypto import keys as keymod
from localcert.crypto import pki
from localcert.crypto.keys import KeyPair
from localcert.crypto.pki import IssuedCertificate

logger = logging.getLogger(__name__)

DHPARAM_FILE = "dhparam.pem"


class PathLock:
    """threading.Lock wrapper; plain locks cannot be weakly referenced."""

    def __init__(self, key: str):
        self.key = key
        self._lock = threading.Lock()

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, *exc):
        self._lock.release()

    def locked(self) -> bool:
        return self._lock.locked()


_locks_guard = threading.Lock()
# an entry lives only while some writer references its lock
_path_locks: "weakref.WeakValueDictionary[str, PathLock]" = weakref.WeakValueDictionary()


def path_lock(path) -> PathLock:
    """One lock per resolved destination path, shared by every writer in the process."""
    key = str(Path(path).resolve())
    with _locks_guard:
        lock = _path_locks.get(key)
        if lock is None:
            lock = PathLock(key)
            _path_locks[key] = lock
        return lock


def atomic_write(path, data: bytes, mode: int) -> Path:
    """
    Write data to path with permission bits `mode`, atomically.
    Raises PathUnwritableError on any OS error.
    """
    path = Path(path)
    with path_lock(path):
        fd = None
        tmp = None
        try:
            fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
            # mode first, so key bytes never sit in a world-readable file
            os.chmod(tmp, mode)
            with os.fdopen(fd, "wb") as f:
                fd = None
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
            tmp = None
        except OSError as e:
            raise PathUnwritableError(path, e.strerror or str(e)) from e
        finally:
            if fd is not None:
                os.close(fd)
            if tmp is not None and os.path.exists(tmp):
                os.unlink(tmp)
    logger.debug("Wrote %s (%d bytes, mode %o)", path, len(data), mode)
    return path


def read_artifact(path) -> bytes:
    path = Path(path)
    try:
        return path.read_bytes()
    except FileNotFoundError as e:
        raise ArtifactNotFoundError(path, "no such file") from e
    except OSError as e:
        raise PathUnwritableError(path, e.strerror or str(e)) from e


def private_key_pem(key_pair: KeyPair, passphrase: Optional[bytes] = None) -> bytes:
    if passphrase:
        enc = serialization.BestAvailableEncryption(passphrase)
    else:
        enc = serialization.NoEncryption()
    return key_pair.private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=enc,
    )


class ParameterStore:
    """Writes one run's artifacts under out_dir as <name>.key, <name>.crt, ..."""

    def __init__(self, out_dir=None, name: str = None):
        self.out_dir = Path(out_dir if out_dir is not None else config.OUT_DIR)
        self.name = name or config.DEFAULT_NAME
        self.written: Dict[str, Path] = {}

    # -- paths -------------------------------------------------------------
    @property
    def key_path(self) -> Path:
        return self.out_dir / f"{self.name}.key"

    @property
    def cert_path(self) -> Path:
        return self.out_dir / f"{self.name}.crt"

    @property
    def dhparam_path(self) -> Path:
        return self.out_dir / DHPARAM_FILE

    @property
    def der_path(self) -> Path:
        return self.out_dir / f"{self.name}.cer"

    @property
    def pfx_path(self) -> Path:
        return self.out_dir / f"{self.name}.pfx"

    @property
    def bundle_path(self) -> Path:
        return self.out_dir / f"{self.name}.bundle.pem"

    def paths(self) -> ArtifactPaths:
        """Paths for this store; optional artifacts only when they exist on disk."""
        def existing(p: Path) -> Optional[Path]:
            return p.resolve() if p.exists() else None

        return ArtifactPaths(
            key=self.key_path.resolve(),
            cert=self.cert_path.resolve(),
            dhparam=existing(self.dhparam_path),
            der=existing(self.der_path),
            pfx=existing(self.pfx_path),
            bundle=existing(self.bundle_path),
        )

    def _ensure_dir(self) -> None:
        try:
            self.out_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PathUnwritableError(self.out_dir, e.strerror or str(e)) from e
        if not os.access(self.out_dir, os.W_OK | os.X_OK):
            raise PathUnwritableError(self.out_dir, "directory is not writable")

    def _write(self, kind: str, path: Path, data: bytes, mode: int) -> Path:
        self._ensure_dir()
        atomic_write(path, data, mode)
        self.written[kind] = path
        logger.info("Saved %s: %s", kind, path)
        return path

    # -- writers -----------------------------------------------------------
    def save_key(self, key_pair: KeyPair, passphrase: Optional[bytes] = None) -> Path:
        return self._write("private key", self.key_path, private_key_pem(key_pair, passphrase), config.KEY_MODE)

    def save_certificate(self, issued: IssuedCertificate) -> Path:
        return self._write("certificate", self.cert_path, issued.pem(), config.PUBLIC_MODE)

    def save_dh_parameters(self, params) -> Path:
        return self._write("DH parameters", self.dhparam_path, dhmod.dh_parameters_pem(params), config.PUBLIC_MODE)

    def save_der(self, issued: IssuedCertificate) -> Path:
        """DER copy for the Windows import wizard / certutil -addstore."""
        return self._write("DER certificate", self.der_path, issued.der(), config.PUBLIC_MODE)

    def save_pfx(self, key_pair: KeyPair, issued: IssuedCertificate, passphrase: Optional[bytes] = None) -> Path:
        if passphrase:
            enc = serialization.BestAvailableEncryption(passphrase)
        else:
            enc = serialization.NoEncryption()
        try:
            data = pkcs12.serialize_key_and_certificates(
                self.name.encode(), key_pair.private_key, issued.certificate, None, enc
            )
        except (ValueError, TypeError) as e:
            raise CryptoBackendError("PKCS#12 export", e) from e
        return self._write("PKCS#12 bundle", self.pfx_path, data, config.KEY_MODE)

    def save_bundle(self, key_pair: KeyPair, issued: IssuedCertificate) -> Path:
        """Certificate followed by its key in one PEM file (HAProxy `crt`)."""
        data = issued.pem() + private_key_pem(key_pair)
        return self._write("PEM bundle", self.bundle_path, data, config.KEY_MODE)

    def save_text(self, filename: str, text: str) -> Path:
        return self._write("config", self.out_dir / filename, text.encode("utf-8"), config.PUBLIC_MODE)


# -- loaders -------------------------------------------------------------------
def load_certificate(path):
    return pki.load_cert(read_artifact(path))


def load_key(path, passphrase: Optional[bytes] = None, min_rsa_bits: Optional[int] = None) -> KeyPair:
    return keymod.load_key_pair(read_artifact(path), passphrase, min_rsa_bits=min_rsa_bits)


def load_dh(path):
    return dhmod.load_dh_parameters(read_artifact(path))
