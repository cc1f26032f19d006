# localcert/pipeline.py
"""
One issuance run: generate (or load) key -> build certificate -> DH params
-> persist -> render config.

All validation and crypto work finishes before the first file is written, so
a validation error leaves nothing on disk. An I/O error keeps whatever was
already written in the same run.
"""
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from localcert import config
from localcert.common.errors import UnknownTemplateError
from localcert.common.models import (
    ArtifactPaths,
    CertificateRequest,
    KeySpec,
    SANEntry,
    SubjectIdentity,
)
from localcert.crypto import dh as dhmod
from localcert.crypto import keys as keymod
from localcert.crypto import pki
from localcert.render.renderer import available_templates, render_config
from localcert.storage import store as storemod
from localcert.storage.store import ParameterStore

logger = logging.getLogger(__name__)


class IssueOptions(BaseModel):
    out_dir: Path = Field(default_factory=lambda: Path(config.OUT_DIR))
    name: str = Field(default_factory=lambda: config.DEFAULT_NAME)
    key: KeySpec = Field(default_factory=KeySpec)
    existing_key: Optional[Path] = None  # certify this key instead of generating one
    subject: SubjectIdentity
    san: List[SANEntry] = Field(default_factory=list)
    validity_days: int = Field(default_factory=lambda: config.DEFAULT_DAYS)
    key_usage: List[str] = Field(default_factory=list)
    allow_missing_san: bool = False
    passphrase: Optional[bytes] = None
    write_der: bool = False
    write_pfx: bool = False
    write_bundle: bool = False
    dhparam: bool = False
    dh_bits: int = Field(default_factory=lambda: config.DEFAULT_DH_BITS)
    dh_group: Optional[str] = None  # predefined group instead of generating
    min_rsa_bits: int = Field(default_factory=lambda: config.MIN_RSA_BITS)
    min_dh_bits: int = Field(default_factory=lambda: config.MIN_DH_BITS)
    config_template: Optional[str] = None
    server_names: List[str] = Field(default_factory=list)
    port: int = Field(default_factory=lambda: config.DEFAULT_TLS_PORT)

    def request(self) -> CertificateRequest:
        return CertificateRequest(
            subject=self.subject,
            san=self.san,
            validity_days=self.validity_days,
            key_usage=set(self.key_usage),
            allow_missing_san=self.allow_missing_san,
        )


class IssueResult:
    def __init__(self, key_pair, issued, paths: ArtifactPaths, config_text: Optional[str] = None,
                 config_path: Optional[Path] = None):
        self.key_pair = key_pair
        self.issued = issued
        self.paths = paths
        self.config_text = config_text
        self.config_path = config_path

    def __repr__(self):
        return f"IssueResult(cert={self.paths.cert}, serial={self.issued.serial_number:x})"


def obtain_dh_parameters(bits: int, group: Optional[str] = None, min_bits: Optional[int] = None,
                         generator: int = dhmod.DEFAULT_G):
    if group:
        return dhmod.named_group(group)
    return dhmod.generate_dh_parameters(bits, generator=generator, min_bits=min_bits)


def issue(opts: IssueOptions) -> IssueResult:
    store = ParameterStore(opts.out_dir, opts.name)

    # validate cheap request facts before spending time on key generation
    if opts.config_template:
        if opts.config_template not in available_templates():
            raise UnknownTemplateError(
                f"unknown config template '{opts.config_template}' "
                f"(choose from {', '.join(available_templates())})"
            )

    # 1. key
    if opts.existing_key:
        logger.info("Certifying existing key %s", opts.existing_key)
        key_pair = storemod.load_key(opts.existing_key, opts.passphrase, min_rsa_bits=opts.min_rsa_bits)
    else:
        key_pair = keymod.generate_key(opts.key, min_rsa_bits=opts.min_rsa_bits)

    # 2. certificate
    issued = pki.build_certificate(key_pair, opts.request())

    # 3. DH parameters (optional, may be slow)
    dh_params = None
    if opts.dhparam or opts.dh_group:
        dh_params = obtain_dh_parameters(opts.dh_bits, opts.dh_group, opts.min_dh_bits)

    # 4. persist
    if not opts.existing_key:
        store.save_key(key_pair, opts.passphrase)
    store.save_certificate(issued)
    if dh_params is not None:
        store.save_dh_parameters(dh_params)
    if opts.write_der:
        store.save_der(issued)
    if opts.write_pfx:
        store.save_pfx(key_pair, issued, opts.passphrase)
    if opts.write_bundle or opts.config_template == "haproxy":
        store.save_bundle(key_pair, issued)

    paths = store.paths()
    if opts.existing_key:
        paths.key = Path(opts.existing_key).resolve()

    # 5. config
    config_text = config_path = None
    if opts.config_template:
        names = opts.server_names or [opts.subject.common_name]
        config_text = render_config(opts.config_template, paths, names, opts.port)
        config_path = store.save_text(f"{opts.config_template}.conf", config_text)

    logger.info("Done: %s", ", ".join(str(p) for p in store.written.values()))
    return IssueResult(key_pair, issued, paths, config_text, config_path)
