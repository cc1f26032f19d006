# tests/test_pipeline.py
import ipaddress
import os
import stat

import pytest
from cryptography import x509

from localcert.common.errors import (
    InvalidValidityError,
    MissingSANError,
    PathUnwritableError,
    UnknownTemplateError,
    WeakParameterError,
)
from localcert.common.models import KeyAlgorithm, KeySpec, SubjectIdentity
from localcert.common.utils import parse_san
from localcert.crypto import pki
from localcert.pipeline import IssueOptions, issue
from localcert.storage import store as storemod
from localcert.storage.store import ParameterStore


def _opts(out_dir, **kw):
    base = dict(
        out_dir=out_dir,
        name="localhost",
        key=KeySpec(algorithm=KeyAlgorithm.ECDSA, curve="P-256"),
        subject=SubjectIdentity(common_name="localhost"),
        san=[parse_san("DNS:localhost"), parse_san("IP:127.0.0.1")],
        validity_days=365,
    )
    base.update(kw)
    return IssueOptions(**base)


@pytest.mark.skipif(os.name != "posix", reason="permission bits are POSIX-only")
def test_localhost_rsa_scenario(tmp_path):
    result = issue(_opts(tmp_path, key=KeySpec(algorithm=KeyAlgorithm.RSA, rsa_bits=2048)))
    assert stat.S_IMODE(os.stat(result.paths.key).st_mode) == 0o600
    assert stat.S_IMODE(os.stat(result.paths.cert).st_mode) == 0o644

    cert = storemod.load_certificate(result.paths.cert)
    san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    assert san.get_values_for_type(x509.DNSName) == ["localhost"]
    assert san.get_values_for_type(x509.IPAddress) == [ipaddress.ip_address("127.0.0.1")]
    assert len(list(san)) == 2
    assert cert.public_key().key_size == 2048


def test_round_trip_through_disk(tmp_path):
    result = issue(_opts(tmp_path, validity_days=90))
    summary = pki.summarize(storemod.load_certificate(result.paths.cert))
    assert summary.subject == SubjectIdentity(common_name="localhost")
    assert summary.san == result.issued.san
    assert summary.not_before == result.issued.not_before
    assert summary.validity_days == 90


def test_repeat_runs_give_new_serials_same_content(tmp_path):
    first = issue(_opts(tmp_path / "a"))
    second = issue(_opts(tmp_path / "b"))
    assert first.issued.serial_number != second.issued.serial_number
    a = pki.summarize(first.issued.certificate)
    b = pki.summarize(second.issued.certificate)
    assert a.subject == b.subject
    assert a.san == b.san
    assert a.validity_days == b.validity_days == 365


@pytest.mark.parametrize("kw,error", [
    (dict(validity_days=0), InvalidValidityError),
    (dict(key=KeySpec(algorithm=KeyAlgorithm.RSA, rsa_bits=1024)), WeakParameterError),
    (dict(san=[]), MissingSANError),
    (dict(config_template="lighttpd"), UnknownTemplateError),
])
def test_validation_errors_leave_nothing_on_disk(tmp_path, kw, error):
    out = tmp_path / "out"
    with pytest.raises(error):
        issue(_opts(out, **kw))
    assert not out.exists()


def test_io_error_reports_path(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")
    with pytest.raises(PathUnwritableError) as exc:
        issue(_opts(blocker / "certs"))
    assert str(blocker) in exc.value.path


def test_dh_group_and_nginx_config(tmp_path):
    result = issue(_opts(tmp_path, dh_group="rfc3526-2048", config_template="nginx",
                         server_names=["localhost", "127.0.0.1"], port=8443))
    assert result.paths.dhparam == (tmp_path / "dhparam.pem").resolve()
    assert result.config_path == tmp_path / "nginx.conf"
    text = result.config_path.read_text()
    assert f"ssl_dhparam         {result.paths.dhparam};" in text
    assert "server_name localhost 127.0.0.1;" in text
    assert "listen 8443 ssl;" in text


def test_generated_dhparam(tmp_path):
    result = issue(_opts(tmp_path, dhparam=True, dh_bits=512, min_dh_bits=512))
    params = storemod.load_dh(result.paths.dhparam)
    assert params.parameter_numbers().p.bit_length() == 512


def test_haproxy_writes_bundle(tmp_path):
    result = issue(_opts(tmp_path, config_template="haproxy"))
    assert result.paths.bundle == (tmp_path / "localhost.bundle.pem").resolve()
    assert f"crt {result.paths.bundle}" in result.config_text


def test_windows_exports(tmp_path):
    result = issue(_opts(tmp_path, write_der=True, write_pfx=True))
    assert result.paths.der.name == "localhost.cer"
    assert result.paths.pfx.name == "localhost.pfx"


def test_certify_existing_key(tmp_path, ec_pair):
    key_path = ParameterStore(tmp_path, "mine").save_key(ec_pair)
    before = key_path.read_bytes()
    result = issue(_opts(tmp_path, name="mine", existing_key=key_path))
    assert key_path.read_bytes() == before
    assert result.paths.key == key_path.resolve()
    cert = storemod.load_certificate(result.paths.cert)
    assert cert.public_key().public_numbers() == ec_pair.public_key.public_numbers()
