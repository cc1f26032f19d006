# tests/test_cli.py
import datetime

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from localcert import cli
from localcert.cli import file_name_for, main
from localcert.common.models import SANEntry


def run(capsys, *argv):
    code = main(list(argv))
    out, err = capsys.readouterr()
    return code, out, err


@pytest.fixture
def out_dir(tmp_path):
    return tmp_path / "certs"


def test_no_command_prints_help(capsys):
    code, out, _ = run(capsys)
    assert code == 2
    assert "generate-cert" in out


def test_generate_all_ecdsa(capsys, out_dir):
    code, out, _ = run(capsys, "generate-all", "--out", str(out_dir), "--algorithm", "ecdsa",
                       "--san", "DNS:localhost", "--san", "IP:127.0.0.1")
    assert code == 0
    assert sorted(p.name for p in out_dir.iterdir()) == ["localhost.crt", "localhost.key"]
    assert "SAN:         DNS:localhost, IP:127.0.0.1" in out


def test_generate_cert_defaults_san_to_domain(capsys, out_dir):
    code, out, _ = run(capsys, "generate-cert", "--out", str(out_dir), "--domain", "dev.test",
                       "--algorithm", "ecdsa")
    assert code == 0
    assert (out_dir / "dev.test.crt").exists()
    assert "SAN:         DNS:dev.test" in out


def test_zero_days_is_validation_error(capsys, out_dir):
    code, _, err = run(capsys, "generate-cert", "--out", str(out_dir), "--days", "0", "--algorithm", "ecdsa")
    assert code == 2
    assert "invalid-validity" in err
    assert not out_dir.exists()


def test_blank_domain_is_validation_error(capsys, out_dir):
    code, _, err = run(capsys, "generate-cert", "--out", str(out_dir), "--domain", " ", "--algorithm", "ecdsa")
    assert code == 2
    assert "invalid-subject" in err


def test_weak_rsa_key(capsys, out_dir):
    code, _, err = run(capsys, "generate-key", "--out", str(out_dir), "--bits", "1024")
    assert code == 2
    assert "weak-parameter" in err
    assert not out_dir.exists()


def test_unwritable_out_is_io_error(capsys, tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")
    code, _, err = run(capsys, "generate-key", "--out", str(blocker / "certs"), "--algorithm", "ecdsa")
    assert code == 3
    assert "path-unwritable" in err


def test_generate_key_with_passphrase(capsys, out_dir, monkeypatch):
    monkeypatch.setenv("LOCALCERT_TEST_PASS", "hunter22")
    code, _, _ = run(capsys, "generate-key", "--out", str(out_dir), "--algorithm", "ecdsa",
                     "--passphrase-env", "LOCALCERT_TEST_PASS")
    assert code == 0
    assert b"ENCRYPTED PRIVATE KEY" in (out_dir / "localhost.key").read_bytes()


def test_missing_passphrase_variable(capsys, out_dir, monkeypatch):
    monkeypatch.delenv("LOCALCERT_TEST_PASS", raising=False)
    code, _, err = run(capsys, "generate-key", "--out", str(out_dir), "--algorithm", "ecdsa",
                       "--passphrase-env", "LOCALCERT_TEST_PASS")
    assert code == 2
    assert "LOCALCERT_TEST_PASS" in err


def test_dhparam_group_and_inspect(capsys, out_dir):
    code, _, _ = run(capsys, "generate-dhparam", "--out", str(out_dir), "--group", "rfc3526-2048")
    assert code == 0
    code, out, _ = run(capsys, "inspect", str(out_dir / "dhparam.pem"))
    assert code == 0
    assert "DH parameters: 2048 bits, generator 2" in out
    assert "Safe prime:    yes" in out


def test_inspect_certificate(capsys, out_dir):
    run(capsys, "generate-cert", "--out", str(out_dir), "--algorithm", "ecdsa", "--days", "30")
    code, out, _ = run(capsys, "inspect", str(out_dir / "localhost.crt"))
    assert code == 0
    assert "Subject:     CN=localhost" in out
    assert "(30 days)" in out
    assert "Self-signed: yes" in out


def test_inspect_missing_file(capsys, tmp_path):
    code, _, err = run(capsys, "inspect", str(tmp_path / "nope.crt"))
    assert code == 3
    assert "artifact-not-found" in err


def test_render_config_after_generate(capsys, out_dir):
    run(capsys, "generate-cert", "--out", str(out_dir), "--algorithm", "ecdsa")
    code, out, _ = run(capsys, "render-config", "nginx", "--out", str(out_dir))
    assert code == 0
    assert f"ssl_certificate     {(out_dir / 'localhost.crt').resolve()};" in out

    code, _, err = run(capsys, "render-config", "iis", "--out", str(out_dir))
    assert code == 2
    assert "unknown-template" in err


def test_render_config_write(capsys, out_dir):
    run(capsys, "generate-cert", "--out", str(out_dir), "--algorithm", "ecdsa")
    code, _, _ = run(capsys, "render-config", "caddy", "--out", str(out_dir), "--write")
    assert code == 0
    assert "tls " in (out_dir / "caddy.conf").read_text()


def test_render_config_without_artifacts(capsys, out_dir):
    code, _, err = run(capsys, "render-config", "nginx", "--out", str(out_dir))
    assert code == 3
    assert "generate-cert" in err


def test_wildcard_domain_file_name(capsys, out_dir):
    code, out, _ = run(capsys, "generate-cert", "--out", str(out_dir), "--domain", "*.dev.test",
                       "--algorithm", "ecdsa")
    assert code == 0
    assert (out_dir / "wildcard.dev.test.crt").exists()
    assert "DNS:*.dev.test" in out


def test_file_name_for():
    assert file_name_for("*.dev.test") == "wildcard.dev.test"
    assert file_name_for("::1") == "__1"
    assert file_name_for("  ") == "localhost"


def test_inspect_certificate_on_other_curve(capsys, tmp_path):
    key = ec.generate_private_key(ec.BrainpoolP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "legacy.test")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=10))
        .sign(key, hashes.SHA256())
    )
    path = tmp_path / "legacy.crt"
    path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))

    code, out, err = run(capsys, "inspect", str(path))
    assert code == 0, err
    assert "Key:         ECDSA brainpoolP256r1" in out
    assert "Self-signed: yes" in out


def test_common_name_outside_san_is_validation_error(capsys, out_dir):
    code, _, err = run(capsys, "generate-cert", "--out", str(out_dir), "--domain", "dev.test",
                       "--san", "IP:127.0.0.1", "--algorithm", "ecdsa")
    assert code == 2
    assert "missing-san" in err
    assert not out_dir.exists()


def test_model_errors_map_to_validation_exit(capsys, out_dir, monkeypatch):
    monkeypatch.setattr(cli, "parse_san", lambda text: SANEntry(kind="URI", value=text))
    code, _, err = run(capsys, "generate-cert", "--out", str(out_dir), "--san", "https://localhost",
                       "--algorithm", "ecdsa")
    assert code == 2
    assert "invalid-request" in err
    assert "kind" in err


def test_generate_dhparam_takes_no_name(capsys, out_dir):
    with pytest.raises(SystemExit) as exc:
        main(["generate-dhparam", "--out", str(out_dir), "--name", "web", "--group", "rfc3526-2048"])
    assert exc.value.code == 2
    assert not out_dir.exists()
