# localcert/cli.py
"""
localcert command line.

  localcert generate-key   --algorithm rsa --bits 4096 --out certs
  localcert generate-cert  --domain localhost --san IP:127.0.0.1 --days 365
  localcert generate-dhparam --group rfc3526-2048
  localcert generate-all   --domain dev.test --dhparam --config nginx
  localcert render-config  nginx --out certs --name dev.test
  localcert inspect certs/localhost.crt

Exit codes: 0 ok, 2 validation error, 3 I/O error, 4 crypto library error.
"""
import argparse
import logging
import os
import sys
from pathlib import Path

from pydantic import ValidationError as ModelValidationError

from localcert import config
from localcert.common.errors import ArtifactNotFoundError, InvalidRequestError, LocalCertError
from localcert.common.log import setup_logging
from localcert.common.models import KeyAlgorithm, KeySpec, SubjectIdentity
from localcert.common.utils import colon_hex, parse_san, san_for_host
from localcert.crypto import dh as dhmod
from localcert.crypto import keys as keymod
from localcert.crypto import pki
from localcert.pipeline import IssueOptions, issue, obtain_dh_parameters
from localcert.render.renderer import available_templates, render_config
from localcert.storage import store as storemod
from localcert.storage.store import ParameterStore

logger = logging.getLogger("localcert.cli")


# ---------------------------------------------------------------------------
# argument parsing
# ---------------------------------------------------------------------------
def _common(p, name=True):
    p.add_argument("--out", default=config.OUT_DIR, help="Output directory (default: %(default)s)")
    if name:
        p.add_argument("--name", default=None, help="Artifact base name (default: the domain)")
    p.add_argument("-v", "--verbose", action="store_true")


def _key_args(p):
    p.add_argument("--algorithm", choices=["rsa", "ecdsa"], default="rsa")
    p.add_argument("--bits", type=int, default=config.DEFAULT_RSA_BITS, help="RSA key size")
    p.add_argument("--curve", default=config.DEFAULT_CURVE, help="ECDSA curve (P-256, P-384, P-521)")
    p.add_argument("--passphrase-env", metavar="VAR",
                   help="Encrypt the private key with the passphrase in environment variable VAR")


def _cert_args(p):
    p.add_argument("--domain", "--cn", dest="domain", default=config.DEFAULT_NAME,
                   help="Common name; also the default SAN (default: %(default)s)")
    p.add_argument("--san", action="append", default=[],
                   help="Subject Alternative Name: DNS:name, IP:addr or a bare value (repeatable)")
    p.add_argument("--days", type=int, default=config.DEFAULT_DAYS, help="Validity in days")
    p.add_argument("--country")
    p.add_argument("--state")
    p.add_argument("--locality")
    p.add_argument("--org")
    p.add_argument("--org-unit")
    p.add_argument("--key-usage", action="append", default=[],
                   help="digital_signature, key_encipherment, server_auth, client_auth, ... (repeatable)")
    p.add_argument("--allow-missing-san", action="store_true",
                   help="Issue even when the SAN list is empty or does not cover the domain")
    p.add_argument("--der", action="store_true", help="Also write a DER .cer (Windows import)")
    p.add_argument("--pfx", action="store_true", help="Also write a PKCS#12 .pfx (IIS / Windows)")
    p.add_argument("--bundle", action="store_true", help="Also write <name>.bundle.pem (cert + key)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="localcert", description="Self-signed TLS certificates for local use")
    sub = parser.add_subparsers(dest="cmd")

    p_key = sub.add_parser("generate-key", help="Generate a private key")
    _common(p_key)
    _key_args(p_key)
    p_key.add_argument("--domain", "--cn", dest="domain", default=config.DEFAULT_NAME,
                       help="Used as the file name when --name is not given")

    p_cert = sub.add_parser("generate-cert", help="Generate a self-signed certificate")
    _common(p_cert)
    _key_args(p_cert)
    _cert_args(p_cert)
    p_cert.add_argument("--key", dest="existing_key", type=Path,
                        help="Certify this existing private key instead of generating one")

    p_dh = sub.add_parser("generate-dhparam", help="Generate Diffie-Hellman parameters (always <out>/dhparam.pem)")
    _common(p_dh, name=False)
    p_dh.add_argument("--bits", type=int, default=config.DEFAULT_DH_BITS)
    p_dh.add_argument("--generator", type=int, default=dhmod.DEFAULT_G, choices=dhmod.ALLOWED_GENERATORS)
    p_dh.add_argument("--group", choices=sorted(dhmod.NAMED_GROUPS),
                      help="Write a predefined group instead of generating one")

    p_all = sub.add_parser("generate-all", help="Key, certificate, optional DH parameters and config")
    _common(p_all)
    _key_args(p_all)
    _cert_args(p_all)
    p_all.add_argument("--dhparam", action="store_true", help="Also generate DH parameters")
    p_all.add_argument("--dh-bits", type=int, default=config.DEFAULT_DH_BITS)
    p_all.add_argument("--dh-group", choices=sorted(dhmod.NAMED_GROUPS),
                       help="Use a predefined DH group (implies --dhparam)")
    p_all.add_argument("--config", dest="template", help=f"Render a config ({', '.join(available_templates())})")
    p_all.add_argument("--server-name", action="append", default=[])
    p_all.add_argument("--port", type=int, default=config.DEFAULT_TLS_PORT)

    p_render = sub.add_parser("render-config", help="Render a web-server config for existing artifacts")
    _common(p_render)
    p_render.add_argument("template", help=", ".join(available_templates()))
    p_render.add_argument("--domain", default=config.DEFAULT_NAME)
    p_render.add_argument("--server-name", action="append", default=[])
    p_render.add_argument("--port", type=int, default=config.DEFAULT_TLS_PORT)
    p_render.add_argument("--write", action="store_true", help="Write <template>.conf into --out")

    p_inspect = sub.add_parser("inspect", help="Show a certificate or DH parameter file")
    p_inspect.add_argument("path", type=Path)
    p_inspect.add_argument("-v", "--verbose", action="store_true")
    return parser


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------
def file_name_for(domain: str) -> str:
    return domain.strip().replace("*", "wildcard").replace(":", "_") or config.DEFAULT_NAME


def _passphrase(args):
    var = getattr(args, "passphrase_env", None)
    if not var:
        return None
    value = os.environ.get(var)
    if not value:
        raise InvalidRequestError(f"environment variable {var} is not set or empty")
    return value.encode()


def _key_spec(args) -> KeySpec:
    algorithm = KeyAlgorithm.RSA if args.algorithm == "rsa" else KeyAlgorithm.ECDSA
    return KeySpec(algorithm=algorithm, rsa_bits=args.bits, curve=args.curve)


def _issue_options(args, **extra) -> IssueOptions:
    sans = [parse_san(s) for s in args.san]
    if not sans and not args.allow_missing_san and args.domain.strip():
        sans = [san_for_host(args.domain)]
    subject = SubjectIdentity(
        common_name=args.domain,
        country=args.country,
        state=args.state,
        locality=args.locality,
        organization=args.org,
        organizational_unit=args.org_unit,
    )
    return IssueOptions(
        out_dir=Path(args.out),
        name=args.name or file_name_for(args.domain),
        key=_key_spec(args),
        subject=subject,
        san=sans,
        validity_days=args.days,
        key_usage=args.key_usage,
        allow_missing_san=args.allow_missing_san,
        passphrase=_passphrase(args),
        write_der=args.der,
        write_pfx=args.pfx,
        write_bundle=args.bundle,
        **extra,
    )


def _print_result(result) -> None:
    issued = result.issued
    print("Wrote:")
    for label, path in result.paths.model_dump().items():
        if path is not None:
            print(f"  {label:8} {path}")
    if result.config_path:
        print(f"  {'config':8} {result.config_path}")
    print(f"Serial:      {issued.serial_number:x}")
    print(f"Valid:       {issued.not_before.isoformat()} -> {issued.not_after.isoformat()}")
    print(f"SAN:         {', '.join(str(e) for e in issued.san) or '(none)'}")
    print(f"SHA256:      {colon_hex(issued.fingerprint_sha256)}")


# ---------------------------------------------------------------------------
# commands
# ---------------------------------------------------------------------------
def cmd_generate_key(args) -> None:
    key_pair = keymod.generate_key(_key_spec(args))
    store = ParameterStore(args.out, args.name or file_name_for(args.domain))
    path = store.save_key(key_pair, _passphrase(args))
    print("Wrote:", path)


def cmd_generate_cert(args) -> None:
    opts = _issue_options(args, existing_key=args.existing_key)
    _print_result(issue(opts))


def cmd_generate_dhparam(args) -> None:
    params = obtain_dh_parameters(args.bits, args.group, generator=args.generator)
    store = ParameterStore(args.out)
    path = store.save_dh_parameters(params)
    print("Wrote:", path)


def cmd_generate_all(args) -> None:
    opts = _issue_options(
        args,
        dhparam=args.dhparam,
        dh_bits=args.dh_bits,
        dh_group=args.dh_group,
        config_template=args.template,
        server_names=args.server_name,
        port=args.port,
    )
    result = issue(opts)
    _print_result(result)
    if result.config_text:
        print()
        print(result.config_text, end="")


def cmd_render_config(args) -> None:
    store = ParameterStore(args.out, args.name or file_name_for(args.domain))
    paths = store.paths()
    for p in (paths.cert, paths.key):
        if not p.exists():
            raise ArtifactNotFoundError(p, "run generate-cert first")
    text = render_config(args.template, paths, args.server_name or [args.domain], args.port)
    if args.write:
        print("Wrote:", store.save_text(f"{args.template}.conf", text))
    else:
        print(text, end="")


def cmd_inspect(args) -> None:
    raw = storemod.read_artifact(args.path)
    if b"BEGIN DH PARAMETERS" in raw:
        params = dhmod.load_dh_parameters(raw)
        check = dhmod.check_dh_parameters(params, min_bits=0)
        print(f"DH parameters: {check.bits} bits, generator {check.generator}")
        print(f"Safe prime:    {'yes' if check.safe_prime else 'no'}")
        return
    summary = pki.summarize(pki.load_cert(raw))
    s = summary.subject
    print(f"Subject:     CN={s.common_name}"
          + "".join(f", {k}={v}" for k, v in (("O", s.organization), ("OU", s.organizational_unit),
                                             ("L", s.locality), ("ST", s.state), ("C", s.country)) if v))
    print(f"Serial:      {summary.serial_number:x}")
    print(f"Valid:       {summary.not_before.isoformat()} -> {summary.not_after.isoformat()}"
          f" ({summary.validity_days:g} days)")
    print(f"SAN:         {', '.join(str(e) for e in summary.san) or '(none)'}")
    print(f"Key:         {summary.key_algorithm.value} {summary.key_strength}")
    print(f"Self-signed: {'yes' if summary.self_signed else 'no'}")
    print(f"SHA256:      {colon_hex(summary.fingerprint_sha256)}")


COMMANDS = {
    "generate-key": cmd_generate_key,
    "generate-cert": cmd_generate_cert,
    "generate-dhparam": cmd_generate_dhparam,
    "generate-all": cmd_generate_all,
    "render-config": cmd_render_config,
    "inspect": cmd_inspect,
}


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.cmd:
        parser.print_help()
        return 2
    setup_logging(args.verbose)
    try:
        COMMANDS[args.cmd](args)
    except LocalCertError as e:
        logger.debug("command %s failed", args.cmd, exc_info=True)
        print(f"error: {e.kind}: {e}", file=sys.stderr)
        return e.exit_code
    except ModelValidationError as e:
        problems = ["{}: {}".format(".".join(str(p) for p in x["loc"]), x["msg"]) for x in e.errors()]
        err = InvalidRequestError("; ".join(problems))
        print(f"error: {err.kind}: {err}", file=sys.stderr)
        return err.exit_code
    except Exception:
        logger.exception("unexpected failure in %s", args.cmd)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
