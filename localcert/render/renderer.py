# localcert/render/renderer.py
"""
Web-server / reverse-proxy configuration fragments that point at the
generated files. Pure templating, no cryptography.
"""
from pathlib import Path
from typing import List, Sequence

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from localcert import config
from localcert.common.errors import UnknownTemplateError
from localcert.common.models import ArtifactPaths

TEMPLATE_DIR = Path(__file__).parent / "templates"
TEMPLATE_SUFFIX = ".conf.j2"

TLS_PROTOCOLS = ["TLSv1.2", "TLSv1.3"]
# TLS 1.2 suites; TLS 1.3 suites are not configurable in most servers
TLS_CIPHERS = [
    "ECDHE-ECDSA-AES128-GCM-SHA256",
    "ECDHE-RSA-AES128-GCM-SHA256",
    "ECDHE-ECDSA-AES256-GCM-SHA384",
    "ECDHE-RSA-AES256-GCM-SHA384",
    "ECDHE-ECDSA-CHACHA20-POLY1305",
    "ECDHE-RSA-CHACHA20-POLY1305",
    "DHE-RSA-AES128-GCM-SHA256",
    "DHE-RSA-AES256-GCM-SHA384",
]

_env = Environment(
    loader=FileSystemLoader(searchpath=str(TEMPLATE_DIR)),
    undefined=StrictUndefined,
    keep_trailing_newline=True,
    trim_blocks=True,
    lstrip_blocks=True,
    autoescape=False,
)


def available_templates() -> List[str]:
    return sorted(p.name[: -len(TEMPLATE_SUFFIX)] for p in TEMPLATE_DIR.glob(f"*{TEMPLATE_SUFFIX}"))


def render_config(
    template_id: str,
    paths: ArtifactPaths,
    server_names: Sequence[str] = ("localhost",),
    port: int = None,
) -> str:
    """Render `template_id` for the given artifact paths."""
    if template_id not in available_templates():
        raise UnknownTemplateError(
            f"unknown config template '{template_id}' (choose from {', '.join(available_templates())})"
        )
    tmpl = _env.get_template(template_id + TEMPLATE_SUFFIX)
    return tmpl.render(
        paths=paths,
        server_names=list(server_names) or ["localhost"],
        port=port or config.DEFAULT_TLS_PORT,
        protocols=TLS_PROTOCOLS,
        ciphers=TLS_CIPHERS,
    )
