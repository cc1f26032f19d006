# localcert/config.py
"""
Defaults, overridable from the environment.
"""
import os

OUT_DIR = os.environ.get("LOCALCERT_OUT_DIR", "certs")
DEFAULT_NAME = os.environ.get("LOCALCERT_NAME", "localhost")

MIN_RSA_BITS = int(os.environ.get("LOCALCERT_MIN_RSA_BITS", "2048"))
MIN_DH_BITS = int(os.environ.get("LOCALCERT_MIN_DH_BITS", "2048"))
DEFAULT_DAYS = int(os.environ.get("LOCALCERT_DEFAULT_DAYS", "365"))
LOG_LEVEL = os.environ.get("LOCALCERT_LOG_LEVEL", "INFO").upper()

DEFAULT_RSA_BITS = 2048
DEFAULT_CURVE = "P-256"
DEFAULT_DH_BITS = 2048
DEFAULT_TLS_PORT = 443

# permission bits for written artifacts
KEY_MODE = 0o600
PUBLIC_MODE = 0o644
