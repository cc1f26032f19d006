# tests/conftest.py
import pytest

from localcert.common.models import CertificateRequest, KeyAlgorithm, KeySpec, SubjectIdentity
from localcert.common.utils import parse_san
from localcert.crypto.keys import generate_key


@pytest.fixture(scope="session")
def rsa_pair():
    return generate_key(KeySpec(algorithm=KeyAlgorithm.RSA, rsa_bits=2048))


@pytest.fixture(scope="session")
def ec_pair():
    return generate_key(KeySpec(algorithm=KeyAlgorithm.ECDSA, curve="P-256"))


@pytest.fixture
def localhost_request():
    return CertificateRequest(
        subject=SubjectIdentity(common_name="localhost"),
        san=[parse_san("DNS:localhost"), parse_san("IP:127.0.0.1")],
        validity_days=365,
    )


@pytest.fixture(scope="session")
def small_dh():
    # 512 bits keeps generation fast; real runs enforce 2048
    from localcert.crypto.dh import generate_dh_parameters

    return generate_dh_parameters(512, min_bits=512)
