import base64
import uuid

import pytest

from macommune.core.errors import TokenIssuanceError
from macommune.services.tokens import TokenIssuer
from tests.fixtures.settings import make_settings


@pytest.fixture
def issuer(settings) -> TokenIssuer:
    return TokenIssuer(settings)


def test_minted_tokens_are_random_uuid4(issuer):
    first = issuer.mint_token()
    second = issuer.mint_token()

    assert first != second
    assert uuid.UUID(first).version == 4


def test_verification_url_uses_configured_base(issuer):
    assert (
        issuer.verification_url("abc-123")
        == "https://ma-commune-backend.onrender.com/verify-document?token=abc-123"
    )


def test_verification_url_base_is_configurable(tmp_path):
    issuer = TokenIssuer(
        make_settings(tmp_path, verification_base_url="https://mairie.example.cd/verifier/")
    )

    assert issuer.verification_url("t") == "https://mairie.example.cd/verifier?token=t"


def test_verification_url_requires_token(issuer):
    with pytest.raises(TokenIssuanceError):
        issuer.verification_url("")


def test_qr_code_is_a_deterministic_png(issuer):
    url = issuer.verification_url("abc-123")

    first = issuer.qr_code_data_uri(url)
    second = issuer.qr_code_data_uri(url)

    assert first == second
    assert first.startswith("data:image/png;base64,")
    png = base64.b64decode(first.split(",", 1)[1])
    assert png.startswith(b"\x89PNG\r\n\x1a\n")


def test_qr_code_depends_on_url(issuer):
    assert issuer.qr_code_data_uri(issuer.verification_url("a")) != issuer.qr_code_data_uri(
        issuer.verification_url("b")
    )
