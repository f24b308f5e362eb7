import hashlib
import hmac
from urllib.parse import parse_qs, urlparse
import uuid

import httpx
import pytest

from app.core.errors import AuthenticationError, ConfigurationError, FatalJobError, ValidationError
from app.core.security import TokenCipher
from app.services.handoff import OAUTH_SCOPES, AuthorizationHandoffManager, is_valid_shop_domain
from support import CLIENT_SECRET


def _signed_params(params: dict, secret: str = CLIENT_SECRET) -> dict:
    message = "&".join(f"{key}={params[key]}" for key in sorted(params))
    return {**params, "hmac": hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()}


def test_install_url_carries_scopes_redirect_and_signed_state(handoff):
    job_id = uuid.uuid4()

    url = handoff.build_install_url(job_id, "acme.myshopify.com")

    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    assert parsed.netloc == "acme.myshopify.com"
    assert parsed.path == "/admin/oauth/authorize"
    assert query["client_id"] == ["client-123"]
    assert query["scope"] == [",".join(OAUTH_SCOPES)]
    assert query["redirect_uri"] == ["http://testserver/auth/callback"]
    assert handoff.resolve_state(query["state"][0]) == job_id


def test_install_url_prefers_caller_base_url(handoff):
    url = handoff.build_install_url(uuid.uuid4(), "acme.myshopify.com", "https://admin.example.com/")

    assert parse_qs(urlparse(url).query)["redirect_uri"] == ["https://admin.example.com/auth/callback"]


def test_install_url_rejects_foreign_domains(handoff):
    with pytest.raises(ValidationError):
        handoff.build_install_url(uuid.uuid4(), "acme.example.com")
    assert is_valid_shop_domain("my-shop-2.myshopify.com")
    assert not is_valid_shop_domain("evil.com/.myshopify.com")


def test_missing_partner_credentials_are_a_configuration_error():
    manager = AuthorizationHandoffManager(
        client_id=None,
        client_secret=None,
        public_base_url="http://testserver",
        state_secret="state-secret",
        cipher=TokenCipher("secret", "salt"),
    )

    with pytest.raises(ConfigurationError):
        manager.build_install_url(uuid.uuid4(), "acme.myshopify.com")


def test_tampered_state_is_rejected(handoff):
    state = handoff.encode_state(uuid.uuid4())
    forged = f"{uuid.uuid4()}.{state.rsplit('.', 1)[1]}"

    for candidate in (forged, "garbage", "", None):
        with pytest.raises(AuthenticationError):
            handoff.resolve_state(candidate)


def test_callback_hmac_verification(handoff):
    params = _signed_params({"code": "abc", "shop": "acme.myshopify.com", "state": "s", "timestamp": "1700000000"})
    handoff.verify_callback_hmac(params)

    with pytest.raises(AuthenticationError):
        handoff.verify_callback_hmac({**params, "code": "changed"})
    with pytest.raises(AuthenticationError):
        handoff.verify_callback_hmac(_signed_params({"code": "abc"}, secret="other"))


def test_exchange_code_posts_credentials(handoff, token_exchange_requests):
    token = handoff.exchange_code("acme.myshopify.com", "auth-code")

    assert token == "shpat_live_token"
    request = token_exchange_requests[0]
    assert str(request.url) == "https://acme.myshopify.com/admin/oauth/access_token"
    assert b'"code":"auth-code"' in request.content.replace(b" ", b"")


def test_exchange_code_failure_is_fatal():
    manager = AuthorizationHandoffManager(
        client_id="client-123",
        client_secret=CLIENT_SECRET,
        public_base_url="http://testserver",
        state_secret="state-secret",
        cipher=TokenCipher("secret", "salt"),
        http_client=httpx.Client(transport=httpx.MockTransport(lambda _req: httpx.Response(400, text="bad code"))),
    )

    with pytest.raises(FatalJobError):
        manager.exchange_code("acme.myshopify.com", "reused-code")


def test_access_token_is_sealed_at_rest(handoff):
    sealed = handoff.seal_access_token("shpat_live_token")

    assert "shpat_live_token" not in sealed
    assert handoff.open_access_token(sealed) == "shpat_live_token"
