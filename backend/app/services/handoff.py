import base64
import hashlib
import hmac
import re
from collections.abc import Mapping
from urllib.parse import urlencode
import uuid

import httpx

from app.core.errors import AuthenticationError, ConfigurationError, FatalJobError, ValidationError
from app.core.security import TokenCipher

OAUTH_SCOPES: tuple[str, ...] = (
    "read_content",
    "write_content",
    "read_products",
    "write_products",
    "read_navigation",
    "write_navigation",
    "read_themes",
    "write_themes",
    "read_files",
    "write_files",
    "read_blogs",
    "write_blogs",
)

CALLBACK_PATH = "/auth/callback"

_SHOP_DOMAIN_RE = re.compile(r"^[a-z0-9][a-z0-9-]*\.myshopify\.com$")


def is_valid_shop_domain(domain: str) -> bool:
    return bool(_SHOP_DOMAIN_RE.match(domain or ""))


class AuthorizationHandoffManager:
    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        public_base_url: str,
        state_secret: str,
        cipher: TokenCipher,
        http_client: httpx.Client | None = None,
        timeout_seconds: float = 20.0,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.public_base_url = public_base_url
        self.state_secret = state_secret
        self.cipher = cipher
        self.http_client = http_client or httpx.Client(timeout=timeout_seconds)

    def require_credentials(self) -> tuple[str, str]:
        if not self.client_id or not self.client_secret:
            raise ConfigurationError(
                "Shopify partner app credentials are not configured. Set SHOPIFY_CLIENT_ID and SHOPIFY_CLIENT_SECRET."
            )
        return self.client_id, self.client_secret

    def redirect_uri(self, caller_base_url: str | None = None) -> str:
        base = (caller_base_url or self.public_base_url).rstrip("/")
        return f"{base}{CALLBACK_PATH}"

    def build_install_url(self, job_id: uuid.UUID | str, store_domain: str, caller_base_url: str | None = None) -> str:
        client_id, _ = self.require_credentials()
        if not is_valid_shop_domain(store_domain):
            raise ValidationError("The store domain must be a .myshopify.com domain")

        query = urlencode(
            {
                "client_id": client_id,
                "scope": ",".join(OAUTH_SCOPES),
                "redirect_uri": self.redirect_uri(caller_base_url),
                "state": self.encode_state(job_id),
            }
        )
        return f"https://{store_domain}/admin/oauth/authorize?{query}"

    def encode_state(self, job_id: uuid.UUID | str) -> str:
        job_ref = str(job_id)
        return f"{job_ref}.{self._sign(job_ref)}"

    def resolve_state(self, state: str | None) -> uuid.UUID:
        if not state:
            raise AuthenticationError("Missing OAuth state")
        job_ref, _, signature = state.rpartition(".")
        if not job_ref or not signature or not hmac.compare_digest(signature, self._sign(job_ref)):
            raise AuthenticationError("Unrecognized OAuth state")
        try:
            return uuid.UUID(job_ref)
        except ValueError as exc:
            raise AuthenticationError("Unrecognized OAuth state") from exc

    def verify_callback_hmac(self, query_params: Mapping[str, str]) -> None:
        _, client_secret = self.require_credentials()
        provided = query_params.get("hmac")
        if not provided:
            raise AuthenticationError("Missing callback HMAC")

        message = "&".join(f"{key}={query_params[key]}" for key in sorted(query_params) if key != "hmac")
        expected = hmac.new(client_secret.encode(), message.encode(), hashlib.sha256).hexdigest()
        if not hmac.compare_digest(provided, expected):
            raise AuthenticationError("Callback HMAC verification failed")

    def exchange_code(self, shop: str, code: str) -> str:
        client_id, client_secret = self.require_credentials()
        if not is_valid_shop_domain(shop):
            raise AuthenticationError("Callback shop is not a valid store domain")

        try:
            response = self.http_client.post(
                f"https://{shop}/admin/oauth/access_token",
                json={"client_id": client_id, "client_secret": client_secret, "code": code},
            )
        except httpx.HTTPError as exc:
            raise FatalJobError(f"Access token exchange failed: {exc}") from exc

        if response.status_code >= 400:
            raise FatalJobError(f"Access token exchange failed: status={response.status_code} body={response.text[:200]}")

        try:
            access_token = response.json().get("access_token")
        except ValueError as exc:
            raise FatalJobError("Access token exchange returned invalid JSON") from exc
        if not access_token:
            raise FatalJobError("No access token was returned by the platform")
        return str(access_token)

    def seal_access_token(self, access_token: str) -> str:
        return self.cipher.encrypt(access_token)

    def open_access_token(self, sealed: str) -> str:
        return self.cipher.decrypt(sealed)

    def _sign(self, value: str) -> str:
        digest = hmac.new(self.state_secret.encode(), value.encode(), hashlib.sha256).digest()
        return base64.urlsafe_b64encode(digest[:18]).decode().rstrip("=")
