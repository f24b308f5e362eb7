"""Identity-token verification and credential encryption."""

import base64
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import jwt
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from jwt import InvalidTokenError, PyJWKClient
from jwt.exceptions import PyJWKClientError

from app.core.config import Settings
from app.core.errors import AuthenticationError, ConfigurationError
from app.models.enums import CallerRole, EntityType

KeyResolver = Callable[[str], Any]


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class TokenVerifier:
    """Verifies signed JWT identity tokens.

    The signing key comes either from a JWKS endpoint (asymmetric tokens issued
    by an identity provider) or from a shared secret (HS256, local setups).
    ``expected_email`` pins the token to one service identity.
    """

    def __init__(
        self,
        key_resolver: KeyResolver,
        algorithms: list[str],
        audience: str | None = None,
        issuer: str | None = None,
        expected_email: str | None = None,
        leeway_seconds: int = 10,
    ):
        self.key_resolver = key_resolver
        self.algorithms = algorithms
        self.audience = audience
        self.issuer = issuer
        self.expected_email = expected_email
        self.leeway_seconds = leeway_seconds

    @classmethod
    def from_jwks(cls, jwks_url: str, **kwargs) -> "TokenVerifier":
        client = PyJWKClient(jwks_url, cache_keys=True)

        def resolve(token: str) -> Any:
            return client.get_signing_key_from_jwt(token).key

        return cls(resolve, algorithms=["RS256"], **kwargs)

    @classmethod
    def from_shared_secret(cls, secret: str, **kwargs) -> "TokenVerifier":
        return cls(lambda _token: secret, algorithms=["HS256"], **kwargs)

    def verify(self, token: str | None) -> dict[str, Any]:
        if not token:
            raise AuthenticationError("Missing identity token")

        options = {"require": ["exp", "iat", "sub"], "verify_aud": self.audience is not None}
        try:
            key = self.key_resolver(token)
            claims = jwt.decode(
                token,
                key=key,
                algorithms=self.algorithms,
                audience=self.audience,
                issuer=self.issuer,
                leeway=self.leeway_seconds,
                options=options,
            )
        except (InvalidTokenError, PyJWKClientError) as exc:
            raise AuthenticationError(f"Invalid identity token: {exc}") from exc

        if self.expected_email is not None:
            email = str(claims.get("email", ""))
            if not secrets.compare_digest(email, self.expected_email):
                raise AuthenticationError("Identity token was not issued to the expected service account")
            if claims.get("email_verified") is False:
                raise AuthenticationError("Identity token email is not verified")
        return claims


@dataclass(frozen=True)
class CallerContext:
    """The authenticated end user behind an admin or listing request."""

    uid: str
    role: CallerRole = CallerRole.USER
    company_id: str | None = None
    claims: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_admin(self) -> bool:
        return self.role in {CallerRole.ADMIN, CallerRole.SUPER_ADMIN}

    @property
    def is_super_admin(self) -> bool:
        return self.role == CallerRole.SUPER_ADMIN

    def owned_entity(self) -> tuple[EntityType, str]:
        if self.company_id:
            return EntityType.COMPANY, self.company_id
        return EntityType.USER, self.uid

    def owns(self, entity_type: EntityType, entity_id: str) -> bool:
        if entity_type == EntityType.COMPANY:
            return self.company_id is not None and entity_id == self.company_id
        return entity_id == self.uid

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "CallerContext":
        try:
            role = CallerRole(str(claims.get("role") or CallerRole.USER.value))
        except ValueError:
            role = CallerRole.USER
        company_id = claims.get("companyId") or claims.get("company_id")
        return cls(
            uid=str(claims.get("user_id") or claims["sub"]),
            role=role,
            company_id=str(company_id) if company_id else None,
            claims=claims,
        )


def build_admin_token_verifier(settings: Settings) -> TokenVerifier | None:
    kwargs = {"audience": settings.admin_token_audience, "issuer": settings.admin_token_issuer}
    if settings.admin_token_jwks_url:
        return TokenVerifier.from_jwks(settings.admin_token_jwks_url, **kwargs)
    if settings.admin_token_shared_secret:
        return TokenVerifier.from_shared_secret(settings.admin_token_shared_secret, **kwargs)
    return None


def build_task_token_verifier(settings: Settings) -> TokenVerifier | None:
    if not settings.task_service_account_email:
        return None
    audience = settings.task_token_audience or _task_handler_url(settings)
    kwargs = {
        "audience": audience,
        "issuer": settings.task_token_issuer,
        "expected_email": settings.task_service_account_email,
    }
    if settings.task_token_shared_secret:
        return TokenVerifier.from_shared_secret(settings.task_token_shared_secret, **kwargs)
    return TokenVerifier.from_jwks(settings.task_token_jwks_url, **kwargs)


def _task_handler_url(settings: Settings) -> str:
    base = settings.task_handler_base_url or settings.public_base_url
    return f"{base.rstrip('/')}/tasks/populate"


class TokenCipher:
    """Encrypts platform access tokens at rest (Fernet, key derived from the app secret)."""

    def __init__(self, secret_key: str, salt: str):
        if not secret_key:
            raise ConfigurationError("SECRET_KEY is required to encrypt platform credentials")
        kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt.encode(), iterations=100_000)
        self._fernet = Fernet(base64.urlsafe_b64encode(kdf.derive(secret_key.encode())))

    def encrypt(self, value: str) -> str:
        return self._fernet.encrypt(value.encode()).decode()

    def decrypt(self, value: str) -> str:
        try:
            return self._fernet.decrypt(value.encode()).decode()
        except InvalidToken as exc:
            raise ConfigurationError("Stored access token cannot be decrypted with the current secret") from exc
