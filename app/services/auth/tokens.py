"""
Principal tokens: signed, time-limited bearer tokens carrying
{id, walletAddress, role, whitelistStatus}.
Uses itsdangerous for tamper-proof serialization.
"""
import logging
from functools import lru_cache

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from pydantic import ValidationError

from app.core.config import settings
from app.services.auth.principal import Principal

logger = logging.getLogger("auth")

TOKEN_SALT = "principal-token"


class InvalidTokenError(Exception):
    pass


class PrincipalTokenSigner:
    """Signer/verifier shared by the credential issuer and the API."""

    def __init__(self, secret: str, max_age_seconds: int) -> None:
        self.serializer = URLSafeTimedSerializer(secret, salt=TOKEN_SALT)
        self.max_age_seconds = max_age_seconds

    def issue(self, principal: Principal) -> str:
        return self.serializer.dumps(principal.model_dump(mode="json", by_alias=True))

    def verify(self, token: str) -> Principal:
        """Raises InvalidTokenError on bad signature, expiry or malformed claims."""
        try:
            claims = self.serializer.loads(token, max_age=self.max_age_seconds)
        except SignatureExpired as e:
            raise InvalidTokenError("Token expired") from e
        except BadSignature as e:
            raise InvalidTokenError("Invalid token") from e
        if not isinstance(claims, dict):
            raise InvalidTokenError("Invalid token claims")
        try:
            return Principal.model_validate(claims)
        except ValidationError as e:
            logger.warning("principal_token_claims_invalid", extra={"error": str(e)})
            raise InvalidTokenError("Invalid token claims") from e


@lru_cache(maxsize=1)
def get_token_signer() -> PrincipalTokenSigner:
    return PrincipalTokenSigner(settings.auth_token_secret, settings.auth_token_ttl)


def issue_principal_token(principal: Principal) -> str:
    """Token for the credential issuer (wallet login flow) and local tooling."""
    return get_token_signer().issue(principal)
