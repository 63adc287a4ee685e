"""
Presenter authorization: shared secret, presenter JWTs, or an external
session-identity check. All three collapse into one "authorized" answer.
"""
import hmac
import logging
import time
from typing import Awaitable, Callable, Optional

try:
    import jwt
except ImportError:
    raise ImportError("pyjwt is required: pip install pyjwt")

from .errors import ConfigurationError

logger = logging.getLogger("livedeck")

TOKEN_AUDIENCE = "livedeck:presenter"

# Receives the bearer credential, answers whether an external identity
# service recognises it as a signed-in presenter.
IdentityLookup = Callable[[str], Awaitable[bool]]


def mint_presenter_token(secret: str, ttl: int, subject: str = "presenter") -> str:
    """
    Mint a presenter token

    Args:
        secret: Control secret used as the HMAC key
        ttl: Lifetime in seconds
        subject: Who the token was issued to

    Returns:
        JWT token string
    """
    now = int(time.time())
    payload = {
        "sub": subject,
        "aud": TOKEN_AUDIENCE,
        "iat": now,
        "nbf": now - 5,  # Not before (with 5s clock skew tolerance)
        "exp": now + ttl,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def verify_presenter_token(secret: str, token: str) -> bool:
    """Check signature, audience and expiry of a presenter token"""
    try:
        jwt.decode(token, secret, algorithms=["HS256"], audience=TOKEN_AUDIENCE)
    except jwt.PyJWTError as e:
        logger.info(f"Presenter token rejected: {e}")
        return False
    return True


def bearer_credential(header: Optional[str]) -> Optional[str]:
    """Extract the credential from an ``Authorization: Bearer ...`` header"""
    if not header or not header.startswith("Bearer "):
        return None
    return header[len("Bearer "):].strip() or None


class Authorizer:
    """Answers whether a request may mutate deck state."""

    def __init__(
        self,
        control_secret: Optional[str],
        identity_lookup: Optional[IdentityLookup] = None,
        token_ttl: int = 60 * 60 * 24 * 30,
    ):
        self.control_secret = control_secret
        self.identity_lookup = identity_lookup
        self.token_ttl = token_ttl

    async def is_authorized(self, header: Optional[str]) -> bool:
        credential = bearer_credential(header)
        if credential is None:
            return False

        if self.control_secret:
            if hmac.compare_digest(credential.encode(), self.control_secret.encode()):
                return True
            if verify_presenter_token(self.control_secret, credential):
                return True

        if self.identity_lookup is not None:
            return bool(await self.identity_lookup(credential))

        return False

    def login(self, password: str) -> Optional[str]:
        """Exchange the control secret for a presenter token. None if the password is wrong."""
        if not self.control_secret:
            raise ConfigurationError("LIVEDECK_CONTROL_SECRET is not configured")
        if not hmac.compare_digest(password.encode(), self.control_secret.encode()):
            return None
        return mint_presenter_token(self.control_secret, self.token_ttl)
