"""Bearer credential verification.

Identity is owned by the external auth provider. This module only verifies
the signed JWT it issues and extracts the opaque user id (the ``sub`` claim).
Token minting is provided for operator tooling and tests.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Optional

from jose import JWTError, jwt
from pydantic import ValidationError as PydanticValidationError

from coverview.core.config import settings
from coverview.core.exceptions import AuthenticationError
from coverview.schemas.auth import TokenPayload

logger = logging.getLogger(__name__)


def create_access_token(
    user_id: str,
    expires_minutes: int = 60,
    email: Optional[str] = None,
) -> str:
    """Create a signed access token for a user.

    Args:
        user_id: Opaque user identifier placed in ``sub``
        expires_minutes: Token lifetime
        email: Optional email claim

    Returns:
        Encoded JWT string
    """
    now = datetime.now(UTC)
    payload = {
        "sub": str(user_id),
        "role": "authenticated",
        "exp": int((now + timedelta(minutes=expires_minutes)).timestamp()),
        "iat": int(now.timestamp()),
    }
    if settings.JWT_AUDIENCE:
        payload["aud"] = settings.JWT_AUDIENCE
    if email:
        payload["email"] = email

    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> TokenPayload:
    """Decode and validate a bearer token.

    Args:
        token: JWT string from the Authorization header

    Returns:
        TokenPayload with the verified claims

    Raises:
        AuthenticationError: If the token is malformed, expired, has a bad
            signature or audience, or carries no subject
    """
    try:
        claims = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE or None,
            options={"verify_aud": bool(settings.JWT_AUDIENCE)},
        )
        return TokenPayload(**claims)
    except JWTError as e:
        logger.warning(f"Token decode error: {e}")
        raise AuthenticationError("Invalid or expired token")
    except PydanticValidationError as e:
        logger.warning(f"Token payload rejected: {e}")
        raise AuthenticationError("Invalid or expired token")

