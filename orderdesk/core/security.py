"""
JWT token utilities for identifying the acting user.

Tokens are issued by the hosted auth provider; this module only needs to
decode them and, for tooling and tests, mint them. The ``sub`` claim is the
actor id and the ``role`` claim is one of the values in ``ActorRole``.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict

from orderdesk.core.config import get_settings
from orderdesk.core.logging import get_logger

logger = get_logger(__name__)


class ActorRole(str, Enum):
    """Roles carried in the access token."""

    ADMIN = "admin"
    OPERATOR = "operator"
    CUSTOMER = "customer"


class SecurityError(Exception):
    """Base exception for security-related errors."""

    def __init__(self, message: str, code: str, **context):
        super().__init__(message)
        self.code = code
        self.context = context


class TokenError(SecurityError):
    """Exception raised for token-related errors."""

    pass


def create_access_token(
    data: Dict[str, Any],
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token with expiration.

    Args:
        data: Dictionary of claims to encode in the token
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    settings = get_settings()
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta or timedelta(minutes=settings.jwt_access_token_expire_minutes)
    )
    to_encode.update({"exp": expire, "iat": now, "type": "access"})

    encoded_jwt = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )

    logger.debug(
        "Access token created",
        subject=data.get("sub"),
        expires_at=expire.isoformat(),
    )
    return encoded_jwt


def decode_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate a JWT token.

    Args:
        token: JWT token string to decode

    Returns:
        Dictionary of decoded token claims

    Raises:
        TokenError: If token is invalid, expired, or malformed
    """
    if not token:
        raise TokenError("Token cannot be empty", code="EMPTY_TOKEN")

    settings = get_settings()
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError as e:
        logger.warning("Token has expired", error=str(e))
        raise TokenError("Token has expired", code="TOKEN_EXPIRED") from e
    except JWTError as e:
        logger.warning(
            "Invalid token",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise TokenError(
            "Invalid token",
            code="TOKEN_INVALID",
            original_error=str(e),
        ) from e


class Actor(BaseModel):
    """Authenticated caller, built from the ``sub`` and ``role`` claims."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: ActorRole = ActorRole.OPERATOR

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "Actor":
        """
        Build an actor from decoded token claims.

        Raises:
            TokenError: If the subject or role claim is missing or unknown
        """
        subject = claims.get("sub")
        if not subject:
            raise TokenError("Token has no subject", code="TOKEN_NO_SUBJECT")

        try:
            role = ActorRole(claims.get("role", ActorRole.OPERATOR.value))
        except ValueError as e:
            raise TokenError(
                "Token carries an unknown role",
                code="TOKEN_BAD_ROLE",
                role=claims.get("role"),
            ) from e

        return cls(id=str(subject), role=role)
