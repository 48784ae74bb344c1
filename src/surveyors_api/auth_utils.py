import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from src.surveyors_api.config import Settings, get_settings

_EXPIRES_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_EXPIRES_UNITS = {"": "seconds", "s": "seconds", "m": "minutes", "h": "hours", "d": "days"}

_contexts: Dict[int, CryptContext] = {}


class InvalidToken(Exception):
    """Token signature, format or claims are not acceptable."""


class TokenExpired(Exception):
    """Token was valid but its exp claim has passed."""


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    email: str


def _pwd_context(rounds: int) -> CryptContext:
    context = _contexts.get(rounds)
    if context is None:
        context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)
        _contexts[rounds] = context
    return context


# PUBLIC_INTERFACE
def parse_expires_in(value: str) -> timedelta:
    """Turn '24h', '30m', '7d', '90s' or a bare number of seconds into a timedelta."""
    m = _EXPIRES_RE.match(value or "")
    if not m:
        raise ValueError(f"Unsupported expiry '{value}'")
    amount, unit = m.groups()
    return timedelta(**{_EXPIRES_UNITS[unit]: int(amount)})


# PUBLIC_INTERFACE
def hash_password(password: str, settings: Optional[Settings] = None) -> str:
    """Hash a plaintext password (salted bcrypt)."""
    settings = settings or get_settings()
    return _pwd_context(settings.bcrypt_rounds).hash(password)


# PUBLIC_INTERFACE
def verify_password(password: str, password_hash: str, settings: Optional[Settings] = None) -> bool:
    """Verify a plaintext password against a stored hash."""
    settings = settings or get_settings()
    return _pwd_context(settings.bcrypt_rounds).verify(password, password_hash)


# PUBLIC_INTERFACE
def issue_token(user_id: int, email: str, settings: Optional[Settings] = None) -> str:
    """Create a signed access token for a user."""
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "userId": user_id,
        "email": email,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": now,
        "exp": now + parse_expires_in(settings.jwt_expires_in),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


# PUBLIC_INTERFACE
def verify_token(token: str, settings: Optional[Settings] = None) -> TokenClaims:
    """
    Decode and check an access token.

    Raises TokenExpired when the token is past its exp claim and InvalidToken
    for anything else that makes it unusable (signature, format, issuer,
    audience, missing userId).
    """
    settings = settings or get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        )
    except ExpiredSignatureError as exc:
        raise TokenExpired("Token expired") from exc
    except JWTError as exc:
        raise InvalidToken("Invalid token") from exc

    user_id = payload.get("userId")
    email = payload.get("email")
    if isinstance(user_id, bool) or not isinstance(user_id, int) or not email:
        raise InvalidToken("Invalid token payload")
    return TokenClaims(user_id=user_id, email=str(email))
