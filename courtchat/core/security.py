from datetime import datetime, timedelta, timezone
from uuid import UUID

from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError

from courtchat.config import settings
from courtchat.core.exceptions import AuthenticationError, TokenExpiredError, TokenInvalidError
from courtchat.schemas.user import TokenPayload

ALGORITHM = "HS256"


def create_access_token(user_id: UUID | str, expires_delta: timedelta | None = None) -> str:
    """Issue a token the way the auth service does. Used by tests and seed scripts."""
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(days=settings.ACCESS_TOKEN_EXPIRE_DAYS)
    )
    to_encode = {
        "sub": str(user_id),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> TokenPayload:
    """Verify a token. Raises TokenExpiredError or TokenInvalidError."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
        return TokenPayload(sub=payload["sub"], exp=payload["exp"])
    except ExpiredSignatureError:
        raise TokenExpiredError()
    except (JWTError, KeyError):
        raise TokenInvalidError()


def verify_access_token(token: str) -> UUID:
    """Resolve the subject of a bearer token, raising an AuthenticationError if it does not verify."""
    payload = decode_access_token(token)
    try:
        return UUID(payload.sub)
    except ValueError:
        raise TokenInvalidError()


def user_id_from_token(token: str | None) -> UUID | None:
    """Like verify_access_token, but None for a missing or bad token."""
    if not token:
        return None
    try:
        return verify_access_token(token)
    except AuthenticationError:
        return None
