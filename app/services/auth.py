"""Session tokens (JWT) and password hashing."""
import base64
import hashlib
from datetime import datetime, timedelta, timezone
import bcrypt
import jwt
from app.config import get_settings
from app.errors import InvalidToken, TokenExpired

settings = get_settings()


def _pwd_bytes(password: str) -> bytes:
    # bcrypt only reads 72 bytes; the 44-byte digest keeps every character significant
    return base64.b64encode(hashlib.sha256(password.encode("utf-8")).digest())


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(_pwd_bytes(plain), hashed.encode("utf-8"))
    except (ValueError, TypeError, AttributeError):
        return False


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(_pwd_bytes(password), bcrypt.gensalt(rounds=settings.bcrypt_rounds)).decode("utf-8")


# Compared against when the account does not exist, so signin takes the same time either way
_DUMMY_HASH = get_password_hash("dummy-password-for-timing")


def verify_password_or_dummy(plain: str, hashed: str | None) -> bool:
    if hashed is None:
        verify_password(plain, _DUMMY_HASH)
        return False
    return verify_password(plain, hashed)


def access_token_ttl() -> timedelta:
    return timedelta(minutes=settings.jwt_access_token_expire_minutes)


def create_access_token(user_id: int, issued_at: datetime | None = None) -> str:
    iat = issued_at or datetime.now(timezone.utc)
    # PyJWT expects "sub" to be a string; iat keeps sub-second precision for changed_password_after
    payload = {"sub": str(user_id), "iat": iat.timestamp(), "exp": iat + access_token_ttl()}
    raw = jwt.encode(
        payload,
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return raw if isinstance(raw, str) else raw.decode("utf-8")


def decode_token(token: str) -> dict:
    """Decode and verify a session token. Raises TokenExpired or InvalidToken."""
    if not token or not isinstance(token, str):
        raise InvalidToken()
    try:
        return jwt.decode(
            token.strip(),
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "iat", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise TokenExpired()
    except jwt.PyJWTError:
        raise InvalidToken()
