from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from config import get_settings

ALGORITHM = "HS256"
PASSWORD_MAX_LEN = 256

#  Use Argon2id (modern, memory-hard)
pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
    # Argon2id settings
    argon2__type="ID",
    argon2__memory_cost=65536,  # 64 MB
    argon2__time_cost=3,
    argon2__parallelism=1,
)

# Verified against when the email is unknown so both login failures cost the same.
_DUMMY_HASH = pwd_context.hash("not-a-real-password")


class InvalidToken(Exception):
    """Raised when a bearer token is malformed, forged or expired."""


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def verify_password_or_dummy(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Verify against the stored hash, or burn one verification when there is none."""
    if hashed_password is None:
        pwd_context.verify(plain_password, _DUMMY_HASH)
        return False
    return verify_password(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    if len(password) > PASSWORD_MAX_LEN:
        raise ValueError("Password too long")
    return pwd_context.hash(password)


def create_access_token(
    data: Dict[str, Any],
    secret_key: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
    algorithm: str = ALGORITHM,
) -> str:
    settings = get_settings()
    if secret_key is None:
        secret_key = settings.secret_key
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.access_token_expire_minutes)

    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode["exp"] = expire

    encoded_jwt = jwt.encode(to_encode, secret_key, algorithm=algorithm)
    return encoded_jwt


def issue_token(user_id: int, secret_key: str, expires_minutes: int) -> str:
    """Mint a session token whose subject is the user id."""
    return create_access_token(
        {"sub": str(user_id)},
        secret_key=secret_key,
        expires_delta=timedelta(minutes=expires_minutes),
    )


def decode_token(token: str, secret_key: str, algorithm: str = ALGORITHM) -> int:
    """Return the user id carried by ``token`` or raise InvalidToken."""
    try:
        payload = jwt.decode(token, secret_key, algorithms=[algorithm])
    except JWTError as exc:
        raise InvalidToken(str(exc)) from exc

    subject = payload.get("sub")
    if subject is None:
        raise InvalidToken("Token has no subject")
    try:
        return int(subject)
    except (TypeError, ValueError) as exc:
        raise InvalidToken("Token subject is not a user id") from exc
