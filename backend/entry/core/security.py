# Password hashing and JWT helpers shared by admin and rep auth.
# Admin tokens carry sub/user_id; rep tokens carry rep_id/org_id and
# scope="rep" so one can never be replayed as the other.

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from entry.core.config import settings


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

REP_SCOPE = "rep"


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return pwd_context.verify(plain_password, password_hash)
    except ValueError:
        return False


def create_access_token(data: dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    to_encode = dict(data)
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode["exp"] = expire
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode and verify a token. Raises JWTError on any failure."""
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


def create_rep_token(*, rep_id: int, org_id: int) -> str:
    return create_access_token(
        {"sub": f"rep:{rep_id}", "rep_id": rep_id, "org_id": org_id, "scope": REP_SCOPE},
        expires_delta=timedelta(minutes=settings.REP_TOKEN_EXPIRE_MINUTES),
    )


def decode_rep_token(token: str) -> Optional[dict[str, Any]]:
    try:
        payload = decode_access_token(token)
    except JWTError:
        return None
    if payload.get("scope") != REP_SCOPE or not payload.get("rep_id"):
        return None
    return payload
