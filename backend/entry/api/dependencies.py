"""
Shared FastAPI dependencies: admin user, rep, platform owner and cron auth.
"""

import hmac

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.orm import Session

from entry.core.config import settings
from entry.core.db import get_db
from entry.core.security import REP_SCOPE, decode_access_token, decode_rep_token
from entry.crud.users import get_user
from entry.models.enums import RepStatusEnum
from entry.models.reps import Rep
from entry.models.users import User


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

_CREDENTIALS_ERROR = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Could not validate credentials",
    headers={"WWW-Authenticate": "Bearer"},
)


def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    if not token:
        raise _CREDENTIALS_ERROR
    try:
        payload = decode_access_token(token)
    except JWTError as exc:
        raise _CREDENTIALS_ERROR from exc
    if payload.get("scope") == REP_SCOPE:
        raise _CREDENTIALS_ERROR
    user_id = payload.get("user_id")
    if not user_id:
        raise _CREDENTIALS_ERROR
    user = get_user(db, int(user_id))
    if user is None:
        raise _CREDENTIALS_ERROR
    return user


def require_platform_owner():
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if not current_user.is_platform_owner:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Platform owner access required")
        return current_user

    return dependency


def get_current_rep(
    token: str | None = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> Rep:
    if not token:
        raise _CREDENTIALS_ERROR
    payload = decode_rep_token(token)
    if payload is None:
        raise _CREDENTIALS_ERROR
    rep = (
        db.query(Rep)
        .filter(Rep.id == int(payload["rep_id"]), Rep.org_id == int(payload.get("org_id") or 0))
        .first()
    )
    if rep is None:
        raise _CREDENTIALS_ERROR
    if rep.status != RepStatusEnum.ACTIVE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Rep account is not active")
    return rep


def require_cron_secret(request: Request) -> None:
    """Scheduler calls send `Authorization: Bearer <CRON_SECRET>`."""
    if not settings.CRON_SECRET:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Cron is not configured")
    auth = request.headers.get("Authorization") or ""
    expected = f"Bearer {settings.CRON_SECRET}"
    if not hmac.compare_digest(auth.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
