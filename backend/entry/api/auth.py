# Admin authentication: org signup, login and "who am I".
# Signup creates the user, the org and an owner membership in one
# transaction and returns a token so the dashboard can start immediately.

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from entry.api.dependencies import get_current_user
from entry.core.config import settings
from entry.core.db import get_db
from entry.core.rate_limit import rate_limit
from entry.core.security import create_access_token, get_password_hash, verify_password
from entry.crud.organizations import create_org_with_owner, list_orgs_for_user
from entry.crud.users import create_user, get_user_by_email
from entry.models.users import User
from entry.schemas.auth import (
    LoginRequest,
    MeResponse,
    OrgSummary,
    SignupRequest,
    SignupResponse,
    TokenResponse,
)


router = APIRouter(prefix="/auth", tags=["auth"])

auth_limiter = rate_limit("auth", settings.AUTH_RATE_LIMIT, settings.AUTH_RATE_WINDOW_SECONDS)


def _token_for(user: User) -> str:
    return create_access_token({"sub": user.email, "user_id": user.id})


@router.post("/signup", response_model=SignupResponse, status_code=status.HTTP_201_CREATED)
def signup(
    payload: SignupRequest,
    db: Session = Depends(get_db),
    _limited=Depends(auth_limiter),
):
    if get_user_by_email(db, payload.email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")
    try:
        user = create_user(
            db,
            email=payload.email,
            password_hash=get_password_hash(payload.password),
            full_name=payload.full_name,
            commit=False,
        )
        org, membership = create_org_with_owner(
            db,
            name=payload.org_name,
            owner_user=user,
            slug=payload.org_slug,
        )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered") from exc
    return SignupResponse(
        access_token=_token_for(user),
        user_id=user.id,
        org=OrgSummary(id=org.id, name=org.name, slug=org.slug, role=membership.role.value),
    )


@router.post("/login", response_model=TokenResponse)
def login(
    payload: LoginRequest,
    db: Session = Depends(get_db),
    _limited=Depends(auth_limiter),
):
    user = get_user_by_email(db, payload.email)
    if user is None or not verify_password(payload.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return TokenResponse(access_token=_token_for(user))


@router.get("/me", response_model=MeResponse)
def me(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    orgs = [
        OrgSummary(id=org.id, name=org.name, slug=org.slug, role=role.value)
        for org, role in list_orgs_for_user(db, current_user.id)
    ]
    return MeResponse(
        id=current_user.id,
        email=current_user.email,
        full_name=current_user.full_name,
        is_platform_owner=current_user.is_platform_owner,
        orgs=orgs,
    )
