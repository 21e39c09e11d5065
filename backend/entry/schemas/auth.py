from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    full_name: Optional[str] = None
    org_name: str = Field(..., min_length=1, max_length=120)
    org_slug: Optional[str] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.lower()


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class OrgSummary(BaseModel):
    id: int
    name: str
    slug: str
    role: str


class SignupResponse(TokenResponse):
    user_id: int
    org: OrgSummary


class MeResponse(BaseModel):
    id: int
    email: str
    full_name: Optional[str] = None
    is_platform_owner: bool
    orgs: list[OrgSummary]
