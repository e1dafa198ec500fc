"""Pydantic schemas for backend envelopes"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from policy_portal.domain.models import UserProfile


class AuthEnvelope(BaseModel):
    """Token + profile envelope returned by login, register and refresh"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    access_token: str = Field(..., alias="accessToken", min_length=1)
    refresh_token: str = Field(..., alias="refreshToken", min_length=1)
    email: str = Field(..., min_length=1)
    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")
    role: Optional[str] = None
    level: Optional[str] = None
    policy_count: int = Field(0, alias="policyCount", ge=0)

    def to_profile(self) -> UserProfile:
        return UserProfile(
            email=self.email,
            first_name=self.first_name or "",
            last_name=self.last_name or "",
            role=self.role or "USER",
            level=self.level or "WOODEN",
            policy_count=self.policy_count,
        )


class RefreshRequest(BaseModel):
    """Body for POST /session/refresh"""

    model_config = ConfigDict(populate_by_name=True)

    email: str
    refresh_token: str = Field(..., alias="refreshToken")


class LoginRequest(BaseModel):
    """Body for POST /session/login"""

    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
