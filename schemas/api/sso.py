"""Pydantic schemas for identity-provider and forum API responses."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class IdentityUser(BaseModel):
    """User record returned by the identity provider's ``user`` endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    email: str = ""
    firstName: str = Field(default="", alias="first-name")
    lastName: str = Field(default="", alias="last-name")


class IdentityGroup(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str


class IdentityGroupList(BaseModel):
    model_config = ConfigDict(extra="ignore")

    groups: List[IdentityGroup] = Field(default_factory=list)


class IdentitySessionUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str


class IdentitySession(BaseModel):
    """Session validation response for a cookie token."""

    model_config = ConfigDict(extra="ignore")

    token: str
    user: IdentitySessionUser


class IdentityCookieConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    domain: Optional[str] = None
    secure: Optional[bool] = None


class ForumGroup(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    name: str


class ForumUser(BaseModel):
    """User record returned after an SSO sync."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    username: str
    groups: List[ForumGroup] = Field(default_factory=list)

    @property
    def group_names(self) -> List[str]:
        return [group.name for group in self.groups]


__all__ = [
    "ForumGroup",
    "ForumUser",
    "IdentityCookieConfig",
    "IdentityGroup",
    "IdentityGroupList",
    "IdentitySession",
    "IdentitySessionUser",
    "IdentityUser",
]
