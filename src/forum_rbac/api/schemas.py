"""Pydantic schemas for RBAC API payloads."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from forum_rbac.rbac.admin import GrantSpec
from forum_rbac.rbac.conditions import normalize_conditions
from forum_rbac.rbac.types import UserAccessProfile

# --- Denials ---


class DenialDetail(BaseModel):
    """Body of a 403 response."""

    code: str
    reason: str


# --- Roles and permissions ---


class PermissionResponse(BaseModel):
    """A single permission."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    slug: str
    name: str
    description: str | None
    module: str
    action: str
    is_system: bool


class RoleResponse(BaseModel):
    """A role definition."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    slug: str
    name: str
    description: str | None
    color: str | None
    icon: str | None
    parent_id: int | None
    is_system: bool
    is_default: bool
    is_displayed: bool
    priority: int


class CreateRoleRequest(BaseModel):
    """Request to create a custom role."""

    slug: str = Field(..., min_length=1, max_length=50, pattern=r"^[a-z0-9_-]+$")
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None
    color: str | None = Field(default=None, max_length=20)
    icon: str | None = Field(default=None, max_length=50)
    parent_id: int | None = None
    is_default: bool = False
    is_displayed: bool = True
    priority: int = 0


class UpdateRoleRequest(BaseModel):
    """Request to update a role. Only fields that are set are changed."""

    slug: str | None = Field(default=None, min_length=1, max_length=50, pattern=r"^[a-z0-9_-]+$")
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = None
    color: str | None = Field(default=None, max_length=20)
    icon: str | None = Field(default=None, max_length=50)
    parent_id: int | None = None
    is_default: bool | None = None
    is_displayed: bool | None = None
    priority: int | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class RolePermissionGrant(BaseModel):
    """One grant in a set-role-permissions request."""

    permission_id: int
    conditions: dict[str, Any] | None = None

    @field_validator("conditions")
    @classmethod
    def _canonical_conditions(cls, value: dict[str, Any] | None) -> dict[str, Any] | None:
        return normalize_conditions(value)

    def to_spec(self) -> GrantSpec:
        return GrantSpec(permission_id=self.permission_id, conditions=self.conditions)


class AssignRoleRequest(BaseModel):
    """Request to assign a role, optionally until *expires_at*."""

    role_id: int
    expires_at: datetime | None = None


# --- Access profile ---


class DisplayRoleResponse(BaseModel):
    slug: str
    name: str
    color: str | None
    icon: str | None


class AccessProfileResponse(BaseModel):
    """What a user currently is and may do."""

    user_id: int
    roles: list[str]
    permissions: list[str]
    display_role: DisplayRoleResponse | None
    is_admin: bool
    is_moderator: bool

    @classmethod
    def from_profile(cls, profile: UserAccessProfile) -> "AccessProfileResponse":
        display = profile.display_role
        return cls(
            user_id=profile.user_id,
            roles=[role.slug for role in profile.roles],
            permissions=sorted(profile.permissions),
            display_role=(
                DisplayRoleResponse(slug=display.slug, name=display.name, color=display.color, icon=display.icon)
                if display is not None
                else None
            ),
            is_admin=profile.is_admin,
            is_moderator=profile.is_moderator,
        )
