"""Value types exchanged by the permission engine."""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from forum_rbac.rbac.conditions import Condition, dump_conditions, parse_conditions


class DenialCode(enum.StrEnum):
    """Machine-readable reason codes for a denied permission check."""

    NO_PERMISSION = "NO_PERMISSION"
    NOT_OWNER = "NOT_OWNER"
    CATEGORY_NOT_ALLOWED = "CATEGORY_NOT_ALLOWED"
    ACCOUNT_TOO_NEW = "ACCOUNT_TOO_NEW"
    TIME_NOT_ALLOWED = "TIME_NOT_ALLOWED"
    RATE_LIMITED = "RATE_LIMITED"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    FILE_TYPE_NOT_ALLOWED = "FILE_TYPE_NOT_ALLOWED"
    UPLOAD_TYPE_NOT_ALLOWED = "UPLOAD_TYPE_NOT_ALLOWED"
    USER_BANNED = "USER_BANNED"


@dataclass(frozen=True, slots=True)
class PermissionDecision:
    """Outcome of a permission check. Denials carry a code and a reason."""

    granted: bool
    code: DenialCode | None = None
    reason: str | None = None

    @classmethod
    def grant(cls) -> "PermissionDecision":
        return cls(granted=True)

    @classmethod
    def deny(cls, code: DenialCode, reason: str) -> "PermissionDecision":
        return cls(granted=False, code=code, reason=reason)

    def __bool__(self) -> bool:
        return self.granted


GRANTED = PermissionDecision.grant()


@dataclass(frozen=True, slots=True)
class PermissionContext:
    """Request-specific facts checked against a grant's conditions.

    Every field is optional; a condition whose field is ``None`` is skipped.
    ``file_size`` is in bytes.
    """

    owner_id: int | None = None
    category_id: int | None = None
    user_created_at: datetime | None = None
    file_size: int | None = None
    file_type: str | None = None
    upload_type: str | None = None


@dataclass(frozen=True, slots=True)
class UserRoleInfo:
    """A role currently in effect for a user."""

    id: int
    slug: str
    name: str
    color: str | None
    icon: str | None
    priority: int
    is_displayed: bool
    parent_id: int | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "color": self.color,
            "icon": self.icon,
            "priority": self.priority,
            "is_displayed": self.is_displayed,
            "parent_id": self.parent_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserRoleInfo":
        return cls(**data)


@dataclass(frozen=True, slots=True)
class PermissionGrant:
    """A permission in a user's aggregated set, with the winning role's conditions."""

    slug: str
    module: str
    action: str
    role_id: int
    conditions: tuple[Condition, ...] | None = None

    @property
    def is_conditional(self) -> bool:
        return self.conditions is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "slug": self.slug,
            "module": self.module,
            "action": self.action,
            "role_id": self.role_id,
            "conditions": dump_conditions(self.conditions),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PermissionGrant":
        return cls(
            slug=data["slug"],
            module=data["module"],
            action=data["action"],
            role_id=data["role_id"],
            conditions=parse_conditions(data.get("conditions")),
        )


@dataclass(frozen=True, slots=True)
class DisplayRole:
    """The role shown next to a user's name."""

    slug: str
    name: str
    color: str | None
    icon: str | None


@dataclass(frozen=True, slots=True)
class CategoryPermissions:
    """Coarse per-category capabilities used to render forum category pages."""

    can_view: bool = False
    can_create: bool = False
    can_reply: bool = False
    can_moderate: bool = False


@dataclass(frozen=True, slots=True)
class UserAccessProfile:
    """A user's roles and permissions, as attached to the authenticated user."""

    user_id: int
    roles: list[UserRoleInfo] = field(default_factory=list)
    permissions: list[str] = field(default_factory=list)
    display_role: DisplayRole | None = None
    is_admin: bool = False
    is_moderator: bool = False


@dataclass(frozen=True, slots=True)
class BanStatus:
    """Whether a user is banned right now; ``until`` is ``None`` for a permanent ban."""

    is_banned: bool
    reason: str | None = None
    until: datetime | None = None

    @property
    def message(self) -> str:
        """Human-readable explanation shown to a banned user."""
        parts = ["Your account is banned"]
        if self.until is not None:
            parts.append(f"until {self.until.isoformat()}")
        if self.reason:
            parts.append(f"reason: {self.reason}")
        return ", ".join(parts)


NOT_BANNED = BanStatus(is_banned=False)
