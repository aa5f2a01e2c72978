"""Declarative RBAC defaults: system roles, permissions and their grants.

Seeding (:func:`forum_rbac.rbac.bootstrap.seed_rbac`) reconciles the
database against these definitions.
"""

from dataclasses import dataclass, field
from typing import Any

from forum_rbac.rbac.conditions import CONDITION_KEYS

ALL_PERMISSIONS = "*"

MODULES: tuple[str, ...] = ("topic", "post", "user", "category", "upload")


@dataclass(frozen=True, slots=True)
class RoleDefinition:
    slug: str
    name: str
    description: str
    color: str | None = None
    icon: str | None = None
    is_default: bool = False
    is_displayed: bool = True
    priority: int = 0
    parent_slug: str | None = None


@dataclass(frozen=True, slots=True)
class PermissionDefinition:
    """A system permission and the condition keys an admin may attach to it."""

    slug: str
    name: str
    module: str
    action: str
    supported_conditions: tuple[str, ...] = field(default_factory=tuple)
    description: str | None = None


SYSTEM_ROLES: tuple[RoleDefinition, ...] = (
    RoleDefinition(
        slug="admin",
        name="Administrator",
        description="System administrator with every permission",
        color="#e74c3c",
        icon="Shield",
        priority=100,
    ),
    RoleDefinition(
        slug="user",
        name="Member",
        description="Registered member",
        color="#3498db",
        icon="User",
        is_default=True,
        is_displayed=False,
        priority=10,
    ),
    RoleDefinition(
        slug="guest",
        name="Guest",
        description="Visitor who is not signed in",
        color="#95a5a6",
        icon="UserX",
        is_displayed=False,
        priority=0,
    ),
)

_POSTING = ("categories", "rateLimit", "minPosts", "accountAge", "timeRange")

SYSTEM_PERMISSIONS: tuple[PermissionDefinition, ...] = (
    # Topics
    PermissionDefinition("topic.create", "Create topic", "topic", "create", _POSTING),
    PermissionDefinition("topic.read", "View topic", "topic", "read", ("categories",)),
    PermissionDefinition("topic.update", "Edit topic", "topic", "update", ("own", "categories")),
    PermissionDefinition("topic.delete", "Delete topic", "topic", "delete", ("own", "categories")),
    PermissionDefinition("topic.pin", "Pin topic", "topic", "pin", ("categories",)),
    PermissionDefinition("topic.close", "Close topic", "topic", "close", ("categories",)),
    PermissionDefinition("topic.approve", "Approve topic", "topic", "approve", ("categories",)),
    PermissionDefinition("topic.move", "Move topic", "topic", "move", ("categories",)),
    # Posts
    PermissionDefinition("post.create", "Reply", "post", "create", _POSTING),
    PermissionDefinition("post.read", "View reply", "post", "read", ("categories",)),
    PermissionDefinition("post.update", "Edit reply", "post", "update", ("own",)),
    PermissionDefinition("post.delete", "Delete reply", "post", "delete", ("own", "categories")),
    PermissionDefinition("post.approve", "Approve reply", "post", "approve", ("categories",)),
    # Users
    PermissionDefinition("user.read", "View user", "user", "read"),
    PermissionDefinition("user.update", "Edit user", "user", "update", ("own",)),
    PermissionDefinition("user.delete", "Delete user", "user", "delete"),
    PermissionDefinition("user.ban", "Ban user", "user", "ban"),
    PermissionDefinition("user.role.assign", "Assign roles", "user", "role.assign"),
    # Categories
    PermissionDefinition("category.create", "Create category", "category", "create"),
    PermissionDefinition("category.read", "View category", "category", "read"),
    PermissionDefinition("category.update", "Edit category", "category", "update"),
    PermissionDefinition("category.delete", "Delete category", "category", "delete"),
    # Uploads
    PermissionDefinition(
        "upload.create",
        "Upload file",
        "upload",
        "create",
        ("uploadTypes", "maxFileSize", "maxFilesPerDay", "allowedFileTypes", "rateLimit"),
    ),
)

# Role slug -> permission slugs. ``"*"`` stands for every system permission.
ROLE_PERMISSION_MAP: dict[str, list[str]] = {
    "admin": [ALL_PERMISSIONS],
    "user": [
        "topic.create",
        "topic.read",
        "topic.update",
        "topic.delete",
        "post.create",
        "post.read",
        "post.update",
        "post.delete",
        "user.read",
        "user.update",
        "category.read",
        "upload.create",
    ],
    "guest": [
        "topic.read",
        "post.read",
        "user.read",
        "category.read",
    ],
}

# Role slug -> permission slug -> conditions narrowing that grant.
ROLE_PERMISSION_CONDITIONS: dict[str, dict[str, dict[str, Any]]] = {
    "user": {
        "topic.update": {"own": True},
        "topic.delete": {"own": True},
        "post.update": {"own": True},
        "post.delete": {"own": True},
        "user.update": {"own": True},
        "upload.create": {"uploadTypes": ["avatar"]},
    },
}

# Keys an admin UI may offer that the evaluator does not check yet.
EDITOR_ONLY_CONDITION_KEYS = frozenset({"minPosts", "maxFilesPerDay"})


def expand_permission_slugs(slugs: list[str]) -> list[str]:
    """Expand ``["*"]`` to every system permission slug."""
    if slugs == [ALL_PERMISSIONS]:
        return [p.slug for p in SYSTEM_PERMISSIONS]
    return list(slugs)


def desired_role_permissions() -> dict[str, dict[str, dict[str, Any] | None]]:
    """Build the desired-state map ``{role_slug: {permission_slug: conditions}}`` from the defaults."""
    desired: dict[str, dict[str, dict[str, Any] | None]] = {}
    for role_slug, slugs in ROLE_PERMISSION_MAP.items():
        conditions = ROLE_PERMISSION_CONDITIONS.get(role_slug, {})
        desired[role_slug] = {slug: conditions.get(slug) for slug in expand_permission_slugs(slugs)}
    return desired


def validate_rbac_config(
    roles: tuple[RoleDefinition, ...] = SYSTEM_ROLES,
    permissions: tuple[PermissionDefinition, ...] = SYSTEM_PERMISSIONS,
    role_permission_map: dict[str, list[str]] | None = None,
    role_permission_conditions: dict[str, dict[str, dict[str, Any]]] | None = None,
) -> list[str]:
    """Return a list of inconsistencies in the defaults (empty when valid)."""
    role_permission_map = ROLE_PERMISSION_MAP if role_permission_map is None else role_permission_map
    role_permission_conditions = (
        ROLE_PERMISSION_CONDITIONS if role_permission_conditions is None else role_permission_conditions
    )

    errors: list[str] = []
    permission_slugs = {p.slug for p in permissions}
    role_slugs = {r.slug for r in roles}
    known_condition_keys = CONDITION_KEYS | EDITOR_ONLY_CONDITION_KEYS

    for perm in permissions:
        for key in perm.supported_conditions:
            if key not in known_condition_keys:
                errors.append(f'Permission "{perm.slug}" references unknown condition type "{key}"')
        if perm.module not in MODULES:
            errors.append(f'Permission "{perm.slug}" has unknown module "{perm.module}"')

    for role_slug, slugs in role_permission_map.items():
        if role_slug not in role_slugs:
            errors.append(f'ROLE_PERMISSION_MAP defines unknown role "{role_slug}"')
        if slugs == [ALL_PERMISSIONS]:
            continue
        for slug in slugs:
            if slug not in permission_slugs:
                errors.append(f'ROLE_PERMISSION_MAP.{role_slug} references unknown permission "{slug}"')

    for role_slug, conditions in role_permission_conditions.items():
        if role_slug not in role_slugs:
            errors.append(f'ROLE_PERMISSION_CONDITIONS defines unknown role "{role_slug}"')
        for slug, condition in conditions.items():
            if slug not in permission_slugs:
                errors.append(f'ROLE_PERMISSION_CONDITIONS.{role_slug} references unknown permission "{slug}"')
            for key in condition:
                if key not in CONDITION_KEYS:
                    errors.append(f'ROLE_PERMISSION_CONDITIONS.{role_slug}.{slug} uses unknown condition "{key}"')

    for role in roles:
        if role.parent_slug is not None and role.parent_slug not in role_slugs:
            errors.append(f'Role "{role.slug}" has unknown parent "{role.parent_slug}"')

    return errors
