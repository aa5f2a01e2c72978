"""Domain exceptions for RBAC administration.

Authorization denials are not exceptions; they are returned as
:class:`forum_rbac.rbac.types.PermissionDecision` values.
"""


class RBACError(Exception):
    """Base exception for RBAC administration errors."""


class RoleNotFoundError(RBACError):
    """No role matches the requested id or slug."""

    def __init__(self, role: int | str) -> None:
        self.role = role
        super().__init__(f"Role not found: {role}")


class PermissionNotFoundError(RBACError):
    """No permission matches the requested id or slug."""

    def __init__(self, permission: int | str) -> None:
        self.permission = permission
        super().__init__(f"Permission not found: {permission}")


class UserNotFoundError(RBACError):
    """No user matches the requested id."""

    def __init__(self, user_id: int) -> None:
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class RoleValidationError(RBACError):
    """A role mutation was rejected before persistence (cycle, system role, missing parent)."""


class PermissionValidationError(RBACError):
    """A permission definition mutation was rejected (system permission protection)."""


class RBACConfigError(RBACError):
    """The declarative role/permission defaults are inconsistent."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__("RBAC configuration is inconsistent: " + "; ".join(errors))
