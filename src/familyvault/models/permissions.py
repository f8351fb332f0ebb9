"""
User permission model.

The identity provider resolves a user to a role; ``create_user_permissions``
expands the role into the permission set the access control engine consumes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import ValidationError
from .media import Visibility, normalize_tags


class Role(str, Enum):
    ADMIN = "admin"
    FAMILY = "family"
    EXTENDED_FAMILY = "extended-family"
    FRIEND = "friend"
    GUEST = "guest"


@dataclass(frozen=True)
class PermissionSet:
    can_view: frozenset[Visibility] = frozenset()
    can_upload: bool = False
    can_tag: bool = False
    can_share: frozenset[Visibility] = frozenset()
    can_delete: bool = False
    can_manage_users: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "canView": sorted(v.value for v in self.can_view),
            "canUpload": self.can_upload,
            "canTag": self.can_tag,
            "canShare": sorted(v.value for v in self.can_share),
            "canDelete": self.can_delete,
            "canManageUsers": self.can_manage_users,
        }


@dataclass
class CustomAccess:
    """Per-user overrides layered on top of the role defaults."""

    allowed_tags: list[str] = field(default_factory=list)
    denied_tags: list[str] = field(default_factory=list)
    allowed_users: list[str] = field(default_factory=list)
    restricted_users: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.allowed_tags = normalize_tags(self.allowed_tags)
        self.denied_tags = normalize_tags(self.denied_tags)
        self.allowed_users = list(dict.fromkeys(self.allowed_users or []))
        self.restricted_users = list(dict.fromkeys(self.restricted_users or []))

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CustomAccess":
        data = data or {}
        return cls(
            allowed_tags=data.get("allowedTags") or data.get("allowed_tags") or [],
            denied_tags=data.get("deniedTags") or data.get("denied_tags") or [],
            allowed_users=data.get("allowedUsers") or data.get("allowed_users") or [],
            restricted_users=data.get("restrictedUsers") or data.get("restricted_users") or [],
        )


@dataclass
class UserPermissions:
    user_id: str
    role: Role
    permissions: PermissionSet
    custom_access: CustomAccess = field(default_factory=CustomAccess)

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


_ALL_LEVELS = frozenset(Visibility)

ROLE_PERMISSIONS: dict[Role, PermissionSet] = {
    Role.ADMIN: PermissionSet(
        can_view=_ALL_LEVELS,
        can_upload=True,
        can_tag=True,
        can_share=_ALL_LEVELS,
        can_delete=True,
        can_manage_users=True,
    ),
    Role.FAMILY: PermissionSet(
        can_view=frozenset({Visibility.PUBLIC, Visibility.FAMILY}),
        can_upload=True,
        can_tag=True,
        can_share=frozenset({Visibility.PUBLIC, Visibility.FAMILY}),
    ),
    Role.EXTENDED_FAMILY: PermissionSet(
        can_view=frozenset({Visibility.PUBLIC, Visibility.EXTENDED_FAMILY}),
        can_share=frozenset({Visibility.PUBLIC}),
    ),
    Role.FRIEND: PermissionSet(
        can_view=frozenset({Visibility.PUBLIC}),
        can_share=frozenset({Visibility.PUBLIC}),
    ),
    # Guests see nothing until someone grants them records explicitly
    Role.GUEST: PermissionSet(),
}


def parse_role(role: Role | str) -> Role:
    """
    Parse a role name.

    Raises:
        ValidationError: If the role is not recognized
    """
    try:
        return Role(role)
    except ValueError as e:
        raise ValidationError(
            f"Unknown role: {role!r}",
            code="unknown_role",
            details={"role": str(role), "valid_roles": [r.value for r in Role]},
        ) from e


def create_user_permissions(
    user_id: str,
    role: Role | str,
    custom_access: CustomAccess | dict[str, Any] | None = None,
) -> UserPermissions:
    """
    Build the permission set of a user from their role.

    Args:
        user_id: Identity provider user ID
        role: Role name
        custom_access: Optional per-user overrides

    Returns:
        UserPermissions for the access control engine

    Raises:
        ValidationError: If the role is unknown
    """
    resolved = parse_role(role)
    if not isinstance(custom_access, CustomAccess):
        custom_access = CustomAccess.from_dict(custom_access)
    return UserPermissions(
        user_id=user_id,
        role=resolved,
        permissions=ROLE_PERMISSIONS[resolved],
        custom_access=custom_access,
    )
