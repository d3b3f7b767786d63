"""Caller roles and the privileges attached to them."""

from enum import Enum


class Role(Enum):
    """User roles."""
    ADMIN = "admin"
    MANAGER = "manager"
    DEVELOPER = "developer"
    TESTER = "tester"
    DESIGNER = "designer"

    @property
    def is_privileged(self) -> bool:
        """Admins and managers may inspect every project."""
        return self in (Role.ADMIN, Role.MANAGER)

    @classmethod
    def parse(cls, value) -> "Role":
        """Accept a Role or its string value (case-insensitive)."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(role.value for role in cls)
            raise ValueError(f"Unknown role '{value}' (expected one of: {valid})") from None


TEAM_ROLES = frozenset({Role.DEVELOPER, Role.TESTER, Role.DESIGNER})
