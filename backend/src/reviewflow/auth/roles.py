"""Principal roles and permission hierarchy for ReviewFlow.

Role Hierarchy (descending permissions):
- ADMIN: Stage configuration, archiving, everything below
- REVIEWER: Workflow actions (assign, approve, fail, revise, reopen)
- CONTRIBUTOR: Uploads and project filing
- VIEWER: Read-only access to files, history and stages

Permission Matrix:
┌──────────────────────┬───────┬──────────┬─────────────┬────────┐
│ Action               │ ADMIN │ REVIEWER │ CONTRIBUTOR │ VIEWER │
├──────────────────────┼───────┼──────────┼─────────────┼────────┤
│ Configure Stages     │   ✓   │          │             │        │
│ Archive Files        │   ✓   │          │             │        │
│ Apply Review Actions │   ✓   │    ✓     │             │        │
│ Upload / File        │   ✓   │    ✓     │      ✓      │        │
│ View Files & History │   ✓   │    ✓     │      ✓      │   ✓    │
└──────────────────────┴───────┴──────────┴─────────────┴────────┘
"""

from enum import Enum


class UserRole(str, Enum):
    """Principal roles as carried in the token's role claim."""
    ADMIN = "ADMIN"
    REVIEWER = "REVIEWER"
    CONTRIBUTOR = "CONTRIBUTOR"
    VIEWER = "VIEWER"


# Role hierarchy: Each role includes permissions of all roles below it
ROLE_HIERARCHY = {
    UserRole.ADMIN: {UserRole.ADMIN, UserRole.REVIEWER, UserRole.CONTRIBUTOR, UserRole.VIEWER},
    UserRole.REVIEWER: {UserRole.REVIEWER, UserRole.CONTRIBUTOR, UserRole.VIEWER},
    UserRole.CONTRIBUTOR: {UserRole.CONTRIBUTOR, UserRole.VIEWER},
    UserRole.VIEWER: {UserRole.VIEWER},
}


def has_permission(user_role: UserRole, required_role: UserRole) -> bool:
    """Check if a role satisfies a minimum required role.

    Examples:
        >>> has_permission(UserRole.ADMIN, UserRole.REVIEWER)
        True
        >>> has_permission(UserRole.VIEWER, UserRole.CONTRIBUTOR)
        False
    """
    return required_role in ROLE_HIERARCHY.get(user_role, set())
