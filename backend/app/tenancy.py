from typing import Optional

from .errors import AuthorizationError, ValidationError
from .validation import is_admin


def load_profile(cur, user_id: str) -> Optional[dict]:
    cur.execute(
        """
        SELECT id, email, role, organization_id, branch_id
        FROM users
        WHERE id = %s AND is_active = true
        """,
        (user_id,),
    )
    row = cur.fetchone()
    if not row:
        return None
    return {
        "user_id": str(row["id"]),
        "email": row["email"],
        "role": row["role"],
        "organization_id": str(row["organization_id"]) if row["organization_id"] else None,
        "branch_id": str(row["branch_id"]) if row["branch_id"] else None,
    }


def load_member_profile(cur, user_id: str) -> dict:
    """Profile of an acting user who must belong to an organization."""
    profile = load_profile(cur, user_id)
    if not profile or not profile["organization_id"]:
        raise ValidationError("User is not linked to an organization", field="user_id")
    return profile


def assert_branch(cur, organization_id: str, branch_id: Optional[str], field_name: str = "branch_id"):
    if not branch_id:
        return
    cur.execute(
        """
        SELECT 1
        FROM branches
        WHERE organization_id = %s AND id = %s
        """,
        (organization_id, branch_id),
    )
    if not cur.fetchone():
        raise ValidationError(f"{field_name} does not belong to this organization", field=field_name)


def resolve_branch(profile: dict, requested: Optional[str]) -> Optional[str]:
    """
    Branch a user acts on: the requested one, else their own.

    Users pinned to a branch (anyone but tenant admins) cannot act on another branch.
    """
    own = profile.get("branch_id")
    if requested and own and not is_admin(profile) and requested != own:
        raise AuthorizationError("You can only work with your own branch")
    return requested or own
