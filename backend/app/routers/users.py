from typing import Optional

from fastapi import APIRouter, Depends
from psycopg.errors import UniqueViolation  # type: ignore
from pydantic import AliasChoices, BaseModel, Field

from ..db import Database, get_db
from ..deps import require_roles
from ..errors import ConflictError, ValidationError
from ..logs import json_log
from ..security import hash_password
from ..tenancy import assert_branch
from ..validation import ADMIN_ROLES, AssignableRole, parse_uuid_optional

router = APIRouter(prefix="/users", tags=["users"])


class UserIn(BaseModel):
    email: str
    password: str
    # Older clients send camelCase.
    full_name: Optional[str] = Field(None, validation_alias=AliasChoices("full_name", "fullName"))
    role: Optional[AssignableRole] = None
    branch_id: Optional[str] = None


@router.post("/create")
def create_user(data: UserIn, admin=Depends(require_roles(*ADMIN_ROLES)), db: Database = Depends(get_db)):
    email = (data.email or "").strip().lower()
    password = data.password or ""
    if not email or not password:
        raise ValidationError("Email and password are required")
    org_id = admin.get("organization_id")
    if not org_id:
        raise ValidationError("Admin is not linked to an organization")
    role = data.role or "staff"
    branch_id = parse_uuid_optional(data.branch_id, "branch_id")

    with db.conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                assert_branch(cur, org_id, branch_id)
                try:
                    cur.execute(
                        """
                        INSERT INTO users
                          (id, email, hashed_password, full_name, role, organization_id, branch_id)
                        VALUES
                          (gen_random_uuid(), %s, %s, %s, %s, %s, %s)
                        RETURNING id, email
                        """,
                        (email, hash_password(password), (data.full_name or "").strip() or None, role, org_id, branch_id),
                    )
                except UniqueViolation:
                    raise ConflictError("A user with this email already exists", field="email")
                row = cur.fetchone()

    json_log("info", "users.created", user_id=row["id"], role=role, organization_id=org_id, created_by=admin["user_id"])
    return {"success": True, "user": {"id": row["id"], "email": row["email"]}}
