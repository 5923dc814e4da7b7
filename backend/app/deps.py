from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, Header, Request

from .db import Database, get_db
from .errors import AuthorizationError
from .security import hash_session_token


def _extract_session_token(request: Request, authorization: Optional[str]) -> str:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip()
    cookie_name = request.app.state.settings.session_cookie_name
    cookie_token = request.cookies.get(cookie_name)
    if cookie_token:
        return cookie_token
    raise AuthorizationError("Unauthorized", status_code=401)


def get_session(
    request: Request,
    authorization: Optional[str] = Header(None),
    db: Database = Depends(get_db),
):
    """Resolve the caller's profile from a session minted by the auth service."""
    token = _extract_session_token(request, authorization)
    with db.conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT s.user_id, s.expires_at, s.is_active,
                       u.email, u.role, u.organization_id, u.branch_id, u.is_active AS user_active
                FROM auth_sessions s
                JOIN users u ON u.id = s.user_id
                WHERE s.token_hash = %s
                """,
                (hash_session_token(token),),
            )
            row = cur.fetchone()
    now = datetime.now(timezone.utc)
    if not row or not row["is_active"] or not row["user_active"] or row["expires_at"] < now:
        raise AuthorizationError("Unauthorized", status_code=401)
    return {
        "user_id": str(row["user_id"]),
        "email": row["email"],
        "role": row["role"],
        "organization_id": str(row["organization_id"]) if row["organization_id"] else None,
        "branch_id": str(row["branch_id"]) if row["branch_id"] else None,
    }


def require_roles(*roles: str, detail: str = "Forbidden: Admin access required"):
    allowed = frozenset(roles)

    def _dep(session=Depends(get_session)):
        if session.get("role") not in allowed:
            raise AuthorizationError(detail)
        return session

    return _dep


def require_organization(session=Depends(get_session)):
    if not session.get("organization_id"):
        raise AuthorizationError("User is not linked to an organization")
    return session
