from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..branding import clean_subdomain, normalize_brand_color, normalize_time, slugify, validate_subdomain
from ..db import Database, get_db
from ..deps import get_session
from ..errors import AuthorizationError, NotFoundError, ValidationError
from ..logs import json_log
from ..validation import is_admin, is_superadmin, parse_uuid_required

router = APIRouter(prefix="/organizations", tags=["organizations"])

_ORG_COLUMNS = """
    id, name, slug, subdomain, logo_url, brand_color, business_type,
    opening_time, closing_time, created_at, updated_at
"""


class OrganizationUpdateIn(BaseModel):
    organization_id: str
    name: str
    logo_url: Optional[str] = None
    brand_color: Optional[str] = None
    business_type: Optional[str] = None
    opening_time: Optional[str] = None
    closing_time: Optional[str] = None
    subdomain: Optional[str] = None


@router.get("/by-subdomain")
def get_by_subdomain(subdomain: Optional[str] = Query(None), db: Database = Depends(get_db)):
    # Public lookup used to brand the login page; "not found" is a normal answer.
    if subdomain is None or not subdomain.strip():
        raise ValidationError("Subdomain is required", field="subdomain")
    sub = clean_subdomain(subdomain)
    with db.conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, name, logo_url, brand_color, subdomain
                FROM organizations
                WHERE subdomain = %s
                """,
                (sub,),
            )
            org = cur.fetchone()
    if not org:
        json_log("info", "organizations.subdomain_not_found", subdomain=sub)
    return {"organization": org}


@router.put("/update")
def update_organization(data: OrganizationUpdateIn, session=Depends(get_session), db: Database = Depends(get_db)):
    if not is_superadmin(session) and not is_admin(session):
        raise AuthorizationError("Forbidden: Admin access required")

    org_id = parse_uuid_required(data.organization_id, "organization_id")
    name = (data.name or "").strip()
    if not name:
        raise ValidationError("organization_id and name are required", field="name")

    # Tenant admins only manage their own organization.
    if not is_superadmin(session) and session.get("organization_id") != org_id:
        raise AuthorizationError("Forbidden: You can only update your own organization")

    slug = slugify(name)
    if not slug:
        raise ValidationError("name must contain letters or digits", field="name")

    payload = data.model_dump(exclude_unset=True)
    set_parts = ["name = %s", "slug = %s"]
    params: list[object] = [name, slug]

    for key in ("logo_url", "business_type"):
        if key in payload:
            set_parts.append(f"{key} = %s")
            params.append((payload.get(key) or "").strip() or None)

    if "brand_color" in payload:
        set_parts.append("brand_color = %s")
        params.append(normalize_brand_color(payload.get("brand_color")))

    for key in ("opening_time", "closing_time"):
        if key in payload:
            set_parts.append(f"{key} = %s")
            params.append(normalize_time(payload.get(key), key))

    subdomain = None
    if "subdomain" in payload:
        subdomain = validate_subdomain(payload.get("subdomain"))
        set_parts.append("subdomain = %s")
        params.append(subdomain)

    with db.conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                if subdomain:
                    cur.execute(
                        """
                        SELECT id
                        FROM organizations
                        WHERE subdomain = %s AND id <> %s
                        LIMIT 1
                        """,
                        (subdomain, org_id),
                    )
                    if cur.fetchone():
                        raise ValidationError("Subdomain already taken", field="subdomain")

                # Slug collisions surface as UniqueViolation -> 409.
                cur.execute(
                    f"""
                    UPDATE organizations
                    SET {", ".join(set_parts)}, updated_at = now()
                    WHERE id = %s
                    RETURNING {_ORG_COLUMNS}
                    """,
                    (*params, org_id),
                )
                org = cur.fetchone()
                if not org:
                    raise NotFoundError("Organization not found", field="organization_id")

    json_log("info", "organizations.updated", organization_id=org_id, user_id=session["user_id"])
    return {"success": True, "organization": org}
