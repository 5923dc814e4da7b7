import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..db import Database, get_db
from ..errors import AuthorizationError, ValidationError
from ..logs import json_log
from ..stock_ledger import current_quantity
from ..tenancy import assert_branch, load_member_profile
from ..validation import is_admin, is_superadmin, parse_uuid_optional, parse_uuid_required, require_positive

router = APIRouter(prefix="/transfers", tags=["transfers"])

TRANSFER_LIST_LIMIT = 200


class TransferIn(BaseModel):
    user_id: str
    item_id: str
    from_branch_id: str
    to_branch_id: str
    quantity: Decimal
    date: datetime.date
    notes: Optional[str] = None


def _transfer_actor(cur, user_id: str) -> dict:
    profile = load_member_profile(cur, user_id)
    if is_superadmin(profile):
        raise AuthorizationError("Superadmins cannot view transfers")
    return profile


def _effective_branch(profile: dict) -> Optional[str]:
    # Users without a branch see the whole organization.
    return profile["branch_id"] or None


@router.get("/list")
def list_transfers(
    user_id: Optional[str] = Query(None),
    branch_id: Optional[str] = Query(None),
    from_date: Optional[datetime.date] = Query(None),
    to_date: Optional[datetime.date] = Query(None),
    db: Database = Depends(get_db),
):
    if not user_id:
        raise ValidationError("user_id is required", field="user_id")
    uid = parse_uuid_required(user_id, "user_id")
    requested_branch = parse_uuid_optional(branch_id, "branch_id")

    with db.conn() as conn:
        with conn.cursor() as cur:
            profile = _transfer_actor(cur, uid)
            sql = """
                SELECT t.id, t.organization_id, t.item_id, t.from_branch_id, t.to_branch_id,
                       t.quantity, t.date, t.notes, t.performed_by, t.created_at,
                       i.name AS item_name, i.unit AS item_unit,
                       bf.name AS from_branch_name, bt.name AS to_branch_name,
                       u.email AS performed_by_email, u.full_name AS performed_by_name
                FROM branch_transfers t
                LEFT JOIN items i ON i.id = t.item_id
                LEFT JOIN branches bf ON bf.id = t.from_branch_id
                LEFT JOIN branches bt ON bt.id = t.to_branch_id
                LEFT JOIN users u ON u.id = t.performed_by
                WHERE t.organization_id = %s
            """
            params: list = [profile["organization_id"]]
            if from_date:
                sql += " AND t.date >= %s"
                params.append(from_date)
            if to_date:
                sql += " AND t.date <= %s"
                params.append(to_date)
            # Branch users only see transfers touching their own branch.
            scope = _effective_branch(profile) or requested_branch
            if scope:
                sql += " AND (t.from_branch_id = %s OR t.to_branch_id = %s)"
                params.extend([scope, scope])
            sql += " ORDER BY t.date DESC, t.created_at DESC LIMIT %s"
            params.append(TRANSFER_LIST_LIMIT)
            cur.execute(sql, params)
            return {"success": True, "transfers": cur.fetchall()}


@router.post("/create")
def create_transfer(data: TransferIn, db: Database = Depends(get_db)):
    """Record a movement between two branches. Item quantities are left as they are."""
    uid = parse_uuid_required(data.user_id, "user_id")
    item_id = parse_uuid_required(data.item_id, "item_id")
    from_branch = parse_uuid_required(data.from_branch_id, "from_branch_id")
    to_branch = parse_uuid_required(data.to_branch_id, "to_branch_id")
    qty = require_positive(data.quantity)
    if from_branch == to_branch:
        raise ValidationError("from_branch_id and to_branch_id must differ", field="to_branch_id")

    with db.conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                profile = _transfer_actor(cur, uid)
                org_id = profile["organization_id"]
                if not profile["branch_id"] and not is_admin(profile):
                    raise AuthorizationError("You need a branch assigned to send transfers")
                own = _effective_branch(profile)
                if own and own != from_branch:
                    raise AuthorizationError("You can only transfer stock out of your own branch")
                assert_branch(cur, org_id, from_branch, "from_branch_id")
                assert_branch(cur, org_id, to_branch, "to_branch_id")
                current_quantity(cur, org_id, item_id)
                cur.execute(
                    """
                    INSERT INTO branch_transfers
                      (id, organization_id, item_id, from_branch_id, to_branch_id, quantity, date, performed_by, notes)
                    VALUES
                      (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING id, organization_id, item_id, from_branch_id, to_branch_id,
                              quantity, date, performed_by, notes, created_at
                    """,
                    (org_id, item_id, from_branch, to_branch, qty, data.date, uid, (data.notes or "").strip() or None),
                )
                transfer = cur.fetchone()

    json_log(
        "info",
        "transfers.created",
        transfer_id=transfer["id"],
        item_id=item_id,
        from_branch_id=from_branch,
        to_branch_id=to_branch,
        quantity=qty,
    )
    return {"success": True, "transfer": transfer}
