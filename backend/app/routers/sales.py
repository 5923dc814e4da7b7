import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..branch_scope import PERMISSIVE, branch_clause
from ..db import Database, get_db
from ..errors import ConflictError, InsufficientStock, NegativeStock, NotFoundError, ValidationError
from ..logs import json_log
from ..stock_ledger import add_stock, adjust_quantity, current_quantity
from ..tenancy import assert_branch, load_member_profile, resolve_branch
from ..validation import (
    fmt_qty,
    parse_decimal_required,
    parse_uuid_optional,
    parse_uuid_required,
    require_non_negative,
    require_positive,
)

router = APIRouter(prefix="/sales", tags=["sales"])

_SALE_COLUMNS = """
    id, organization_id, branch_id, item_id, quantity, price_per_unit, total_price,
    date, recorded_by, description, created_at, updated_at
"""


class SaleCreateIn(BaseModel):
    item_id: str
    quantity: Decimal
    price_per_unit: Optional[Decimal] = None
    total_price: Optional[Decimal] = None
    date: datetime.date
    user_id: str
    description: Optional[str] = None
    branch_id: Optional[str] = None


class SaleUpdateIn(BaseModel):
    sale_id: str
    item_id: str
    quantity: Decimal
    old_quantity: Decimal
    price_per_unit: Optional[Decimal] = None
    total_price: Optional[Decimal] = None
    date: datetime.date
    description: Optional[str] = None


def _lock_sale(cur, sale_id: str) -> dict:
    cur.execute(
        """
        SELECT id, organization_id, item_id, quantity
        FROM sales
        WHERE id = %s
        FOR UPDATE
        """,
        (sale_id,),
    )
    sale = cur.fetchone()
    if not sale:
        raise NotFoundError("Sale not found", field="sale_id")
    return sale


def _check_sale_matches(sale: dict, item_id: str, quantity: Decimal):
    if str(sale["item_id"]) != item_id:
        raise ValidationError("item_id does not match the sale", field="item_id")
    # The caller's view of the sale must still be current.
    if Decimal(str(sale["quantity"])) != quantity:
        raise ConflictError("Sale was changed by another request. Reload and try again.")


@router.post("/create")
def create_sale(data: SaleCreateIn, db: Database = Depends(get_db)):
    item_id = parse_uuid_required(data.item_id, "item_id")
    user_id = parse_uuid_required(data.user_id, "user_id")
    qty = require_positive(data.quantity)
    price = require_non_negative(data.price_per_unit, "price_per_unit")
    total = require_non_negative(data.total_price, "total_price")

    with db.conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                profile = load_member_profile(cur, user_id)
                org_id = profile["organization_id"]
                branch_id = resolve_branch(profile, parse_uuid_optional(data.branch_id, "branch_id"))
                assert_branch(cur, org_id, branch_id)

                new_qty = adjust_quantity(cur, org_id, item_id, -qty)
                if new_qty is None:
                    available = current_quantity(cur, org_id, item_id)
                    raise InsufficientStock(
                        f"Cannot record sales of {fmt_qty(qty)}. Available stock: {fmt_qty(available)}",
                        field="quantity",
                    )

                cur.execute(
                    f"""
                    INSERT INTO sales
                      (id, organization_id, branch_id, item_id, quantity, price_per_unit, total_price,
                       date, recorded_by, description)
                    VALUES
                      (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_SALE_COLUMNS}
                    """,
                    (
                        org_id,
                        branch_id,
                        item_id,
                        qty,
                        price,
                        total,
                        data.date,
                        user_id,
                        (data.description or "").strip() or None,
                    ),
                )
                sale = cur.fetchone()

    json_log("info", "sales.created", sale_id=sale["id"], item_id=item_id, quantity=qty, organization_id=org_id)
    return {"success": True, "sale": sale, "updatedQuantity": new_qty}


@router.put("/update")
def update_sale(data: SaleUpdateIn, db: Database = Depends(get_db)):
    sale_id = parse_uuid_required(data.sale_id, "sale_id")
    item_id = parse_uuid_required(data.item_id, "item_id")
    new = require_positive(data.quantity)
    old = require_non_negative(data.old_quantity, "old_quantity")
    price = require_non_negative(data.price_per_unit, "price_per_unit")
    total = require_non_negative(data.total_price, "total_price")

    with db.conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                sale = _lock_sale(cur, sale_id)
                _check_sale_matches(sale, item_id, old)
                org_id = str(sale["organization_id"])

                # Undo the old sale and apply the new one as one net change.
                diff = new - old
                new_qty = adjust_quantity(cur, org_id, item_id, -diff)
                if new_qty is None:
                    available = current_quantity(cur, org_id, item_id) + old
                    raise NegativeStock(
                        f"Cannot update. Available stock after adjustment: {fmt_qty(available)}",
                        field="quantity",
                    )

                cur.execute(
                    """
                    UPDATE sales
                    SET quantity = %s, price_per_unit = %s, total_price = %s,
                        date = %s, description = %s, updated_at = now()
                    WHERE id = %s
                    """,
                    (new, price, total, data.date, (data.description or "").strip() or None, sale_id),
                )

    json_log("info", "sales.updated", sale_id=sale_id, old_quantity=old, quantity=new)
    return {"success": True, "updatedQuantity": new_qty}


@router.delete("/delete")
def delete_sale(
    sale_id: Optional[str] = Query(None),
    item_id: Optional[str] = Query(None),
    quantity: Optional[str] = Query(None),
    db: Database = Depends(get_db),
):
    if not sale_id or not item_id or not quantity:
        raise ValidationError("Missing required parameters")
    sid = parse_uuid_required(sale_id, "sale_id")
    iid = parse_uuid_required(item_id, "item_id")
    qty = require_positive(parse_decimal_required(quantity, "quantity"))

    with db.conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                sale = _lock_sale(cur, sid)
                _check_sale_matches(sale, iid, qty)
                new_qty = add_stock(cur, str(sale["organization_id"]), iid, qty)
                cur.execute("DELETE FROM sales WHERE id = %s", (sid,))

    json_log("info", "sales.deleted", sale_id=sid, item_id=iid, quantity=qty)
    return {"success": True, "updatedQuantity": new_qty}


@router.get("/list")
def list_sales(
    date: Optional[datetime.date] = Query(None),
    organization_id: Optional[str] = Query(None),
    branch_id: Optional[str] = Query(None),
    db: Database = Depends(get_db),
):
    org_id = parse_uuid_optional(organization_id, "organization_id")
    sql = """
        SELECT s.id, s.organization_id, s.branch_id, s.item_id, s.quantity, s.price_per_unit,
               s.total_price, s.date, s.recorded_by, s.description, s.created_at, s.updated_at,
               i.name AS item_name, i.unit AS item_unit
        FROM sales s
        LEFT JOIN items i ON i.id = s.item_id
        WHERE true
    """
    params: list = []
    if date:
        sql += " AND s.date = %s"
        params.append(date)
    if org_id:
        sql += " AND s.organization_id = %s"
        params.append(org_id)
    # Sales recorded before the organization had branches stay visible.
    clause, clause_params = branch_clause("s.branch_id", branch_id, PERMISSIVE)
    sql += clause
    params.extend(clause_params)
    sql += " ORDER BY s.created_at DESC"

    with db.conn() as conn:
        with conn.cursor() as cur:
            cur.execute(sql, params)
            return {"success": True, "sales": cur.fetchall()}
