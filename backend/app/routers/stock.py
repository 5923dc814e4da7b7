import datetime
from decimal import Decimal
from typing import Optional

import psycopg
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..branch_scope import NO_BRANCH, PERMISSIVE, STRICT, branch_clause, normalize_branch_filter, prefer_branch_rows
from ..db import Database, get_db
from ..deps import require_organization
from ..errors import NegativeStock, NotFoundError, StoreError
from ..logs import json_log
from ..stock_ledger import add_stock, adjust_quantity, current_quantity
from ..stock_report import compute_daily_report, previous_day, utc_today
from ..tenancy import assert_branch, resolve_branch
from ..validation import fmt_qty, parse_uuid_optional, parse_uuid_required, require_non_negative, require_positive

router = APIRouter(prefix="/stock", tags=["stock"])

# Opening and closing snapshots share one shape; one row per (org, item, date, branch).
_SNAPSHOT_TABLES = {"opening": "opening_stock", "closing": "closing_stock"}

_MOVEMENT_COLUMNS = """
    id, organization_id, branch_id, item_id, quantity, date, recorded_by, notes, created_at
"""


class StockRecordIn(BaseModel):
    item_id: str
    quantity: Decimal
    date: datetime.date
    branch_id: Optional[str] = None
    notes: Optional[str] = None


@router.get("/report")
def stock_report(
    date: Optional[datetime.date] = Query(None),
    organization_id: Optional[str] = Query(None),
    branch_id: Optional[str] = Query(None),
    db: Database = Depends(get_db),
):
    """
    Opening / sales / closing per item for one day.

    Read-only: the computed closing stock is reported, never stored.
    """
    day = date or utc_today()
    org_id = parse_uuid_optional(organization_id, "organization_id")
    bid = normalize_branch_filter(branch_id)

    with db.conn() as conn:
        with conn.cursor() as cur:
            sql = "SELECT id, name, unit, quantity FROM items WHERE true"
            params: list = []
            if org_id:
                sql += " AND organization_id = %s"
                params.append(org_id)
            sql += " ORDER BY name"
            try:
                cur.execute(sql, params)
                items = cur.fetchall()
            except psycopg.Error as exc:
                raise StoreError(f"Failed to fetch items: {exc}")

            sql = """
                SELECT item_id, quantity, branch_id, created_at
                FROM closing_stock
                WHERE date = %s
            """
            params = [previous_day(day)]
            if org_id:
                sql += " AND organization_id = %s"
                params.append(org_id)
            clause, clause_params = branch_clause("branch_id", bid, PERMISSIVE)
            sql += clause + " ORDER BY created_at DESC"
            cur.execute(sql, params + clause_params)
            prev_closing = cur.fetchall()

            sql = "SELECT item_id, quantity FROM sales WHERE date = %s"
            params = [day]
            if org_id:
                sql += " AND organization_id = %s"
                params.append(org_id)
            clause, clause_params = branch_clause("branch_id", bid, PERMISSIVE)
            cur.execute(sql + clause, params + clause_params)
            day_sales = cur.fetchall()

    report = compute_daily_report(
        items,
        prev_closing,
        day_sales,
        branch_id=None if bid == NO_BRANCH else bid,
    )
    return {"success": True, "date": day.isoformat(), "report": report}


def _record_snapshot(kind: str, data: StockRecordIn, session: dict, db: Database) -> dict:
    table = _SNAPSHOT_TABLES[kind]
    org_id = session["organization_id"]
    item_id = parse_uuid_required(data.item_id, "item_id")
    qty = require_non_negative(data.quantity, "quantity")
    branch_id = resolve_branch(session, parse_uuid_optional(data.branch_id, "branch_id"))

    with db.conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                assert_branch(cur, org_id, branch_id)
                current_quantity(cur, org_id, item_id)
                cur.execute(
                    f"""
                    INSERT INTO {table}
                      (id, organization_id, branch_id, item_id, quantity, date, recorded_by, notes)
                    VALUES
                      (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (organization_id, item_id, date, branch_id)
                    DO UPDATE SET quantity = EXCLUDED.quantity,
                                  recorded_by = EXCLUDED.recorded_by,
                                  notes = EXCLUDED.notes
                    RETURNING {_MOVEMENT_COLUMNS}
                    """,
                    (
                        org_id,
                        branch_id,
                        item_id,
                        qty,
                        data.date,
                        session["user_id"],
                        (data.notes or "").strip() or None,
                    ),
                )
                row = cur.fetchone()

    json_log("info", f"stock.{kind}_recorded", item_id=item_id, date=data.date, branch_id=branch_id, quantity=qty)
    return row


def _list_movements(
    table: str,
    date: datetime.date,
    branch_id: Optional[str],
    policy: str,
    session: dict,
    db: Database,
) -> list:
    org_id = session["organization_id"]
    bid = normalize_branch_filter(branch_id)
    if bid != NO_BRANCH:
        bid = resolve_branch(session, bid)
    if bid is None and policy == PERMISSIVE:
        # No branch in play: only rows recorded without a branch.
        bid = NO_BRANCH
    sql = f"""
        SELECT m.id, m.organization_id, m.branch_id, m.item_id, m.quantity, m.date,
               m.recorded_by, m.notes, m.created_at,
               i.name AS item_name, i.unit AS item_unit
        FROM {table} m
        LEFT JOIN items i ON i.id = m.item_id
        WHERE m.organization_id = %s AND m.date = %s
    """
    params: list = [org_id, date]
    clause, clause_params = branch_clause("m.branch_id", bid, policy)
    sql += clause + " ORDER BY m.created_at DESC"
    with db.conn() as conn:
        with conn.cursor() as cur:
            cur.execute(sql, params + clause_params)
            rows = cur.fetchall()
    if policy == PERMISSIVE:
        rows = prefer_branch_rows(rows, bid)
    return rows


@router.post("/opening")
def record_opening_stock(data: StockRecordIn, session=Depends(require_organization), db: Database = Depends(get_db)):
    return {"success": True, "opening_stock": _record_snapshot("opening", data, session, db)}


@router.get("/opening")
def list_opening_stock(
    date: datetime.date = Query(...),
    branch_id: Optional[str] = Query(None),
    session=Depends(require_organization),
    db: Database = Depends(get_db),
):
    # Branch-less rows fill in for items the branch has not recorded yet.
    rows = _list_movements("opening_stock", date, branch_id, PERMISSIVE, session, db)
    return {"success": True, "opening_stock": rows}


@router.post("/closing")
def record_closing_stock(data: StockRecordIn, session=Depends(require_organization), db: Database = Depends(get_db)):
    return {"success": True, "closing_stock": _record_snapshot("closing", data, session, db)}


@router.get("/closing")
def list_closing_stock(
    date: datetime.date = Query(...),
    branch_id: Optional[str] = Query(None),
    session=Depends(require_organization),
    db: Database = Depends(get_db),
):
    rows = _list_movements("closing_stock", date, branch_id, PERMISSIVE, session, db)
    return {"success": True, "closing_stock": rows}


@router.post("/restocking")
def record_restocking(data: StockRecordIn, session=Depends(require_organization), db: Database = Depends(get_db)):
    org_id = session["organization_id"]
    item_id = parse_uuid_required(data.item_id, "item_id")
    qty = require_positive(data.quantity)
    branch_id = resolve_branch(session, parse_uuid_optional(data.branch_id, "branch_id"))

    with db.conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                assert_branch(cur, org_id, branch_id)
                new_qty = add_stock(cur, org_id, item_id, qty)
                cur.execute(
                    f"""
                    INSERT INTO restocking
                      (id, organization_id, branch_id, item_id, quantity, date, recorded_by, notes)
                    VALUES
                      (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_MOVEMENT_COLUMNS}
                    """,
                    (
                        org_id,
                        branch_id,
                        item_id,
                        qty,
                        data.date,
                        session["user_id"],
                        (data.notes or "").strip() or None,
                    ),
                )
                row = cur.fetchone()

    json_log("info", "stock.restocked", item_id=item_id, quantity=qty, organization_id=org_id)
    return {"success": True, "restocking": row, "updatedQuantity": new_qty}


@router.get("/restocking")
def list_restocking(
    date: datetime.date = Query(...),
    branch_id: Optional[str] = Query(None),
    session=Depends(require_organization),
    db: Database = Depends(get_db),
):
    # Restocks add to the ledger; a legacy restock must not be counted under a branch.
    rows = _list_movements("restocking", date, branch_id, STRICT, session, db)
    return {"success": True, "restocking": rows}


@router.delete("/restocking")
def delete_restocking(
    restocking_id: Optional[str] = Query(None),
    session=Depends(require_organization),
    db: Database = Depends(get_db),
):
    org_id = session["organization_id"]
    rid = parse_uuid_required(restocking_id, "restocking_id")

    with db.conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, item_id, branch_id, quantity
                    FROM restocking
                    WHERE organization_id = %s AND id = %s
                    FOR UPDATE
                    """,
                    (org_id, rid),
                )
                row = cur.fetchone()
                if not row:
                    raise NotFoundError("Restocking not found", field="restocking_id")
                resolve_branch(session, str(row["branch_id"]) if row["branch_id"] else None)

                item_id = str(row["item_id"])
                qty = Decimal(str(row["quantity"]))
                new_qty = adjust_quantity(cur, org_id, item_id, -qty)
                if new_qty is None:
                    available = current_quantity(cur, org_id, item_id)
                    raise NegativeStock(
                        f"Cannot delete restocking of {fmt_qty(qty)}. Available stock: {fmt_qty(available)}",
                        field="restocking_id",
                    )
                cur.execute("DELETE FROM restocking WHERE id = %s", (rid,))

    json_log("info", "stock.restocking_deleted", restocking_id=rid, item_id=item_id, quantity=qty)
    return {"success": True, "updatedQuantity": new_qty}
