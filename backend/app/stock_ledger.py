"""
On-hand quantity changes for items.

Every change is a single conditional UPDATE, so two requests touching the same
item cannot lose each other's writes or push the quantity below zero. Callers
run these inside the same transaction as the movement record they belong to.
"""
from decimal import Decimal
from typing import Optional

from .errors import NotFoundError


def current_quantity(cur, organization_id: str, item_id: str) -> Decimal:
    cur.execute(
        """
        SELECT quantity
        FROM items
        WHERE organization_id = %s AND id = %s
        """,
        (organization_id, item_id),
    )
    row = cur.fetchone()
    if not row:
        raise NotFoundError("Item not found", field="item_id")
    return Decimal(str(row["quantity"]))


def adjust_quantity(cur, organization_id: str, item_id: str, delta: Decimal) -> Optional[Decimal]:
    """
    Add `delta` (may be negative) to the item's quantity.

    Returns the new quantity, or None when the item exists but the result would be
    negative. Raises NotFoundError when the item does not exist.
    """
    cur.execute(
        """
        UPDATE items
        SET quantity = quantity + %s, updated_at = now()
        WHERE organization_id = %s AND id = %s AND quantity + %s >= 0
        RETURNING quantity
        """,
        (delta, organization_id, item_id, delta),
    )
    row = cur.fetchone()
    if row:
        return Decimal(str(row["quantity"]))
    # Distinguish "no such item" from "not enough stock".
    current_quantity(cur, organization_id, item_id)
    return None


def add_stock(cur, organization_id: str, item_id: str, qty: Decimal) -> Decimal:
    new_qty = adjust_quantity(cur, organization_id, item_id, Decimal(str(qty)))
    if new_qty is None:
        # Only reachable with a negative qty; callers pass positive amounts.
        raise NotFoundError("Item not found", field="item_id")
    return new_qty
