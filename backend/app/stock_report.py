"""
Daily stock report: opening stock, sales and closing stock per item.

Opening stock is the previous day's closing snapshot for the item. Items that
never had one fall back to their live on-hand quantity. Closing stock is
opening minus the day's sales, clamped at zero. Nothing is persisted.
"""
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, List, Optional


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def previous_day(d: date) -> date:
    return d - timedelta(days=1)


def _dec(v) -> Decimal:
    return Decimal(str(v or 0))


def pick_snapshot(rows: List[dict], branch_id: Optional[str]) -> Optional[dict]:
    """
    Choose one closing snapshot among rows for the same item.

    Rows matching the requested branch win (or branch-less rows when no branch is
    requested); ties go to the first row, so callers pass rows newest first.
    """
    if not rows:
        return None
    want = str(branch_id) if branch_id else None
    for r in rows:
        have = str(r["branch_id"]) if r.get("branch_id") else None
        if have == want:
            return r
    return rows[0]


def compute_daily_report(
    items: Iterable[dict],
    prev_closing: Iterable[dict],
    sales: Iterable[dict],
    branch_id: Optional[str] = None,
) -> List[dict]:
    closing_by_item: dict[str, list] = {}
    for r in prev_closing:
        closing_by_item.setdefault(str(r["item_id"]), []).append(r)

    sold_by_item: dict[str, Decimal] = {}
    for s in sales:
        k = str(s["item_id"])
        sold_by_item[k] = sold_by_item.get(k, Decimal("0")) + _dec(s["quantity"])

    report = []
    for item in items:
        iid = str(item["id"])
        snap = pick_snapshot(closing_by_item.get(iid) or [], branch_id)
        current = _dec(item.get("quantity"))
        opening = _dec(snap["quantity"]) if snap else current
        sold = sold_by_item.get(iid, Decimal("0"))
        closing = max(Decimal("0"), opening - sold)
        report.append(
            {
                "item_id": item["id"],
                "item_name": item.get("name"),
                "item_unit": item.get("unit"),
                "current_quantity": current,
                "opening_stock": opening,
                "sales": sold,
                "closing_stock": closing,
            }
        )
    return report
