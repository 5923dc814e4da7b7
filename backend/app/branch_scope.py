"""
Branch filters for list queries.

Two policies exist and each call site picks one:

- permissive: a branch filter matches rows of that branch *and* rows without a
  branch (data recorded before the organization had branches). No filter means
  every row.
- strict: a branch filter matches only rows of that branch. No filter means
  every row.

Under both policies the sentinel `none` matches only rows without a branch.
"""
from typing import Iterable, List, Literal, Optional, Tuple

from .validation import parse_uuid_optional

BranchPolicy = Literal["permissive", "strict"]

PERMISSIVE: BranchPolicy = "permissive"
STRICT: BranchPolicy = "strict"
NO_BRANCH = "none"


def normalize_branch_filter(branch_id: Optional[str]) -> Optional[str]:
    raw = (branch_id or "").strip()
    if not raw:
        return None
    if raw.lower() == NO_BRANCH:
        return NO_BRANCH
    return parse_uuid_optional(raw, "branch_id")


def branch_clause(column: str, branch_id: Optional[str], policy: BranchPolicy) -> Tuple[str, list]:
    """SQL fragment (starting with ` AND`) plus params for `column`."""
    bid = normalize_branch_filter(branch_id)
    if bid is None:
        return "", []
    if bid == NO_BRANCH:
        return f" AND {column} IS NULL", []
    if policy == PERMISSIVE:
        return f" AND ({column} = %s OR {column} IS NULL)", [bid]
    if policy == STRICT:
        return f" AND {column} = %s", [bid]
    raise ValueError(f"unknown branch policy: {policy}")


def prefer_branch_rows(rows: Iterable[dict], branch_id: Optional[str], key: str = "item_id") -> List[dict]:
    """
    Drop branch-less rows for any `key` that also has a row for `branch_id`.

    Used after a permissive fetch so legacy rows only fill gaps.
    """
    rows = list(rows)
    bid = normalize_branch_filter(branch_id)
    if bid is None or bid == NO_BRANCH:
        return rows
    covered = {str(r[key]) for r in rows if r.get("branch_id") and str(r["branch_id"]) == bid}
    return [r for r in rows if r.get("branch_id") or str(r[key]) not in covered]
