from datetime import date
from decimal import Decimal

import pytest
from fastapi import HTTPException

from backend.app.routers import transfers as transfers_router
from backend.app.routers.transfers import TRANSFER_LIST_LIMIT, TransferIn
from backend.tests._fakes import FakeDb, FakeStore, ScriptedCursor, ScriptedDb, new_id


@pytest.fixture
def store():
    return FakeStore()


def _list(store, user_id, **kw):
    params = {"user_id": user_id, "branch_id": None, "from_date": None, "to_date": None}
    params.update(kw)
    return transfers_router.list_transfers(db=FakeDb(store), **params)


def test_list_requires_user_id(store):
    with pytest.raises(HTTPException) as exc:
        _list(store, None)

    assert exc.value.status_code == 400
    assert exc.value.detail == "user_id is required"


def test_list_rejects_superadmin(store):
    uid = store.add_user(store.add_org(), role="superadmin")

    with pytest.raises(HTTPException) as exc:
        _list(store, uid)

    assert exc.value.status_code == 403
    assert exc.value.detail == "Superadmins cannot view transfers"


def test_create_rejects_staff_without_branch(store):
    org = store.add_org()
    a = store.add_branch(org, "A")
    b = store.add_branch(org, "B")
    item = store.add_item(org, 10)
    uid = store.add_user(org, role="staff")

    with pytest.raises(HTTPException) as exc:
        _create(store, uid, item, a, b)

    assert exc.value.status_code == 403
    assert store.branch_transfers == {}


def test_list_user_without_org_is_rejected(store):
    uid = store.add_user(None, role="staff")

    with pytest.raises(HTTPException) as exc:
        _list(store, uid)

    assert exc.value.status_code == 400


def _create(store, user_id, item_id, from_branch, to_branch, qty=5):
    data = TransferIn(
        user_id=user_id,
        item_id=item_id,
        from_branch_id=from_branch,
        to_branch_id=to_branch,
        quantity=Decimal(str(qty)),
        date=date(2024, 1, 1),
    )
    return transfers_router.create_transfer(data, db=FakeDb(store))


def test_create_records_transfer_without_touching_quantity(store):
    org = store.add_org()
    a = store.add_branch(org, "A")
    b = store.add_branch(org, "B")
    item = store.add_item(org, 10)
    uid = store.add_user(org, branch_id=a)

    res = _create(store, uid, item, a, b)

    assert res["success"] is True
    assert res["transfer"]["from_branch_id"] == a
    assert res["transfer"]["to_branch_id"] == b
    assert res["transfer"]["performed_by"] == uid
    assert store.item_qty(item) == Decimal("10")


def test_create_rejects_same_branch(store):
    org = store.add_org()
    a = store.add_branch(org)

    with pytest.raises(HTTPException) as exc:
        _create(store, new_id(), new_id(), a, a)

    assert exc.value.status_code == 400


def test_branch_user_can_only_transfer_out_of_own_branch(store):
    org = store.add_org()
    a = store.add_branch(org, "A")
    b = store.add_branch(org, "B")
    item = store.add_item(org, 10)
    uid = store.add_user(org, branch_id=a)

    with pytest.raises(HTTPException) as exc:
        _create(store, uid, item, b, a)

    assert exc.value.status_code == 403
    assert store.branch_transfers == {}


def test_admin_without_branch_can_transfer_between_any_branches(store):
    org = store.add_org()
    a = store.add_branch(org, "A")
    b = store.add_branch(org, "B")
    item = store.add_item(org, 10)
    uid = store.add_user(org, role="admin")

    _create(store, uid, item, b, a)

    assert len(store.branch_transfers) == 1


def test_create_rejects_branch_of_other_org(store):
    org = store.add_org()
    a = store.add_branch(org, "A")
    foreign = store.add_branch(store.add_org(name="Other"))
    item = store.add_item(org, 10)
    uid = store.add_user(org, branch_id=a)

    with pytest.raises(HTTPException) as exc:
        _create(store, uid, item, a, foreign)

    assert exc.value.status_code == 400
    assert exc.value.detail == "to_branch_id does not belong to this organization"


def test_create_unknown_item_is_not_found(store):
    org = store.add_org()
    a = store.add_branch(org, "A")
    b = store.add_branch(org, "B")
    uid = store.add_user(org, branch_id=a)

    with pytest.raises(HTTPException) as exc:
        _create(store, uid, new_id(), a, b)

    assert exc.value.status_code == 404


def _scripted_list(profile, **kw):
    cur = ScriptedCursor(
        [
            ("from users where id = %s", [profile]),
            ("from branch_transfers t", [{"id": "t1"}]),
        ]
    )
    params = {"user_id": profile["id"], "branch_id": None, "from_date": None, "to_date": None}
    params.update(kw)
    res = transfers_router.list_transfers(db=ScriptedDb(cur), **params)
    return res, cur.executed[-1]


def _profile(role, branch_id=None):
    return {"id": new_id(), "email": "u@example.com", "role": role, "organization_id": new_id(), "branch_id": branch_id}


def test_list_branch_user_sees_only_own_branch_transfers():
    own = new_id()
    profile = _profile("staff", own)

    res, (sql, params) = _scripted_list(profile, branch_id=new_id(), from_date=date(2024, 1, 1))

    assert res == {"success": True, "transfers": [{"id": "t1"}]}
    assert "(t.from_branch_id = %s or t.to_branch_id = %s)" in sql
    assert "t.date >= %s" in sql
    assert sql.endswith("order by t.date desc, t.created_at desc limit %s")
    assert params == [profile["organization_id"], date(2024, 1, 1), own, own, TRANSFER_LIST_LIMIT]


def test_list_admin_without_branch_sees_whole_org():
    profile = _profile("admin")

    _, (sql, params) = _scripted_list(profile)

    assert "from_branch_id = %s" not in sql
    assert params == [profile["organization_id"], 200]


def test_list_admin_without_branch_can_filter_by_branch():
    profile = _profile("tenant_admin")
    wanted = new_id()

    _, (sql, params) = _scripted_list(profile, branch_id=wanted, to_date=date(2024, 2, 1))

    assert "t.date <= %s" in sql
    assert params == [profile["organization_id"], date(2024, 2, 1), wanted, wanted, 200]


def test_list_staff_without_branch_sees_whole_org():
    profile = _profile("staff")

    _, (sql, params) = _scripted_list(profile)

    assert "from_branch_id = %s" not in sql
    assert params == [profile["organization_id"], TRANSFER_LIST_LIMIT]


def test_list_staff_without_branch_can_filter_by_branch():
    profile = _profile("staff")
    wanted = new_id()

    _, (sql, params) = _scripted_list(profile, branch_id=wanted)

    assert "(t.from_branch_id = %s or t.to_branch_id = %s)" in sql
    assert params == [profile["organization_id"], wanted, wanted, TRANSFER_LIST_LIMIT]
