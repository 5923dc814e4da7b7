import pytest
from fastapi import HTTPException

from backend.app.routers import organizations as org_router
from backend.app.routers.organizations import OrganizationUpdateIn
from backend.tests._fakes import FakeDb, FakeStore, new_id


@pytest.fixture
def store():
    return FakeStore()


def _admin(org_id, role="admin"):
    return {"user_id": new_id(), "role": role, "organization_id": org_id, "branch_id": None}


def _update(store, session, **fields):
    return org_router.update_organization(OrganizationUpdateIn(**fields), session=session, db=FakeDb(store))


def test_by_subdomain_normalizes_input(store):
    org = store.add_org(name="Acme", subdomain="acme")

    res = org_router.get_by_subdomain(subdomain="  ACME ", db=FakeDb(store))

    assert res["organization"]["id"] == org
    assert set(res["organization"]) == {"id", "name", "logo_url", "brand_color", "subdomain"}


def test_by_subdomain_unknown_returns_null(store):
    res = org_router.get_by_subdomain(subdomain="nobody", db=FakeDb(store))

    assert res == {"organization": None}


@pytest.mark.parametrize("value", [None, "", "   "])
def test_by_subdomain_requires_value(store, value):
    with pytest.raises(HTTPException) as exc:
        org_router.get_by_subdomain(subdomain=value, db=FakeDb(store))

    assert exc.value.status_code == 400
    assert exc.value.detail == "Subdomain is required"


def test_update_sets_branding_and_normalizes_fields(store):
    org = store.add_org(name="Acme")

    res = _update(
        store,
        _admin(org),
        organization_id=org,
        name="  Acme Store ",
        subdomain="Acme-Store",
        brand_color="#3b82f6",
        opening_time="08:00",
        closing_time="22:30:00",
    )

    saved = res["organization"]
    assert res["success"] is True
    assert saved["name"] == "Acme Store"
    assert saved["slug"] == "acme-store"
    assert saved["subdomain"] == "acme-store"
    assert saved["brand_color"] == "#3B82F6"
    assert saved["opening_time"] == "08:00:00"
    assert saved["closing_time"] == "22:30:00"


def test_update_leaves_omitted_fields_alone(store):
    org = store.add_org(name="Acme", subdomain="acme")
    store.organizations[org]["brand_color"] = "#000000"

    _update(store, _admin(org), organization_id=org, name="Acme")

    assert store.organizations[org]["subdomain"] == "acme"
    assert store.organizations[org]["brand_color"] == "#000000"


def test_update_empty_subdomain_clears_it(store):
    org = store.add_org(name="Acme", subdomain="acme")

    _update(store, _admin(org), organization_id=org, name="Acme", subdomain="")

    assert store.organizations[org]["subdomain"] is None


def test_update_resaving_own_subdomain_is_allowed(store):
    org = store.add_org(name="Acme", subdomain="acme")

    res = _update(store, _admin(org), organization_id=org, name="Acme", subdomain="acme")

    assert res["organization"]["subdomain"] == "acme"


def test_update_subdomain_taken_by_other_org(store):
    store.add_org(name="First", subdomain="shop")
    org = store.add_org(name="Second")

    with pytest.raises(HTTPException) as exc:
        _update(store, _admin(org), organization_id=org, name="Second", subdomain="shop")

    assert exc.value.status_code == 400
    assert exc.value.detail == "Subdomain already taken"
    assert store.organizations[org]["subdomain"] is None


@pytest.mark.parametrize("value", ["WWW", "api", "Admin"])
def test_update_reserved_subdomain_is_rejected(store, value):
    org = store.add_org(name="Acme")

    with pytest.raises(HTTPException) as exc:
        _update(store, _admin(org), organization_id=org, name="Acme", subdomain=value)

    assert exc.value.status_code == 400
    assert exc.value.detail == f'Subdomain "{value.lower()}" is reserved and cannot be used.'
    assert store.executed == []


def test_update_requires_admin_role(store):
    org = store.add_org()

    with pytest.raises(HTTPException) as exc:
        _update(store, _admin(org, role="staff"), organization_id=org, name="Acme")

    assert exc.value.status_code == 403


def test_tenant_admin_cannot_update_other_org(store):
    org = store.add_org()
    other = store.add_org(name="Other")

    with pytest.raises(HTTPException) as exc:
        _update(store, _admin(org, role="tenant_admin"), organization_id=other, name="Other")

    assert exc.value.status_code == 403
    assert store.organizations[other]["name"] == "Other"


def test_superadmin_can_update_any_org(store):
    org = store.add_org()
    session = {"user_id": new_id(), "role": "superadmin", "organization_id": None, "branch_id": None}

    res = _update(store, session, organization_id=org, name="Renamed")

    assert res["organization"]["name"] == "Renamed"


def test_update_unknown_org_is_not_found(store):
    session = {"user_id": new_id(), "role": "superadmin", "organization_id": None, "branch_id": None}

    with pytest.raises(HTTPException) as exc:
        _update(store, session, organization_id=new_id(), name="Ghost")

    assert exc.value.status_code == 404


def test_update_requires_name(store):
    org = store.add_org()

    with pytest.raises(HTTPException) as exc:
        _update(store, _admin(org), organization_id=org, name="  ")

    assert exc.value.status_code == 400
