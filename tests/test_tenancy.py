from datetime import datetime, timedelta

from werkzeug.security import generate_password_hash

from app.fms.db import session_scope
from app.fms.models import AuditEvent, Company, CompanyMembership, User
from app.fms.modules.vegetables.models import Vegetable
from app.fms.modules.vegetables.service import purge_deleted_vegetables
from app.fms.modules.work_reports.models import WorkReport
from app.fms.modules.work_reports.service import purge_deleted_reports
from app.fms.storage import storage_from_config
from app.fms.tenancy import resolve_user_company, user_company_ids


def _add_user(s, email: str) -> User:
    u = User(email=email, password_hash=generate_password_hash("pw"), is_active=True)
    s.add(u)
    s.flush()
    return u


def test_resolve_user_company_prefers_existing_membership(app, company_id):
    with app.test_request_context(), session_scope(app) as s:
        admin = s.query(User).filter(User.email == "admin@example.com").one()
        assert resolve_user_company(s, admin).id == company_id


def test_resolve_user_company_attaches_new_user(app, company_id):
    with app.test_request_context(), session_scope(app) as s:
        newcomer = _add_user(s, "new@example.com")
        company = resolve_user_company(s, newcomer)
        assert company.id == company_id
        m = s.query(CompanyMembership).filter(CompanyMembership.user_id == newcomer.id).one()
        assert (m.role, m.status) == ("owner", "active")
        assert user_company_ids(s, newcomer) == [company_id]


def test_resolve_user_company_creates_default_company(app):
    with app.test_request_context(), session_scope(app) as s:
        for c in s.query(Company).all():
            c.is_active = False
        s.flush()
        newcomer = _add_user(s, "solo@example.com")
        company = resolve_user_company(s, newcomer)
        assert company.name == "My Farm"
        assert company.contact_email == "solo@example.com"
        events = s.query(AuditEvent).filter(AuditEvent.action == "company.create_default").all()
        assert [e.company_id for e in events] == [company.id]


def test_suspended_membership_loses_access(app, staff_client, company_id):
    r = staff_client.get(f"/api/vegetables?company_id={company_id}")
    assert r.status_code == 200

    with session_scope(app) as s:
        staff = s.query(User).filter(User.email == "staff@example.com").one()
        m = s.query(CompanyMembership).filter(CompanyMembership.user_id == staff.id).one()
        m.status = "suspended"

    r = staff_client.get(f"/api/vegetables?company_id={company_id}")
    assert r.status_code == 403


def test_records_of_other_companies_are_hidden(app, admin_client, other_company_id):
    with session_scope(app) as s:
        veg = Vegetable(
            company_id=other_company_id,
            name="ナス",
            variety_name="千両",
            plot_name="Z-9",
            area_size=10,
            planting_date=datetime(2024, 4, 1).date(),
            status="growing",
        )
        s.add(veg)
        s.flush()
        veg_id = veg.id

    r = admin_client.get(f"/api/vegetables/{veg_id}")
    assert r.status_code == 403
    r = admin_client.put(f"/api/vegetables/{veg_id}", json={"notes": "x"})
    assert r.status_code == 403
    r = admin_client.get(f"/admin/vegetables/{veg_id}")
    assert r.status_code == 404


def test_members_page_management(app, admin_client, staff_client, company_id):
    with session_scope(app) as s:
        _add_user(s, "helper@example.com")

    r = admin_client.post("/admin/members", data={"email": "helper@example.com", "role": "viewer"})
    assert r.status_code == 302
    with session_scope(app) as s:
        helper = s.query(User).filter(User.email == "helper@example.com").one()
        m = s.query(CompanyMembership).filter(CompanyMembership.user_id == helper.id).one()
        assert (m.company_id, m.role) == (company_id, "viewer")
        membership_id = m.id
        admin_m = (
            s.query(CompanyMembership)
            .join(User, CompanyMembership.user_id == User.id)
            .filter(User.email == "admin@example.com")
            .one()
        )
        admin_membership_id = admin_m.id

    # members cannot manage the roster
    staff_client.post(f"/admin/members/{membership_id}", data={"role": "admin", "status": "active"})
    with session_scope(app) as s:
        assert s.get(CompanyMembership, membership_id).role == "viewer"

    admin_client.post(f"/admin/members/{membership_id}", data={"role": "member", "status": "suspended"})
    with session_scope(app) as s:
        m = s.get(CompanyMembership, membership_id)
        assert (m.role, m.status) == ("member", "suspended")

    # owners cannot lock themselves out
    admin_client.post(f"/admin/members/{admin_membership_id}", data={"role": "viewer", "status": "active"})
    with session_scope(app) as s:
        assert s.get(CompanyMembership, admin_membership_id).role == "owner"


def test_purge_only_removes_old_soft_deletes(app, admin_client, new_vegetable, new_report):
    old_veg = new_vegetable()
    kept_veg = new_vegetable(plot_name="B-1")
    report = new_report(vegetable_id=old_veg["id"])
    admin_client.delete(f"/api/vegetables/{old_veg['id']}")
    admin_client.delete(f"/api/vegetables/{kept_veg['id']}")
    admin_client.delete(f"/api/reports/{report['id']}")

    with session_scope(app) as s:
        s.get(Vegetable, old_veg["id"]).deleted_at = datetime.utcnow() - timedelta(days=200)
        s.get(WorkReport, report["id"]).deleted_at = datetime.utcnow() - timedelta(days=200)

    with session_scope(app) as s:
        assert purge_deleted_reports(s) == 1
    with session_scope(app) as s:
        assert purge_deleted_vegetables(s, storage=storage_from_config(app.config)) == 1

    with session_scope(app) as s:
        assert s.get(Vegetable, old_veg["id"]) is None
        assert s.get(WorkReport, report["id"]) is None
        assert s.get(Vegetable, kept_veg["id"]).deleted_at is not None
