import pytest
from werkzeug.security import generate_password_hash

from app.fms import create_app
from app.fms import auth as auth_module
from app.fms.db import session_scope
from app.fms.models import Base, Company, CompanyMembership, Permission, Role, User
from app.fms.modules.accounting.seed import ensure_accounting_items
from scripts.init_db import MEMBER_PERMISSIONS, PERMISSIONS

CSRF = "test-csrf-token"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)
    auth_module._login_attempts.clear()

    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        perms = {key: Permission(key=key, name=name) for key, name in PERMISSIONS}
        admin_role = Role(key="admin", name="Administrator")
        admin_role.permissions.extend(perms.values())
        member_role = Role(key="member", name="Field staff")
        member_role.permissions.extend(perms[k] for k in MEMBER_PERMISSIONS)

        admin = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        admin.roles.append(admin_role)
        staff = User(email="staff@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        staff.roles.append(member_role)

        farm = Company(name="Green Farm")
        other = Company(name="Other Farm")
        s.add_all(list(perms.values()) + [admin_role, member_role, admin, staff, farm, other])
        s.flush()
        s.add_all(
            [
                CompanyMembership(user_id=admin.id, company_id=farm.id, role="owner", status="active"),
                CompanyMembership(user_id=staff.id, company_id=farm.id, role="member", status="active"),
            ]
        )
        ensure_accounting_items(s)

    return app


def _company_id(app, name: str) -> int:
    with session_scope(app) as s:
        return s.query(Company).filter(Company.name == name).one().id


@pytest.fixture()
def company_id(app):
    return _company_id(app, "Green Farm")


@pytest.fixture()
def other_company_id(app):
    return _company_id(app, "Other Farm")


def login(client, email: str = "admin@example.com", password: str = "pw"):
    r = client.post("/auth/login", data={"email": email, "password": password}, follow_redirects=False)
    assert r.status_code == 302
    with client.session_transaction() as sess:
        sess["csrf_token"] = CSRF
    client.environ_base["HTTP_X_CSRF_TOKEN"] = CSRF
    return client


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def admin_client(app):
    return login(app.test_client())


@pytest.fixture()
def staff_client(app):
    return login(app.test_client(), "staff@example.com")


def make_vegetable(client, company_id: int, **overrides) -> dict:
    payload = {
        "company_id": company_id,
        "name": "トマト",
        "variety_name": "桃太郎",
        "plot_name": "A-1",
        "area_size": 100,
        "planting_date": "2024-04-01",
        "expected_harvest_date": "2024-07-15",
        "status": "growing",
    }
    payload.update(overrides)
    r = client.post("/api/vegetables", json=payload)
    assert r.status_code == 201, r.json
    return r.json["data"]


def make_report(client, company_id: int, **overrides) -> dict:
    payload = {
        "company_id": company_id,
        "work_type": "watering",
        "work_date": "2024-05-10",
        "duration_hours": 2,
        "worker_count": 1,
        "notes": "morning round",
    }
    payload.update(overrides)
    r = client.post("/api/reports", json=payload)
    assert r.status_code == 201, r.json
    return r.json["data"]


@pytest.fixture()
def new_vegetable(admin_client, company_id):
    return lambda **overrides: make_vegetable(admin_client, company_id, **overrides)


@pytest.fixture()
def new_report(admin_client, company_id):
    return lambda **overrides: make_report(admin_client, company_id, **overrides)
