import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.fms.models import Company, CompanyMembership, Permission, Role, User
from app.fms.modules.accounting.seed import ensure_accounting_items
from scripts._db_utils import script_session

PERMISSIONS = (
    ("admin.view", "Admin: view shell"),
    # Vegetables
    ("vegetables.view", "Vegetables: view"),
    ("vegetables.edit", "Vegetables: create/edit"),
    ("vegetables.delete", "Vegetables: delete"),
    # Growing tasks
    ("tasks.view", "Growing tasks: view"),
    ("tasks.edit", "Growing tasks: create/edit"),
    # Work reports
    ("reports.view", "Work reports: view"),
    ("reports.edit", "Work reports: create/edit"),
    # Accounting
    ("accounting.view", "Accounting: view"),
    ("accounting.edit", "Accounting: edit entries"),
    # Analytics
    ("analytics.view", "Analytics: view"),
    ("analytics.export", "Analytics: export"),
    # Photos
    ("photos.view", "Photos: view"),
    ("photos.edit", "Photos: upload/edit"),
    # Farm plots / mesh
    ("plots.view", "Farm plots: view"),
    ("plots.edit", "Farm plots: edit"),
)

# Field staff: everything except deletes and exports.
MEMBER_PERMISSIONS = tuple(k for k, _ in PERMISSIONS if k not in ("vegetables.delete", "analytics.export"))


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions/roles/admin user/default company/accounting items in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@farmlog.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    company_name = (os.environ.get("DEFAULT_COMPANY_NAME") or "My Farm").strip()

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///fms.db").strip()

    # Direct engine/session so this can run in release without importing app.wsgi.
    with script_session(db_url) as s:
        perms: dict[str, Permission] = {}
        for key, name in PERMISSIONS:
            p = s.query(Permission).filter(Permission.key == key).one_or_none()
            if not p:
                p = Permission(key=key, name=name)
                s.add(p)
            perms[key] = p

        def ensure_role(key: str, name: str, keys) -> Role:
            role = s.query(Role).filter(Role.key == key).one_or_none()
            if not role:
                role = Role(key=key, name=name)
                s.add(role)
            for k in keys:
                if perms[k] not in role.permissions:
                    role.permissions.append(perms[k])
            return role

        role_admin = ensure_role("admin", "Administrator", [k for k, _ in PERMISSIONS])
        ensure_role("member", "Farm member", MEMBER_PERMISSIONS)

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                full_name="Administrator",
                password_hash=generate_password_hash(admin_password),
                is_active=True,
            )
            s.add(user)
        if role_admin not in user.roles:
            user.roles.append(role_admin)
        s.flush()

        company = s.query(Company).order_by(Company.id.asc()).first()
        if company is None:
            company = Company(name=company_name, contact_email=admin_email)
            s.add(company)
            s.flush()
        membership = (
            s.query(CompanyMembership)
            .filter(CompanyMembership.user_id == user.id)
            .filter(CompanyMembership.company_id == company.id)
            .one_or_none()
        )
        if membership is None:
            s.add(CompanyMembership(user_id=user.id, company_id=company.id, role="owner", status="active"))

        added = ensure_accounting_items(s)

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")
    print(f"Company: {company_name}")
    print(f"Accounting items added: {added}")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
