"""initial farm schema

Revision ID: 0001_initial_farm_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0001_initial_farm_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]


def _user_fk(name: str) -> sa.Column:
    return sa.Column(name, sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


def upgrade() -> None:
    """Platform tables (users/RBAC/companies/audit) plus the farm modules."""
    conn = op.get_bind()
    existing_tables = set(sa.inspect(conn).get_table_names())

    # ---- platform ----
    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("full_name", sa.String(255), nullable=True),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
    if "roles" not in existing_tables:
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(64), nullable=False, unique=True),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
    if "permissions" not in existing_tables:
        op.create_table(
            "permissions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(128), nullable=False, unique=True),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
    if "user_roles" not in existing_tables:
        op.create_table(
            "user_roles",
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        )
    if "role_permissions" not in existing_tables:
        op.create_table(
            "role_permissions",
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
            sa.Column(
                "permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True
            ),
        )
    if "companies" not in existing_tables:
        op.create_table(
            "companies",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("plan_type", sa.String(32), nullable=False, server_default="basic"),
            sa.Column("contact_email", sa.String(320), nullable=True),
            sa.Column("contact_phone", sa.String(64), nullable=True),
            sa.Column("address", sa.Text(), nullable=True),
            sa.Column("prefecture", sa.String(64), nullable=True),
            sa.Column("city", sa.String(128), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("max_users", sa.Integer(), nullable=False, server_default="5"),
            sa.Column("max_vegetables", sa.Integer(), nullable=False, server_default="100"),
            sa.Column("settings", JSONType, nullable=True),
            *_timestamps(),
        )
    if "company_memberships" not in existing_tables:
        op.create_table(
            "company_memberships",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
            sa.Column("role", sa.String(32), nullable=False, server_default="member"),
            sa.Column("status", sa.String(32), nullable=False, server_default="active"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("user_id", "company_id", name="uq_company_memberships_user_company"),
        )
        op.create_index("idx_company_memberships_company", "company_memberships", ["company_id"])
    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("request_id", sa.String(64), nullable=True),
            _user_fk("actor_user_id"),
            sa.Column("actor_user_email", sa.String(320), nullable=True),
            sa.Column("company_id", sa.Integer(), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("client_ip", sa.String(64), nullable=True),
        )
        op.create_index("idx_audit_events_entity", "audit_events", ["entity_type", "entity_id"])

    # ---- farm plots (vegetables reference them) ----
    if "farm_plots" not in existing_tables:
        op.create_table(
            "farm_plots",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("area_hectares", sa.Float(), nullable=True),
            sa.Column("geometry", JSONType, nullable=False),
            sa.Column("prefecture", sa.String(64), nullable=True),
            sa.Column("city", sa.String(128), nullable=True),
            sa.Column("address", sa.Text(), nullable=True),
            sa.Column("postal_code", sa.String(16), nullable=True),
            sa.Column("status", sa.String(16), nullable=False, server_default="active"),
            sa.Column("is_mesh_generated", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("mesh_size_meters", sa.Float(), nullable=False, server_default="5"),
            sa.Column("mesh_generated_at", sa.DateTime(), nullable=True),
            *_timestamps(),
            _user_fk("created_by_user_id"),
        )
        op.create_index("idx_farm_plots_company", "farm_plots", ["company_id"])

    # ---- vegetables ----
    if "vegetables" not in existing_tables:
        op.create_table(
            "vegetables",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("variety_name", sa.String(255), nullable=False),
            sa.Column("plot_name", sa.String(255), nullable=False),
            sa.Column("area_size", sa.Float(), nullable=False, server_default="0"),
            sa.Column("planting_date", sa.Date(), nullable=False),
            sa.Column("status", sa.String(32), nullable=False, server_default="planning"),
            sa.Column("plant_count", sa.Integer(), nullable=True),
            sa.Column("expected_harvest_start", sa.Date(), nullable=True),
            sa.Column("expected_harvest_end", sa.Date(), nullable=True),
            sa.Column("actual_harvest_start", sa.Date(), nullable=True),
            sa.Column("actual_harvest_end", sa.Date(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("spatial_data", JSONType, nullable=True),
            sa.Column("polygon_coordinates", JSONType, nullable=True),
            sa.Column("plot_center_lat", sa.Float(), nullable=True),
            sa.Column("plot_center_lng", sa.Float(), nullable=True),
            sa.Column("polygon_color", sa.String(16), nullable=False, server_default="#22c55e"),
            sa.Column(
                "farm_plot_id", sa.Integer(), sa.ForeignKey("farm_plots.id", ondelete="SET NULL"), nullable=True
            ),
            sa.Column("custom_fields", JSONType, nullable=True),
            *_timestamps(),
            _user_fk("created_by_user_id"),
            _user_fk("updated_by_user_id"),
            sa.Column("deleted_at", sa.DateTime(), nullable=True),
            _user_fk("deleted_by_user_id"),
        )
        op.create_index("idx_vegetables_company", "vegetables", ["company_id"])
        op.create_index("idx_vegetables_status", "vegetables", ["status"])
        op.create_index("idx_vegetables_plot_name", "vegetables", ["company_id", "plot_name"])

    # ---- growing tasks ----
    if "growing_tasks" not in existing_tables:
        op.create_table(
            "growing_tasks",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
            sa.Column(
                "vegetable_id", sa.Integer(), sa.ForeignKey("vegetables.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("end_date", sa.Date(), nullable=False),
            sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
            sa.Column("priority", sa.String(16), nullable=False, server_default="medium"),
            sa.Column("task_type", sa.String(32), nullable=False, server_default="other"),
            sa.Column("description", sa.Text(), nullable=True),
            _user_fk("assigned_user_id"),
            sa.Column("estimated_hours", sa.Float(), nullable=True),
            sa.Column("actual_hours", sa.Float(), nullable=True),
            *_timestamps(),
            _user_fk("created_by_user_id"),
            sa.Column("deleted_at", sa.DateTime(), nullable=True),
        )
        op.create_index("idx_growing_tasks_company", "growing_tasks", ["company_id"])
        op.create_index("idx_growing_tasks_vegetable", "growing_tasks", ["vegetable_id"])
        op.create_index("idx_growing_tasks_dates", "growing_tasks", ["start_date", "end_date"])

    # ---- work reports ----
    if "work_reports" not in existing_tables:
        op.create_table(
            "work_reports",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
            sa.Column(
                "vegetable_id", sa.Integer(), sa.ForeignKey("vegetables.id", ondelete="SET NULL"), nullable=True
            ),
            sa.Column("work_type", sa.String(32), nullable=False),
            sa.Column("work_date", sa.Date(), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("start_time", sa.Time(), nullable=True),
            sa.Column("end_time", sa.Time(), nullable=True),
            sa.Column("duration_hours", sa.Float(), nullable=True),
            sa.Column("worker_count", sa.Integer(), nullable=True),
            sa.Column("weather", sa.String(64), nullable=True),
            sa.Column("temperature", sa.Float(), nullable=True),
            sa.Column("humidity", sa.Float(), nullable=True),
            sa.Column("harvest_amount", sa.Float(), nullable=True),
            sa.Column("harvest_unit", sa.String(16), nullable=True),
            sa.Column("harvest_quality", sa.String(16), nullable=True),
            sa.Column("expected_price", sa.Float(), nullable=True),
            sa.Column("fertilizer_type", sa.String(128), nullable=True),
            sa.Column("fertilizer_qty", sa.Float(), nullable=True),
            sa.Column("soil_ph", sa.Float(), nullable=True),
            sa.Column("soil_ec", sa.Float(), nullable=True),
            sa.Column("available_phosphorus", sa.Float(), nullable=True),
            sa.Column("humus_content", sa.Float(), nullable=True),
            sa.Column("soil_notes", sa.Text(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            *_timestamps(),
            _user_fk("created_by_user_id"),
            sa.Column("deleted_at", sa.DateTime(), nullable=True),
        )
        op.create_index("idx_work_reports_company_date", "work_reports", ["company_id", "work_date"])
        op.create_index("idx_work_reports_vegetable", "work_reports", ["vegetable_id"])
        op.create_index("idx_work_reports_work_type", "work_reports", ["work_type"])

    # ---- accounting ----
    if "accounting_items" not in existing_tables:
        op.create_table(
            "accounting_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("code", sa.String(16), nullable=False),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("type", sa.String(16), nullable=False),
            sa.Column("category", sa.String(64), nullable=True),
            sa.Column("cost_type", sa.String(32), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("code", name="uq_accounting_items_code"),
        )
        op.create_index("idx_accounting_items_type", "accounting_items", ["type"])
    if "work_report_accounting" not in existing_tables:
        op.create_table(
            "work_report_accounting",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "work_report_id", sa.Integer(), sa.ForeignKey("work_reports.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column(
                "accounting_item_id",
                sa.Integer(),
                sa.ForeignKey("accounting_items.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("amount", sa.Float(), nullable=False, server_default="0"),
            sa.Column("custom_item_name", sa.String(255), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("is_ai_recommended", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_work_report_accounting_report", "work_report_accounting", ["work_report_id"])
    if "accounting_recommendations" not in existing_tables:
        op.create_table(
            "accounting_recommendations",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
            sa.Column("work_type", sa.String(32), nullable=False),
            sa.Column(
                "accounting_item_id",
                sa.Integer(),
                sa.ForeignKey("accounting_items.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("confidence_score", sa.Float(), nullable=False, server_default="0.5"),
            sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("avg_amount", sa.Float(), nullable=False, server_default="0"),
            sa.Column("last_used_at", sa.DateTime(), nullable=True),
            *_timestamps(),
            sa.UniqueConstraint(
                "company_id",
                "work_type",
                "accounting_item_id",
                name="uq_accounting_recommendations_company_type_item",
            ),
        )

    # ---- photos ----
    if "photos" not in existing_tables:
        op.create_table(
            "photos",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
            sa.Column(
                "vegetable_id", sa.Integer(), sa.ForeignKey("vegetables.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column(
                "work_report_id", sa.Integer(), sa.ForeignKey("work_reports.id", ondelete="SET NULL"), nullable=True
            ),
            sa.Column("storage_key", sa.String(512), nullable=False, unique=True),
            sa.Column("original_filename", sa.String(255), nullable=False),
            sa.Column("content_type", sa.String(64), nullable=False),
            sa.Column("size_bytes", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("sha256", sa.String(64), nullable=True),
            sa.Column("taken_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("tags", JSONType, nullable=True),
            sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            _user_fk("created_by_user_id"),
        )
        op.create_index("idx_photos_company", "photos", ["company_id"])
        op.create_index("idx_photos_vegetable_taken", "photos", ["vegetable_id", "taken_at"])

    # ---- mesh cells ----
    if "plot_cells" not in existing_tables:
        op.create_table(
            "plot_cells",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "farm_plot_id", sa.Integer(), sa.ForeignKey("farm_plots.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column("cell_index", sa.Integer(), nullable=False),
            sa.Column("row_index", sa.Integer(), nullable=False),
            sa.Column("col_index", sa.Integer(), nullable=False),
            sa.Column("geometry", JSONType, nullable=False),
            sa.Column("center_lat", sa.Float(), nullable=False),
            sa.Column("center_lng", sa.Float(), nullable=False),
            sa.Column("area_sqm", sa.Float(), nullable=False),
            sa.Column("is_cultivated", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("vegetable_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("farm_plot_id", "row_index", "col_index", name="uq_plot_cells_plot_row_col"),
        )
        op.create_index("idx_plot_cells_plot", "plot_cells", ["farm_plot_id"])
    if "vegetable_cells" not in existing_tables:
        op.create_table(
            "vegetable_cells",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "vegetable_id", sa.Integer(), sa.ForeignKey("vegetables.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column(
                "plot_cell_id", sa.Integer(), sa.ForeignKey("plot_cells.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column("planting_date", sa.Date(), nullable=True),
            sa.Column("plant_count", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("growth_stage", sa.String(32), nullable=True),
            sa.Column("health_status", sa.String(32), nullable=False, server_default="healthy"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("vegetable_id", "plot_cell_id", name="uq_vegetable_cells_vegetable_cell"),
        )
        op.create_index("idx_vegetable_cells_cell", "vegetable_cells", ["plot_cell_id"])


def downgrade() -> None:
    for table in (
        "vegetable_cells",
        "plot_cells",
        "photos",
        "accounting_recommendations",
        "work_report_accounting",
        "accounting_items",
        "work_reports",
        "growing_tasks",
        "vegetables",
        "farm_plots",
        "audit_events",
        "company_memberships",
        "companies",
        "role_permissions",
        "user_roles",
        "permissions",
        "roles",
        "users",
    ):
        op.drop_table(table)
