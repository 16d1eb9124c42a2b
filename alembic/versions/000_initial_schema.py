"""Initial database schema

Revision ID: 000_initial_schema
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "000_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

USER_ROLES = ("ADMIN", "MANAGER", "SALESPERSON")
CUSTOMER_TIERS = ("STANDARD", "VIP", "NEW", "ENTERPRISE")
AUDIT_ACTIONS = (
    "create_plan", "update_plan", "delete_plan",
    "create_rule", "update_rule", "delete_rule",
    "create_transaction", "import_transactions",
    "calculate_commission", "recalculate_commission",
    "approve_commission", "reject_commission", "pay_commission",
    "create_adjustment", "delete_adjustment",
    "create_api_key", "revoke_api_key",
)


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _organization_id() -> sa.Column:
    return sa.Column(
        "organization_id",
        sa.Integer(),
        sa.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )


def upgrade() -> None:
    """Create all initial tables."""

    # Organizations table
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("require_projects", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_organizations_slug", "organizations", ["slug"], unique=True)

    # Users table
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        _organization_id(),
        sa.Column("external_id", sa.String(255), unique=True, nullable=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("role", sa.Enum(*USER_ROLES, name="userrole"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("organization_id", "email", name="uq_users_org_email"),
    )
    op.create_index("ix_users_organization_id", "users", ["organization_id"])

    # Catalog tables
    op.create_table(
        "territories",
        sa.Column("id", sa.Integer(), primary_key=True),
        _organization_id(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_territories_organization_id", "territories", ["organization_id"])

    op.create_table(
        "clients",
        sa.Column("id", sa.Integer(), primary_key=True),
        _organization_id(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("tier", sa.Enum(*CUSTOMER_TIERS, name="customertier"), nullable=False),
        sa.Column("territory_id", sa.Integer(), sa.ForeignKey("territories.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_clients_organization_id", "clients", ["organization_id"])
    op.create_index("ix_clients_name", "clients", ["name"])
    op.create_index("ix_clients_territory_id", "clients", ["territory_id"])

    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), primary_key=True),
        _organization_id(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_projects_organization_id", "projects", ["organization_id"])
    op.create_index("ix_projects_name", "projects", ["name"])
    op.create_index("ix_projects_client_id", "projects", ["client_id"])

    op.create_table(
        "product_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        _organization_id(),
        sa.Column("name", sa.String(255), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_product_categories_organization_id", "product_categories", ["organization_id"])

    # Commission plans and rules
    op.create_table(
        "commission_plans",
        sa.Column("id", sa.Integer(), primary_key=True),
        _organization_id(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True),
        sa.Column(
            "commission_basis",
            sa.Enum("GROSS_REVENUE", "NET_SALES", name="commissionbasis"),
            nullable=False,
        ),
        sa.Column("base_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_commission_plans_organization_id", "commission_plans", ["organization_id"])
    op.create_index("ix_commission_plans_project_id", "commission_plans", ["project_id"])
    op.create_index("ix_commission_plans_is_active", "commission_plans", ["is_active"])

    op.create_table(
        "commission_rules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "commission_plan_id",
            sa.Integer(),
            sa.ForeignKey("commission_plans.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("rule_type", sa.Enum("PERCENTAGE", "FLAT_AMOUNT", "TIERED", name="ruletype"), nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("flat_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("tier_threshold", sa.Numeric(12, 2), nullable=True),
        sa.Column("tier_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("min_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("max_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("min_sale_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("max_sale_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=True),
        sa.Column("territory_id", sa.Integer(), sa.ForeignKey("territories.id", ondelete="CASCADE"), nullable=True),
        sa.Column(
            "product_category_id",
            sa.Integer(),
            sa.ForeignKey("product_categories.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "customer_tier",
            postgresql.ENUM(*CUSTOMER_TIERS, name="customertier", create_type=False),
            nullable=True,
        ),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_commission_rules_commission_plan_id", "commission_rules", ["commission_plan_id"])
    op.create_index("ix_commission_rules_priority", "commission_rules", ["priority"])

    # Sales transactions
    op.create_table(
        "sales_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        _organization_id(),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("transaction_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "transaction_type",
            sa.Enum("SALE", "RETURN", "ADJUSTMENT", name="transactiontype"),
            nullable=False,
        ),
        sa.Column(
            "parent_transaction_id",
            sa.Integer(),
            sa.ForeignKey("sales_transactions.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True),
        sa.Column(
            "product_category_id",
            sa.Integer(),
            sa.ForeignKey("product_categories.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("invoice_number", sa.String(100), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_sales_transactions_organization_id", "sales_transactions", ["organization_id"])
    op.create_index("ix_sales_transactions_transaction_date", "sales_transactions", ["transaction_date"])
    op.create_index("ix_sales_transactions_transaction_type", "sales_transactions", ["transaction_type"])
    op.create_index("ix_sales_transactions_parent_transaction_id", "sales_transactions", ["parent_transaction_id"])
    op.create_index("ix_sales_transactions_project_id", "sales_transactions", ["project_id"])
    op.create_index("ix_sales_transactions_client_id", "sales_transactions", ["client_id"])
    op.create_index("ix_sales_transactions_user_id", "sales_transactions", ["user_id"])
    op.create_index("ix_sales_transactions_invoice_number", "sales_transactions", ["invoice_number"])

    # Commission calculations (at most one per transaction)
    op.create_table(
        "commission_calculations",
        sa.Column("id", sa.Integer(), primary_key=True),
        _organization_id(),
        sa.Column(
            "sales_transaction_id",
            sa.Integer(),
            sa.ForeignKey("sales_transactions.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "commission_plan_id",
            sa.Integer(),
            sa.ForeignKey("commission_plans.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "status",
            sa.Enum("PENDING", "CALCULATED", "APPROVED", "PAID", "REJECTED", name="calculationstatus"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("calculated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.String(500), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_commission_calculations_organization_id", "commission_calculations", ["organization_id"])
    op.create_index("ix_commission_calculations_user_id", "commission_calculations", ["user_id"])
    op.create_index("ix_commission_calculations_commission_plan_id", "commission_calculations", ["commission_plan_id"])
    op.create_index("ix_commission_calculations_status", "commission_calculations", ["status"])

    op.create_table(
        "commission_adjustments",
        sa.Column("id", sa.Integer(), primary_key=True),
        _organization_id(),
        sa.Column(
            "commission_calculation_id",
            sa.Integer(),
            sa.ForeignKey("commission_calculations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "type",
            sa.Enum("RETURN", "CLAWBACK", "OVERRIDE", "SPLIT_CREDIT", name="adjustmenttype"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("reason", sa.String(500), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "related_transaction_id",
            sa.Integer(),
            sa.ForeignKey("sales_transactions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("applied_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_commission_adjustments_organization_id", "commission_adjustments", ["organization_id"])
    op.create_index(
        "ix_commission_adjustments_commission_calculation_id",
        "commission_adjustments",
        ["commission_calculation_id"],
    )

    # Audit logs table
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        _organization_id(),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("action", sa.Enum(*AUDIT_ACTIONS, name="auditaction"), nullable=False),
        sa.Column("target_type", sa.String(50), nullable=True),
        sa.Column("target_id", sa.Integer(), nullable=True),
        sa.Column("action_metadata", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_audit_logs_organization_id", "audit_logs", ["organization_id"])
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])

    # API keys table
    op.create_table(
        "api_keys",
        sa.Column("id", sa.Integer(), primary_key=True),
        _organization_id(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("prefix", sa.String(32), nullable=False),
        sa.Column("key_hash", sa.String(200), nullable=False),
        sa.Column(
            "role",
            postgresql.ENUM(*USER_ROLES, name="userrole", create_type=False),
            nullable=False,
        ),
        sa.Column("created_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_api_keys_organization_id", "api_keys", ["organization_id"])
    op.create_index("ix_api_keys_prefix", "api_keys", ["prefix"], unique=True)


def downgrade() -> None:
    """Drop all tables in reverse order."""
    op.drop_table("api_keys")
    op.drop_table("audit_logs")
    op.drop_table("commission_adjustments")
    op.drop_table("commission_calculations")
    op.drop_table("sales_transactions")
    op.drop_table("commission_rules")
    op.drop_table("commission_plans")
    op.drop_table("product_categories")
    op.drop_table("projects")
    op.drop_table("clients")
    op.drop_table("territories")
    op.drop_table("users")
    op.drop_table("organizations")

    # Drop enums
    op.execute("DROP TYPE IF EXISTS auditaction")
    op.execute("DROP TYPE IF EXISTS adjustmenttype")
    op.execute("DROP TYPE IF EXISTS calculationstatus")
    op.execute("DROP TYPE IF EXISTS transactiontype")
    op.execute("DROP TYPE IF EXISTS ruletype")
    op.execute("DROP TYPE IF EXISTS commissionbasis")
    op.execute("DROP TYPE IF EXISTS customertier")
    op.execute("DROP TYPE IF EXISTS userrole")
