"""add templates, campaign groups and document template names

Revision ID: 20261019_000002
Revises: 20261019_000001
Create Date: 2026-10-19 00:00:02.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_000002"
down_revision: Union[str, None] = "20261019_000001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "campaign_groups",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("color", sa.String(), nullable=False, server_default="#3B82F6"),
        sa.Column("icon", sa.String(), nullable=False, server_default="folder"),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_campaign_groups_user_id", "campaign_groups", ["user_id"], unique=False)

    op.add_column("campaigns", sa.Column("group_id", sa.String(), nullable=True))
    op.create_foreign_key(
        "fk_campaigns_group_id_campaign_groups",
        "campaigns",
        "campaign_groups",
        ["group_id"],
        ["id"],
    )
    op.create_index("ix_campaigns_group_id", "campaigns", ["group_id"], unique=False)

    op.create_table(
        "templates",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("template_type", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("subject", sa.String(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("variables", sa.JSON(), nullable=True),
        sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_templates_user_id", "templates", ["user_id"], unique=False)
    op.create_index("ix_templates_template_type", "templates", ["template_type"], unique=False)

    op.add_column("ai_documents", sa.Column("template_name", sa.String(), nullable=True))


def downgrade() -> None:
    op.drop_column("ai_documents", "template_name")

    op.drop_index("ix_templates_template_type", table_name="templates")
    op.drop_index("ix_templates_user_id", table_name="templates")
    op.drop_table("templates")

    op.drop_index("ix_campaigns_group_id", table_name="campaigns")
    op.drop_constraint("fk_campaigns_group_id_campaign_groups", "campaigns", type_="foreignkey")
    op.drop_column("campaigns", "group_id")

    op.drop_index("ix_campaign_groups_user_id", table_name="campaign_groups")
    op.drop_table("campaign_groups")
