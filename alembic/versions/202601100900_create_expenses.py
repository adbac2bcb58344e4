"""create expenses ledger

Revision ID: 202601100900
Revises:
Create Date: 2026-01-10 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa

from models import ExpenseCategory


revision = "202601100900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "category",
            sa.Enum(
                *[member.value for member in ExpenseCategory],
                name="expensecategory",
            ),
            nullable=False,
        ),
        sa.Column("notes", sa.Text()),
        sa.Column("receipt_image_path", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("created_on", sa.Date(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_expenses_created_on", "expenses", ["created_on"])
    op.create_index(
        "ix_expenses_category_created_on", "expenses", ["category", "created_on"]
    )


def downgrade():
    op.drop_index("ix_expenses_category_created_on", table_name="expenses")
    op.drop_index("ix_expenses_created_on", table_name="expenses")
    op.drop_table("expenses")
