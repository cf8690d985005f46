"""users, events, expenses and event data

Revision ID: 202405101200
Revises:
Create Date: 2024-05-10 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202405101200"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column(
            "role",
            sa.Enum("user", "admin", name="userrole"),
            nullable=False,
            server_default="user",
        ),
        sa.Column("last_login", sa.DateTime()),
        *_timestamps(),
    )

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column(
            "event_type",
            sa.Enum("weekly", "monthly", "one-time", name="eventtype"),
            nullable=False,
        ),
        sa.Column(
            "day_of_week",
            sa.Enum(
                "monday",
                "tuesday",
                "wednesday",
                "thursday",
                "friday",
                "saturday",
                "sunday",
                name="dayofweek",
            ),
        ),
        sa.Column("event_date", sa.Date()),
        sa.Column("venue_name", sa.String(length=120), nullable=False),
        sa.Column(
            "deal_type",
            sa.Enum("revenue-share", "revenue-share-entrance", name="dealtype"),
            nullable=False,
        ),
        sa.Column("commissions", sa.Text()),
        sa.Column(
            "is_progressive_commission",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column(
            "payment_terms",
            sa.Enum(
                "one-week", "two-weeks", "three-weeks", "one-month", name="paymentterms"
            ),
            nullable=False,
        ),
        sa.Column("entrance_share", sa.String(length=50)),
        sa.Column(
            "status",
            sa.Enum("upcoming", "completed", "cancelled", name="eventstatus"),
            nullable=False,
            server_default="upcoming",
        ),
        *_timestamps(),
    )
    op.create_index("ix_events_user_status", "events", ["user_id", "status"])
    op.create_index("ix_events_user_date", "events", ["user_id", "event_date"])

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "event_id",
            sa.Integer(),
            sa.ForeignKey("events.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "category",
            sa.Enum(
                "Promoter",
                "Staff",
                "Venue",
                "Ad Spend",
                "Commission",
                "Entertainment",
                "Supplies",
                "Other",
                name="expensecategory",
            ),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=255)),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column(
            "payment_method",
            sa.Enum("Cash", "Bank Transfer", "Card", "Other", name="paymentmethod"),
            nullable=False,
            server_default="Cash",
        ),
        sa.Column("receipt", sa.String(length=255)),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
    )
    op.create_index("ix_expenses_event", "expenses", ["event_id"])
    op.create_index("ix_expenses_category", "expenses", ["category"])

    op.create_table(
        "event_data",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "event_id",
            sa.Integer(),
            sa.ForeignKey("events.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("revenue_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("attendee_count", sa.Integer()),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.UniqueConstraint("event_id", name="uq_event_data_event"),
        sa.CheckConstraint(
            "revenue_cents >= 0", name="ck_event_data_revenue_positive"
        ),
        sa.CheckConstraint(
            "attendee_count IS NULL OR attendee_count >= 0",
            name="ck_event_data_attendees_positive",
        ),
    )


def downgrade():
    op.drop_table("event_data")
    op.drop_index("ix_expenses_category", table_name="expenses")
    op.drop_index("ix_expenses_event", table_name="expenses")
    op.drop_table("expenses")
    op.drop_index("ix_events_user_date", table_name="events")
    op.drop_index("ix_events_user_status", table_name="events")
    op.drop_table("events")
    op.drop_table("users")
