from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def _values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class UserRole(str, Enum):
    user = "user"
    admin = "admin"


class EventType(str, Enum):
    weekly = "weekly"
    monthly = "monthly"
    one_time = "one-time"


class DayOfWeek(str, Enum):
    monday = "monday"
    tuesday = "tuesday"
    wednesday = "wednesday"
    thursday = "thursday"
    friday = "friday"
    saturday = "saturday"
    sunday = "sunday"


class DealType(str, Enum):
    revenue_share = "revenue-share"
    revenue_share_entrance = "revenue-share-entrance"


class PaymentTerms(str, Enum):
    one_week = "one-week"
    two_weeks = "two-weeks"
    three_weeks = "three-weeks"
    one_month = "one-month"


class EventStatus(str, Enum):
    upcoming = "upcoming"
    completed = "completed"
    cancelled = "cancelled"


class ExpenseCategory(str, Enum):
    promoter = "Promoter"
    staff = "Staff"
    venue = "Venue"
    ad_spend = "Ad Spend"
    commission = "Commission"
    entertainment = "Entertainment"
    supplies = "Supplies"
    other = "Other"


class PaymentMethod(str, Enum):
    cash = "Cash"
    bank_transfer = "Bank Transfer"
    card = "Card"
    other = "Other"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        SAEnum(UserRole, name="userrole", values_callable=_values),
        nullable=False,
        default=UserRole.user,
    )
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime)

    events: Mapped[list["Event"]] = relationship("Event", back_populates="owner")


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    event_type: Mapped[EventType] = mapped_column(
        SAEnum(EventType, name="eventtype", values_callable=_values), nullable=False
    )
    day_of_week: Mapped[Optional[DayOfWeek]] = mapped_column(
        SAEnum(DayOfWeek, name="dayofweek", values_callable=_values)
    )
    event_date: Mapped[Optional[date]] = mapped_column(Date)
    venue_name: Mapped[str] = mapped_column(String(120), nullable=False)
    deal_type: Mapped[DealType] = mapped_column(
        SAEnum(DealType, name="dealtype", values_callable=_values), nullable=False
    )
    commissions: Mapped[Optional[str]] = mapped_column(Text)
    is_progressive_commission: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    payment_terms: Mapped[PaymentTerms] = mapped_column(
        SAEnum(PaymentTerms, name="paymentterms", values_callable=_values),
        nullable=False,
    )
    entrance_share: Mapped[Optional[str]] = mapped_column(String(50))
    status: Mapped[EventStatus] = mapped_column(
        SAEnum(EventStatus, name="eventstatus", values_callable=_values),
        nullable=False,
        default=EventStatus.upcoming,
    )

    owner: Mapped[Optional["User"]] = relationship("User", back_populates="events")
    expenses: Mapped[list["Expense"]] = relationship(
        "Expense",
        back_populates="event",
        order_by="Expense.id",
        cascade="all, delete-orphan",
    )
    data: Mapped[Optional["EventData"]] = relationship(
        "EventData", back_populates="event", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_events_user_status", "user_id", "status"),
        Index("ix_events_user_date", "user_id", "event_date"),
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[int] = mapped_column(
        ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    category: Mapped[ExpenseCategory] = mapped_column(
        SAEnum(ExpenseCategory, name="expensecategory", values_callable=_values),
        nullable=False,
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255))
    payment_date: Mapped[date] = mapped_column(
        Date, default=date.today, nullable=False
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SAEnum(PaymentMethod, name="paymentmethod", values_callable=_values),
        nullable=False,
        default=PaymentMethod.cash,
    )
    receipt: Mapped[Optional[str]] = mapped_column(String(255))

    event: Mapped["Event"] = relationship("Event", back_populates="expenses")

    @property
    def amount(self) -> Decimal:
        return cents_to_decimal(self.amount_cents)

    __table_args__ = (
        Index("ix_expenses_event", "event_id"),
        Index("ix_expenses_category", "category"),
        CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
    )


class EventData(Base, TimestampMixin):
    __tablename__ = "event_data"
    __table_args__ = (
        UniqueConstraint("event_id", name="uq_event_data_event"),
        CheckConstraint("revenue_cents >= 0", name="ck_event_data_revenue_positive"),
        CheckConstraint(
            "attendee_count IS NULL OR attendee_count >= 0",
            name="ck_event_data_attendees_positive",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[int] = mapped_column(
        ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    revenue_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    attendee_count: Mapped[Optional[int]] = mapped_column(Integer)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    event: Mapped["Event"] = relationship("Event", back_populates="data")

    @property
    def revenue(self) -> Decimal:
        return cents_to_decimal(self.revenue_cents)
