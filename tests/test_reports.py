from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from config import Settings
from database import Base
from models import (
    DealType,
    Event,
    EventData,
    EventStatus,
    EventType,
    Expense,
    ExpenseCategory,
    PaymentTerms,
    User,
)
from services import ReportService, RevenuePolicy


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_settings(**overrides) -> Settings:
    values = {
        "database_url": "sqlite://",
        "environment": "test",
        "token_secret": "test-secret",
        "token_max_age_hours": 24,
        "revenue_source": "recorded",
        "revenue_estimate_multiplier": Decimal("1.5"),
        "report_months": 6,
        "log_level": "INFO",
    }
    values.update(overrides)
    return Settings(**values)


def add_user(session, email: str = "owner@example.com") -> User:
    user = User(name="Owner", email=email, password_hash="x")
    session.add(user)
    session.flush()
    return user


def add_event(
    session,
    user: User,
    name: str,
    event_date: date,
    *,
    status: EventStatus = EventStatus.completed,
    event_type: EventType = EventType.one_time,
    expenses: tuple[tuple[ExpenseCategory, int], ...] = (),
    revenue_cents: int | None = None,
    attendees: int | None = None,
) -> Event:
    event = Event(
        user_id=user.id,
        name=name,
        event_type=event_type,
        event_date=event_date,
        venue_name="Club X",
        deal_type=DealType.revenue_share,
        payment_terms=PaymentTerms.one_week,
        status=status,
    )
    session.add(event)
    session.flush()
    for category, cents in expenses:
        session.add(Expense(event_id=event.id, category=category, amount_cents=cents))
    if revenue_cents is not None:
        session.add(
            EventData(
                event_id=event.id, revenue_cents=revenue_cents, attendee_count=attendees
            )
        )
    session.flush()
    return event


def seed(session) -> User:
    user = add_user(session)
    add_event(
        session,
        user,
        "Friday Night",
        date(2024, 5, 10),
        expenses=(
            (ExpenseCategory.venue, 50_000),
            (ExpenseCategory.staff, 30_000),
        ),
        revenue_cents=200_000,
        attendees=100,
    )
    add_event(
        session,
        user,
        "Friday Night",
        date(2024, 6, 7),
        expenses=((ExpenseCategory.venue, 50_000),),
        revenue_cents=120_000,
        attendees=80,
    )
    add_event(
        session,
        user,
        "Saturday Social",
        date(2024, 6, 1),
        event_type=EventType.monthly,
        expenses=((ExpenseCategory.promoter, 20_000),),
    )
    add_event(
        session,
        user,
        "Upcoming Gig",
        date(2024, 7, 1),
        status=EventStatus.upcoming,
        expenses=((ExpenseCategory.supplies, 10_000),),
    )
    session.commit()
    return user


def test_financial_summary_uses_recorded_revenue() -> None:
    session = make_session()
    user = seed(session)

    summary = ReportService(session, user.id, settings=make_settings()).financial_summary()

    assert summary == {
        "revenue_source": "recorded",
        "total_revenue": 3200.0,
        "total_expenses": 1600.0,
        "total_profit": 1600.0,
        "events_count": 3,
        "avg_revenue_per_event": 1066.67,
        "avg_expenses_per_event": 533.33,
        "avg_profit_per_event": 533.33,
        "roi": 100.0,
    }


def test_financial_summary_without_completed_events_has_zero_averages() -> None:
    session = make_session()
    user = add_user(session)
    add_event(
        session,
        user,
        "Upcoming Gig",
        date(2024, 7, 1),
        status=EventStatus.upcoming,
        expenses=((ExpenseCategory.venue, 10_000),),
    )
    session.commit()

    summary = ReportService(session, user.id, settings=make_settings()).financial_summary()

    assert summary["events_count"] == 0
    assert summary["total_expenses"] == 100.0
    assert summary["avg_revenue_per_event"] == 0.0
    assert summary["avg_expenses_per_event"] == 0.0
    assert summary["avg_profit_per_event"] == 0.0
    assert summary["roi"] == -100.0


def test_financial_summary_on_empty_database() -> None:
    session = make_session()
    user = add_user(session)
    session.commit()

    summary = ReportService(session, user.id, settings=make_settings()).financial_summary()

    assert summary["total_revenue"] == 0.0
    assert summary["roi"] == 0.0
    assert summary["events_count"] == 0


def test_revenue_is_not_multiplied_by_expense_rows() -> None:
    session = make_session()
    user = add_user(session)
    add_event(
        session,
        user,
        "Busy Night",
        date(2024, 5, 3),
        expenses=(
            (ExpenseCategory.venue, 10_000),
            (ExpenseCategory.staff, 10_000),
            (ExpenseCategory.other, 10_000),
        ),
        revenue_cents=50_000,
    )
    session.commit()

    summary = ReportService(session, user.id, settings=make_settings()).financial_summary()

    assert summary["total_revenue"] == 500.0
    assert summary["total_expenses"] == 300.0


def test_estimated_revenue_policy() -> None:
    session = make_session()
    user = seed(session)
    settings = make_settings(revenue_source="estimated")
    reports = ReportService(session, user.id, settings=settings)

    summary = reports.financial_summary()
    assert summary["revenue_source"] == "estimated"
    assert summary["total_revenue"] == 2400.0
    assert summary["total_profit"] == 800.0
    assert summary["roi"] == 50.0

    performance = reports.event_performance()
    assert [row["name"] for row in performance] == ["Friday Night", "Saturday Social"]
    assert performance[0]["total_revenue"] == 1950.0
    assert performance[0]["avg_attendance"] is None
    assert performance[1]["total_profit"] == 100.0


def test_revenue_policy_rounds_estimates_to_cents() -> None:
    policy = RevenuePolicy("estimated", Decimal("1.5"))
    assert policy.revenue_cents(99_999, 333) == 500
    assert RevenuePolicy("recorded", Decimal("1.5")).revenue_cents(1234, 333) == 1234


def test_monthly_performance_fills_empty_months() -> None:
    session = make_session()
    user = seed(session)

    months = ReportService(
        session, user.id, settings=make_settings()
    ).monthly_performance(3, today=date(2024, 6, 15))

    assert months == [
        {
            "month": "2024-04",
            "year": 2024,
            "revenue": 0.0,
            "expenses": 0.0,
            "profit": 0.0,
            "events_count": 0,
        },
        {
            "month": "2024-05",
            "year": 2024,
            "revenue": 2000.0,
            "expenses": 800.0,
            "profit": 1200.0,
            "events_count": 1,
        },
        {
            "month": "2024-06",
            "year": 2024,
            "revenue": 1200.0,
            "expenses": 700.0,
            "profit": 500.0,
            "events_count": 2,
        },
    ]


def test_monthly_performance_defaults_to_configured_window() -> None:
    session = make_session()
    user = seed(session)

    months = ReportService(
        session, user.id, settings=make_settings(report_months=2)
    ).monthly_performance(today=date(2024, 1, 20))

    assert [row["month"] for row in months] == ["2023-12", "2024-01"]
    assert all(row["events_count"] == 0 for row in months)


def test_event_performance_groups_by_name_and_sorts_by_profit() -> None:
    session = make_session()
    user = seed(session)

    performance = ReportService(
        session, user.id, settings=make_settings()
    ).event_performance()

    assert performance == [
        {
            "name": "Friday Night",
            "count": 2,
            "total_revenue": 3200.0,
            "total_expenses": 1300.0,
            "total_profit": 1900.0,
            "avg_profit": 950.0,
            "avg_attendance": 90.0,
        },
        {
            "name": "Saturday Social",
            "count": 1,
            "total_revenue": 0.0,
            "total_expenses": 200.0,
            "total_profit": -200.0,
            "avg_profit": -200.0,
            "avg_attendance": None,
        },
    ]


def test_expense_breakdown_percentages_sum_to_hundred() -> None:
    session = make_session()
    user = seed(session)

    breakdown = ReportService(
        session, user.id, settings=make_settings()
    ).expense_breakdown()

    assert [(row["category"], row["total"]) for row in breakdown] == [
        (ExpenseCategory.venue, 1000.0),
        (ExpenseCategory.staff, 300.0),
        (ExpenseCategory.promoter, 200.0),
        (ExpenseCategory.supplies, 100.0),
    ]
    assert breakdown[0]["percentage"] == pytest.approx(62.5)
    assert sum(row["percentage"] for row in breakdown) == pytest.approx(100.0)


def test_expense_breakdown_empty() -> None:
    session = make_session()
    user = add_user(session)
    session.commit()

    assert ReportService(session, user.id, settings=make_settings()).expense_breakdown() == []


def test_reports_ignore_other_users_events() -> None:
    session = make_session()
    owner = seed(session)
    other = add_user(session, "other@example.com")
    add_event(
        session,
        other,
        "Private Party",
        date(2024, 6, 2),
        expenses=((ExpenseCategory.entertainment, 99_900),),
        revenue_cents=500_000,
    )
    session.commit()

    reports = ReportService(session, owner.id, settings=make_settings())

    assert reports.financial_summary()["total_expenses"] == 1600.0
    assert "Private Party" not in {row["name"] for row in reports.event_performance()}
    assert ExpenseCategory.entertainment not in {
        row["category"] for row in reports.expense_breakdown()
    }


def test_monthly_performance_with_estimated_revenue() -> None:
    session = make_session()
    user = seed(session)
    settings = make_settings(
        revenue_source="estimated", revenue_estimate_multiplier=Decimal("2")
    )

    months = ReportService(session, user.id, settings=settings).monthly_performance(
        3, today=date(2024, 6, 15)
    )

    by_month = {row["month"]: row for row in months}
    assert by_month["2024-05"]["revenue"] == by_month["2024-05"]["expenses"] * 2 == 1600.0
    assert by_month["2024-06"]["revenue"] == 1400.0
    assert by_month["2024-06"]["profit"] == 700.0
    assert by_month["2024-04"]["revenue"] == 0.0
