from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from pydantic.alias_generators import to_camel
from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session, selectinload
from werkzeug.security import check_password_hash, generate_password_hash

from config import Settings, get_settings
from database import unit_of_work
from models import (
    DealType,
    Event,
    EventData,
    EventStatus,
    EventType,
    Expense,
    ExpenseCategory,
    User,
    UserRole,
)
from periods import trailing_months, trailing_period
from schemas import (
    DatedEventIn,
    EventDataIn,
    EventUpdateIn,
    ExpenseIn,
    ExpenseUpdateIn,
    LoginIn,
    PasswordChangeIn,
    ProfileUpdateIn,
    RegisterIn,
    WeeklyEventIn,
)
from tokens import TokenExpired, TokenInvalid, generate_token, verify_token

logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


class ConflictError(ValueError):
    pass


class ValidationFailed(ValueError):
    def __init__(self, errors: list[dict[str, str]]) -> None:
        super().__init__("Validation failed")
        self.errors = errors


class AuthError(ValueError):
    """Authentication failure.

    ``kind`` is one of ``missing``, ``invalid``, ``expired``, ``unknown_user``
    for token problems, or ``credentials`` for a rejected email/password.
    """

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind


def decimal_to_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_euros(cents: Union[int, float]) -> float:
    return round(cents / 100, 2)


def _field_error(field: str, message: str) -> dict[str, str]:
    return {"field": to_camel(field), "message": message}


class UserService:
    def __init__(self, session: Session, settings: Optional[Settings] = None) -> None:
        self.session = session
        self.settings = settings or get_settings()

    def _by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def issue_token(self, user: User) -> str:
        return generate_token(user.id, user.role.value, secret=self.settings.token_secret)

    def register(self, data: RegisterIn) -> tuple[User, str]:
        if self._by_email(data.email):
            raise ConflictError("Email already registered")
        user = User(
            name=data.name,
            email=data.email,
            password_hash=generate_password_hash(data.password),
            role=UserRole.user,
        )
        with unit_of_work(self.session):
            self.session.add(user)
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user, self.issue_token(user)

    def login(self, data: LoginIn) -> tuple[User, str]:
        user = self._by_email(data.email)
        if not user or not check_password_hash(user.password_hash, data.password):
            logger.warning("login_failed: reason=bad_credentials")
            raise AuthError("credentials", "Invalid email or password")
        with unit_of_work(self.session):
            user.last_login = datetime.utcnow()
        self.session.refresh(user)
        logger.info(f"login: user_id={user.id}")
        return user, self.issue_token(user)

    def user_for_token(self, token: Optional[str]) -> User:
        if not token:
            raise AuthError("missing", "Authentication required. Please log in.")
        try:
            claims = verify_token(
                token,
                max_age_hours=self.settings.token_max_age_hours,
                secret=self.settings.token_secret,
            )
        except TokenExpired as exc:
            raise AuthError(
                "expired", "Your session has expired. Please log in again."
            ) from exc
        except TokenInvalid as exc:
            raise AuthError("invalid", "Invalid authentication token.") from exc

        user = self.session.get(User, claims.user_id)
        if not user:
            raise AuthError("unknown_user", "User not found. Please log in again.")
        return user

    def update_profile(self, user_id: int, data: ProfileUpdateIn) -> User:
        user = self.get(user_id)
        if data.email and data.email != user.email and self._by_email(data.email):
            raise ConflictError("Email already in use")
        with unit_of_work(self.session):
            if data.email:
                user.email = data.email
            if data.name:
                user.name = data.name
        self.session.refresh(user)
        return user

    def change_password(self, user_id: int, data: PasswordChangeIn) -> None:
        user = self.get(user_id)
        if not check_password_hash(user.password_hash, data.current_password):
            raise AuthError("credentials", "Current password is incorrect")
        with unit_of_work(self.session):
            user.password_hash = generate_password_hash(data.new_password)
        logger.info(f"password_changed: user_id={user.id}")


_EVENT_FIELDS = (
    "name",
    "event_type",
    "day_of_week",
    "event_date",
    "venue_name",
    "deal_type",
    "commissions",
    "is_progressive_commission",
    "payment_terms",
    "entrance_share",
    "status",
)
_REQUIRED_EVENT_FIELDS = {
    "name",
    "event_type",
    "venue_name",
    "deal_type",
    "is_progressive_commission",
    "payment_terms",
    "status",
}
_REQUIRED_EXPENSE_FIELDS = {"category", "amount", "payment_date", "payment_method"}


def _reject_nulls(changes: dict[str, object], required: set[str]) -> None:
    errors = [
        _field_error(field, "Field cannot be null")
        for field, value in changes.items()
        if field in required and value is None
    ]
    if errors:
        raise ValidationFailed(errors)


def _visible_to(user_id: int):
    return or_(Event.user_id == user_id, Event.user_id.is_(None))


class EventService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list(self) -> list[Event]:
        stmt = (
            select(Event)
            .where(_visible_to(self.user_id))
            .order_by(Event.created_at.desc(), Event.id.desc())
        )
        return self.session.scalars(stmt).all()

    def get(self, event_id: int, *, with_details: bool = False) -> Event:
        stmt = select(Event).where(Event.id == event_id, _visible_to(self.user_id))
        if with_details:
            stmt = stmt.options(
                selectinload(Event.expenses), selectinload(Event.data)
            ).execution_options(populate_existing=True)
        event = self.session.scalar(stmt)
        if not event:
            raise NotFoundError("Event not found")
        return event

    def create_with_expenses(self, data: Union[WeeklyEventIn, DatedEventIn]) -> Event:
        event = Event(
            user_id=self.user_id,
            name=data.name,
            event_type=EventType(data.event_type),
            day_of_week=getattr(data, "day_of_week", None),
            event_date=getattr(data, "event_date", None),
            venue_name=data.venue_name,
            deal_type=data.deal_type,
            commissions=data.commissions,
            is_progressive_commission=data.is_progressive_commission,
            payment_terms=data.payment_terms,
            entrance_share=data.entrance_share,
            status=data.status,
        )
        with unit_of_work(self.session):
            self.session.add(event)
            self.session.flush()
            if data.expenses:
                self.session.add_all(
                    [build_expense(event.id, item) for item in data.expenses]
                )
                self.session.flush()
        logger.info(
            f"event_created: event_id={event.id} user_id={self.user_id} "
            f"expenses={len(data.expenses)}"
        )
        return self.get(event.id, with_details=True)

    def update(self, event_id: int, data: EventUpdateIn) -> Event:
        event = self.get(event_id)
        changes = data.model_dump(exclude_unset=True)
        _reject_nulls(changes, _REQUIRED_EVENT_FIELDS)

        merged = {field: getattr(event, field) for field in _EVENT_FIELDS}
        merged.update(changes)
        merged["event_type"] = EventType(merged["event_type"])

        errors: list[dict[str, str]] = []
        if merged["event_type"] == EventType.weekly:
            if merged["day_of_week"] is None:
                errors.append(
                    _field_error("day_of_week", "Day of week is required for weekly events")
                )
            merged["event_date"] = None
        else:
            if merged["event_date"] is None:
                errors.append(
                    _field_error("event_date", "Event date is required for dated events")
                )
            merged["day_of_week"] = None

        if merged["deal_type"] == DealType.revenue_share_entrance:
            share = (merged["entrance_share"] or "").strip()
            if not share:
                errors.append(
                    _field_error(
                        "entrance_share", "Entrance share is required for entrance deals"
                    )
                )
            merged["entrance_share"] = share
        else:
            merged["entrance_share"] = None

        if errors:
            raise ValidationFailed(errors)

        with unit_of_work(self.session):
            for field, value in merged.items():
                setattr(event, field, value)
        self.session.refresh(event)
        logger.info(f"event_updated: event_id={event.id} fields={sorted(changes)}")
        return event

    def delete(self, event_id: int) -> None:
        event = self.get(event_id)
        with unit_of_work(self.session):
            self.session.execute(delete(Expense).where(Expense.event_id == event.id))
            self.session.execute(
                delete(EventData).where(EventData.event_id == event.id)
            )
            self.session.expire(event, ["expenses", "data"])
            self.session.delete(event)
        logger.info(f"event_deleted: event_id={event_id} user_id={self.user_id}")


def build_expense(event_id: int, data: ExpenseIn) -> Expense:
    return Expense(
        event_id=event_id,
        category=ExpenseCategory(data.category),
        amount_cents=decimal_to_cents(data.amount),
        description=data.description,
        payment_date=data.payment_date or date.today(),
        payment_method=data.payment_method,
        receipt=data.receipt,
    )


class ExpenseService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.events = EventService(session, user_id)

    def list_for_event(self, event_id: int) -> list[Expense]:
        event = self.events.get(event_id)
        stmt = (
            select(Expense)
            .where(Expense.event_id == event.id)
            .order_by(Expense.created_at.desc(), Expense.id.desc())
        )
        return self.session.scalars(stmt).all()

    def get(self, expense_id: int, *, event_id: Optional[int] = None) -> Expense:
        stmt = (
            select(Expense)
            .join(Event, Event.id == Expense.event_id)
            .where(Expense.id == expense_id, _visible_to(self.user_id))
        )
        if event_id is not None:
            stmt = stmt.where(Expense.event_id == event_id)
        expense = self.session.scalar(stmt)
        if not expense:
            raise NotFoundError("Expense not found")
        return expense

    def create(self, event_id: int, data: ExpenseIn) -> Expense:
        event = self.events.get(event_id)
        expense = build_expense(event.id, data)
        with unit_of_work(self.session):
            self.session.add(expense)
        self.session.refresh(expense)
        logger.info(f"expense_created: expense_id={expense.id} event_id={event.id}")
        return expense

    def update(
        self, expense_id: int, data: ExpenseUpdateIn, *, event_id: Optional[int] = None
    ) -> Expense:
        expense = self.get(expense_id, event_id=event_id)
        changes = data.model_dump(exclude_unset=True)
        _reject_nulls(changes, _REQUIRED_EXPENSE_FIELDS)
        if "amount" in changes:
            expense.amount_cents = decimal_to_cents(changes.pop("amount"))
        for field, value in changes.items():
            setattr(expense, field, value)
        with unit_of_work(self.session):
            self.session.flush()
        self.session.refresh(expense)
        logger.info(f"expense_updated: expense_id={expense.id} fields={sorted(changes)}")
        return expense

    def delete(self, expense_id: int, *, event_id: Optional[int] = None) -> None:
        expense = self.get(expense_id, event_id=event_id)
        with unit_of_work(self.session):
            self.session.delete(expense)
        logger.info(f"expense_deleted: expense_id={expense_id}")


class EventDataService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.events = EventService(session, user_id)

    def get(self, event_id: int) -> EventData:
        event = self.events.get(event_id)
        data = self.session.scalar(select(EventData).where(EventData.event_id == event.id))
        if not data:
            raise NotFoundError("No performance data recorded for this event")
        return data

    def upsert(self, event_id: int, payload: EventDataIn) -> EventData:
        event = self.events.get(event_id)
        data = self.session.scalar(select(EventData).where(EventData.event_id == event.id))
        if not data:
            data = EventData(event_id=event.id)
            self.session.add(data)
        data.revenue_cents = decimal_to_cents(payload.revenue)
        data.attendee_count = payload.attendee_count
        data.notes = payload.notes
        with unit_of_work(self.session):
            self.session.flush()
        self.session.refresh(data)
        logger.info(
            f"event_data_recorded: event_id={event.id} revenue_cents={data.revenue_cents}"
        )
        return data


@dataclass(frozen=True)
class RevenuePolicy:
    """Where report revenue comes from.

    ``recorded`` sums the revenue stored per event in ``event_data`` (0 when
    nothing was recorded). ``estimated`` ignores recorded figures and uses
    ``expenses * multiplier``.
    """

    source: str
    multiplier: Decimal

    @classmethod
    def from_settings(cls, settings: Settings) -> "RevenuePolicy":
        return cls(
            source=settings.revenue_source,
            multiplier=settings.revenue_estimate_multiplier,
        )

    @property
    def estimated(self) -> bool:
        return self.source == "estimated"

    def revenue_cents(self, recorded_cents: int, expense_cents: int) -> int:
        if self.estimated:
            return int(
                (Decimal(expense_cents) * self.multiplier).quantize(
                    Decimal("1"), rounding=ROUND_HALF_UP
                )
            )
        return recorded_cents


class ReportService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        settings: Optional[Settings] = None,
        policy: Optional[RevenuePolicy] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.settings = settings or get_settings()
        self.policy = policy or RevenuePolicy.from_settings(self.settings)

    def _event_totals(self):
        """Sum expenses and recorded revenue per event in separate sub-selects.

        Joining both tables to ``events`` directly would multiply each expense
        by the number of revenue rows and vice versa.
        """
        expense_totals = (
            select(
                Expense.event_id.label("event_id"),
                func.sum(Expense.amount_cents).label("expense_cents"),
            )
            .group_by(Expense.event_id)
            .subquery()
        )
        revenue_totals = (
            select(
                EventData.event_id.label("event_id"),
                func.sum(EventData.revenue_cents).label("revenue_cents"),
                func.sum(EventData.attendee_count).label("attendees"),
            )
            .group_by(EventData.event_id)
            .subquery()
        )
        return expense_totals, revenue_totals

    def financial_summary(self) -> dict[str, object]:
        expense_totals, revenue_totals = self._event_totals()
        stmt = (
            select(
                Event.id,
                Event.status,
                func.coalesce(expense_totals.c.expense_cents, 0).label("expense_cents"),
                func.coalesce(revenue_totals.c.revenue_cents, 0).label("revenue_cents"),
            )
            .outerjoin(expense_totals, expense_totals.c.event_id == Event.id)
            .outerjoin(revenue_totals, revenue_totals.c.event_id == Event.id)
            .where(_visible_to(self.user_id))
        )

        total_revenue = 0
        total_expenses = 0
        completed = 0
        for row in self.session.execute(stmt):
            expenses = int(row.expense_cents or 0)
            total_expenses += expenses
            total_revenue += self.policy.revenue_cents(
                int(row.revenue_cents or 0), expenses
            )
            if row.status == EventStatus.completed:
                completed += 1

        total_profit = total_revenue - total_expenses

        def per_event(cents: int) -> float:
            return cents_to_euros(cents / completed) if completed else 0.0

        roi = (total_profit / total_expenses) * 100 if total_expenses else 0.0
        return {
            "revenue_source": self.policy.source,
            "total_revenue": cents_to_euros(total_revenue),
            "total_expenses": cents_to_euros(total_expenses),
            "total_profit": cents_to_euros(total_profit),
            "events_count": completed,
            "avg_revenue_per_event": per_event(total_revenue),
            "avg_expenses_per_event": per_event(total_expenses),
            "avg_profit_per_event": per_event(total_profit),
            "roi": round(roi, 2),
        }

    def monthly_performance(
        self, months: Optional[int] = None, *, today: Optional[date] = None
    ) -> list[dict[str, object]]:
        months = months or self.settings.report_months
        keys = trailing_months(months, today=today)
        period = trailing_period(months, today=today)

        expense_totals, revenue_totals = self._event_totals()
        stmt = (
            select(
                Event.event_date,
                func.coalesce(expense_totals.c.expense_cents, 0).label("expense_cents"),
                func.coalesce(revenue_totals.c.revenue_cents, 0).label("revenue_cents"),
            )
            .outerjoin(expense_totals, expense_totals.c.event_id == Event.id)
            .outerjoin(revenue_totals, revenue_totals.c.event_id == Event.id)
            .where(
                _visible_to(self.user_id),
                Event.status == EventStatus.completed,
                Event.event_date.is_not(None),
                Event.event_date.between(period.start, period.end),
            )
        )

        buckets: dict[tuple[int, int], dict[str, int]] = {
            (month.year, month.month): {"revenue": 0, "expenses": 0, "events": 0}
            for month in keys
        }
        for row in self.session.execute(stmt):
            bucket = buckets[(row.event_date.year, row.event_date.month)]
            expenses = int(row.expense_cents or 0)
            bucket["expenses"] += expenses
            bucket["revenue"] += self.policy.revenue_cents(
                int(row.revenue_cents or 0), expenses
            )
            bucket["events"] += 1

        out: list[dict[str, object]] = []
        for month in keys:
            bucket = buckets[(month.year, month.month)]
            out.append(
                {
                    "month": f"{month.year:04d}-{month.month:02d}",
                    "year": month.year,
                    "revenue": cents_to_euros(bucket["revenue"]),
                    "expenses": cents_to_euros(bucket["expenses"]),
                    "profit": cents_to_euros(bucket["revenue"] - bucket["expenses"]),
                    "events_count": bucket["events"],
                }
            )
        return out

    def event_performance(self) -> list[dict[str, object]]:
        expense_totals, revenue_totals = self._event_totals()
        stmt = (
            select(
                Event.name.label("name"),
                func.count(Event.id).label("count"),
                func.sum(func.coalesce(expense_totals.c.expense_cents, 0)).label(
                    "expense_cents"
                ),
                func.sum(func.coalesce(revenue_totals.c.revenue_cents, 0)).label(
                    "revenue_cents"
                ),
                func.avg(revenue_totals.c.attendees).label("avg_attendance"),
            )
            .outerjoin(expense_totals, expense_totals.c.event_id == Event.id)
            .outerjoin(revenue_totals, revenue_totals.c.event_id == Event.id)
            .where(_visible_to(self.user_id), Event.status == EventStatus.completed)
            .group_by(Event.name)
        )

        rows: list[tuple[int, dict[str, object]]] = []
        for row in self.session.execute(stmt):
            count = int(row.count)
            expenses = int(row.expense_cents or 0)
            revenue = self.policy.revenue_cents(int(row.revenue_cents or 0), expenses)
            profit = revenue - expenses
            avg_attendance = None
            if not self.policy.estimated and row.avg_attendance is not None:
                avg_attendance = round(float(row.avg_attendance), 1)
            rows.append(
                (
                    profit,
                    {
                        "name": row.name,
                        "count": count,
                        "total_revenue": cents_to_euros(revenue),
                        "total_expenses": cents_to_euros(expenses),
                        "total_profit": cents_to_euros(profit),
                        "avg_profit": cents_to_euros(profit / count),
                        "avg_attendance": avg_attendance,
                    },
                )
            )
        rows.sort(key=lambda item: (-item[0], str(item[1]["name"])))
        return [item for _, item in rows]

    def expense_breakdown(self) -> list[dict[str, object]]:
        total_col = func.sum(Expense.amount_cents)
        stmt = (
            select(Expense.category, total_col.label("total"))
            .join(Event, Event.id == Expense.event_id)
            .where(_visible_to(self.user_id))
            .group_by(Expense.category)
            .order_by(total_col.desc(), Expense.category)
        )
        rows = self.session.execute(stmt).all()
        total = sum(int(row.total or 0) for row in rows)
        breakdown = []
        for row in rows:
            amount = int(row.total or 0)
            percent = (amount / total * 100) if total else 0
            breakdown.append(
                {"category": row.category, "total": cents_to_euros(amount), "percentage": percent}
            )
        return breakdown


def check_database_health(session: Session) -> dict[str, object]:
    session.execute(select(1))
    tables: list[dict[str, object]] = []
    models_ok: dict[str, bool] = {}
    for model in (User, Event, Expense, EventData):
        count = session.execute(select(func.count()).select_from(model)).scalar_one()
        models_ok[model.__name__] = True
        tables.append({"table_name": model.__tablename__, "rows": int(count)})
    bind = session.get_bind()
    return {
        "connection": {"status": "connected", "dialect": bind.dialect.name},
        "models": models_ok,
        "tables": tables,
    }
