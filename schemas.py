from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    ValidationInfo,
    field_validator,
)
from pydantic.alias_generators import to_camel

from models import (
    DayOfWeek,
    DealType,
    EventStatus,
    EventType,
    ExpenseCategory,
    PaymentMethod,
    PaymentTerms,
    UserRole,
)

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

Amount = Annotated[Decimal, Field(gt=0, max_digits=10, decimal_places=2)]
Revenue = Annotated[Decimal, Field(ge=0, max_digits=12, decimal_places=2)]
PersonName = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=2, max_length=100)
]
Label = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=2, max_length=120)
]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CamelOut(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


# Auth


class RegisterIn(CamelModel):
    name: PersonName
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(..., min_length=6, max_length=128)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class LoginIn(CamelModel):
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class ProfileUpdateIn(CamelModel):
    name: Optional[PersonName] = None
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN, max_length=255)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: Optional[str]) -> Optional[str]:
        return value.strip().lower() if value else value


class PasswordChangeIn(CamelModel):
    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., min_length=6, max_length=128)


class UserOut(CamelOut):
    id: int
    name: str
    email: str
    role: UserRole
    last_login: Optional[datetime] = None


class AuthOut(CamelOut):
    user: UserOut
    token: str


class UserEnvelopeOut(CamelOut):
    user: UserOut


# Expenses


class ExpenseIn(CamelModel):
    category: ExpenseCategory
    amount: Amount
    description: Optional[str] = Field(default=None, max_length=255)
    payment_date: Optional[date] = None
    payment_method: PaymentMethod = PaymentMethod.cash
    receipt: Optional[str] = Field(default=None, max_length=255)


class ExpenseUpdateIn(CamelModel):
    category: Optional[ExpenseCategory] = None
    amount: Optional[Amount] = None
    description: Optional[str] = Field(default=None, max_length=255)
    payment_date: Optional[date] = None
    payment_method: Optional[PaymentMethod] = None
    receipt: Optional[str] = Field(default=None, max_length=255)


class ExpenseOut(CamelOut):
    id: int
    event_id: int
    category: ExpenseCategory
    amount: Decimal
    description: Optional[str] = None
    payment_date: date
    payment_method: PaymentMethod
    receipt: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# Events


class EventFieldsIn(CamelModel):
    name: Label
    venue_name: Label
    deal_type: DealType
    commissions: Optional[str] = Field(default=None, max_length=2000)
    is_progressive_commission: bool = False
    payment_terms: PaymentTerms
    entrance_share: Optional[str] = Field(
        default=None, max_length=50, validate_default=True
    )
    status: EventStatus = EventStatus.upcoming
    expenses: list[ExpenseIn] = Field(default_factory=list)

    @field_validator("entrance_share")
    @classmethod
    def _entrance_share_matches_deal(
        cls, value: Optional[str], info: ValidationInfo
    ) -> Optional[str]:
        deal_type = info.data.get("deal_type")
        if deal_type != DealType.revenue_share_entrance:
            return None
        if not value or not value.strip():
            raise ValueError("Entrance share is required for entrance deals")
        return value.strip()


class WeeklyEventIn(EventFieldsIn):
    event_type: Literal["weekly"]
    day_of_week: DayOfWeek


class DatedEventIn(EventFieldsIn):
    event_type: Literal["monthly", "one-time"]
    event_date: date


EventCreateIn = Union[WeeklyEventIn, DatedEventIn]


class EventUpdateIn(CamelModel):
    name: Optional[Label] = None
    event_type: Optional[Literal["weekly", "monthly", "one-time"]] = None
    day_of_week: Optional[DayOfWeek] = None
    event_date: Optional[date] = None
    venue_name: Optional[Label] = None
    deal_type: Optional[DealType] = None
    commissions: Optional[str] = Field(default=None, max_length=2000)
    is_progressive_commission: Optional[bool] = None
    payment_terms: Optional[PaymentTerms] = None
    entrance_share: Optional[str] = Field(default=None, max_length=50)
    status: Optional[EventStatus] = None


class EventDataIn(CamelModel):
    revenue: Revenue
    attendee_count: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=2000)


class EventDataOut(CamelOut):
    event_id: int
    revenue: Decimal
    attendee_count: Optional[int] = None
    notes: Optional[str] = None
    updated_at: datetime


class EventOut(CamelOut):
    id: int
    user_id: Optional[int] = None
    name: str
    event_type: EventType
    day_of_week: Optional[DayOfWeek] = None
    event_date: Optional[date] = None
    venue_name: str
    deal_type: DealType
    commissions: Optional[str] = None
    is_progressive_commission: bool
    payment_terms: PaymentTerms
    entrance_share: Optional[str] = None
    status: EventStatus
    created_at: datetime
    updated_at: datetime


class EventDetailOut(EventOut):
    expenses: list[ExpenseOut] = Field(default_factory=list)
    data: Optional[EventDataOut] = None


# Reports


class FinancialSummaryOut(CamelModel):
    revenue_source: Literal["recorded", "estimated"]
    total_revenue: float
    total_expenses: float
    total_profit: float
    events_count: int
    avg_revenue_per_event: float
    avg_expenses_per_event: float
    avg_profit_per_event: float
    roi: float


class MonthlyPerformanceOut(CamelModel):
    month: str
    year: int
    revenue: float
    expenses: float
    profit: float
    events_count: int


class EventPerformanceOut(CamelModel):
    name: str
    count: int
    total_revenue: float
    total_expenses: float
    total_profit: float
    avg_profit: float
    avg_attendance: Optional[float] = None


class ExpenseBreakdownOut(CamelModel):
    category: ExpenseCategory
    total: float
    percentage: float
