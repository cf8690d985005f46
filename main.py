import logging
from datetime import datetime, timezone
from typing import Annotated, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from database import Base, SessionLocal, engine
from models import EventType, User
from schemas import (
    AuthOut,
    EventCreateIn,
    EventDataIn,
    EventDataOut,
    EventDetailOut,
    EventOut,
    EventPerformanceOut,
    EventUpdateIn,
    ExpenseBreakdownOut,
    ExpenseIn,
    ExpenseOut,
    ExpenseUpdateIn,
    FinancialSummaryOut,
    LoginIn,
    MonthlyPerformanceOut,
    PasswordChangeIn,
    ProfileUpdateIn,
    RegisterIn,
    UserEnvelopeOut,
)
from services import (
    AuthError,
    EventDataService,
    EventService,
    ExpenseService,
    NotFoundError,
    ReportService,
    UserService,
    ValidationFailed,
    check_database_health,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Rumba Event Metrics API")


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()
EVENT_TYPE_TAGS = {member.value for member in EventType}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.on_event("startup")
def startup_event():
    Base.metadata.create_all(engine)
    logger.info(f"startup: version={APP_VERSION} revenue_source={settings.revenue_source}")


bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    token = credentials.credentials if credentials else None
    try:
        return UserService(db).user_for_token(token)
    except AuthError as exc:
        logger.info(f"auth_rejected: reason={exc.kind}")
        raise http_error(exc) from exc


def http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ValidationFailed):
        return HTTPException(
            status_code=400, detail={"message": str(exc), "errors": exc.errors}
        )
    if isinstance(exc, AuthError):
        return HTTPException(
            status_code=401, detail=str(exc), headers={"WWW-Authenticate": "Bearer"}
        )
    return HTTPException(status_code=400, detail=str(exc))


def _error_field(error: dict) -> str:
    if error.get("type") in ("union_tag_invalid", "union_tag_not_found"):
        return "eventType"
    loc = list(error.get("loc", ()))
    if loc and loc[0] in ("body", "query", "path"):
        loc = loc[1:]
    if loc and loc[0] in EVENT_TYPE_TAGS:
        loc = loc[1:]
    return ".".join(str(part) for part in loc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": _error_field(error), "message": error.get("msg", "Invalid value")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400, content={"message": "Validation failed", "errors": errors}
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, dict):
        content = exc.detail
    else:
        content = {"message": exc.detail}
    return JSONResponse(
        status_code=exc.status_code, content=content, headers=exc.headers
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"unhandled_error: path={request.url.path}")
    content: dict[str, object] = {"message": "Internal server error"}
    if not settings.is_production:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


@app.get("/")
def root():
    return {
        "status": "ok",
        "service": "Rumba Event Metrics API",
        "version": APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# Auth


@app.post("/api/auth/register", response_model=AuthOut, status_code=201)
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    try:
        user, token = UserService(db).register(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"user": user, "token": token}


@app.post("/api/auth/login", response_model=AuthOut)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    try:
        user, token = UserService(db).login(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"user": user, "token": token}


@app.get("/api/auth/verify", response_model=UserEnvelopeOut)
def verify(user: User = Depends(get_current_user)):
    return {"user": user}


@app.get("/api/auth/profile", response_model=UserEnvelopeOut)
def get_profile(user: User = Depends(get_current_user)):
    return {"user": user}


@app.put("/api/auth/profile", response_model=UserEnvelopeOut)
def update_profile(
    payload: ProfileUpdateIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        updated = UserService(db).update_profile(user.id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"user": updated}


@app.post("/api/auth/change-password")
def change_password(
    payload: PasswordChangeIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        UserService(db).change_password(user.id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"message": "Password updated successfully"}


# Events


@app.get("/api/events", response_model=list[EventOut])
def list_events(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return EventService(db, user.id).list()


@app.post("/api/events", response_model=EventDetailOut, status_code=201)
def create_event(
    payload: Annotated[EventCreateIn, Body(discriminator="event_type")],
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return EventService(db, user.id).create_with_expenses(payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/events/{event_id}", response_model=EventDetailOut)
def get_event(
    event_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    try:
        return EventService(db, user.id).get(event_id, with_details=True)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/api/events/{event_id}", response_model=EventOut)
def update_event(
    event_id: int,
    payload: EventUpdateIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return EventService(db, user.id).update(event_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/events/{event_id}")
def delete_event(
    event_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    try:
        EventService(db, user.id).delete(event_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"message": "Event deleted successfully"}


@app.get("/api/events/{event_id}/data", response_model=EventDataOut)
def get_event_data(
    event_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    try:
        return EventDataService(db, user.id).get(event_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/api/events/{event_id}/data", response_model=EventDataOut)
def record_event_data(
    event_id: int,
    payload: EventDataIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return EventDataService(db, user.id).upsert(event_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc


# Expenses


@app.get("/api/events/{event_id}/expenses", response_model=list[ExpenseOut])
def list_event_expenses(
    event_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    try:
        return ExpenseService(db, user.id).list_for_event(event_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post(
    "/api/events/{event_id}/expenses", response_model=ExpenseOut, status_code=201
)
def create_expense(
    event_id: int,
    payload: ExpenseIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return ExpenseService(db, user.id).create(event_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/events/{event_id}/expenses/{expense_id}", response_model=ExpenseOut)
def get_event_expense(
    event_id: int,
    expense_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return ExpenseService(db, user.id).get(expense_id, event_id=event_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/api/events/{event_id}/expenses/{expense_id}", response_model=ExpenseOut)
def update_event_expense(
    event_id: int,
    expense_id: int,
    payload: ExpenseUpdateIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return ExpenseService(db, user.id).update(
            expense_id, payload, event_id=event_id
        )
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/events/{event_id}/expenses/{expense_id}")
def delete_event_expense(
    event_id: int,
    expense_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        ExpenseService(db, user.id).delete(expense_id, event_id=event_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"message": "Expense deleted successfully"}


@app.get("/api/expenses/{expense_id}", response_model=ExpenseOut)
def get_expense(
    expense_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return ExpenseService(db, user.id).get(expense_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/api/expenses/{expense_id}", response_model=ExpenseOut)
def update_expense(
    expense_id: int,
    payload: ExpenseUpdateIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return ExpenseService(db, user.id).update(expense_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        ExpenseService(db, user.id).delete(expense_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"message": "Expense deleted successfully"}


# Reports


def _report_service(db: Session, user: User, response: Response) -> ReportService:
    service = ReportService(db, user.id)
    response.headers["X-Revenue-Source"] = service.policy.source
    return service


@app.get("/api/financial-summary", response_model=FinancialSummaryOut)
def financial_summary(
    response: Response,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _report_service(db, user, response).financial_summary()


@app.get("/api/monthly-performance", response_model=list[MonthlyPerformanceOut])
def monthly_performance(
    response: Response,
    months: Optional[int] = Query(default=None, ge=1, le=36),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _report_service(db, user, response).monthly_performance(months)


@app.get("/api/event-performance", response_model=list[EventPerformanceOut])
def event_performance(
    response: Response,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _report_service(db, user, response).event_performance()


@app.get("/api/expense-breakdown", response_model=list[ExpenseBreakdownOut])
def expense_breakdown(
    response: Response,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _report_service(db, user, response).expense_breakdown()


@app.get("/api/database/health")
def database_health(db: Session = Depends(get_db)):
    try:
        return check_database_health(db)
    except SQLAlchemyError as exc:
        logger.error(f"database_health_failed: {exc}")
        return JSONResponse(
            status_code=500,
            content={"connection": {"status": "failed", "error": str(exc)}},
        )
