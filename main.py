"""Main FastAPI application for the Expense Tracker API."""
import logging
import time
import datetime as dt
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import SQLModel, Session, col, create_engine, select

from prometheus_fastapi_instrumentator import Instrumentator

import stats
from auth import (
    InvalidToken,
    decode_token,
    get_password_hash,
    issue_token,
    verify_password,
    verify_password_or_dummy,
)
from config import Settings, get_settings
from errors import (
    AccountDisabled,
    ApiError,
    BadRequest,
    Conflict,
    Forbidden,
    InvalidCredentials,
    NotFound,
    Unauthenticated,
    ValidationFailed,
)
from models import Expense, User
from schemas import (
    AccountDelete,
    AdminUserUpdate,
    ExpenseRead,
    ExpenseWrite,
    OwnerRead,
    PasswordChange,
    ProfileUpdate,
    UserLogin,
    UserRead,
    UserRegister,
)
from utils import build_pagination, normalize_iso_datetime, page_offset, success

APP_NAME = "expense-tracker"
APP_VERSION = "1.0.0"

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(APP_NAME)

app = FastAPI(title="Expense Tracker API", version=APP_VERSION)
instrumentator = Instrumentator().instrument(app)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

if settings.database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}
else:
    connect_args = {}

engine = create_engine(
    settings.database_url,
    connect_args=connect_args,
    echo=False,
)

EXPENSE_SORT_FIELDS = {
    "date": Expense.date,
    "amount": Expense.amount,
    "title": Expense.title,
    "category": Expense.category,
    "status": Expense.status,
    "paymentMethod": Expense.payment_method,
    "createdAt": Expense.created_at,
    "updatedAt": Expense.updated_at,
}


# ERROR HANDLING

@app.middleware("http")
async def catch_unexpected_errors(request: Request, call_next):
    """Turn anything a handler did not anticipate into a generic 500 envelope."""
    try:
        return await call_next(request)
    except Exception as exc:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        body: dict[str, Any] = {"status": "error", "message": "Internal server error"}
        if not get_settings().is_production:
            body["error"] = str(exc)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ())]
        field = ".".join(loc[1:]) if len(loc) > 1 else ".".join(loc)
        message = str(err.get("msg", "Invalid value")).removeprefix("Value error, ")
        errors.append({"field": field, "message": message})
    return JSONResponse(
        status_code=ValidationFailed.status_code,
        content=ValidationFailed(errors=errors).to_body(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "error", "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


#API endpoint for quick health checks
@app.get("/")
def root():
    return {"message": "Expense Tracker API is running. See /health for status."}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "timestamp": dt.datetime.utcnow().isoformat(),
        "app": APP_NAME,
        "version": APP_VERSION,
    }


# DATABASE HELPERS

def get_session():
    """Provide a database session per request."""
    with Session(engine) as session:
        yield session


def save_and_refresh(session: Session, instance):
    """Persist and refresh an instance; a duplicate user email becomes a Conflict."""
    if hasattr(instance, "updated_at"):
        instance.updated_at = dt.datetime.utcnow()
    session.add(instance)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        if isinstance(instance, User) and "email" in str(exc.orig).lower():
            logger.warning("Duplicate email while saving user: %s", exc.orig)
            raise Conflict()
        raise
    session.refresh(instance)
    return instance


def get_user_by_email(session: Session, email: str) -> User | None:
    """Fetch a user by (lower-cased) email or return None."""
    stmt = select(User).where(User.email == email.lower())
    return session.exec(stmt).first()


def email_taken_by_other(session: Session, email: str, user_id: int) -> bool:
    stmt = select(User).where(User.email == email.lower(), User.id != user_id)
    return session.exec(stmt).first() is not None


def parse_query_datetime(value: Optional[str], field: str) -> Optional[dt.datetime]:
    if value is None or value == "":
        return None
    try:
        return normalize_iso_datetime(value)
    except ValueError as exc:
        raise ValidationFailed(errors=[{"field": field, "message": str(exc)}])


def expense_sort(sort_by: str, sort_order: str):
    column = EXPENSE_SORT_FIELDS.get(sort_by)
    if column is None:
        raise ValidationFailed(errors=[{"field": "sortBy", "message": "Invalid sort field"}])
    if sort_order == "desc":
        return col(column).desc(), col(Expense.id).desc()
    return col(column).asc(), col(Expense.id).asc()


def expense_views(session: Session, expenses) -> list[dict[str, Any]]:
    """Serialize expenses with their owner's id/name/email attached."""
    owners = stats.owners_by_id(session, (e.user_id for e in expenses))
    views = []
    for expense in expenses:
        owner = owners.get(expense.user_id)
        data = expense.model_dump()
        data["user"] = OwnerRead.model_validate(owner) if owner else None
        views.append(ExpenseRead.model_validate(data).dump())
    return views


def list_expense_page(
    session: Session,
    conditions: list,
    page: int,
    limit: int,
    sort_by: str,
    sort_order: str,
) -> dict[str, Any]:
    order = expense_sort(sort_by, sort_order)
    expenses = session.exec(
        select(Expense)
        .where(*conditions)
        .order_by(*order)
        .offset(page_offset(page, limit))
        .limit(limit)
    ).all()
    total = session.exec(select(func.count(Expense.id)).where(*conditions)).one()
    return {
        "expenses": expense_views(session, expenses),
        "pagination": build_pagination(page, limit, total),
    }


def user_view(user: User) -> dict[str, Any]:
    return UserRead.model_validate(user).dump()


def apply_user_update(session: Session, user: User, payload: ProfileUpdate) -> User:
    """Shared by the self-service and admin update endpoints."""
    data = payload.model_dump(exclude_unset=True)
    if "email" in data and email_taken_by_other(session, data["email"], user.id):
        raise Conflict("Email is already taken")
    for field, value in data.items():
        setattr(user, field, value)
    return save_and_refresh(session, user)


# AUTHORIZATION

def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> User:
    """Resolve the current user from a bearer token."""
    if not token:
        raise Unauthenticated("Not authorized, no token")
    try:
        user_id = decode_token(token, settings.secret_key, settings.algorithm)
    except InvalidToken:
        raise Unauthenticated("Not authorized, token failed")

    user = session.get(User, user_id)
    if user is None:
        raise Unauthenticated("Not authorized, user not found")
    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    """Second gate: only users with the admin role get through."""
    if current_user.role != "admin":
        raise Forbidden("Access denied. Admin privileges required.")
    return current_user


def get_owned_expense(session: Session, expense_id: int, current_user: User, action: str) -> Expense:
    """Fetch an expense the caller owns (or any expense, for admins)."""
    expense = session.get(Expense, expense_id)
    if expense is None:
        raise NotFound("Expense not found")
    if expense.user_id != current_user.id and current_user.role != "admin":
        raise Forbidden(f"Not authorized to {action} this expense")
    return expense


@app.on_event("startup")
def on_startup() -> None:
    """
    Run once when the app starts:
    - Wait for the database to be ready
    - Create tables
    - Expose Prometheus /metrics
    """
    retries = 10
    delay = 2  # seconds
    last_exc: Exception | None = None

    for attempt in range(1, retries + 1):
        try:
            SQLModel.metadata.create_all(engine)
            instrumentator.expose(app)
            logger.info("Database ready, tables created.")
            return
        except OperationalError as exc:
            last_exc = exc
            logger.warning(
                "DB not ready yet (attempt %d/%d); waiting %ds...", attempt, retries, delay
            )
            time.sleep(delay)

    logger.error("Giving up connecting to the database.")
    if last_exc:
        raise last_exc
    raise RuntimeError("Database not reachable on startup.")


# AUTH ENDPOINTS

@app.post("/auth/register", status_code=201)
def register_user(
    payload: UserRegister,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    """Register a new user if the email is free."""
    if get_user_by_email(session, payload.email):
        raise Conflict("User already exists with this email")

    user = User(
        name=payload.name,
        email=payload.email,
        hashed_password=get_password_hash(payload.password),
        monthly_budget=payload.monthly_budget,
        currency=payload.currency,
        avatar=payload.avatar,
    )
    save_and_refresh(session, user)
    logger.info("Registered user id=%s", user.id)

    token = issue_token(user.id, settings.secret_key, settings.access_token_expire_minutes)
    return success({"user": user_view(user), "token": token}, "User registered successfully")


@app.post("/auth/login")
def login(
    payload: UserLogin,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    """Authenticate a user and return a bearer token."""
    user = get_user_by_email(session, payload.email)
    if user is not None and not user.is_active:
        logger.warning("Login rejected for deactivated user id=%s", user.id)
        raise AccountDisabled()

    stored_hash = user.hashed_password if user is not None else None
    if not verify_password_or_dummy(payload.password, stored_hash):
        logger.warning("Failed login attempt")
        raise InvalidCredentials()

    user.last_login = dt.datetime.utcnow()
    save_and_refresh(session, user)
    logger.info("User id=%s logged in", user.id)

    token = issue_token(user.id, settings.secret_key, settings.access_token_expire_minutes)
    return success({"user": user_view(user), "token": token}, "Login successful")


@app.post("/auth/admin-login")
def admin_login(
    payload: UserLogin,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    """Log in with the operator-configured admin credentials.

    The submitted password is compared to the configured plaintext, not to
    a stored hash. The matching user row is created on first use.
    """
    admin_email = (settings.admin_email or "").strip().lower()
    if (
        not admin_email
        or not settings.admin_password
        or payload.email != admin_email
        or payload.password != settings.admin_password
    ):
        logger.warning("Failed admin login attempt")
        raise InvalidCredentials("Invalid admin credentials")

    admin = get_user_by_email(session, admin_email)
    if admin is None:
        admin = User(
            name="Admin",
            email=admin_email,
            hashed_password=get_password_hash(settings.admin_password),
            role="admin",
            monthly_budget=0,
            currency="USD",
        )
    admin.role = "admin"
    admin.last_login = dt.datetime.utcnow()
    save_and_refresh(session, admin)
    logger.info("Admin id=%s logged in", admin.id)

    token = issue_token(admin.id, settings.secret_key, settings.access_token_expire_minutes)
    return success({"user": user_view(admin), "token": token}, "Admin login successful")


@app.get("/auth/me")
def read_current_user(current_user: User = Depends(get_current_user)):
    """Return the current authenticated user."""
    return success({"user": user_view(current_user)})


@app.post("/auth/logout")
def logout(current_user: User = Depends(get_current_user)):
    """Tokens are stateless; nothing is revoked server-side."""
    return success(message="Logged out successfully")


# USER (SELF-SERVICE) ENDPOINTS

@app.get("/user/profile")
def get_profile(current_user: User = Depends(get_current_user)):
    return success({"user": user_view(current_user)})


@app.put("/user/profile")
def update_profile(
    payload: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Update name/email/budget/currency/avatar; unset fields stay as they are."""
    user = apply_user_update(session, current_user, payload)
    return success({"user": user_view(user)}, "Profile updated successfully")


@app.put("/user/change-password")
def change_password(
    payload: PasswordChange,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Change the current user's password."""
    if not verify_password(payload.current_password, current_user.hashed_password):
        raise InvalidCredentials("Current password is incorrect")

    current_user.hashed_password = get_password_hash(payload.new_password)
    save_and_refresh(session, current_user)
    return success(message="Password changed successfully")


@app.delete("/user/profile")
def delete_account(
    payload: AccountDelete = Body(...),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Delete the caller's account. Their expenses are left in place."""
    if not verify_password(payload.password, current_user.hashed_password):
        raise InvalidCredentials("Password is incorrect")

    user_id = current_user.id
    session.delete(current_user)
    session.commit()
    logger.info("User id=%s deleted their account", user_id)
    return success(message="Account deleted successfully")


# EXPENSE ENDPOINTS

@app.post("/expenses", status_code=201)
def create_expense(
    payload: ExpenseWrite,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Create an expense owned by the caller."""
    fields = payload.to_fields()
    if fields.get("date") is None:
        fields.pop("date", None)

    expense = Expense(user_id=current_user.id, **fields)
    save_and_refresh(session, expense)
    return success({"expense": expense_views(session, [expense])[0]}, "Expense created successfully")


@app.get("/expenses")
def list_expenses(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    category: Optional[str] = None,
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    min_amount: Optional[float] = Query(None, alias="minAmount"),
    max_amount: Optional[float] = Query(None, alias="maxAmount"),
    sort_by: str = Query("date", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """List the caller's expenses with filters, sorting and pagination."""
    conditions = [col(Expense.user_id) == current_user.id]
    if category:
        conditions.append(col(Expense.category) == category)
    conditions += stats.date_conditions(
        parse_query_datetime(start_date, "startDate"),
        parse_query_datetime(end_date, "endDate"),
    )
    if min_amount is not None:
        conditions.append(col(Expense.amount) >= min_amount)
    if max_amount is not None:
        conditions.append(col(Expense.amount) <= max_amount)

    return success(list_expense_page(session, conditions, page, limit, sort_by, sort_order))


@app.get("/expenses/stats")
def get_expense_stats(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Totals, per-category and per-month breakdowns, and recent expenses."""
    data = stats.user_stats(
        session,
        current_user.id,
        start=parse_query_datetime(start_date, "startDate"),
        end=parse_query_datetime(end_date, "endDate"),
    )
    return success(data)


@app.get("/expenses/{expense_id}")
def get_expense(
    expense_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    expense = get_owned_expense(session, expense_id, current_user, "access")
    return success({"expense": expense_views(session, [expense])[0]})


@app.put("/expenses/{expense_id}")
def update_expense(
    expense_id: int,
    payload: ExpenseWrite,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Replace an expense's fields; the full document is validated again."""
    expense = get_owned_expense(session, expense_id, current_user, "update")

    fields = payload.to_fields(exclude_unset=True)
    if "date" in fields and fields["date"] is None:
        del fields["date"]
    for field, value in fields.items():
        setattr(expense, field, value)
    save_and_refresh(session, expense)
    return success({"expense": expense_views(session, [expense])[0]}, "Expense updated successfully")


@app.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    expense = get_owned_expense(session, expense_id, current_user, "delete")
    session.delete(expense)
    session.commit()
    return success(message="Expense deleted successfully")


# ADMIN ENDPOINTS

@app.get("/admin/dashboard")
def admin_dashboard(
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return success(stats.dashboard_stats(session))


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


@app.get("/admin/users")
def admin_list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    search: Optional[str] = None,
    role: Optional[str] = None,
    is_active: Optional[bool] = Query(None, alias="isActive"),
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
):
    """List users, newest first, filtered by name/email substring, role and status."""
    conditions = []
    if search:
        pattern = _like_pattern(search)
        conditions.append(
            or_(
                col(User.name).ilike(pattern, escape="\\"),
                col(User.email).ilike(pattern, escape="\\"),
            )
        )
    if role:
        conditions.append(col(User.role) == role)
    if is_active is not None:
        conditions.append(col(User.is_active) == is_active)

    users = session.exec(
        select(User)
        .where(*conditions)
        .order_by(col(User.created_at).desc(), col(User.id).desc())
        .offset(page_offset(page, limit))
        .limit(limit)
    ).all()
    total = session.exec(select(func.count(User.id)).where(*conditions)).one()

    return success({
        "users": [user_view(u) for u in users],
        "pagination": build_pagination(page, limit, total),
    })


def get_user_or_404(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


@app.get("/admin/users/{user_id}")
def admin_get_user(
    user_id: int,
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return success({"user": user_view(get_user_or_404(session, user_id))})


@app.put("/admin/users/{user_id}")
def admin_update_user(
    user_id: int,
    payload: AdminUserUpdate,
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
):
    """Admins may also change role and isActive."""
    user = apply_user_update(session, get_user_or_404(session, user_id), payload)
    logger.info("Admin id=%s updated user id=%s", admin.id, user.id)
    return success({"user": user_view(user)}, "User updated successfully")


@app.delete("/admin/users/{user_id}")
def admin_delete_user(
    user_id: int,
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
):
    """Delete any user except the calling admin. Expenses are not cascaded."""
    user = get_user_or_404(session, user_id)
    if user.id == admin.id:
        raise BadRequest("Cannot delete your own account")

    session.delete(user)
    session.commit()
    logger.info("Admin id=%s deleted user id=%s", admin.id, user_id)
    return success(message="User deleted successfully")


@app.get("/admin/expenses")
def admin_list_expenses(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    user_id: Optional[int] = Query(None, alias="userId"),
    category: Optional[str] = None,
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    sort_by: str = Query("date", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
):
    """List expenses across all users, each with its owner's name and email."""
    conditions = []
    if user_id is not None:
        conditions.append(col(Expense.user_id) == user_id)
    if category:
        conditions.append(col(Expense.category) == category)
    conditions += stats.date_conditions(
        parse_query_datetime(start_date, "startDate"),
        parse_query_datetime(end_date, "endDate"),
    )
    return success(list_expense_page(session, conditions, page, limit, sort_by, sort_order))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=settings.port, reload=not settings.is_production)
