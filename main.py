"""Main FastAPI application for the budget tracker."""
import time
import logging
import datetime as dt
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from sqlmodel import SQLModel, create_engine, Session

from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.exc import OperationalError

import auth_flow
from auth import AuthClient
from config import (
    APP_NAME,
    APP_VERSION,
    DATABASE_URL,
    LOG_LEVEL,
    RECENT_EXPENSES_LIMIT,
    sqlite_connect_args,
)
from errors import (
    AuthError,
    InvalidInputError,
    NotFoundError,
    ProfileProvisioningError,
    StoreError,
)
from models import User
from schemas import (
    BudgetSummary,
    CategoryCreate,
    CategoryProgress,
    CategoryRead,
    CategorySlice,
    CategoryUpdate,
    ExpenseCreate,
    ExpenseRead,
    ExpenseUpdate,
    OnboardingPayload,
    ProfileRead,
    ProfileUpdate,
    RecurringExpenseCreate,
    RecurringExpenseRead,
    RecurringExpenseUpdate,
    SpendingSummary,
    Token,
    TrendSeries,
    UserLogin,
    UserRead,
    UserRegister,
)
from services import (
    DEFAULT_CATEGORIES,
    AnalyticsService,
    BudgetService,
    ExpenseService,
    UserService,
)
from state import AppState

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(APP_NAME)

app = FastAPI(title="Budget Tracker", version=APP_VERSION)
instrumentator = Instrumentator().instrument(app)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

engine = create_engine(
    DATABASE_URL,
    connect_args=sqlite_connect_args(DATABASE_URL),
    echo=False,
)


# Domain errors -> HTTP responses

@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request: Request, exc: InvalidInputError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ProfileProvisioningError)
async def provisioning_error_handler(request: Request, exc: ProfileProvisioningError):
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    return JSONResponse(status_code=503, content={"detail": str(exc)})


#API endpoint for quick health checks
@app.get("/")
def root():
    return {"message": "Budget Tracker API is running. See /health for status."}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "timestamp": dt.datetime.utcnow().isoformat(),
        "app": APP_NAME,
        "version": APP_VERSION,
    }


def get_session():
    """Provide a database session per request."""
    with Session(engine) as session:
        yield session


def get_now() -> dt.datetime:
    """Reference instant for timeframe windows (overridden in tests)."""
    return dt.datetime.now()


def credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    session: Session = Depends(get_session),
) -> User:
    """Resolve the current user from a bearer token."""
    try:
        auth_session = AuthClient(session).restore_session(token)
    except AuthError:
        raise credentials_exception()

    user = session.get(User, auth_session.user_id)
    if user is None:
        raise credentials_exception()
    return user


def user_service(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> UserService:
    return UserService(session, current_user.id)


def budget_service(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> BudgetService:
    return BudgetService(session, current_user.id)


def expense_service(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> ExpenseService:
    return ExpenseService(session, current_user.id)


def analytics_service(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> AnalyticsService:
    return AnalyticsService(session, current_user.id)


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
                "DB not ready yet (attempt %d/%d); waiting %ds...",
                attempt,
                retries,
                delay,
            )
            time.sleep(delay)

    logger.error("Giving up connecting to the database.")
    if last_exc:
        raise last_exc
    raise RuntimeError("Database not reachable on startup.")


# AUTH ENDPOINTS
@app.post("/auth/register", response_model=Token, status_code=201)
def register_user(
    user_in: UserRegister,
    session: Session = Depends(get_session),
):
    """Create an account with a profile and return a bearer token."""
    client = AuthClient(session)
    state = AppState().attach(client)
    try:
        auth_session = auth_flow.register(
            client, state, user_in.email, user_in.password, user_in.name
        )
    finally:
        state.close()
    return Token(access_token=auth_session.access_token, is_onboarded=state.auth.is_onboarded)


@app.post("/auth/login", response_model=Token)
def login(
    user_in: UserLogin,
    session: Session = Depends(get_session),
):
    """Authenticate a user, ensure the profile exists, and return a bearer token."""
    client = AuthClient(session)
    state = AppState().attach(client)
    try:
        auth_session = auth_flow.login(client, state, user_in.email, user_in.password)
    finally:
        state.close()
    return Token(access_token=auth_session.access_token, is_onboarded=state.auth.is_onboarded)


@app.post("/auth/logout")
def logout(
    token: str = Depends(oauth2_scheme),
    session: Session = Depends(get_session),
):
    """End the session. Tokens are stateless, so the client drops its copy."""
    client = AuthClient(session)
    try:
        client.restore_session(token)
    except AuthError:
        raise credentials_exception()
    client.sign_out()
    return {"message": "signed-out"}


@app.get("/auth/me", response_model=UserRead)
def read_current_user(current_user: User = Depends(get_current_user)):
    """Return the current authenticated user."""
    return current_user


# PROFILE & ONBOARDING ENDPOINTS
@app.get("/api/profile", response_model=ProfileRead)
def get_profile(users: UserService = Depends(user_service)):
    return users.get_profile()


@app.patch("/api/profile", response_model=ProfileRead)
def update_profile(payload: ProfileUpdate, users: UserService = Depends(user_service)):
    return users.update_profile(payload.model_dump(exclude_unset=True))


@app.get("/api/onboarding/default-categories")
def default_categories():
    """Suggested starting categories for the onboarding picker."""
    return DEFAULT_CATEGORIES


@app.post("/api/onboarding", response_model=ProfileRead)
def complete_onboarding(payload: OnboardingPayload, users: UserService = Depends(user_service)):
    return users.complete_onboarding(payload)


# CATEGORY & BUDGET ENDPOINTS
@app.get("/api/categories", response_model=list[CategoryRead])
def list_categories(budgets: BudgetService = Depends(budget_service)):
    """List the user's categories ordered by name."""
    return budgets.get_categories()


@app.post("/api/categories", response_model=CategoryRead, status_code=201)
def create_category(payload: CategoryCreate, budgets: BudgetService = Depends(budget_service)):
    return budgets.add_category(payload)


@app.get("/api/categories/progress", response_model=list[CategoryProgress])
def categories_with_progress(
    budgets: BudgetService = Depends(budget_service),
    now: dt.datetime = Depends(get_now),
):
    """Every category with what has been spent in it this month."""
    return budgets.get_categories_with_progress(now)


@app.patch("/api/categories/{category_id}", response_model=CategoryRead)
def update_category(
    category_id: int,
    payload: CategoryUpdate,
    budgets: BudgetService = Depends(budget_service),
):
    return budgets.update_category(category_id, payload)


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(category_id: int, budgets: BudgetService = Depends(budget_service)):
    """Delete a category along with its expenses and recurring expenses."""
    budgets.delete_category(category_id)
    return None


@app.get("/api/budget/summary", response_model=BudgetSummary)
def budget_summary(
    budgets: BudgetService = Depends(budget_service),
    now: dt.datetime = Depends(get_now),
):
    return budgets.get_budget_summary(now)


# EXPENSE ENDPOINTS
@app.get("/api/expenses", response_model=list[ExpenseRead])
def list_expenses(
    q: Optional[str] = None,
    category_id: Optional[int] = None,
    expenses: ExpenseService = Depends(expense_service),
):
    """List expenses newest first, optionally filtered by text or category."""
    return expenses.get_expenses(query=q, category_id=category_id)


@app.get("/api/expenses/recent", response_model=list[ExpenseRead])
def recent_expenses(
    limit: int = RECENT_EXPENSES_LIMIT,
    expenses: ExpenseService = Depends(expense_service),
):
    return expenses.get_recent_expenses(limit=max(1, limit))


@app.get("/api/expenses/timeframe/{timeframe}", response_model=list[ExpenseRead])
def expenses_by_timeframe(
    timeframe: str,
    expenses: ExpenseService = Depends(expense_service),
    now: dt.datetime = Depends(get_now),
):
    return expenses.get_expenses_by_timeframe(timeframe, now)


@app.post("/api/expenses", response_model=ExpenseRead, status_code=201)
def create_expense(
    payload: ExpenseCreate,
    expenses: ExpenseService = Depends(expense_service),
    now: dt.datetime = Depends(get_now),
):
    """Create an expense in one of the user's categories."""
    return expenses.add_expense(payload, now=now)


@app.patch("/api/expenses/{expense_id}", response_model=ExpenseRead)
def update_expense(
    expense_id: int,
    payload: ExpenseUpdate,
    expenses: ExpenseService = Depends(expense_service),
):
    return expenses.update_expense(expense_id, payload)


@app.delete("/api/expenses/{expense_id}", status_code=204)
def delete_expense(expense_id: int, expenses: ExpenseService = Depends(expense_service)):
    expenses.delete_expense(expense_id)
    return None


# RECURRING EXPENSE ENDPOINTS
@app.get("/api/recurring", response_model=list[RecurringExpenseRead])
def list_recurring(expenses: ExpenseService = Depends(expense_service)):
    return expenses.get_recurring_expenses()


@app.post("/api/recurring", response_model=RecurringExpenseRead, status_code=201)
def create_recurring(
    payload: RecurringExpenseCreate,
    expenses: ExpenseService = Depends(expense_service),
):
    return expenses.add_recurring_expense(payload)


@app.patch("/api/recurring/{template_id}", response_model=RecurringExpenseRead)
def update_recurring(
    template_id: int,
    payload: RecurringExpenseUpdate,
    expenses: ExpenseService = Depends(expense_service),
):
    return expenses.update_recurring_expense(template_id, payload)


@app.delete("/api/recurring/{template_id}", status_code=204)
def delete_recurring(template_id: int, expenses: ExpenseService = Depends(expense_service)):
    expenses.delete_recurring_expense(template_id)
    return None


# ANALYTICS
# Unknown timeframe values fall back to "month".
@app.get("/api/analytics/by-category", response_model=list[CategorySlice])
def spending_by_category(
    timeframe: str = "month",
    analytics: AnalyticsService = Depends(analytics_service),
    now: dt.datetime = Depends(get_now),
):
    return analytics.get_spending_by_category(timeframe, now)


@app.get("/api/analytics/trends", response_model=TrendSeries)
def spending_trends(
    timeframe: str = "month",
    analytics: AnalyticsService = Depends(analytics_service),
    now: dt.datetime = Depends(get_now),
):
    return analytics.get_spending_trends(timeframe, now)


@app.get("/api/analytics/summary", response_model=SpendingSummary)
def spending_summary(
    timeframe: str = "month",
    analytics: AnalyticsService = Depends(analytics_service),
    now: dt.datetime = Depends(get_now),
):
    return analytics.get_spending_summary(timeframe, now)
