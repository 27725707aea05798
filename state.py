"""Client-side application state.

An ``AppState`` is created when the app starts and handed to whatever
needs it; nothing here is a module-level global. All mutation happens on
one thread of control, so there is no locking and the last write wins.
"""
import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional

from auth import SIGNED_OUT, AuthClient, AuthSession
from config import RECENT_EXPENSES_LIMIT

logger = logging.getLogger("budget-tracker.state")


class AuthState:
    """Current session plus the onboarding and 'setting up' flags."""

    def __init__(self):
        self.session: Optional[AuthSession] = None
        self.is_onboarded = False
        self.is_setting_up = False

    def set_session(self, session: Optional[AuthSession]) -> None:
        self.session = session

    @contextmanager
    def setting_up(self) -> Iterator["AuthState"]:
        """Hold off redirects while a sign-in/profile bootstrap is running.

        The flag is cleared on every way out of the block, errors included.
        """
        self.is_setting_up = True
        try:
            yield self
        finally:
            self.is_setting_up = False

    def should_redirect(self, is_loading: bool = False) -> bool:
        """Whether navigation may act on the current session yet."""
        return not is_loading and not self.is_setting_up


class ExpenseCache:
    """In-memory copies of the expense lists the screens show."""

    def __init__(self, recent_limit: int = RECENT_EXPENSES_LIMIT):
        self.recent_limit = recent_limit
        self.expenses: list = []
        self.recent_expenses: list = []
        self.timeframe_expenses: list = []

    def add_expense(self, expense) -> None:
        """Put a newly created expense at the front of every list."""
        self.expenses = [expense, *self.expenses]
        self.recent_expenses = [expense, *self.recent_expenses][: self.recent_limit]
        self.timeframe_expenses = [expense, *self.timeframe_expenses]

    def set_expenses(self, expenses: list) -> None:
        self.expenses = list(expenses)

    def set_recent_expenses(self, expenses: list) -> None:
        self.recent_expenses = list(expenses)

    def set_timeframe_expenses(self, expenses: list) -> None:
        self.timeframe_expenses = list(expenses)

    def clear(self) -> None:
        self.expenses = []
        self.recent_expenses = []
        self.timeframe_expenses = []


class ViewGuard:
    """Drops stale or orphaned responses for asynchronously loaded views.

    ``begin(view)`` issues a ticket for a new load. ``apply`` only runs the
    update if that ticket is still the newest for the view and the guard
    has not been closed (the view went away).
    """

    def __init__(self):
        self._latest: dict[str, int] = {}
        self._closed = False

    def begin(self, view: str) -> int:
        ticket = self._latest.get(view, 0) + 1
        self._latest[view] = ticket
        return ticket

    def is_current(self, view: str, ticket: int) -> bool:
        return not self._closed and self._latest.get(view) == ticket

    def apply(self, view: str, ticket: int, update: Callable[[Any], None], result: Any) -> bool:
        if not self.is_current(view, ticket):
            logger.debug("Discarding stale response for %s (ticket %s)", view, ticket)
            return False
        update(result)
        return True

    def close(self) -> None:
        self._closed = True


class AppState:
    """Everything the screens share, with an explicit lifecycle.

    ``attach`` follows an AuthClient's session; signing out tears the
    caches down. ``close`` detaches.
    """

    def __init__(self, recent_limit: int = RECENT_EXPENSES_LIMIT):
        self.auth = AuthState()
        self.expenses = ExpenseCache(recent_limit=recent_limit)
        self.views = ViewGuard()
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self, client: AuthClient) -> "AppState":
        self.detach()
        self.auth.set_session(client.get_session())
        self._unsubscribe = client.on_auth_state_change(self._on_session_change)
        return self

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def close(self) -> None:
        self.detach()
        self.views.close()

    def _on_session_change(self, event: str, session: Optional[AuthSession]) -> None:
        self.auth.set_session(session)
        if event == SIGNED_OUT or session is None:
            self.auth.is_onboarded = False
            self.expenses.clear()
