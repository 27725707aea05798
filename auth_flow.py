"""Sign-up and sign-in followed by profile provisioning.

Both flows run inside ``AuthState.setting_up()`` so navigation does not act
on a session whose profile is not confirmed yet. If the profile cannot be
ensured, the fresh session is signed out again before the error is raised:
a user is never left authenticated without a profile.
"""
import logging

from auth import AuthClient, AuthSession
from errors import BudgetError, ProfileProvisioningError
from services import UserService
from state import AppState

logger = logging.getLogger("budget-tracker.auth")


def default_profile_name(email: str) -> str:
    return email.split("@")[0] or "User"


def _provision(auth: AuthClient, state: AppState, session: AuthSession, name: str) -> AuthSession:
    try:
        profile = UserService(auth.db, session.user_id).ensure_profile(name=name)
    except BudgetError as exc:
        logger.warning("Profile provisioning failed for user %s, signing out", session.user_id)
        auth.sign_out()
        raise ProfileProvisioningError(f"Failed to create user profile: {exc}") from exc

    state.auth.is_onboarded = profile.is_onboarded
    return session


def register(auth: AuthClient, state: AppState, email: str, password: str, name: str) -> AuthSession:
    """Create an account, sign it in, and make sure it has a profile."""
    with state.auth.setting_up():
        session = auth.sign_up(email, password, display_name=name)
        return _provision(auth, state, session, name)


def login(auth: AuthClient, state: AppState, email: str, password: str) -> AuthSession:
    """Sign in and create the profile if this user somehow has none."""
    with state.auth.setting_up():
        session = auth.sign_in(email, password)
        return _provision(auth, state, session, default_profile_name(email))
