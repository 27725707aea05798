import pytest

import auth
import auth_flow
from auth import SIGNED_IN, SIGNED_OUT, AuthClient
from errors import AuthError, NotFoundError, ProfileProvisioningError, StoreError
from models import UserProfile
from services import UserService
from state import AppState


@pytest.fixture
def auth_client(db_session):
    return AuthClient(db_session)


@pytest.fixture
def app_state(auth_client):
    state = AppState().attach(auth_client)
    yield state
    state.close()


# ---------- AuthClient ----------

def test_sign_up_establishes_session_and_notifies(auth_client):
    events = []
    auth_client.on_auth_state_change(lambda event, session: events.append((event, session)))

    session = auth_client.sign_up("Pat@Example.com", "Secret123", display_name="Pat")

    assert auth_client.get_session() == session
    assert session.email == "pat@example.com"
    assert events == [(SIGNED_IN, session)]


def test_sign_in_and_sign_out(auth_client):
    auth_client.sign_up("sam@example.com", "Secret123")
    auth_client.sign_out()
    assert auth_client.get_session() is None

    session = auth_client.sign_in("sam@example.com", "Secret123")
    assert session.user_id is not None

    with pytest.raises(AuthError):
        auth_client.sign_in("sam@example.com", "nope")


def test_sign_up_losing_a_duplicate_email_race_is_an_auth_error(auth_client, db_session, monkeypatch):
    auth_client.sign_up("twin@example.com", "Secret123")
    auth_client.sign_out()

    # the other sign-up committed between our existence check and our insert
    monkeypatch.setattr(auth, "get_user_by_email", lambda db, email: None)

    with pytest.raises(AuthError) as exc:
        AuthClient(db_session).sign_up("twin@example.com", "Other123")

    assert "already registered" in str(exc.value)
    monkeypatch.undo()
    assert auth.get_user_by_email(db_session, "twin@example.com") is not None


def test_restore_session_from_token(auth_client, db_session):
    token = auth_client.sign_up("ray@example.com", "Secret123").access_token

    other = AuthClient(db_session)
    restored = other.restore_session(token)
    assert restored.email == "ray@example.com"
    assert other.get_session() == restored


def test_unsubscribe_stops_notifications(auth_client):
    events = []
    unsubscribe = auth_client.on_auth_state_change(lambda event, session: events.append(event))
    unsubscribe()
    unsubscribe()  # second call is a no-op

    auth_client.sign_up("quiet@example.com", "Secret123")
    assert events == []


# ---------- ensure_profile ----------

def test_ensure_profile_creates_once(db_session, make_user):
    user_id = make_user()
    service = UserService(db_session, user_id)

    first = service.ensure_profile(name="Owner")
    second = service.ensure_profile(name="Someone else")

    assert first.id == second.id
    assert second.name == "Owner"
    assert second.is_onboarded is False


def test_ensure_profile_accepts_row_created_concurrently(db_session, make_user, monkeypatch):
    user_id = make_user()
    db_session.add(UserProfile(user_id=user_id, name="winner"))
    db_session.commit()

    service = UserService(db_session, user_id)
    real_get_profile = service.get_profile
    calls = []

    def get_profile_missing_first_time():
        calls.append(1)
        if len(calls) == 1:
            raise NotFoundError("Profile not found")
        return real_get_profile()

    monkeypatch.setattr(service, "get_profile", get_profile_missing_first_time)

    profile = service.ensure_profile(name="loser")
    assert profile.name == "winner"
    assert len(calls) == 2


def test_get_profile_not_found(db_session, make_user):
    with pytest.raises(NotFoundError):
        UserService(db_session, make_user()).get_profile()


# ---------- register / login flows ----------

def test_register_provisions_profile(auth_client, app_state, db_session, monkeypatch):
    seen_setting_up = []
    real_ensure = UserService.ensure_profile

    def spy(self, *args, **kwargs):
        seen_setting_up.append(app_state.auth.is_setting_up)
        return real_ensure(self, *args, **kwargs)

    monkeypatch.setattr(UserService, "ensure_profile", spy)
    session = auth_flow.register(auth_client, app_state, "new@example.com", "Secret123", "Newbie")
    monkeypatch.undo()

    assert seen_setting_up == [True]
    assert app_state.auth.is_setting_up is False
    assert app_state.auth.session == session
    assert app_state.auth.is_onboarded is False
    assert UserService(db_session, session.user_id).get_profile().name == "Newbie"


def test_register_signs_out_when_profile_cannot_be_created(auth_client, app_state, monkeypatch):
    events = []
    auth_client.on_auth_state_change(lambda event, session: events.append(event))

    def broken(self, *args, **kwargs):
        raise StoreError("create profile")

    monkeypatch.setattr(UserService, "ensure_profile", broken)

    with pytest.raises(ProfileProvisioningError) as exc:
        auth_flow.register(auth_client, app_state, "broken@example.com", "Secret123", "B")

    assert "Failed to create user profile" in str(exc.value)
    assert auth_client.get_session() is None
    assert app_state.auth.session is None
    assert app_state.auth.is_setting_up is False
    assert events == [SIGNED_IN, SIGNED_OUT]


def test_login_signs_out_when_profile_cannot_be_created(auth_client, app_state, monkeypatch):
    auth_client.sign_up("later@example.com", "Secret123")
    auth_client.sign_out()

    def broken(self, *args, **kwargs):
        raise StoreError("create profile")

    monkeypatch.setattr(UserService, "ensure_profile", broken)

    with pytest.raises(ProfileProvisioningError):
        auth_flow.login(auth_client, app_state, "later@example.com", "Secret123")

    assert auth_client.get_session() is None
    assert app_state.auth.is_setting_up is False


def test_login_failure_clears_setting_up_flag(auth_client, app_state):
    with pytest.raises(AuthError):
        auth_flow.login(auth_client, app_state, "ghost@example.com", "Secret123")
    assert app_state.auth.is_setting_up is False
    assert app_state.auth.should_redirect() is True


def test_login_reports_onboarded_profile(auth_client, app_state, db_session):
    session = auth_client.sign_up("done@example.com", "Secret123")
    UserService(db_session, session.user_id).update_profile({"is_onboarded": True})
    auth_client.sign_out()

    auth_flow.login(auth_client, app_state, "done@example.com", "Secret123")
    assert app_state.auth.is_onboarded is True
