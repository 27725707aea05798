import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY
from errors import AuthError, StoreError
from models import User

logger = logging.getLogger("budget-tracker.auth")

#  Use Argon2id (modern, memory-hard)
pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
    # Argon2id settings
    argon2__type="ID",
    argon2__memory_cost=65536,  # 64 MB
    argon2__time_cost=3,
    argon2__parallelism=1,
)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
SESSION_RESTORED = "SESSION_RESTORED"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    # Optional: enforce a max length to avoid pathological huge input
    if len(password) > 256:
        raise ValueError("Password too long")
    return pwd_context.hash(password)


def create_access_token(
    data: Dict[str, Any],
    expires_delta: Optional[timedelta] = None,
) -> str:
    to_encode = data.copy()
    if expires_delta is None:
        expires_delta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    expire = datetime.now(timezone.utc) + expires_delta
    to_encode["exp"] = expire

    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode a bearer token or raise AuthError if it is invalid or expired."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise AuthError("Could not validate credentials")
    if payload.get("sub") is None:
        raise AuthError("Could not validate credentials")
    return payload


def get_user_by_email(db: Session, email: str) -> User | None:
    """Fetch a user by email or return None."""
    stmt = select(User).where(User.email == email.lower())
    return db.exec(stmt).first()


@dataclass(frozen=True)
class AuthSession:
    """An authenticated session: the bearer token and whose it is."""
    access_token: str
    user_id: int
    email: str


SessionListener = Callable[[str, Optional[AuthSession]], None]


class AuthClient:
    """Email/password authentication against the user table.

    Holds at most one current session and notifies subscribers whenever it
    is established, restored from a token, or cleared.
    """

    def __init__(self, db: Session):
        self.db = db
        self._session: Optional[AuthSession] = None
        self._listeners: list[SessionListener] = []

    def sign_up(self, email: str, password: str, display_name: str = "") -> AuthSession:
        """Create the account and sign it in."""
        if get_user_by_email(self.db, email):
            raise AuthError("Email already registered")

        user = User(email=email.lower(), hashed_password=get_password_hash(password))
        try:
            self.db.add(user)
            self.db.commit()
            self.db.refresh(user)
        except IntegrityError:
            self.db.rollback()
            raise AuthError("Email already registered")
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Could not create user %s", email)
            raise StoreError("create account")

        logger.info("Registered user %s", user.id)
        return self._establish(user, SIGNED_IN, name=display_name)

    def sign_in(self, email: str, password: str) -> AuthSession:
        user = get_user_by_email(self.db, email)
        if not user or not verify_password(password, user.hashed_password):
            raise AuthError("Incorrect email or password")
        return self._establish(user, SIGNED_IN)

    def sign_out(self) -> None:
        self._session = None
        self._notify(SIGNED_OUT, None)

    def get_session(self) -> Optional[AuthSession]:
        return self._session

    def restore_session(self, token: str) -> AuthSession:
        """Adopt an existing bearer token as the current session."""
        payload = decode_access_token(token)
        user = get_user_by_email(self.db, payload["sub"])
        if user is None:
            raise AuthError("Could not validate credentials")
        session = AuthSession(access_token=token, user_id=user.id, email=user.email)
        self._session = session
        self._notify(SESSION_RESTORED, session)
        return session

    def on_auth_state_change(self, callback: SessionListener) -> Callable[[], None]:
        """Subscribe to session changes; returns a function that unsubscribes."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _establish(self, user: User, event: str, **claims) -> AuthSession:
        token = create_access_token({"sub": user.email, "user_id": user.id, **claims})
        session = AuthSession(access_token=token, user_id=user.id, email=user.email)
        self._session = session
        self._notify(event, session)
        return session

    def _notify(self, event: str, session: Optional[AuthSession]) -> None:
        for listener in list(self._listeners):
            listener(event, session)
