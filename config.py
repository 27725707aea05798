"""Runtime settings, read from environment variables with local defaults."""
import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./budget.db")

# use a real secret in any deployed environment
SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME_TO_SOMETHING_RANDOM_AND_SECRET")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

RECENT_EXPENSES_LIMIT = int(os.getenv("RECENT_EXPENSES_LIMIT", "5"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

APP_NAME = "budget-tracker"
APP_VERSION = "0.1.0"


def sqlite_connect_args(url: str) -> dict:
    """SQLite needs check_same_thread off when shared across request threads."""
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}
