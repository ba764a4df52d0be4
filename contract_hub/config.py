import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


_DEV_SECRET_KEY = "dev-secret-contract-hub"


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_READ_URL = os.environ.get("DATABASE_READ_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "contract_hub.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", False)
    DB_BUSY_TIMEOUT_SECONDS = _int_env("DB_BUSY_TIMEOUT_SECONDS", 30)

    SECRET_KEY = os.environ.get("SECRET_KEY", _DEV_SECRET_KEY)
    PRINCIPAL_USER_HEADER = os.environ.get("PRINCIPAL_USER_HEADER", "X-User-Id")
    PRINCIPAL_ROLE_HEADER = os.environ.get("PRINCIPAL_ROLE_HEADER", "X-User-Role")

    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    RATE_LIMIT_ENABLED = _bool_env("RATE_LIMIT_ENABLED", True)
    RATE_LIMIT_WINDOW_SECONDS = _int_env("RATE_LIMIT_WINDOW_SECONDS", 60)
    RATE_LIMIT_MAX_REQUESTS = _int_env("RATE_LIMIT_MAX_REQUESTS", 300)
    SECURITY_HEADERS_ENABLED = _bool_env("SECURITY_HEADERS_ENABLED", True)

    REFERENCE_PREFIX = os.environ.get("REFERENCE_PREFIX", "CTR")
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "EUR")
    PAGINATION_DEFAULT_LIMIT = _int_env("PAGINATION_DEFAULT_LIMIT", 10)
    PAGINATION_MAX_LIMIT = _int_env("PAGINATION_MAX_LIMIT", 100)

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is required in production.")
        if env == "production" and self.SECRET_KEY == _DEV_SECRET_KEY:
            raise RuntimeError("SECRET_KEY is not safe for production.")
