"""
Application configuration from environment variables.

Load with python-dotenv in main so env vars are available before
load_settings() runs. Settings are read once at process start and handed to
create_app(); nothing else reads os.environ.
"""
import os
from dataclasses import dataclass
from datetime import timedelta

JWT_ALGORITHM = "HS256"

# Fixed session lifetime; tokens are not refreshed or revoked
TOKEN_TTL = timedelta(hours=24)

# Used only when JWT_SECRET is unset. main logs a warning on startup.
DEFAULT_JWT_SECRET = "change-me-in-production"

DEFAULT_PAGE_SIZE = 20


def _int_env(key: str, default: int) -> int:
    try:
        return max(1, int(os.getenv(key, str(default))))
    except ValueError:
        return default


def _bool_env(key: str, default: bool = False) -> bool:
    return os.getenv(key, str(default)).lower() in ("1", "true", "yes")


def _optional_env(key: str) -> str | None:
    value = os.getenv(key)
    if value is None or not value.strip():
        return None
    return value.strip()


@dataclass(frozen=True)
class Settings:
    # App store: user accounts (SQLite default; any SQLAlchemy URL works)
    app_database_url: str = "sqlite:///./app.db"

    # Library store: Calibre metadata.db and the directory holding book folders
    calibre_db_path: str = "metadata.db"
    calibre_library_path: str = "."

    jwt_secret: str = DEFAULT_JWT_SECRET

    # Admin bootstrap (skipped when admin_email is unset)
    admin_email: str | None = None
    admin_username: str = "admin"
    admin_password: str | None = None

    # OAuth providers are enabled only when both id and secret are set
    google_client_id: str | None = None
    google_client_secret: str | None = None
    github_client_id: str | None = None
    github_client_secret: str | None = None

    # Backend base URL for OAuth callbacks; frontend for CORS and redirects
    public_url: str = "http://localhost:8000"
    frontend_url: str = "http://localhost:5173"

    session_cookie_name: str = "session"
    oauth_state_cookie_name: str = "oauth_state"
    oauth_state_max_age: int = 600  # 10 minutes
    secure_cookies: bool = False

    max_page_size: int = 100
    bcrypt_rounds: int = 12

    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000

    @property
    def uses_default_secret(self) -> bool:
        return self.jwt_secret == DEFAULT_JWT_SECRET


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    calibre_db_path = os.getenv("CALIBRE_DB_PATH", "metadata.db")
    library_path = _optional_env("CALIBRE_LIBRARY_PATH") or (
        os.path.dirname(os.path.abspath(calibre_db_path))
    )
    return Settings(
        app_database_url=os.getenv("APP_DATABASE_URL", "sqlite:///./app.db"),
        calibre_db_path=calibre_db_path,
        calibre_library_path=library_path,
        jwt_secret=_optional_env("JWT_SECRET") or DEFAULT_JWT_SECRET,
        admin_email=_optional_env("ADMIN_EMAIL"),
        admin_username=os.getenv("ADMIN_USERNAME", "admin"),
        admin_password=_optional_env("ADMIN_PASSWORD"),
        google_client_id=_optional_env("GOOGLE_CLIENT_ID"),
        google_client_secret=_optional_env("GOOGLE_CLIENT_SECRET"),
        github_client_id=_optional_env("GITHUB_CLIENT_ID"),
        github_client_secret=_optional_env("GITHUB_CLIENT_SECRET"),
        public_url=os.getenv("PUBLIC_URL", "http://localhost:8000").rstrip("/"),
        frontend_url=os.getenv("FRONTEND_URL", "http://localhost:5173").rstrip("/"),
        session_cookie_name=os.getenv("SESSION_COOKIE_NAME", "session"),
        secure_cookies=_bool_env("SECURE_COOKIES"),
        max_page_size=_int_env("MAX_PAGE_SIZE", 100),
        bcrypt_rounds=_int_env("BCRYPT_ROUNDS", 12),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        host=os.getenv("HOST", "127.0.0.1"),
        port=_int_env("PORT", 8000),
    )
