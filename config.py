import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


DEV_SECRET_KEY = "dev-only-change-me"
MIN_JWT_SECRET_LENGTH = 32


class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", DEV_SECRET_KEY)
    JWT_SECRET = os.getenv("JWT_SECRET") or SECRET_KEY
    JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

    ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
    APP_VERSION = os.getenv("APP_VERSION", "1.0.0")
    APP_BASE_URL = os.getenv("APP_BASE_URL")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # "sql" uses the SQLAlchemy models below, "memory" keeps everything in-process
    STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "sql")

    # SQLite database file stored next to the app as auth.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "auth.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Token lifetimes
    JWT_ACCESS_TTL_SECONDS = int(os.getenv("JWT_ACCESS_TTL_SECONDS", str(15 * 60)))
    JWT_REFRESH_TTL_SECONDS = int(os.getenv("JWT_REFRESH_TTL_SECONDS", str(7 * 24 * 60 * 60)))

    # Cookie delivery
    ACCESS_COOKIE_NAME = "accessToken"
    REFRESH_COOKIE_NAME = "refreshToken"
    REFRESH_COOKIE_PATH = "/auth"
    AUTH_COOKIE_SECURE = _env_bool("AUTH_COOKIE_SECURE", "false")  # set True when using HTTPS
    AUTH_COOKIE_SAMESITE = os.getenv("AUTH_COOKIE_SAMESITE", "Lax")

    # Email OTP
    OTP_LENGTH = int(os.getenv("OTP_LENGTH", "6"))
    OTP_TTL_SECONDS = int(os.getenv("OTP_TTL_SECONDS", "600"))  # 10 minutes
    OTP_MAX_ATTEMPTS = int(os.getenv("OTP_MAX_ATTEMPTS", "5"))
    OTP_COOLDOWN_SECONDS = int(os.getenv("OTP_COOLDOWN_SECONDS", "60"))
    OTP_HASH_ROUNDS = int(os.getenv("OTP_HASH_ROUNDS", "10"))

    # Global sliding-window limit over every request
    RATE_LIMIT_ENABLED = _env_bool("RATE_LIMIT_ENABLED", "true")
    RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "900"))
    RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "100"))

    # Per-client limits on the OTP endpoints
    OTP_REQUEST_RATE_MAX = int(os.getenv("OTP_REQUEST_RATE_MAX", "10"))
    OTP_VERIFY_RATE_MAX = int(os.getenv("OTP_VERIFY_RATE_MAX", "20"))
    OTP_RATE_WINDOW_SECONDS = int(os.getenv("OTP_RATE_WINDOW_SECONDS", "900"))

    # Email
    EMAIL_PROVIDER = os.getenv("EMAIL_PROVIDER", "mock")
    EMAIL_FROM = os.getenv("EMAIL_FROM")
    # SendGrid v3 API key, only read when EMAIL_PROVIDER=sendgrid
    EMAIL_API_KEY = os.getenv("EMAIL_API_KEY")
    SENDGRID_API_URL = os.getenv("SENDGRID_API_URL")
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_USE_TLS = _env_bool("SMTP_USE_TLS", "true")

    # Basic app settings
    DEBUG = False


class TestConfig(Config):
    TESTING = True
    ENVIRONMENT = "test"
    SECRET_KEY = "test-secret"
    JWT_SECRET = "test-jwt-secret-with-enough-length"
    STORAGE_BACKEND = "memory"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    EMAIL_PROVIDER = "mock"
    EMAIL_FROM = "test@example.com"
    APP_BASE_URL = "http://localhost:3000"
    OTP_HASH_ROUNDS = 4
    RATE_LIMIT_ENABLED = False


REQUIRED_IN_PRODUCTION = ("JWT_SECRET", "APP_BASE_URL", "EMAIL_FROM", "EMAIL_PROVIDER")


def check_production_settings(config) -> None:
    """Refuses to boot a production app on missing settings or the dev signing secret."""
    if config.get("ENVIRONMENT") != "production":
        return

    missing = [name for name in REQUIRED_IN_PRODUCTION if not config.get(name)]
    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    secret = config["JWT_SECRET"]
    if secret == DEV_SECRET_KEY:
        raise RuntimeError("JWT_SECRET is still the development default")
    if len(secret) < MIN_JWT_SECRET_LENGTH:
        raise RuntimeError(f"JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} characters")
