import os
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings:
    APP_ENV: str = os.getenv("APP_ENV", "development").lower()

    REQUEST_TIMEOUT_SEC: float = float(
        os.getenv("REQUEST_TIMEOUT_SEC", "15" if APP_ENV == "production" else "10")
    )

    # Backend-as-a-service project
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "").rstrip("/")
    SUPABASE_ANON_KEY: str = os.getenv("SUPABASE_ANON_KEY", "")
    APP_NAME_HEADER: str = os.getenv("APP_NAME_HEADER", "onlyone-mobile")

    # Persisted auth session (restored once at startup)
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    AUTH_STORAGE_KEY: str = os.getenv("AUTH_STORAGE_KEY", "onlyone-auth")

    # OTP challenge
    OTP_LENGTH: int = int(os.getenv("OTP_LENGTH", "6"))
    OTP_RESEND_SECONDS: int = int(os.getenv("OTP_RESEND_SECONDS", "60"))

    # Signup form rules
    USERNAME_MIN_LENGTH: int = int(os.getenv("USERNAME_MIN_LENGTH", "3"))
    USERNAME_CHECK_DEBOUNCE_SEC: float = float(os.getenv("USERNAME_CHECK_DEBOUNCE_SEC", "0.5"))
    PHONE_MIN_LENGTH: int = int(os.getenv("PHONE_MIN_LENGTH", "10"))
    PASSWORD_MIN_LENGTH: int = int(os.getenv("PASSWORD_MIN_LENGTH", "8"))

    # Async result polling: 20 attempts * 3s = 60s hard bound
    POLL_INTERVAL_SEC: float = float(os.getenv("POLL_INTERVAL_SEC", "3.0"))
    POLL_MAX_ATTEMPTS: int = int(os.getenv("POLL_MAX_ATTEMPTS", "20"))
    PLACEHOLDER_MIN_CONTENT_LENGTH: int = int(os.getenv("PLACEHOLDER_MIN_CONTENT_LENGTH", "50"))

    ENABLE_PII_REDACTION: bool = _env_flag("ENABLE_PII_REDACTION", "true")


settings = Settings()

REQUIRED_ENV = ("SUPABASE_URL", "SUPABASE_ANON_KEY")


def validate_env() -> list:
    """
    Report required backend settings that are missing.
    Non-fatal: logs a warning event and returns the missing keys.
    """
    missing = [k for k in REQUIRED_ENV if not getattr(settings, k, "")]
    if missing:
        # logging imports settings
        from onlyone.observability.logging import log
        log(event="config_missing_env", level="warning", missing=missing,
            hint="Copy env.example to .env and fill in the values")
    return missing
