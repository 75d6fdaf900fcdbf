import os


def _env_list(name: str, default: str = "") -> list[str]:
    raw = os.getenv(name, default)
    return [value.strip() for value in raw.split(",") if value.strip()]


class Settings:
    def __init__(self):
        self.app_name = "Practice Billing"
        self.api_version = "1.0.0"
        self.environment = os.getenv("ENVIRONMENT", "development")
        self.secret_key = os.getenv("SECRET_KEY", "CHANGE_ME")
        self.SECRET_KEY = self.secret_key
        self.access_token_expire_minutes = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))
        self.ACCESS_TOKEN_EXPIRE_MINUTES = self.access_token_expire_minutes
        self.database_url = os.getenv("DATABASE_URL", "sqlite:///./practice_billing.db")
        self.log_level = os.getenv("LOG_LEVEL", "INFO")

        self.smtp_host = os.getenv("SMTP_HOST", "localhost")
        self.smtp_port = int(os.getenv("SMTP_PORT", "587"))
        self.smtp_username = os.getenv("SMTP_USERNAME", "")
        self.smtp_password = os.getenv("SMTP_PASSWORD", "")
        self.smtp_use_tls = os.getenv("SMTP_USE_TLS", "true").lower() in ("1", "true", "yes")
        self.mail_from = os.getenv("MAIL_FROM", "billing@localhost")

        self.delivery_default_recipients = _env_list("DELIVERY_DEFAULT_RECIPIENTS")
        self.delivery_timeout_seconds = float(os.getenv("DELIVERY_TIMEOUT_SECONDS", "30"))
        self.render_workers = int(os.getenv("RENDER_WORKERS", "4"))
        self.stuck_sending_minutes = int(os.getenv("STUCK_SENDING_MINUTES", "15"))
        self.default_unit_minutes = int(os.getenv("DEFAULT_UNIT_MINUTES", "15"))


_settings_instance = None


def get_settings():
    """Return a singleton Settings instance."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
