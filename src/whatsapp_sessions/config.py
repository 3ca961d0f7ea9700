"""WhatsApp session manager — configuration loaded from environment."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, loaded from .env or environment variables."""

    # ── Database ──────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///./whatsapp_sessions.db"

    # ── Transport bridge (protocol sidecar) ──────────────
    bridge_base_url: str = "http://localhost:3001"
    bridge_token: str = "changeme"
    public_base_url: str = "http://localhost:8000"
    auth_state_dir: str = "./whatsapp_auth"

    # ── Lifecycle policy ──────────────────────────────────
    max_retry_attempts: int = 3
    retry_delay_seconds: float = 5.0

    # ── Rate limiting ─────────────────────────────────────
    rate_limit_window_seconds: float = 15 * 60
    rate_limit_max_requests: int = 10

    # ── Cleanup ───────────────────────────────────────────
    session_retention_hours: float = 24
    cleanup_interval_seconds: float = 60 * 60

    # ── Alert e-mails ─────────────────────────────────────
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    email_from: str = "noreply@example.com"
    alert_email_to: str = ""

    # ── App ───────────────────────────────────────────────
    app_name: str = "WhatsApp Sessions"
    debug: bool = False
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton settings instance
settings = Settings()
