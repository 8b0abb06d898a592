from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# .env at the project root: atelier/core/config.py -> atelier/core -> atelier -> root
_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _ROOT / ".env"

_DEFAULT_JWT_SECRET = "change-me-in-production"


class Settings(BaseSettings):
    jwt_secret: str = _DEFAULT_JWT_SECRET
    # Separate secret so a leaked access secret cannot mint refresh tokens
    jwt_refresh_secret: str = _DEFAULT_JWT_SECRET + "-refresh"
    bcrypt_rounds: int = 12
    database_url: str = "sqlite:///./atelier.db"
    # Comma separated origins; "*" in development
    cors_origins: str = "*"
    # Coarse in-process burst limit per IP; per-action limits live in the database
    rate_limit_per_minute: int = 120
    environment: str = "development"   # production: Secure cookies, strict startup checks
    # Comma separated, compared lower-cased
    super_admin_emails: str = ""
    # Payment gateway (Razorpay REST contract)
    gateway_key_id: str = ""
    gateway_key_secret: str = ""
    gateway_webhook_secret: str = ""
    gateway_currency: str = "INR"
    gateway_api_url: str = "https://api.razorpay.com/v1"
    gateway_timeout_seconds: float = 10.0
    # hCaptcha
    hcaptcha_secret_key: str = ""
    hcaptcha_verify_url: str = "https://hcaptcha.com/siteverify"
    # Pricing cache lifetime
    pricing_cache_seconds: int = 300

    model_config = {
        "env_file": _ENV_FILE if _ENV_FILE.is_file() else ".env",
        "extra": "ignore",
    }

    @field_validator(
        "gateway_key_id",
        "gateway_key_secret",
        "gateway_webhook_secret",
        "hcaptcha_secret_key",
        mode="before",
    )
    @classmethod
    def strip_secret(cls, v: str | None) -> str:
        """Copy/paste whitespace breaks HMAC comparisons."""
        return (v or "").strip()

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"


settings = Settings()


def get_super_admin_emails() -> set[str]:
    raw = settings.super_admin_emails or ""
    return {e.strip().lower() for e in raw.split(",") if e.strip()}


def check_production_settings(cfg: Settings | None = None) -> None:
    """
    Refuses to start a production deployment with default JWT secrets or
    without a webhook secret (otherwise anyone could post "paid" events).
    """
    cfg = cfg or settings
    if not cfg.is_production:
        return
    problems = []
    if cfg.jwt_secret == _DEFAULT_JWT_SECRET:
        problems.append("JWT_SECRET")
    if cfg.jwt_refresh_secret.startswith(_DEFAULT_JWT_SECRET):
        problems.append("JWT_REFRESH_SECRET")
    if not cfg.gateway_webhook_secret:
        problems.append("GATEWAY_WEBHOOK_SECRET")
    if problems:
        raise RuntimeError("Missing production configuration: " + ", ".join(problems))
