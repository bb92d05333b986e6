from __future__ import annotations
from pydantic_settings import BaseSettings
from pydantic import Field

class Settings(BaseSettings):
    database_url: str = Field(..., alias="DATABASE_URL")

    auth_jwks_url: str = Field("http://localhost:8001/.well-known/jwks.json", alias="AUTH_JWKS_URL")
    public_base_url: str = Field("http://localhost:5000", alias="PUBLIC_BASE_URL")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Redis
    redis_url: str = Field("redis://127.0.0.1:6379/0", alias="REDIS_URL")
    rl_enabled: bool = Field(default=True, alias="RL_ENABLED")
    rl_window_seconds: int = Field(default=60, alias="RL_WINDOW_SECONDS")
    rl_max_reqs: int = Field(default=60, alias="RL_MAX_REQS")

    # NATS
    nats_enabled: bool = Field(default=True, alias="NATS_ENABLED")
    nats_urls: str = Field("nats://127.0.0.1:4222", alias="NATS_URLS")
    nats_subject_checkin: str = Field("bookings.checked_in", alias="NATS_SUBJECT_CHECKIN")
    nats_subject_booking: str = Field("bookings.lifecycle", alias="NATS_SUBJECT_BOOKING")

    # Stripe
    stripe_secret_key: str | None = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_api_base: str = Field("https://api.stripe.com/v1", alias="STRIPE_API_BASE")

    # Email (Resend) / SMS (Twilio)
    resend_api_key: str | None = Field(default=None, alias="RESEND_API_KEY")
    email_from_address: str = Field("GoPAWZ <noreply@gopawz.com>", alias="EMAIL_FROM_ADDRESS")
    twilio_account_sid: str | None = Field(default=None, alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: str | None = Field(default=None, alias="TWILIO_AUTH_TOKEN")
    twilio_phone_number: str | None = Field(default=None, alias="TWILIO_PHONE_NUMBER")

    # Reminder sweep
    reminders_enabled: bool = Field(default=True, alias="REMINDERS_ENABLED")
    reminder_interval_seconds: int = Field(default=900, alias="REMINDER_INTERVAL_SECONDS")
    reminder_lead_hours: int = Field(default=24, alias="REMINDER_LEAD_HOURS")

    class Config:
        env_file = ".env"
        env_prefix = ""
        case_sensitive = False

    @property
    def email_enabled(self) -> bool:
        return bool(self.resend_api_key)

    @property
    def sms_enabled(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number)

_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
