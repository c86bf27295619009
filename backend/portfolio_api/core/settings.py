# portfolio_api/core/settings.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, model_validator
from typing import List, Optional

RESEND_DEFAULT_SENDER = "onboarding@resend.dev"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    api_title: str = Field(default="Portfolio Contact API", alias="API_TITLE")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    cors_origin: str = Field(default="*", alias="CORS_ORIGIN")

    # Where the notification goes, and how it is signed
    recipient_email: Optional[str] = Field(default=None, alias="RECIPIENT_EMAIL")
    mail_from: Optional[str] = Field(default=None, alias="MAIL_FROM")
    mail_from_name: str = Field(default="Portfolio Contact Form", alias="MAIL_FROM_NAME")
    site_name: str = Field(default="my portfolio website", alias="SITE_NAME")
    contact_fallback_email: Optional[str] = Field(default=None, alias="CONTACT_FALLBACK_EMAIL")

    # SMTP transport (Gmail: smtp.gmail.com:465 with an app password)
    smtp_host: Optional[str] = Field(default=None, alias="SMTP_HOST")
    smtp_port: int = Field(default=465, alias="SMTP_PORT")
    smtp_secure: bool = Field(default=True, alias="SMTP_SECURE")
    smtp_user: Optional[str] = Field(default=None, alias="SMTP_USER")
    smtp_password: Optional[str] = Field(default=None, alias="SMTP_PASSWORD")

    # Hosted transport, used when SMTP is not configured
    resend_api_key: Optional[str] = Field(default=None, alias="RESEND_API_KEY")
    resend_api_url: str = Field(default="https://api.resend.com/emails", alias="RESEND_API_URL")

    mail_timeout_seconds: float = Field(default=10.0, gt=0, alias="MAIL_TIMEOUT_SECONDS")

    # None means "on everywhere except development"
    rate_limit_enabled: Optional[bool] = Field(default=None, alias="RATE_LIMIT_ENABLED")
    rate_limit_max: int = Field(default=5, ge=1, alias="RATE_LIMIT_MAX")
    rate_limit_window_seconds: int = Field(default=15 * 60, ge=1, alias="RATE_LIMIT_WINDOW_SECONDS")
    # Optional shared counter store; process memory when unset
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")
    trust_proxy: bool = Field(default=True, alias="TRUST_PROXY")

    # Static site served for non-API paths; nothing is served if unset
    static_root: Optional[str] = Field(default=None, alias="STATIC_ROOT")

    @model_validator(mode="after")
    def _check_mail_config(self) -> "Settings":
        if not self.recipient_email:
            raise ValueError("RECIPIENT_EMAIL must be set")
        if self.mail_transport is None:
            raise ValueError(
                "No mail transport configured: set SMTP_HOST, SMTP_USER and SMTP_PASSWORD, "
                "or RESEND_API_KEY"
            )
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def mail_transport(self) -> Optional[str]:
        if self.smtp_host and self.smtp_user and self.smtp_password:
            return "smtp"
        if self.resend_api_key:
            return "resend"
        return None

    @property
    def sender_address(self) -> str:
        if self.mail_from:
            return self.mail_from
        if self.mail_transport == "smtp":
            return self.smtp_user
        return RESEND_DEFAULT_SENDER

    @property
    def rate_limiting(self) -> bool:
        if self.rate_limit_enabled is not None:
            return self.rate_limit_enabled
        return not self.is_development

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.cors_origin.split(",") if o.strip()]


settings = Settings()
