"""Application configuration contract."""

import logging
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field(alias="APP_ENV", default="dev")
    log_level: str = Field(alias="LOG_LEVEL", default="INFO")
    web_cors_origins: str = Field(
        alias="WEB_CORS_ORIGINS", default="http://localhost:5173,http://127.0.0.1:5173"
    )
    public_base_url: str = Field(alias="PUBLIC_BASE_URL", default="http://localhost:8000")
    http_timeout_seconds: float = Field(alias="HTTP_TIMEOUT_SECONDS", default=20.0)
    webhook_rate_limit: str = Field(alias="WEBHOOK_RATE_LIMIT", default="120/minute")

    # Unofficial WhatsApp (Baileys sidecar)
    baileys_api_url: str = Field(alias="BAILEYS_API_URL", default="http://127.0.0.1:8081")
    baileys_api_key: str = Field(alias="BAILEYS_API_KEY", default="")

    # Meta Graph API (WhatsApp Official, Messenger, Instagram)
    meta_graph_url: str = Field(alias="META_GRAPH_URL", default="https://graph.facebook.com")
    meta_api_version: str = Field(alias="META_API_VERSION", default="v22.0")
    meta_verify_token: str = Field(alias="META_VERIFY_TOKEN", default="dev-verify-token")

    # Twilio
    twilio_conversations_url: str = Field(
        alias="TWILIO_CONVERSATIONS_URL", default="https://conversations.twilio.com/v1"
    )
    twilio_api_url: str = Field(alias="TWILIO_API_URL", default="https://api.twilio.com/2010-04-01")
    twilio_default_whatsapp_number: str = Field(
        alias="TWILIO_DEFAULT_WHATSAPP_NUMBER", default="whatsapp:+14155238886"
    )
    twilio_validate_signatures: int = Field(alias="TWILIO_VALIDATE_SIGNATURES", default=1)

    # 360Dialog
    dialog360_api_url: str = Field(alias="DIALOG360_API_URL", default="https://waba-v2.360dialog.io")

    # TikTok
    tiktok_api_url: str = Field(
        alias="TIKTOK_API_URL", default="https://business-api.tiktok.com"
    )
    tiktok_oauth_url: str = Field(
        alias="TIKTOK_OAUTH_URL", default="https://open.tiktokapis.com/v2/oauth/token/"
    )
    tiktok_client_key: str = Field(alias="TIKTOK_CLIENT_KEY", default="")
    tiktok_client_secret: str = Field(alias="TIKTOK_CLIENT_SECRET", default="")

    # Email relay
    email_inbound_secret: str = Field(alias="EMAIL_INBOUND_SECRET", default="")

    # WebChat
    webchat_session_ttl_seconds: int = Field(alias="WEBCHAT_SESSION_TTL_SECONDS", default=86400)
    webchat_max_message_length: int = Field(alias="WEBCHAT_MAX_MESSAGE_LENGTH", default=5000)

    @property
    def cors_origins(self) -> list[str]:
        return [item.strip() for item in self.web_cors_origins.split(",") if item.strip()]

    def meta_api_base(self) -> str:
        return f"{self.meta_graph_url.rstrip('/')}/{self.meta_api_version}"


def validate_settings_for_env(settings: Settings) -> None:
    if settings.app_env != "prod":
        return

    missing: list[str] = []
    required_non_empty = {
        "PUBLIC_BASE_URL": settings.public_base_url,
        "META_VERIFY_TOKEN": settings.meta_verify_token,
        "BAILEYS_API_URL": settings.baileys_api_url,
        "EMAIL_INBOUND_SECRET": settings.email_inbound_secret,
    }
    for key, value in required_non_empty.items():
        if not str(value).strip():
            missing.append(key)
    if settings.meta_verify_token == "dev-verify-token":
        missing.append("META_VERIFY_TOKEN(non-dev value)")
    if settings.public_base_url.startswith("http://localhost"):
        missing.append("PUBLIC_BASE_URL(public URL required)")
    if "*" in settings.cors_origins:
        missing.append("WEB_CORS_ORIGINS(wildcard not allowed)")
    if int(settings.twilio_validate_signatures) != 1:
        missing.append("TWILIO_VALIDATE_SIGNATURES(must be 1)")
    if settings.http_timeout_seconds <= 0:
        missing.append("HTTP_TIMEOUT_SECONDS(positive value required)")

    if missing:
        keys = ", ".join(sorted(set(missing)))
        raise ValueError(f"invalid production configuration: {keys}")
    if not (settings.tiktok_client_key and settings.tiktok_client_secret):
        logger.warning("TikTok client credentials unset; expired TikTok tokens cannot be refreshed")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
