from __future__ import annotations
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

YUNHU_ENDPOINT = "https://chat-go.jwzhd.com/open-apis/v1"
YUNHU_WEB_ENDPOINT = "https://chat-web-go.jwzhd.com/v1"
YUNHU_RESOURCE_ENDPOINT = "https://chat-img.jwznb.com/"

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="YUNHU_", env_file=".env", extra="ignore")

    # Bot
    token: str = Field(default="", description="Bot token issued by the Yunhu console.")
    bot_id: str = Field(default="", description="Bot id; used to fetch the bot profile on start.")

    # Endpoints
    endpoint: str = Field(default=YUNHU_ENDPOINT, description="Open API base url.")
    web_endpoint: str = Field(default=YUNHU_WEB_ENDPOINT, description="Web API base url (profiles, groups).")
    resource_endpoint: str = Field(default=YUNHU_RESOURCE_ENDPOINT, description="Image host for imageName references.")
    image_proxy: str = Field(default="", description="Optional proxy prefix; image urls become <proxy>?url=<url>.")

    # Network
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=5140)
    webhook_path: str = Field(default="/yunhu")
    metrics_path: str = Field(default="/metrics")
    health_path: str = Field(default="/healthz")

    # Timeouts / retries
    request_timeout_s: float = Field(default=30.0)
    upload_timeout_s: float = Field(default=60.0)
    resolver_timeout_s: float = Field(default=10.0, description="Per-call bound on upload/user/quote lookups.")
    send_retry: int = Field(default=3, description="Attempts for a send hitting transient transport errors.")

    # Inbound
    fetch_sender_profile: bool = Field(default=False, description="Look up the sender avatar for every message.")

    # Logging
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=True)

def load_settings() -> Settings:
    return Settings()
