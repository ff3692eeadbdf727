from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    app_name: str = "HITL Relay"
    debug: bool = False

    # Agent-facing auth (static bearer token)
    auth_token: str = ""

    # Chat channel identity allowed in single-user mode (also the multi-user compat fallback)
    fixed_user_key: str = ""

    # Routing: single_user = one allowed chat identity, global session scan
    #          multi_user  = directory lookup, per-user session scan, link codes
    routing_mode: Literal["single_user", "multi_user"] = "single_user"

    # Session storage backend
    session_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379"

    # Cognito JWT auth (enabled when all three are set)
    cognito_region: str = ""
    cognito_user_pool_id: str = ""
    cognito_app_client_id: str = ""

    # Outbound notifier (disabled when notifier_url is empty)
    notifier_url: str = ""
    notifier_token: str = ""
    notifier_timeout_sec: float = 10.0

    # Long-poll
    default_wait_sec: int = 25
    max_wait_sec: int = 60
    poll_tick_sec: float = 1.0

    # Account linking
    link_code_ttl_sec: int = 600

    # Webhook utterances that peek at the pending question instead of answering it
    query_keywords: list[str] = ["pending", "?", "질문"]

    # Pending-question expiry sweep (timeout_sec based); off by default
    expiry_sweep_enabled: bool = False
    expiry_sweep_interval_sec: int = 60

    @property
    def cognito_enabled(self) -> bool:
        return bool(self.cognito_region and self.cognito_user_pool_id and self.cognito_app_client_id)

    @property
    def cognito_issuer(self) -> str:
        return f"https://cognito-idp.{self.cognito_region}.amazonaws.com/{self.cognito_user_pool_id}"

    @property
    def multi_user(self) -> bool:
        return self.routing_mode == "multi_user"

    @property
    def redis_required(self) -> bool:
        return self.multi_user or self.session_backend == "redis"


@lru_cache
def get_settings() -> Settings:
    return Settings()
