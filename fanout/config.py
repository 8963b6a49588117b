from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///fanout.db"

    # Inbound receiver mount point (accepts every HTTP method)
    webhook_path: str = "/webhook"

    # Downstream dispatch
    dispatch_timeout_seconds: float = 10.0
    max_concurrent_dispatches: int = 10
    await_secondary_deliveries: bool = True

    # Management API bearer tokens, comma separated. Empty leaves the API open.
    management_api_tokens: str = ""

    rate_limit_per_minute: int = 600
    log_level: str = "INFO"

    # How replayed inbound records are tagged
    replay_source_ip: str = "replay"
    replay_user_agent_suffix: str = " [REPLAY]"

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def api_tokens(self) -> set[str]:
        return {t.strip() for t in self.management_api_tokens.split(",") if t.strip()}


settings = Settings()
