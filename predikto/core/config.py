from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MODULE_ADDRESS = "0x7b32fe02523c311724de5e267ee56b6cca31f2ee04f15bfc10dbf1b23f95c6cb"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Secrets. Missing values abort startup.
    telegram_bot_token: str
    database_url: str
    openai_api_key: str
    funder_private_key: str
    wallet_encryption_key: str

    redis_url: str = "redis://localhost:6379/0"
    log_level: str = "INFO"
    serverless_mode: bool = False

    openai_model: str = "gpt-4.1-mini"
    openai_temperature: float = 0.7
    agent_max_steps: int = 6
    agent_history_limit: int = 20

    aptos_node_url: str = "https://fullnode.testnet.aptoslabs.com/v1"
    aptos_network: str = "testnet"
    market_module_address: str = DEFAULT_MODULE_ADDRESS
    market_module_name: str = "prediction_market"

    funding_amount_octas: int = 20_000_000
    tx_poll_interval_sec: float = 0.1
    tx_hash_timeout_sec: float = 10.0

    chat_timeout_sec: float = 20.0
    chat_replies_enabled: bool = True
    import_key_ttl_sec: int = 600
    busy_stale_after_sec: int = 300
    markets_cache_ttl_sec: int = 180

    bot_mode: str = "polling"
    webhook_base_url: str = ""
    webhook_path: str = "/api/bot"
    webhook_secret: str = ""
    webapp_host: str = "0.0.0.0"
    webapp_port: int = 8080

    def webhook_url(self) -> str:
        return self.webhook_base_url.rstrip("/") + self.webhook_path


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
