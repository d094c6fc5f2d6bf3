"""Client configuration via environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

HOME_DIR = Path.home() / ".studychat"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STUDYCHAT_", env_file=".env", extra="ignore")

    api_base_url: str = "http://localhost:8080/api"
    broker_url: str = "ws://localhost:8080/ws"
    reconnect_delay: float = 5.0
    max_reconnect_attempts: int | None = None
    heartbeat_outgoing_ms: int = 4000
    heartbeat_incoming_ms: int = 4000
    connect_timeout: float = 10.0
    http_timeout: float = 15.0
    broker_auth: bool = True
    token: str | None = None
    token_file: Path = HOME_DIR / "token"
    download_dir: Path = Path("downloads")
    max_upload_bytes: int = 10 * 1024 * 1024
    history_page_size: int = 50


settings = Settings()
