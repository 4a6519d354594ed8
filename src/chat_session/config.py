from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    BROKER_URL: str = "redis://localhost:6379/0"
    API_URL: str = "http://localhost:8080/KJN/chatting/app"

    HEARTBEAT_MS: int = 4000
    RECONNECT_DELAY_MS: int = 5000
    # 1.0 keeps the delay fixed; a ceiling only applies once the delay grows.
    RECONNECT_BACKOFF_MULTIPLIER: float = 1.0
    RECONNECT_MAX_DELAY_MS: int = 60000
    RECONNECT_MAX_ATTEMPTS: int | None = None

    TYPING_EXPIRY_MS: int = 3000
    TYPING_DEBOUNCE_MS: int = 500

    ECHO_RECONCILE: bool = True
    ECHO_MATCH_WINDOW_MS: int = 10000

    HTTP_TIMEOUT_SECONDS: float = 10.0

    LOG_LEVEL: str = "INFO"

    @property
    def heartbeat_seconds(self) -> float:
        return self.HEARTBEAT_MS / 1000

    @property
    def typing_expiry_seconds(self) -> float:
        return self.TYPING_EXPIRY_MS / 1000

    @property
    def typing_debounce_seconds(self) -> float:
        return self.TYPING_DEBOUNCE_MS / 1000

    @property
    def echo_window_seconds(self) -> float:
        return self.ECHO_MATCH_WINDOW_MS / 1000

    def reconnect_delay_seconds(self, attempt: int) -> float:
        """Delay before reconnect attempt number ``attempt`` (1-based)."""
        delay = self.RECONNECT_DELAY_MS * (self.RECONNECT_BACKOFF_MULTIPLIER ** max(attempt - 1, 0))
        if self.RECONNECT_BACKOFF_MULTIPLIER > 1.0:
            delay = min(delay, self.RECONNECT_MAX_DELAY_MS)
        return delay / 1000

    model_config = ConfigDict(
        env_prefix="CHAT_",
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
