"""
MODULE OVERVIEW:
Application-wide configuration using Pydantic Settings.

WHAT IS HAPPENING HERE:
Every timing and size limit of the comment stream lives here: the idle timeout
of a viewer connection, the keep-alive period that must beat it, the history
window replayed on connect and the validation limits of a posted comment.
Values can be overridden through environment variables or a `.env` file.
"""
from pydantic import model_validator
from pydantic_settings import BaseSettings

# A heartbeat must land before the idle timer can fire, with room for jitter.
MAX_KEEPALIVE_RATIO = 0.8


class Settings(BaseSettings):
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    LOG_LEVEL: str = "INFO"

    # SSE connections
    SSE_IDLE_TIMEOUT_S: float = 300.0
    SSE_MAX_BACKLOG: int = 100

    # Keep-alive heartbeat
    KEEPALIVE_INTERVAL_S: float = 180.0

    # Comments
    HISTORY_LIMIT: int = 10
    COMMENT_STORE_CAPACITY: int = 1000
    USERNAME_MAX_LENGTH: int = 50
    MESSAGE_MAX_LENGTH: int = 500

    CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'
        extra = 'ignore'

    @model_validator(mode="after")
    def check_keepalive_margin(self) -> "Settings":
        if self.SSE_IDLE_TIMEOUT_S <= 0 or self.KEEPALIVE_INTERVAL_S <= 0:
            raise ValueError("SSE_IDLE_TIMEOUT_S and KEEPALIVE_INTERVAL_S must be positive")
        if self.KEEPALIVE_INTERVAL_S > self.SSE_IDLE_TIMEOUT_S * MAX_KEEPALIVE_RATIO:
            raise ValueError(
                f"KEEPALIVE_INTERVAL_S={self.KEEPALIVE_INTERVAL_S} must not exceed "
                f"{MAX_KEEPALIVE_RATIO:.0%} of SSE_IDLE_TIMEOUT_S={self.SSE_IDLE_TIMEOUT_S}"
            )
        return self


settings = Settings()
