from enum import Enum
from typing import Dict

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RotationPolicy(str, Enum):
    """
    How a refresh_token grant treats the token it was issued from.

    - invalidate_immediately: the old token is deleted before the new one exists
    - wait: the old token stays usable for GRACE_PERIOD_SECONDS and is deleted
      the first time the new access token is presented
    """

    INVALIDATE_IMMEDIATELY = "invalidate_immediately"
    WAIT = "wait"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TOKENAUTH_")

    DATABASE_URL: str = "sqlite:///./tokenauth.db"
    ACCESS_TOKEN_EXPIRE_SECONDS: int = 3600  # 1 hour
    REFRESH_TOKEN_EXPIRE_SECONDS: int = 182 * 24 * 3600
    REFRESH_TOKEN_ROTATION: RotationPolicy = RotationPolicy.INVALIDATE_IMMEDIATELY
    GRACE_PERIOD_SECONDS: int = 3600

    # Length of generated access/refresh token strings
    TOKEN_LENGTH: int = 64

    # Recurring expired-token sweep; 0 disables it (startup sweep always runs)
    SWEEP_INTERVAL_SECONDS: int = 0

    # client_id -> client_secret for the default client authenticator
    CLIENTS: Dict[str, str] = {}

    LOG_LEVEL: str = "INFO"

    @model_validator(mode="after")
    def check_lifetimes(self) -> "Settings":
        if self.ACCESS_TOKEN_EXPIRE_SECONDS <= 0:
            raise ValueError("ACCESS_TOKEN_EXPIRE_SECONDS must be positive")
        if self.ACCESS_TOKEN_EXPIRE_SECONDS >= self.REFRESH_TOKEN_EXPIRE_SECONDS:
            raise ValueError(
                "ACCESS_TOKEN_EXPIRE_SECONDS must be shorter than "
                "REFRESH_TOKEN_EXPIRE_SECONDS"
            )
        if self.TOKEN_LENGTH < 32:
            raise ValueError("TOKEN_LENGTH must be at least 32")
        return self


settings = Settings()
