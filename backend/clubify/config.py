from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

AuthMode = Literal["token", "trusted-email", "bypass"]


class Settings(BaseSettings):
    """Runtime configuration, read from the environment and ``.env``."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = "sqlite:///./clubify.db"

    auth_mode: AuthMode = "token"
    jwt_secret: str = ""
    jwt_algorithms: str = "HS256"
    jwt_audience: Optional[str] = None
    jwt_issuer: Optional[str] = None
    jwt_jwks_url: Optional[str] = None
    jwt_email_claim: str = "email"

    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_currency: str = "usd"
    stripe_webhook_tolerance: int = 300

    cors_origin: str = "*"
    log_level: str = "INFO"

    @property
    def algorithms(self) -> list[str]:
        return [alg.strip() for alg in self.jwt_algorithms.split(",") if alg.strip()]

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origin.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    return Settings()
