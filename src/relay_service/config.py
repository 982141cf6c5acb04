from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    APP_HOST: str = "0.0.0.0"
    APP_PORT: int = 8080
    PRIMARY_NAME: str = "primary"
    SECONDARY_NAME: str = "secondary"
    PRIMARY_SUCCESS_RATE: float = 0.7
    SECONDARY_SUCCESS_RATE: float = 0.8
    BACKEND_LATENCY_SEC: float = 0.1

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
