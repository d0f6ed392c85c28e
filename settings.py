"""Service configuration read from TIP_APP_* environment variables."""
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings

from allocation import InputPolicy


class Settings(BaseSettings):
    model_config = {"env_prefix": "TIP_APP_"}

    db_path: str = "tips.db"
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:5173"]  # React dev servers
    input_policy: InputPolicy = InputPolicy.COERCE
    history_limit: int = 50
    seed_employees: List[str] = []
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()
