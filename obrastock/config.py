from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # .env / 环境变量里的字段，名字不区分大小写
    secret_key: str = "dev_secret"
    access_token_expire_minutes: int = 1440

    database_url: str = "sqlite:///./obrastock.db"

    # 可用数量 <= 这个值就算低库存
    low_stock_threshold: int = 2

    initial_admin_password: str = "admin123"
    initial_admin_email: str = "admin@obrastock.local"
    initial_admin_worksite: str | None = "Central Depot"

    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
