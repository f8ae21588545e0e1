from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    project_name: str = Field(default="Mobilya Katalog")
    database_url: str = Field(...)
    secret_key: str = Field(...)
    session_cookie_name: str = Field(default="admin_session")
    session_cookie_secure: bool = Field(default=True)
    session_cookie_max_age: int = Field(default=60 * 60 * 4)
    session_cookie_same_site: Literal["lax", "strict", "none"] = Field(default="lax")
    log_level: str = Field(default="INFO")
    audit_default_actor: str = Field(default="admin", max_length=100)
    audit_retention_days: int = Field(default=30, ge=1)
    admin_logs_page_size: int = Field(default=50, ge=1, le=500)
    site_page_size: int = Field(default=12, ge=1, le=100)

    @model_validator(mode="after")
    def validate_security(self) -> "Settings":
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters long.")
        if "://" not in self.database_url:
            raise ValueError("DATABASE_URL must be a valid connection string.")
        return self


@lru_cache()
def get_settings() -> Settings:
    return Settings()
