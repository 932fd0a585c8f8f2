from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # .env is loaded manually in get_settings() so a missing env file never breaks
    # containers that inject everything through the environment.
    model_config = SettingsConfigDict(extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"
    allowed_origins: str = "http://localhost:3000"

    storage_backend: Literal["s3", "memory"] = "s3"
    s3_bucket_name: str | None = None
    aws_default_region: str = "eu-central-1"
    s3_endpoint_url: str | None = None
    use_iam_role: bool = True
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None

    connect_timeout_s: float = 10.0
    request_timeout_s: float = 30.0
    upload_timeout_s: float = 600.0
    max_upload_bytes: int = 100 * 1024 * 1024
    list_page_size: int = 1000

    def origins(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    try:
        from dotenv import load_dotenv

        load_dotenv(".env", override=False)
    except OSError:
        pass
    return Settings()
