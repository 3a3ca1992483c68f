from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Deploy Guard Multisig API"
    contract_version: str = "v1"
    record_store_backend: Literal["memory", "registry"] = Field(default="memory")
    registry_base_url: str = Field(default="http://localhost:3001")
    deployment_base_url: str = Field(default="http://localhost:3001")
    upstream_timeout_seconds: float = Field(default=3.0)
    upstream_max_retries: int = Field(default=2)
    upstream_retry_backoff_seconds: float = Field(default=0.2)
    deployment_timeout_seconds: float = Field(default=120.0, gt=0)
    cas_max_attempts: int = Field(default=8, ge=1)
    proposal_list_default_limit: int = Field(default=20, ge=1)
    proposal_list_max_limit: int = Field(default=100, ge=1)
    expiry_sweep_interval_seconds: float = Field(default=0.0, ge=0)
    log_level: str = Field(default="INFO")


settings = Settings()
