from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogOptions(BaseModel):
    """Identity and verbosity of the structured logging sink."""

    name: str = "service"
    process: str = "service"
    level: str = "info"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)

    service_name: str = Field(default="service", alias="SERVICE_NAME")
    log_process: str | None = Field(default=None, alias="LOG_PROCESS")
    log_level: str = Field(default="info", alias="LOG_LEVEL")
    lag_probe_interval: int = Field(default=250, alias="LAG_PROBE_INTERVAL")
    unresponsive_timeout: int = Field(default=30000, alias="UNRESPONSIVE_TIMEOUT")
    route_prefix: str = Field(default="", alias="ROUTE_PREFIX")
    health_check_path: str = Field(default="/health", alias="HEALTH_CHECK_PATH")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    cors_origins: list[str] = Field(default_factory=lambda: ["*"], alias="CORS_ORIGINS")

    def log_options(self, name: str | None = None) -> LogOptions:
        name = name or self.service_name
        return LogOptions(name=name, process=self.log_process or name, level=self.log_level)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
