import platform
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from reqlog.observability.logger import (
    Option,
    with_app,
    with_build_time,
    with_commit,
    with_environment,
    with_level,
    with_python_version,
    with_version,
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = Field(default="reqlog", alias="APP_NAME")
    environment: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="debug", alias="LOG_LEVEL")
    app_version: str = Field(default="n/a", alias="APP_VERSION")
    commit: str = Field(default="n/a", alias="GIT_COMMIT")
    build_time: str = Field(default="n/a", alias="BUILD_TIME")
    python_version: str = Field(default_factory=platform.python_version, alias="PYTHON_VERSION")
    host: str = Field(default="127.0.0.1", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    def logger_options(self) -> list[Option]:
        return [
            with_level(self.log_level),
            with_environment(self.environment),
            with_app(self.app_name),
            with_version(self.app_version),
            with_commit(self.commit),
            with_build_time(self.build_time),
            with_python_version(self.python_version),
        ]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
