from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

LogFormat = Literal["json", "console"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BENCH_DISPATCH_",
        env_file=".env",
        extra="ignore",
    )

    workspace: Path = Field(default=Path("."))
    run_root: Path = Field(default=Path("_runs"))
    config_path: Optional[Path] = Field(default=None)
    log_level: str = Field(default="INFO")
    log_format: LogFormat = Field(default="console")
    max_parallel: int = Field(default=4, ge=1)

    # Opaque credential for the benchmark service; SecretStr keeps it out of reprs.
    token: Optional[SecretStr] = Field(default=None)


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    return Settings()
