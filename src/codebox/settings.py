from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.models import CPU_PERIOD_US, CPU_QUOTA_US, Limits, MEMORY_CEILING_BYTES


class Settings(BaseSettings):
    # ---- listen ----
    host: str = "0.0.0.0"
    port: int = Field(5000, validation_alias=AliasChoices("CODEBOX_PORT", "PORT"))
    cors_origins: List[str] = ["https://zhass-coding-frontend.vercel.app", "http://localhost:3000"]

    # ---- isolation ----
    backend: Literal["docker", "process"] = "docker"
    staging_dir: Path = Path("temp")
    mount_path: str = "/app"
    memory_bytes: int = MEMORY_CEILING_BYTES
    cpu_period: int = CPU_PERIOD_US
    cpu_quota: int = CPU_QUOTA_US
    timeout_s: Optional[float] = None  # None: dùng default_timeout_s của backend
    stop_timeout_s: int = 1
    images: Dict[str, str] = {}
    runtimes: Dict[str, str] = {}  # chỉ dùng cho strategy "process": node -> /usr/bin/node ...
    prepull_images: bool = False
    reap_orphans: bool = True
    use_systemd_run: bool = False

    log_level: str = "INFO"

    # ---- code generation (Gemini) ----
    gemini_api_key: Optional[str] = Field(None, validation_alias=AliasChoices("CODEBOX_GEMINI_API_KEY", "GEMINI_API_KEY"))
    gemini_model: str = "gemini-1.5-flash-latest"
    gemini_timeout_s: float = 30.0

    # env prefix CODEBOX_*
    model_config = SettingsConfigDict(env_prefix="CODEBOX_", env_file=".env", extra="ignore", populate_by_name=True)

    @property
    def limits(self) -> Limits:
        return Limits(memory_bytes=self.memory_bytes, cpu_period=self.cpu_period, cpu_quota=self.cpu_quota)


def load_settings() -> Settings:
    # 0) Nạp base từ env CODEBOX_* (+ .env)
    s = Settings()

    # 1) Đọc conf/codebox.yaml (hoặc CODEBOX_CONF), file không có thì bỏ qua
    conf = os.environ.get("CODEBOX_CONF", "conf/codebox.yaml")
    try:
        with open(conf, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        data = {}
    if not isinstance(data, dict):
        data = {}

    # 2) Merge: YAML chỉ ghi đè các field mà env không set
    update: Dict[str, Any] = {k: v for k, v in data.items()
                              if k in Settings.model_fields and k not in s.model_fields_set}
    if update:
        s = Settings(**{**s.model_dump(include=s.model_fields_set), **update})
    return s


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
