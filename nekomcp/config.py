"""Settings loading and validation for nekomcp."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .exceptions import BadConfig


DEFAULT_PUBLIC_DIR = Path(__file__).resolve().parent / "public"
MAX_GALLERY_LIMIT = 12


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000
    sse_path: str = "/mcp"
    post_path: str = "/mcp/messages"
    public_dir: Path = DEFAULT_PUBLIC_DIR

    @field_validator("port")
    @classmethod
    def validate_port(cls, value: int) -> int:
        if not 0 < value < 65536:
            raise ValueError("port must be between 1 and 65535")
        return value

    @model_validator(mode="after")
    def check_paths(self) -> "ServerSettings":
        for path in (self.sse_path, self.post_path):
            if not path.startswith("/"):
                raise ValueError(f"endpoint paths must be absolute: {path}")
        if self.sse_path == self.post_path:
            raise ValueError("sse_path and post_path must differ")
        return self


class CatApiSettings(BaseModel):
    endpoint: str = "https://api.thecatapi.com/v1/images/search"
    api_key: str | None = None
    timeout_seconds: float = 10.0
    default_limit: int = 8

    @model_validator(mode="after")
    def validate_values(self) -> "CatApiSettings":
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if not 1 <= self.default_limit <= MAX_GALLERY_LIMIT:
            raise ValueError(f"default_limit must be between 1 and {MAX_GALLERY_LIMIT}")
        return self


class LoggingSettings(BaseModel):
    level: str = "INFO"
    output: Literal["stderr", "file"] = "stderr"
    file_path: str = "nekomcp.log"
    rotate_bytes: int = 10_485_760
    backup_count: int = 3

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        if not isinstance(logging.getLevelName(value.upper()), int):
            raise ValueError(f"unknown log level: {value}")
        return value.upper()


class Settings(BaseModel):
    server: ServerSettings = Field(default_factory=ServerSettings)
    cat_api: CatApiSettings = Field(default_factory=CatApiSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise BadConfig(message=str(exc)) from exc


def apply_env(data: dict[str, Any], env: Mapping[str, str]) -> dict[str, Any]:
    """Overlay environment variables onto raw settings data."""

    server = dict(data.get("server") or {})
    cat_api = dict(data.get("cat_api") or {})
    api_key = env.get("CAT_API_KEY") or env.get("VITE_CAT_API_KEY")
    if api_key:
        cat_api["api_key"] = api_key
    if env.get("PORT"):
        server["port"] = env["PORT"]
    if env.get("HOST"):
        server["host"] = env["HOST"]
    return {**data, "server": server, "cat_api": cat_api}


def load_settings(path: str | Path | None = None, env: Mapping[str, str] | None = None) -> Settings:
    """Load settings from an optional YAML file plus the environment."""

    env = os.environ if env is None else env
    path = path or env.get("NEKOMCP_CONFIG")
    data: dict[str, Any] = {}
    if path:
        try:
            raw = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise BadConfig(message=f"Failed to read config: {exc}") from exc
        try:
            data = yaml.safe_load(raw) or {}
        except yaml.YAMLError as exc:
            raise BadConfig(message=f"Failed to parse config YAML: {exc}") from exc
        if not isinstance(data, dict):
            raise BadConfig(message="Config root must be a mapping")
    return Settings.from_dict(apply_env(data, env))
