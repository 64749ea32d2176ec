"""Application settings (Pydantic v2), loaded from the environment and an optional .env file."""

import os
from typing import Any, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "METASTAMP_"


class Settings(BaseModel):
    """
    Runtime settings.

    Each field can be overridden with METASTAMP_<FIELD_NAME> (e.g. METASTAMP_JPEG_QUALITY=90).
    """

    model_config = {"extra": "ignore"}

    jpeg_quality: int = Field(default=95, ge=1, le=95)
    embed_xmp: bool = True
    item_timeout_seconds: Optional[float] = None
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    @field_validator("item_timeout_seconds", mode="before")
    @classmethod
    def empty_timeout_is_unbounded(cls, v: Any) -> Any:
        if v in ("", 0, "0"):
            return None
        return v

    @field_validator("log_level")
    @classmethod
    def upper_log_level(cls, v: str) -> str:
        return v.upper()


_config: Optional[Settings] = None


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from METASTAMP_* variables; .env is loaded first when reading os.environ."""
    if env is None:
        load_dotenv()
        env = os.environ
    data = {}
    for name in Settings.model_fields:
        value = env.get(ENV_PREFIX + name.upper())
        if value is not None and value.strip() != "":
            data[name] = value.strip()
    return Settings.model_validate(data)


def get_config() -> Settings:
    global _config
    if _config is None:
        _config = load_settings()
    return _config
