from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Optional on purpose: a missing key is reported per image, not at startup.
    openai_api_key: str | None = None

    image_model: str = "gpt-4.1-mini"
    request_timeout_seconds: float | None = None
    max_concurrency: int = 3
    download_interval_seconds: float = 0.5
    download_prefix: str = "clearcut_"
    preview_max_edge: int = 256
    output_dir: Path = Path("./output")
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CLEARCUT_",
        env_file_encoding="utf-8",
    )

    @field_validator("max_concurrency")
    @classmethod
    def concurrency_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_concurrency must be at least 1")
        return v

    @field_validator("download_interval_seconds")
    @classmethod
    def interval_must_not_be_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("download_interval_seconds must not be negative")
        return v

    @field_validator("preview_max_edge")
    @classmethod
    def preview_edge_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("preview_max_edge must be at least 1")
        return v
