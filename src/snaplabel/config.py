"""Environment-based configuration for SnapLabel."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from SNAPLABEL_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SNAPLABEL_",
        case_sensitive=False,
        protected_namespaces=("settings_",),
    )

    # Server
    host: str = "127.0.0.1"
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection
    model_name: str = "mobilenet_v2"
    models_dir: str = "./models"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Ranking
    top_k: int = Field(default=5, ge=1)
    candidates: int = Field(default=10, ge=1)

    # Normalization
    resample: Literal["nearest", "bilinear", "bicubic", "lanczos"] = "bilinear"
    reencode_jpeg: bool = False
    jpeg_quality: int = Field(default=100, ge=1, le=100)
    max_image_pixels: int = Field(default=67_108_864, ge=1)

    # Camera
    camera_index: int = Field(default=0, ge=0)
    camera_image_path: str | None = None
    camera_width: int = Field(default=1920, ge=1)
    camera_height: int = Field(default=1080, ge=1)
    camera_flush_grabs: int = Field(default=5, ge=0)
    camera_permission: bool = True

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
