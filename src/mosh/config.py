"""Environment-based configuration for mosh."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from MOSH_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MOSH_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 3001
    debug: bool = False

    # Storage
    database_path: Path = Path("data/mosh.db")

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Face detection
    face_detection_model: str = "retinaface_mobilenetv2"
    models_dir: Path = Path("models")
    detector_input_size: int = Field(default=640, ge=32)
    min_detection_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    nms_threshold: float = Field(default=0.4, ge=0.0, le=1.0)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    inference_timeout: float = Field(default=5.0, gt=0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_frame_size: int = Field(default=10_485_760, ge=1)

    # Capture sessions
    detection_interval_ms: int = Field(default=100, ge=0)
    session_ttl: int = Field(default=600, ge=0)

    # Model management
    model_ttl: int = Field(default=300, ge=0)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
