"""
StoryFrame Configuration Loader

config/generation.yaml → GenerationConfig (pydantic).
파일이 없으면 기본값을 사용합니다. 설정은 파이프라인 생성자에 주입됩니다.
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional

from pydantic import BaseModel, Field, ValidationError

from utils.constants import (
    MIN_IMAGE_BYTES,
    MODEL_GEMINI_FLASH,
    MODEL_GEMINI_FLASH_IMAGE,
    MODEL_GEMINI_PRO,
)
from utils.errors import ConfigurationError

# 기본 설정 디렉토리
CONFIG_DIR = Path(__file__).parent


class ModelConfig(BaseModel):
    text: str = MODEL_GEMINI_PRO
    vision: str = MODEL_GEMINI_FLASH
    image: str = MODEL_GEMINI_FLASH_IMAGE


class RetryConfig(BaseModel):
    frame_max_attempts: int = Field(default=3, ge=1)
    story_world_max_attempts: int = Field(default=2, ge=1)
    base_delay_sec: float = Field(default=1.0, ge=0)


class TimeoutConfig(BaseModel):
    text_call_timeout_sec: float = Field(default=120.0, gt=0)
    image_call_timeout_sec: float = Field(default=180.0, gt=0)


class CostTable(BaseModel):
    """ETA baseline 계산용 단계별 예상 소요 시간 (초)"""
    story_world_sec: float = 15.0
    script_sec_per_scene: float = 20.0
    frame_sec: float = 30.0
    continuation_script_sec: float = 20.0


class GenerationConfig(BaseModel):
    models: ModelConfig = Field(default_factory=ModelConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    cost_table: CostTable = Field(default_factory=CostTable)
    min_image_bytes: int = MIN_IMAGE_BYTES
    progress_tick_sec: float = Field(default=1.0, ge=0, description="0 disables the elapsed-time ticker")


def get_default_generation_config() -> Dict[str, Any]:
    """기본 생성 설정 반환"""
    return GenerationConfig().model_dump()


def load_generation_config(config_path: Optional[str] = None) -> GenerationConfig:
    """
    생성 설정 로드

    Args:
        config_path: 설정 파일 경로 (기본: $STORYFRAME_CONFIG 또는 config/generation.yaml)

    Returns:
        GenerationConfig
    """
    if config_path is None:
        config_path = os.getenv("STORYFRAME_CONFIG") or CONFIG_DIR / "generation.yaml"

    if not os.path.exists(config_path):
        return GenerationConfig()

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    try:
        return GenerationConfig.model_validate(config.get("generation", config))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid generation config in {config_path}", details=str(e))


def resolve_api_key(api_key: Optional[str] = None) -> str:
    """명시적 키 → GEMINI_API_KEY → GOOGLE_API_KEY 순서로 해석"""
    key = api_key or os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
    if not key:
        raise ConfigurationError(
            "GEMINI_API_KEY is required. Set it in the environment or a .env file."
        )
    return key
