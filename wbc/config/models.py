from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

class GeneralConfig(BaseModel):
    parallel: int = Field(default=1, gt=0)
    dry_run: bool = False
    target_extension: str = ".webm"
    # Empty list: every file that is not already in the target container
    extensions: List[str] = Field(default_factory=list)
    failed_dir_prefix: str = Field(default="@failed_vc_", min_length=1)
    stderr_tail_lines: int = Field(default=40, ge=0)
    log_path: Optional[str] = None
    debug: bool = False

    @field_validator("target_extension")
    @classmethod
    def normalize_target_extension(cls, v: str) -> str:
        v = v.strip().lower()
        if not v or v == ".":
            raise ValueError("target_extension must not be empty")
        return v if v.startswith(".") else f".{v}"

    @field_validator("extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        return [(ext if ext.startswith(".") else f".{ext}").lower() for ext in v]

class EncoderConfig(BaseModel):
    video_codec: str = "libvpx-vp9"
    audio_codec: str = "libopus"
    cpu_used: Optional[int] = Field(default=0, ge=-8, le=8)
    extra_args: List[str] = Field(default_factory=list)

class QualityTier(BaseModel):
    """One rung of the CRF ladder. Bounds are inclusive."""
    name: str
    crf: int = Field(ge=0, le=63)
    min_height: int = Field(default=0, ge=0)
    min_bit_rate: Optional[int] = Field(default=None, gt=0)  # bits/s

    @property
    def is_catch_all(self) -> bool:
        return self.min_height == 0 and self.min_bit_rate is None

def default_quality_tiers() -> List[QualityTier]:
    return [
        QualityTier(name="1080p", crf=24, min_height=1080, min_bit_rate=8_000_000),
        QualityTier(name="720p", crf=22, min_height=720),
        QualityTier(name="low", crf=20),
    ]

class QualityConfig(BaseModel):
    default_crf: int = Field(default=24, ge=0, le=63)
    tiers: List[QualityTier] = Field(default_factory=default_quality_tiers)

    @model_validator(mode="after")
    def validate_ladder(self):
        if not self.tiers:
            raise ValueError("quality.tiers must contain at least one tier")
        if not any(tier.is_catch_all for tier in self.tiers):
            raise ValueError("quality.tiers needs a catch-all tier (min_height 0, no min_bit_rate)")
        heights = [tier.min_height for tier in self.tiers]
        if heights != sorted(heights, reverse=True):
            raise ValueError("quality.tiers must be ordered from highest min_height to lowest")
        return self

class ToolsConfig(BaseModel):
    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"

class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    encoder: EncoderConfig = Field(default_factory=EncoderConfig)
    quality: QualityConfig = Field(default_factory=QualityConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
