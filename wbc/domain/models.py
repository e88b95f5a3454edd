from enum import Enum
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

class PipelineOutcome(str, Enum):
    CONVERTED = "converted"
    SKIPPED_DRY_RUN = "skipped_dry_run"
    SKIPPED_EXISTS = "skipped_exists"
    ERROR_CONVERTING = "error_converting"
    ERROR_DELETING_SOURCE = "error_deleting_source"
    ERROR_PROBING = "error_probing"  # Folded into the default CRF path, never terminal
    ERROR_SPAWNING = "error_spawning"
    ERROR_UNEXPECTED = "error_unexpected"

    @property
    def is_error(self) -> bool:
        return self.value.startswith("error_")

    @property
    def is_skip(self) -> bool:
        return self.value.startswith("skipped_")

    @property
    def glyph(self) -> str:
        if self is PipelineOutcome.CONVERTED:
            return "✓"
        if self is PipelineOutcome.SKIPPED_EXISTS:
            return "-"
        if self is PipelineOutcome.SKIPPED_DRY_RUN:
            return "DRY"
        return "✗"

class FileTask(BaseModel):
    """One discovered input file, bound to the conversion root it was found under."""

    model_config = ConfigDict(frozen=True)

    path: Path
    root: Path

    @property
    def relative_path(self) -> Path:
        try:
            return self.path.relative_to(self.root)
        except ValueError:
            return Path(self.path.name)

class MediaSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int = Field(gt=0)
    height: int = Field(gt=0)
    bit_rate: Optional[int] = None  # bits/s

    @property
    def bit_rate_mbps(self) -> Optional[float]:
        if self.bit_rate is None:
            return None
        return self.bit_rate / 1_000_000
