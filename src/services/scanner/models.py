from pydantic import BaseModel, Field
from typing import Optional, Literal

class OcrConfig(BaseModel):
    """One recognition attempt configuration."""
    psm: int = 6 # Tesseract page segmentation mode
    whitelist: Optional[str] = None

class OCRResult(BaseModel):
    engine: str = ""
    text: str = ""
    confidence: float = 0.0 # 0..1
    config: Optional[OcrConfig] = None

    @property
    def usable(self) -> bool:
        return bool(self.text.strip()) and self.confidence > 0

class BulkProgress(BaseModel):
    """Read-only snapshot of the bulk manager state for progress consumers."""
    status: str = "idle"
    is_processing: bool = False
    is_paused: bool = False
    is_stopped: bool = False
    total: int = 0
    processed_count: int = 0
    matched_count: int = 0
    failed_count: int = 0
    pending_count: int = 0
    active_count: int = 0
    elapsed_ms: int = 0

ProgressKind = Literal[
    "start", "skip", "retry", "complete", "failed",
    "paused", "resumed", "stopped", "finished",
]

class ProgressEvent(BaseModel):
    kind: ProgressKind
    message: str
    filename: Optional[str] = None
    progress: BulkProgress = Field(default_factory=BulkProgress)
