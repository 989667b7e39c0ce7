import json
import os
import logging
from typing import Dict, Any, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from src.core.constants import ALLOWED_BATCH_SIZES, DEFAULT_REGIONS
from src.core.models import Region

logger = logging.getLogger(__name__)

CONFIG_PATH = "data/scanner_config.json"

class BulkSettings(BaseModel):
    max_concurrent: int = Field(2, ge=1, le=5)
    batch_size: int = 25 # 0 = unbounded
    skip_duplicates: bool = True
    auto_retry: bool = True
    error_handling: Literal["continue", "pause", "stop"] = "continue"

    @field_validator('batch_size')
    @classmethod
    def _check_batch_size(cls, v: int) -> int:
        if v not in ALLOWED_BATCH_SIZES:
            raise ValueError(f"batch_size must be one of {ALLOWED_BATCH_SIZES}")
        return v

class MatchThresholds(BaseModel):
    fuzzy: float = Field(0.3, ge=0.0, le=1.0)
    partial: float = Field(0.5, ge=0.0, le=1.0)
    effect: float = Field(0.3, ge=0.0, le=1.0)
    inventory_fuzzy: float = Field(0.2, ge=0.0, le=1.0)
    chunk_size: int = Field(3, ge=3, le=5)
    min_effect_words: int = Field(3, ge=1)

class OcrSettings(BaseModel):
    engine: Literal["tesseract", "easyocr"] = "tesseract"
    strategy: Literal["best_of", "retry"] = "best_of"
    language: str = "eng"
    upscale: bool = False

class PipelineSettings(BaseModel):
    fetch_prices: bool = True
    free_image_api_key: Optional[str] = None
    regions: Dict[str, Region] = Field(default_factory=lambda: dict(DEFAULT_REGIONS))

    @field_validator('regions', mode='before')
    @classmethod
    def _merge_default_regions(cls, v):
        if not isinstance(v, dict):
            return v
        # Regions missing from the file keep their calibrated default
        merged: Dict[str, Any] = dict(DEFAULT_REGIONS)
        merged.update(v)
        return merged

class ScannerSettings(BaseModel):
    bulk: BulkSettings = Field(default_factory=BulkSettings)
    matcher: MatchThresholds = Field(default_factory=MatchThresholds)
    ocr: OcrSettings = Field(default_factory=OcrSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)

DEFAULT_CONFIG: Dict[str, Any] = ScannerSettings().model_dump()

def load_config(path: str = CONFIG_PATH) -> Dict[str, Any]:
    if not os.path.exists(path):
        return json.loads(json.dumps(DEFAULT_CONFIG))

    merged = json.loads(json.dumps(DEFAULT_CONFIG))
    try:
        with open(path, 'r', encoding='utf-8') as f:
            config = json.load(f)
        # Merge section by section so partial files keep the remaining defaults
        for key, value in config.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key].update(value)
            else:
                merged[key] = value
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
    return merged

def save_config(config: Dict[str, Any], path: str = CONFIG_PATH):
    try:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(config, f, indent=4)
    except Exception as e:
        logger.error(f"Failed to save config: {e}")

def load_settings(path: str = CONFIG_PATH) -> ScannerSettings:
    """Validated settings; invalid files fall back to defaults."""
    try:
        return ScannerSettings.model_validate(load_config(path))
    except ValidationError as e:
        logger.error(f"Invalid scanner config in {path}: {e}")
        return ScannerSettings()
