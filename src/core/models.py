from typing import List, Optional, Literal, Union, Dict, Annotated
from pydantic import BaseModel, Field, AliasChoices, ConfigDict, field_validator
import uuid

# --- Geometry ---

class Region(BaseModel):
    """Rectangle in source-image pixel space. Accepts x/y as aliases of left/top."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    left: int = Field(0, ge=0, validation_alias=AliasChoices('left', 'x'))
    top: int = Field(0, ge=0, validation_alias=AliasChoices('top', 'y'))
    width: int = Field(..., ge=0)
    height: int = Field(..., ge=0)

    @property
    def area(self) -> int:
        return self.width * self.height

    def clamp(self, image_width: int, image_height: int) -> "Region":
        """Clips the rectangle to the image bounds instead of rejecting it."""
        left = min(self.left, image_width)
        top = min(self.top, image_height)
        right = min(self.left + self.width, image_width)
        bottom = min(self.top + self.height, image_height)
        return Region(left=left, top=top, width=right - left, height=bottom - top)

# --- Reference Database Models ---

class CardRecord(BaseModel):
    """Read-only entry of the reference card database."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: Optional[int] = None
    name: str
    description: str = Field("", validation_alias=AliasChoices('description', 'desc'))
    type: str = ""
    race: Optional[str] = None
    archetype: Optional[str] = None
    atk: Optional[int] = None
    defense: Optional[int] = Field(None, validation_alias=AliasChoices('defense', 'def'))
    level: Optional[int] = None
    set_codes: List[str] = []

    @field_validator('description', 'type', mode='before')
    @classmethod
    def _none_to_empty(cls, v):
        return v or ""

    @field_validator('set_codes', mode='before')
    @classmethod
    def _none_to_list(cls, v):
        return v or []

class CardPrices(BaseModel):
    # Decimal strings as served by the price API, never None
    ebay: str = "0.00"
    tcgplayer: str = "0.00"
    cardmarket: str = "0.00"

    @classmethod
    def zero(cls) -> "CardPrices":
        return cls()

# --- Inventory Models ---

class InventoryRow(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    card_name: str = "Unknown Card"
    set_name: str = ""
    set_code: str = ""
    edition: str = ""
    rarity: str = ""
    condition: str = "Near Mint"
    description: str = ""
    image_url: Optional[str] = None
    prices: Optional[CardPrices] = None

    @property
    def name(self) -> str:
        return self.card_name

# --- Match Results ---

MatchRecord = Union[CardRecord, InventoryRow]

class NoMatch(BaseModel):
    model_config = ConfigDict(frozen=True)
    match_type: Literal["none"] = "none"
    record: None = None
    score: None = None

class ExactMatch(BaseModel):
    model_config = ConfigDict(frozen=True)
    match_type: Literal["exact"] = "exact"
    record: MatchRecord
    score: float = 1.0

class FuzzyMatch(BaseModel):
    model_config = ConfigDict(frozen=True)
    match_type: Literal["fuzzy"] = "fuzzy"
    record: MatchRecord
    score: Optional[float] = None

class PartialMatch(BaseModel):
    model_config = ConfigDict(frozen=True)
    match_type: Literal["partial"] = "partial"
    record: MatchRecord
    score: Optional[float] = None

class EffectMatch(BaseModel):
    model_config = ConfigDict(frozen=True)
    match_type: Literal["effect"] = "effect"
    record: MatchRecord
    score: Optional[float] = None

MatchResult = Annotated[
    Union[NoMatch, ExactMatch, FuzzyMatch, PartialMatch, EffectMatch],
    Field(discriminator="match_type"),
]

# --- Processing Queue ---

QueueStatus = Literal[
    "pending", "reading", "preprocessing", "uploading", "ocr-setup",
    "ocr-name-prep", "ocr-name", "ocr-effect-prep", "ocr-effect",
    "pricing", "complete", "error",
]

STATUS_PROGRESS: Dict[str, int] = {
    "pending": 0,
    "reading": 10,
    "preprocessing": 20,
    "uploading": 30,
    "ocr-setup": 40,
    "ocr-name-prep": 50,
    "ocr-name": 60,
    "ocr-effect-prep": 70,
    "ocr-effect": 80,
    "pricing": 90,
    "complete": 100,
}

class ProcessingQueueItem(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    filename: str
    status: QueueStatus = "pending"
    progress: int = Field(0, ge=0, le=100)
    card_name: Optional[str] = None
    effect_text: Optional[str] = None
    image_url: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("complete", "error")

# --- Final Output ---

class ResultRecord(BaseModel):
    """Aggregated outcome for one image, consumed by export and reports."""
    model_config = ConfigDict(frozen=True)

    filename: str
    card_name: str = ""
    effect_text: str = ""
    matched: bool = False
    matched_name: Optional[str] = None
    match: MatchResult = Field(default_factory=NoMatch)
    matched_rows: List[InventoryRow] = []
    prices: Optional[CardPrices] = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    processing_time: int = 0 # milliseconds
    image_url: str = ""
    error: Optional[str] = None

    def _first_row_value(self, attr: str) -> str:
        if self.matched and self.matched_rows:
            return getattr(self.matched_rows[0], attr) or ""
        return ""

    @property
    def set_name(self) -> str:
        return self._first_row_value("set_name")

    @property
    def set_code(self) -> str:
        return self._first_row_value("set_code")

    @property
    def edition(self) -> str:
        return self._first_row_value("edition")

    @property
    def rarity(self) -> str:
        return self._first_row_value("rarity")

    @property
    def condition(self) -> str:
        return self._first_row_value("condition")
