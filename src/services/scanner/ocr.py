import asyncio
import logging
import shlex
from typing import Dict, Optional, Protocol, Sequence, Tuple

import numpy as np
import pytesseract

from src.core.config import OcrSettings
from src.core.constants import CARD_NAME, EFFECT_TEXT, NAME_WHITELIST, EFFECT_WHITELIST, OCR_RETRY_DELAY
from src.core.exceptions import OCRFailure
from src.services.scanner.models import OcrConfig, OCRResult

logger = logging.getLogger(__name__)

# Up to three attempts per region type, best first
NAME_VARIANTS: Tuple[OcrConfig, ...] = (
    OcrConfig(psm=7, whitelist=NAME_WHITELIST), # single text line
    OcrConfig(psm=4, whitelist=NAME_WHITELIST), # single column
    OcrConfig(psm=6),                           # uniform block, no whitelist
)

EFFECT_VARIANTS: Tuple[OcrConfig, ...] = (
    OcrConfig(psm=6, whitelist=EFFECT_WHITELIST),
    OcrConfig(psm=4, whitelist=EFFECT_WHITELIST),
    OcrConfig(psm=3),                           # fully automatic
)

DEFAULT_VARIANTS: Dict[str, Tuple[OcrConfig, ...]] = {
    CARD_NAME: NAME_VARIANTS,
    EFFECT_TEXT: EFFECT_VARIANTS,
}

OCR_STRATEGIES = ("best_of", "retry")

class OcrEngine(Protocol):
    name: str

    def recognize(self, image: np.ndarray, config: OcrConfig) -> OCRResult:
        ...

    def close(self) -> None:
        ...

class TesseractEngine:
    """Tesseract through pytesseract. Page segmentation mode and whitelist map 1:1 to the config."""
    name = "tesseract"

    def __init__(self, language: str = "eng", oem: int = 1):
        self.language = language
        self.oem = oem

    def build_config(self, config: OcrConfig) -> str:
        parts = [f"--oem {self.oem}", f"--psm {config.psm}"]
        if config.whitelist:
            # Tesseract treats spaces as word gaps, they are never whitelisted characters
            allow = config.whitelist.replace(" ", "")
            parts.append("-c " + shlex.quote(f"tessedit_char_whitelist={allow}"))
        return " ".join(parts)

    def recognize(self, image: np.ndarray, config: OcrConfig) -> OCRResult:
        data = pytesseract.image_to_data(
            image,
            lang=self.language,
            config=self.build_config(config),
            output_type=pytesseract.Output.DICT,
        )

        words, confidences = [], []
        for text, conf in zip(data.get("text", []), data.get("conf", [])):
            try:
                conf = float(conf)
            except (TypeError, ValueError):
                continue
            if conf < 0 or not str(text).strip():
                continue
            words.append(str(text).strip())
            confidences.append(conf)

        confidence = (sum(confidences) / len(confidences) / 100.0) if confidences else 0.0
        return OCRResult(engine=self.name, text=" ".join(words), confidence=confidence, config=config)

    def close(self) -> None:
        pass

class EasyOcrEngine:
    """EasyOCR reader, created on first use and owned by this instance."""
    name = "easyocr"

    def __init__(self, languages: Sequence[str] = ("en",), gpu: bool = False):
        self.languages = list(languages)
        self.gpu = gpu
        self.reader = None

    def get_reader(self):
        if self.reader is None:
            import easyocr
            logger.info("Initializing EasyOCR Reader...")
            self.reader = easyocr.Reader(self.languages, gpu=self.gpu)
        return self.reader

    def recognize(self, image: np.ndarray, config: OcrConfig) -> OCRResult:
        reader = self.get_reader()
        allowlist = config.whitelist if config.whitelist else None
        results = reader.readtext(image, detail=1, paragraph=False, allowlist=allowlist)

        texts, confidences = [], []
        for (_bbox, text, conf) in results:
            if text and text.strip():
                texts.append(text.strip())
                confidences.append(float(conf))

        confidence = (sum(confidences) / len(confidences)) if confidences else 0.0
        return OCRResult(engine=self.name, text=" ".join(texts), confidence=confidence, config=config)

    def close(self) -> None:
        self.reader = None

def create_engine(settings: OcrSettings) -> OcrEngine:
    if settings.engine == "easyocr":
        # EasyOCR uses ISO 639-1 codes
        lang = "en" if settings.language == "eng" else settings.language
        return EasyOcrEngine(languages=[lang])
    return TesseractEngine(language=settings.language)

class OcrAdapter:
    """
    Runs an engine over a preprocessed region.

    Two strategies exist and one is chosen per deployment:
      * best_of: every configuration variant of the region type is tried and the
        highest confidence result wins. Never raises; returns an empty result when
        no variant produced usable text.
      * retry: one attempt with the first variant, one retry after a short backoff,
        OCRFailure if the retry fails too.
    """

    def __init__(self, engine: OcrEngine, strategy: str = "best_of",
                 retry_delay: float = OCR_RETRY_DELAY,
                 variants: Optional[Dict[str, Tuple[OcrConfig, ...]]] = None):
        if strategy not in OCR_STRATEGIES:
            raise ValueError(f"Unknown OCR strategy '{strategy}', expected one of {OCR_STRATEGIES}")
        self.engine = engine
        self.strategy = strategy
        self.retry_delay = retry_delay
        self.variants = dict(variants or DEFAULT_VARIANTS)

    def variants_for(self, region_type: str) -> Tuple[OcrConfig, ...]:
        try:
            return self.variants[region_type][:3]
        except KeyError:
            raise ValueError(f"No OCR configuration for region type '{region_type}'") from None

    async def recognize(self, image: np.ndarray, region_type: str) -> OCRResult:
        if self.strategy == "retry":
            return await self._recognize_with_retry(image, region_type)
        return await self._recognize_best_of(image, region_type)

    async def _call(self, image: np.ndarray, config: OcrConfig) -> OCRResult:
        # Blocking engine call, a suspension point for the other workers
        return await asyncio.to_thread(self.engine.recognize, image, config)

    async def _recognize_best_of(self, image: np.ndarray, region_type: str) -> OCRResult:
        best: Optional[OCRResult] = None

        for config in self.variants_for(region_type):
            try:
                result = await self._call(image, config)
            except Exception as e:
                logger.warning(f"OCR attempt failed for {region_type} (psm {config.psm}): {e}")
                continue

            logger.debug(f"OCR {region_type} psm {config.psm}: '{result.text}' ({result.confidence:.2f})")
            if not result.usable:
                continue
            if best is None or result.confidence > best.confidence:
                best = result

        if best is None:
            logger.info(f"No usable OCR result for {region_type}")
            return OCRResult(engine=self.engine.name)
        return best

    async def _recognize_with_retry(self, image: np.ndarray, region_type: str) -> OCRResult:
        config = self.variants_for(region_type)[0]
        try:
            return await self._call(image, config)
        except Exception as first_error:
            logger.warning(f"OCR failed for {region_type}, retrying in {self.retry_delay}s: {first_error}")

        await asyncio.sleep(self.retry_delay)
        try:
            return await self._call(image, config)
        except Exception as e:
            raise OCRFailure(f"OCR failed for {region_type} after retry: {e}", region_type=region_type) from e

    def close(self):
        self.engine.close()
