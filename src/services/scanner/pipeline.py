import asyncio
import base64
import logging
import os
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol, Sequence

import numpy as np

from src.core.config import PipelineSettings, ScannerSettings
from src.core.constants import CARD_NAME, EFFECT_TEXT
from src.core.exceptions import PriceFetchFailure, UploadFailure
from src.core.models import (
    CardPrices, CardRecord, InventoryRow, ProcessingQueueItem, ResultRecord,
)
from src.core.text_utils import normalize_ocr_text
from src.services.scanner.matcher import CardMatcher, MatchOutcome, score_confidence
from src.services.scanner.ocr import OcrAdapter, create_engine
from src.services.scanner.preprocessing import RegionPreprocessor
from src.services.scanner.processing_queue import ProcessingQueue
from src.services.scanner.regions import decode_image, encode_jpeg, extract_region, normalize_width

logger = logging.getLogger(__name__)

@dataclass
class ImageFile:
    """An input image: its file name and the encoded bytes."""
    name: str
    data: bytes

    @classmethod
    def from_path(cls, path: str) -> "ImageFile":
        with open(path, 'rb') as f:
            return cls(name=os.path.basename(path), data=f.read())

class ImageHost(Protocol):
    async def upload(self, data: bytes, filename: str) -> str:
        ...

PriceLookup = Callable[[str], Awaitable[CardPrices]]

def elapsed_ms(started: float) -> int:
    return int(round((time.perf_counter() - started) * 1000))

def to_data_url(jpeg: bytes) -> str:
    return "data:image/jpeg;base64," + base64.b64encode(jpeg).decode("ascii")

class CardPipeline:
    """
    Recognizes one card image: decode, normalize, upload, read both text regions,
    match, score and price. run() raises on fatal failures so callers can retry;
    process() is the boundary that always returns a ResultRecord.
    """

    def __init__(self,
                 ocr: OcrAdapter,
                 matcher: Optional[CardMatcher] = None,
                 database: Sequence[CardRecord] = (),
                 inventory: Sequence[InventoryRow] = (),
                 image_host: Optional[ImageHost] = None,
                 price_lookup: Optional[PriceLookup] = None,
                 settings: Optional[PipelineSettings] = None,
                 preprocessor: Optional[RegionPreprocessor] = None,
                 queue: Optional[ProcessingQueue] = None):
        self.ocr = ocr
        self.matcher = matcher or CardMatcher()
        self.database = database
        self.inventory = inventory
        self.image_host = image_host
        self.price_lookup = price_lookup
        self.settings = settings or PipelineSettings()
        self.preprocessor = preprocessor or RegionPreprocessor()
        self.queue = queue or ProcessingQueue()

    @classmethod
    def from_settings(cls, settings: ScannerSettings, **collaborators) -> "CardPipeline":
        """Builds the pipeline and the OCR engine it owns from validated settings."""
        engine = create_engine(settings.ocr)
        return cls(
            ocr=OcrAdapter(engine, strategy=settings.ocr.strategy),
            matcher=CardMatcher(settings.matcher),
            settings=settings.pipeline,
            preprocessor=RegionPreprocessor(upscale=settings.ocr.upscale),
            **collaborators,
        )

    def close(self):
        self.ocr.close()

    # --- Stages ---

    async def _upload(self, image: np.ndarray, filename: str) -> str:
        if self.image_host is None:
            return ""

        jpeg = await asyncio.to_thread(encode_jpeg, image)
        try:
            url = await self.image_host.upload(jpeg, filename)
            logger.info(f"Uploaded {filename}: {url}")
            return url
        except UploadFailure as e:
            logger.warning(f"Upload failed for {filename}, keeping a local reference: {e}")
            return to_data_url(jpeg)

    async def _read_region(self, image: np.ndarray, region_type: str, item: ProcessingQueueItem) -> str:
        prep_status, ocr_status = (
            ("ocr-name-prep", "ocr-name") if region_type == CARD_NAME else ("ocr-effect-prep", "ocr-effect")
        )
        self.queue.update(item, prep_status)
        crop = extract_region(image, self.settings.regions[region_type])
        processed = await asyncio.to_thread(self.preprocessor.process, crop, region_type)

        self.queue.update(item, ocr_status)
        result = await self.ocr.recognize(processed, region_type)
        return normalize_ocr_text(result.text)

    async def _fetch_prices(self, outcome: MatchOutcome) -> Optional[CardPrices]:
        if not outcome.matched:
            return None

        if self.price_lookup is not None and self.settings.fetch_prices:
            try:
                return await self.price_lookup(outcome.matched_name)
            except PriceFetchFailure as e:
                logger.warning(str(e))
                return CardPrices.zero()

        if outcome.matched_rows and outcome.matched_rows[0].prices:
            return outcome.matched_rows[0].prices
        return None

    # --- Entry points ---

    async def run(self, file: ImageFile, item: Optional[ProcessingQueueItem] = None,
                  started: Optional[float] = None) -> ResultRecord:
        started = time.perf_counter() if started is None else started
        item = item or self.queue.add(file.name)
        try:
            return await self._run(file, item, started)
        except Exception as e:
            self.queue.fail(item, str(e))
            raise

    async def _run(self, file: ImageFile, item: ProcessingQueueItem, started: float) -> ResultRecord:
        logger.info(f"Processing {file.name}")

        self.queue.update(item, "reading")
        image = await asyncio.to_thread(decode_image, file.data)

        self.queue.update(item, "preprocessing")
        image, scale = await asyncio.to_thread(normalize_width, image)
        if scale != 1.0:
            logger.debug(f"{file.name} resized by {scale:.3f} to {image.shape[1]}x{image.shape[0]}")

        self.queue.update(item, "uploading")
        image_url = await self._upload(image, file.name)

        self.queue.update(item, "ocr-setup", image_url=image_url or None)
        card_name = await self._read_region(image, CARD_NAME, item)
        item.card_name = card_name
        effect_text = await self._read_region(image, EFFECT_TEXT, item)
        item.effect_text = effect_text
        logger.info(f"{file.name}: read name '{card_name}'")

        outcome = await asyncio.to_thread(
            self.matcher.match, card_name, effect_text, self.database, self.inventory
        )
        confidence = score_confidence(card_name, effect_text, outcome.result)

        self.queue.update(item, "pricing")
        prices = await self._fetch_prices(outcome)

        record = ResultRecord(
            filename=file.name,
            card_name=card_name,
            effect_text=effect_text,
            matched=outcome.matched,
            matched_name=outcome.matched_name,
            match=outcome.result,
            matched_rows=outcome.matched_rows,
            prices=prices,
            confidence=confidence,
            processing_time=elapsed_ms(started),
            image_url=image_url,
        )
        self.queue.update(item, "complete")

        if record.matched:
            logger.info(f"{file.name}: matched '{record.matched_name}' ({record.match.match_type}, confidence {confidence:.2f})")
        else:
            logger.info(f"{file.name}: no match for '{card_name}'")
        return record

    def failure_record(self, file: ImageFile, error: BaseException, started: float) -> ResultRecord:
        return ResultRecord(
            filename=file.name,
            matched=False,
            processing_time=elapsed_ms(started),
            error=str(error) or error.__class__.__name__,
        )

    async def process(self, file: ImageFile, item: Optional[ProcessingQueueItem] = None) -> ResultRecord:
        """Never raises; failures come back as an unmatched record carrying the error."""
        started = time.perf_counter()
        try:
            return await self.run(file, item, started=started)
        except Exception as e:
            logger.error(f"Failed to process {file.name}: {e}")
            return self.failure_record(file, e, started)
