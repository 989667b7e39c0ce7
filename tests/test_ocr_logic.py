import shlex
import unittest
from unittest.mock import patch

import numpy as np
import pytesseract

from src.core.config import OcrSettings
from src.core.constants import CARD_NAME, EFFECT_TEXT, NAME_WHITELIST
from src.core.exceptions import OCRFailure
from src.services.scanner.models import OcrConfig, OCRResult
from src.services.scanner.ocr import (
    OcrAdapter, TesseractEngine, EasyOcrEngine, create_engine, NAME_VARIANTS, EFFECT_VARIANTS,
)

class FakeEngine:
    """Answers per page segmentation mode; an Exception value is raised instead."""
    name = "fake"

    def __init__(self, responses):
        self.responses = responses
        self.calls = []
        self.closed = False

    def recognize(self, image, config):
        self.calls.append(config)
        response = self.responses[config.psm]
        if isinstance(response, list):
            response = response.pop(0)
        if isinstance(response, Exception):
            raise response
        text, confidence = response
        return OCRResult(engine=self.name, text=text, confidence=confidence, config=config)

    def close(self):
        self.closed = True

IMAGE = np.zeros((10, 10, 3), dtype=np.uint8)

class TestVariants(unittest.TestCase):
    def test_at_most_three_variants(self):
        self.assertLessEqual(len(NAME_VARIANTS), 3)
        self.assertLessEqual(len(EFFECT_VARIANTS), 3)
        self.assertEqual(NAME_VARIANTS[0].psm, 7)

    def test_unknown_strategy(self):
        with self.assertRaises(ValueError):
            OcrAdapter(FakeEngine({}), strategy="vote")

class TestBestOf(unittest.IsolatedAsyncioTestCase):
    async def test_highest_confidence_wins(self):
        engine = FakeEngine({
            7: ("Dark Magican", 0.6),
            4: ("Dark Magician", 0.9),
            6: RuntimeError("engine crashed"),
        })
        adapter = OcrAdapter(engine)

        result = await adapter.recognize(IMAGE, CARD_NAME)

        self.assertEqual(result.text, "Dark Magician")
        self.assertEqual(result.config.psm, 4)
        self.assertEqual([c.psm for c in engine.calls], [7, 4, 6])

    async def test_empty_text_is_never_selected(self):
        engine = FakeEngine({
            6: ("", 0.99),
            4: ("Draw 2 cards", 0.4),
            3: ("   ", 0.95),
        })
        result = await OcrAdapter(engine).recognize(IMAGE, EFFECT_TEXT)
        self.assertEqual(result.text, "Draw 2 cards")

    async def test_no_usable_result_gives_empty_text(self):
        engine = FakeEngine({7: ("", 0.0), 4: RuntimeError("x"), 6: ("", 0.5)})
        result = await OcrAdapter(engine).recognize(IMAGE, CARD_NAME)
        self.assertEqual(result.text, "")
        self.assertEqual(result.confidence, 0.0)

    async def test_unknown_region_type(self):
        with self.assertRaises(ValueError):
            await OcrAdapter(FakeEngine({})).recognize(IMAGE, "artwork")

class TestRetryStrategy(unittest.IsolatedAsyncioTestCase):
    async def test_retries_once(self):
        engine = FakeEngine({7: [RuntimeError("busy"), ("Kuriboh", 0.8)]})
        adapter = OcrAdapter(engine, strategy="retry", retry_delay=0)

        result = await adapter.recognize(IMAGE, CARD_NAME)

        self.assertEqual(result.text, "Kuriboh")
        self.assertEqual(len(engine.calls), 2)

    async def test_failure_after_retry(self):
        engine = FakeEngine({6: [RuntimeError("a"), RuntimeError("b")]})
        adapter = OcrAdapter(engine, strategy="retry", retry_delay=0)

        with self.assertRaises(OCRFailure) as ctx:
            await adapter.recognize(IMAGE, EFFECT_TEXT)
        self.assertEqual(ctx.exception.region_type, EFFECT_TEXT)
        self.assertEqual(len(engine.calls), 2)

    async def test_close_releases_engine(self):
        engine = FakeEngine({})
        OcrAdapter(engine).close()
        self.assertTrue(engine.closed)

class TestTesseractEngine(unittest.TestCase):
    def test_config_string(self):
        engine = TesseractEngine()
        config = engine.build_config(OcrConfig(psm=7, whitelist=NAME_WHITELIST))

        args = shlex.split(config)
        self.assertEqual(args[:4], ["--oem", "1", "--psm", "7"])
        self.assertIn("tessedit_char_whitelist=" + NAME_WHITELIST.replace(" ", ""), args)

        self.assertEqual(engine.build_config(OcrConfig(psm=3)), "--oem 1 --psm 3")

    def test_engines_leave_global_command_alone(self):
        command = pytesseract.pytesseract.tesseract_cmd
        TesseractEngine(language="deu", oem=3)
        create_engine(OcrSettings(language="fra"))
        self.assertEqual(pytesseract.pytesseract.tesseract_cmd, command)

    @patch('src.services.scanner.ocr.pytesseract.image_to_data')
    def test_recognize_averages_word_confidence(self, mock_data):
        mock_data.return_value = {
            "text": ["", "Dark", "Magician", " "],
            "conf": ["-1", "90", "80.0", "-1"],
        }
        result = TesseractEngine().recognize(IMAGE, OcrConfig(psm=7))

        self.assertEqual(result.text, "Dark Magician")
        self.assertAlmostEqual(result.confidence, 0.85)
        self.assertEqual(result.engine, "tesseract")

    @patch('src.services.scanner.ocr.pytesseract.image_to_data')
    def test_recognize_nothing_found(self, mock_data):
        mock_data.return_value = {"text": [""], "conf": ["-1"]}
        result = TesseractEngine().recognize(IMAGE, OcrConfig())
        self.assertFalse(result.usable)

class TestEngineFactory(unittest.TestCase):
    def test_create_engine(self):
        self.assertIsInstance(create_engine(OcrSettings()), TesseractEngine)

        engine = create_engine(OcrSettings(engine="easyocr"))
        self.assertIsInstance(engine, EasyOcrEngine)
        self.assertEqual(engine.languages, ["en"])
        # Reader is created lazily
        self.assertIsNone(engine.reader)

if __name__ == '__main__':
    unittest.main()
