from typing import Optional


class ScannerError(Exception):
    """Base class for failures raised by the recognition pipeline."""


class InvalidRegion(ScannerError):
    """Crop geometry has no area after clamping to the source image."""


class ImageDecodeError(ScannerError):
    pass


class OCRFailure(ScannerError):
    def __init__(self, message: str, region_type: Optional[str] = None):
        super().__init__(message)
        self.region_type = region_type


class UploadFailure(ScannerError):
    pass


class PriceFetchFailure(ScannerError):
    def __init__(self, card_name: str, reason: str):
        super().__init__(f"Price lookup failed for '{card_name}': {reason}")
        self.card_name = card_name
        self.reason = reason
