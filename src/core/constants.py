from src.core.models import Region

# Width every source image is resized to before regions are applied.
NORMALIZED_WIDTH = 800

# Region types
CARD_NAME = "cardName"
EFFECT_TEXT = "effectText"

# Calibrated for an 800px wide card photo
DEFAULT_REGIONS = {
    CARD_NAME: Region(left=60, top=70, width=650, height=160),
    EFFECT_TEXT: Region(left=60, top=740, width=680, height=210),
}

# OCR character whitelists
NAME_WHITELIST = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "abcdefghijklmnopqrstuvwxyz"
    "0123456789"
    "-',.!&: "
)
EFFECT_WHITELIST = NAME_WHITELIST + "\"()/;?%+#@*"

# Fixed retry/backoff timings (seconds)
OCR_RETRY_DELAY = 0.3
BULK_RETRY_BACKOFF = 1.0
BULK_MAX_RETRIES = 2
PAUSE_POLL_INTERVAL = 0.1
QUEUE_DISPLAY_DELAY = 2.0
# Errored queue items kept for display, oldest dropped first
MAX_FAILED_QUEUE_ITEMS = 50

ALLOWED_BATCH_SIZES = (0, 10, 25, 50, 100)
ERROR_HANDLING_MODES = ("continue", "pause", "stop")

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}
MAX_IMAGE_BYTES = 10 * 1024 * 1024

INVENTORY_CSV_HEADERS = [
    "Card Name",
    "Set Name",
    "Set Code",
    "Edition",
    "Rarity",
    "Condition",
    "Description",
    "Image URL",
    "eBay Price",
    "TCGPlayer Price",
    "Cardmarket Price",
]

RESULTS_CSV_HEADERS = [
    "Filename",
    "Card Name",
    "Set Name",
    "Set Code",
    "Edition",
    "Rarity",
    "Condition",
    "Description",
    "Image URL",
    "eBay Price",
    "TCGPlayer Price",
    "Cardmarket Price",
    "Processing Time",
    "Matched",
]
