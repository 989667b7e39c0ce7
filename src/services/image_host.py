import asyncio
import base64
import logging

import aiohttp

from src.core.exceptions import UploadFailure

UPLOAD_URL = "https://freeimage.host/api/1/upload"

logger = logging.getLogger(__name__)

class FreeImageHost:
    """Uploads scanned card images to freeimage.host and returns the public URL."""

    def __init__(self, api_key: str, upload_url: str = UPLOAD_URL):
        if not api_key:
            raise ValueError("An API key is required for freeimage.host uploads")
        self.api_key = api_key
        self.upload_url = upload_url

    async def upload(self, data: bytes, filename: str = "") -> str:
        form = {
            "key": self.api_key,
            "action": "upload",
            "source": base64.b64encode(data).decode("ascii"),
            "format": "json",
        }

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(self.upload_url, data=form) as response:
                    payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise UploadFailure(f"Upload error for {filename}: {e}") from e

        if not isinstance(payload, dict) or payload.get("status_code") != 200:
            raise UploadFailure(f"Upload failed for {filename}: {payload}")

        url = (payload.get("image") or {}).get("url")
        if not url:
            raise UploadFailure(f"Upload response for {filename} carries no image URL")
        return url
