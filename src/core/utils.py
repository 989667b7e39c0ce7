import io
import os
import time
import uuid
from typing import Iterator, Union

from PIL import Image, UnidentifiedImageError

from src.core.constants import IMAGE_EXTENSIONS, MAX_IMAGE_BYTES

def generate_process_id() -> str:
    """Unique id for one in-flight processing attempt."""
    return f"process_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"

def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / 1024 / 1024:.1f} MB"

def format_duration(milliseconds: Union[int, float]) -> str:
    """
    Human readable duration.
    e.g. 1500 -> 1.5s
         95000 -> 1m 35s
    """
    seconds = milliseconds / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    remaining = int(seconds % 60)
    return f"{minutes}m {remaining}s"

def validate_image_file(filename: str, data: bytes) -> bool:
    """
    Checks extension, size and that the bytes carry a readable image header.
    Raises ValueError describing the first problem found.
    """
    ext = os.path.splitext(filename)[1].lower()
    if ext not in IMAGE_EXTENSIONS:
        raise ValueError(f"Invalid file type: {ext or 'unknown'}")

    if len(data) > MAX_IMAGE_BYTES:
        raise ValueError(f"File too large: {format_file_size(len(data))}")

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Unreadable image {filename}: {e}") from e

    return True

def iter_image_paths(path: str, recursive: bool = False) -> Iterator[str]:
    """Yields image files under path (a file or a folder), sorted by name."""
    path = os.path.abspath(path)
    if os.path.isfile(path):
        if os.path.splitext(path)[1].lower() in IMAGE_EXTENSIONS:
            yield path
        return

    if recursive:
        found = []
        for root, _dirs, files in os.walk(path):
            found.extend(os.path.join(root, f) for f in files)
    else:
        found = [os.path.join(path, f) for f in os.listdir(path)]

    for p in sorted(found):
        if os.path.isfile(p) and os.path.splitext(p)[1].lower() in IMAGE_EXTENSIONS:
            yield p
