"""Upload loading: turn files on disk into in-memory uploads.

The CLI uses this to build the input of `BatchOrchestrator.add_items`. The
orchestrator itself calls `probe_dimensions` for every file it accepts.
"""
import io
import logging
from pathlib import Path
from typing import Iterable

from PIL import Image, UnidentifiedImageError

from models.uploads import UploadedFile
from pipeline.errors import InvalidUploadError

logger = logging.getLogger(__name__)

_IMAGE_EXTENSIONS = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}

# EXIF orientation values that swap width/height for display
_TRANSPOSING_ORIENTATIONS = frozenset({6, 8})
_EXIF_ORIENTATION_TAG = 274


def collect_uploads(paths: Iterable[Path]) -> list[UploadedFile]:
    """Load every supported image among `paths`, expanding directories.

    Directory contents are taken in sorted order; unsupported or unreadable
    files are skipped with a warning.
    """
    uploads: list[UploadedFile] = []
    for path in paths:
        if path.is_dir():
            candidates = sorted(f for f in path.iterdir() if f.is_file())
        else:
            candidates = [path]
        for candidate in candidates:
            if candidate.suffix.lower() not in _IMAGE_EXTENSIONS:
                logger.warning("Skipping %s: not a supported image type", candidate.name)
                continue
            try:
                uploads.append(load_upload(candidate))
            except InvalidUploadError as exc:
                logger.warning("Skipping %s: %s", candidate.name, exc)
    return uploads


def load_upload(path: Path) -> UploadedFile:
    """Raises InvalidUploadError if the file cannot be read."""
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise InvalidUploadError(f"Could not read file: {exc}") from exc
    mime = detect_mime(data) or _IMAGE_EXTENSIONS.get(path.suffix.lower(), "image/png")
    return UploadedFile(name=path.name, data=data, mime_type=mime)


def detect_mime(image_bytes: bytes) -> str | None:
    """Detect MIME type from magic bytes. None if unrecognised."""
    if image_bytes[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if image_bytes[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return None


def probe_dimensions(data: bytes) -> tuple[int, int]:
    """Return (width, height) as displayed, i.e. after EXIF rotation.

    Raises InvalidUploadError if Pillow cannot read the image.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            orientation = img.getexif().get(_EXIF_ORIENTATION_TAG, 1)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        raise InvalidUploadError(f"Could not read image: {exc}") from exc

    if orientation in _TRANSPOSING_ORIENTATIONS:
        width, height = height, width
    return width, height
