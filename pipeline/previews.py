"""In-memory preview thumbnails, addressed by opaque handles.

Every handle handed out by `create` must be given back through `release`
when its item leaves the collection; `outstanding` shows what is still held.
"""
import io
import itertools
import logging

from PIL import Image, ImageOps

from models.uploads import UploadedFile
from pipeline.errors import InvalidUploadError

logger = logging.getLogger(__name__)


class PreviewRegistry:
    def __init__(self, max_edge: int = 256):
        self.max_edge = max_edge
        self._previews: dict[str, bytes] = {}
        self._counter = itertools.count(1)

    def create(self, upload: UploadedFile) -> str:
        """Render a PNG thumbnail of `upload` and return its handle."""
        try:
            with Image.open(io.BytesIO(upload.data)) as img:
                thumb = ImageOps.exif_transpose(img)
                if thumb.mode not in ("RGB", "RGBA", "L", "LA"):
                    thumb = thumb.convert("RGBA")
                thumb.thumbnail((self.max_edge, self.max_edge))
                buf = io.BytesIO()
                thumb.save(buf, format="PNG")
        except (Image.DecompressionBombError, OSError) as exc:
            raise InvalidUploadError(f"Could not render preview for {upload.name}: {exc}") from exc

        handle = f"preview://{next(self._counter)}"
        self._previews[handle] = buf.getvalue()
        logger.debug("Allocated %s for %s", handle, upload.name)
        return handle

    def get(self, handle: str) -> bytes | None:
        return self._previews.get(handle)

    def release(self, handle: str | None) -> None:
        """Free a handle. Releasing twice, or releasing None, does nothing."""
        if handle is not None and self._previews.pop(handle, None) is not None:
            logger.debug("Released %s", handle)

    @property
    def outstanding(self) -> int:
        return len(self._previews)
