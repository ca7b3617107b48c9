"""Delivery of processed results as files.

Bulk downloads go through `DownloadScheduler`, which drains a per-call queue
one file at a time with a fixed pause between deliveries. The pause is
awaited through an injectable `sleep` so tests do not depend on wall-clock time.
"""
import asyncio
import logging
from collections import deque
from pathlib import Path, PurePath
from typing import Awaitable, Callable, Iterable, Protocol

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "clearcut_"


def download_filename(name: str, prefix: str = DEFAULT_PREFIX) -> str:
    """`photo.jpg` -> `clearcut_photo.png`. Only the final extension is stripped."""
    return f"{prefix}{PurePath(name).stem}.png"


class DownloadSink(Protocol):
    def deliver(self, filename: str, data: bytes) -> Path: ...


class DirectorySink:
    """Writes delivered files into `output_dir`.

    An existing file is never overwritten: `clearcut_a.png` becomes
    `clearcut_a (1).png`, `clearcut_a (2).png` and so on.
    """

    def __init__(self, output_dir: Path):
        self.output_dir = output_dir

    def deliver(self, filename: str, data: bytes) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self._free_path(filename)
        with path.open("xb") as fh:
            fh.write(data)
        logger.info("Saved %s (%d KB)", path, len(data) // 1024)
        return path

    def _free_path(self, filename: str) -> Path:
        path = self.output_dir / filename
        stem, suffix = PurePath(filename).stem, PurePath(filename).suffix
        counter = 1
        while path.exists():
            path = self.output_dir / f"{stem} ({counter}){suffix}"
            counter += 1
        return path


class DownloadScheduler:
    def __init__(
        self,
        sink: DownloadSink,
        interval_seconds: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.sink = sink
        self.interval_seconds = interval_seconds
        self._sleep = sleep

    def deliver_now(self, filename: str, data: bytes) -> Path:
        return self.sink.deliver(filename, data)

    async def drain(self, entries: Iterable[tuple[str, bytes]]) -> list[Path]:
        """Deliver `entries` in order, pausing between files.

        The queue belongs to this call only. If a delivery fails, the
        remaining entries are dropped with it and nothing carries over.
        """
        queue = deque(entries)
        delivered: list[Path] = []
        while queue:
            if delivered and self.interval_seconds > 0:
                await self._sleep(self.interval_seconds)
            filename, data = queue.popleft()
            delivered.append(self.sink.deliver(filename, data))
        return delivered
