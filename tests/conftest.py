import asyncio
import io
import itertools
from pathlib import Path

import pytest
from PIL import Image

from models.uploads import UploadedFile
from pipeline.downloads import DirectorySink, DownloadScheduler
from pipeline.errors import RemoteProcessingError
from pipeline.orchestrator import BatchOrchestrator
from pipeline.previews import PreviewRegistry
from settings import Settings
from utils.data_uri import to_data_uri

RESULT_PNG = b"\x89PNG\r\n\x1a\n-fake-result"


def make_upload(name: str = "photo.png", size: tuple[int, int] = (64, 48), fmt: str = "PNG") -> UploadedFile:
    """A real, Pillow-readable image held in memory."""
    buf = io.BytesIO()
    Image.new("RGB", size, color=(200, 30, 30)).save(buf, format=fmt)
    mime = {"PNG": "image/png", "JPEG": "image/jpeg", "WEBP": "image/webp"}[fmt]
    return UploadedFile(name=name, data=buf.getvalue(), mime_type=mime)


class FakeRemoteClient:
    """Stands in for BackgroundRemovalClient.

    - `fail`: names of uploads whose call raises RemoteProcessingError
    - `gated`: if True, every call blocks until `release(name)` is called
    Records call order in `log` as ("start", name) / ("end", name) and the
    highest number of overlapping calls in `max_in_flight`.
    """

    def __init__(self, fail: set[str] | None = None, gated: bool = False):
        self.fail = fail or set()
        self.gated = gated
        self.calls: list[str] = []
        self.log: list[tuple[str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._gates: dict[str, asyncio.Event] = {}

    def _gate(self, name: str) -> asyncio.Event:
        return self._gates.setdefault(name, asyncio.Event())

    def release(self, name: str) -> None:
        self._gate(name).set()

    async def remove_background_bytes(self, data: bytes, mime_type: str) -> str:
        name = _NAMES_BY_DATA[data]
        self.calls.append(name)
        self.log.append(("start", name))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gated:
                await self._gate(name).wait()
            else:
                # let sibling calls start before this one finishes
                await asyncio.sleep(0)
                await asyncio.sleep(0)
            if name in self.fail:
                raise RemoteProcessingError(f"no image for {name}")
            return to_data_uri(RESULT_PNG, "image/png")
        finally:
            self.in_flight -= 1
            self.log.append(("end", name))


_NAMES_BY_DATA: dict[bytes, str] = {}
_sizes = itertools.count()


def named_upload(name: str) -> UploadedFile:
    """Upload with unique bytes, so the fake client can tell them apart."""
    upload = make_upload(name, size=(16 + next(_sizes), 16))
    _NAMES_BY_DATA[upload.data] = name
    return upload


class NoWaitSleep:
    """Replacement for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def fake_client() -> FakeRemoteClient:
    return FakeRemoteClient()


@pytest.fixture
def no_wait_sleep() -> NoWaitSleep:
    return NoWaitSleep()


@pytest.fixture
def make_orchestrator(tmp_path: Path, no_wait_sleep: NoWaitSleep):
    """Factory for orchestrators writing downloads into tmp_path/output."""

    def factory(client, max_concurrency: int = 3) -> BatchOrchestrator:
        return BatchOrchestrator(
            client,
            previews=PreviewRegistry(max_edge=16),
            downloads=DownloadScheduler(
                DirectorySink(tmp_path / "output"),
                interval_seconds=0.5,
                sleep=no_wait_sleep,
            ),
            max_concurrency=max_concurrency,
        )

    return factory


@pytest.fixture
def tmp_settings(tmp_path: Path) -> Settings:
    """Settings instance writing into a fresh temp directory. No real API key."""
    return Settings(
        openai_api_key="test-key-not-used-in-unit-tests",
        output_dir=tmp_path / "output",
    )
