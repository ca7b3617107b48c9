"""Batch orchestration: the collection of work items and their lifecycle.

All state lives in `BatchOrchestrator`. Callers read immutable snapshots
(`items`, `get`, `stats`) and are told about changes through `subscribe`;
they never modify items themselves.

Lifecycle of an item:

    idle ──> processing ──> completed        (terminal, never re-run)
               │    ^
               v    │
              error ┘                         (re-run by a later batch)

Everything runs on one asyncio event loop. The only await inside
`process_one` is the remote call, so each status change is published before
the next request goes out.
"""
import asyncio
import itertools
import logging
from pathlib import Path
from typing import Callable, Iterable

from models.events import CollectionEvent
from models.uploads import UploadedFile
from models.work_item import AggregateStats, WorkItem, WorkItemStatus
from pipeline.downloads import DEFAULT_PREFIX, DirectorySink, DownloadScheduler, download_filename
from pipeline.errors import (
    BatchInProgressError,
    ClearCutError,
    ItemNotFoundError,
    ItemNotReadyError,
)
from pipeline.ingest import probe_dimensions
from pipeline.previews import PreviewRegistry
from pipeline.remote_client import BackgroundRemovalClient
from settings import Settings
from utils.data_uri import parse_data_uri

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 3
_FALLBACK_ERROR_MESSAGE = "Processing failed"

Subscriber = Callable[[CollectionEvent], None]


class BatchOrchestrator:
    def __init__(
        self,
        client: BackgroundRemovalClient,
        *,
        previews: PreviewRegistry | None = None,
        downloads: DownloadScheduler | None = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        download_prefix: str = DEFAULT_PREFIX,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.client = client
        self.previews = previews or PreviewRegistry()
        self.downloads = downloads
        self.max_concurrency = max_concurrency
        self.download_prefix = download_prefix

        # dicts keep insertion order; replacing a value keeps its position
        self._items: dict[str, WorkItem] = {}
        self._ids = itertools.count(1)
        self._subscribers: list[Subscriber] = []
        self._batch_running = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: BackgroundRemovalClient | None = None,
    ) -> "BatchOrchestrator":
        client = client or BackgroundRemovalClient(
            settings.openai_api_key,
            model=settings.image_model,
            timeout=settings.request_timeout_seconds,
        )
        return cls(
            client,
            previews=PreviewRegistry(max_edge=settings.preview_max_edge),
            downloads=DownloadScheduler(
                DirectorySink(settings.output_dir),
                interval_seconds=settings.download_interval_seconds,
            ),
            max_concurrency=settings.max_concurrency,
            download_prefix=settings.download_prefix,
        )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def items(self) -> tuple[WorkItem, ...]:
        return tuple(self._items.values())

    def get(self, item_id: str) -> WorkItem | None:
        return self._items.get(item_id)

    @property
    def stats(self) -> AggregateStats:
        return AggregateStats.from_items(self._items.values())

    @property
    def is_processing(self) -> bool:
        return self._batch_running

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register for change events. Returns a function that unsubscribes."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    # ------------------------------------------------------------------
    # Collection management
    # ------------------------------------------------------------------

    def add_items(self, files: Iterable[UploadedFile]) -> list[WorkItem]:
        """Append one idle item per file, in input order.

        Dimensions are probed for all files before anything is added, so an
        unreadable file (InvalidUploadError) leaves the collection unchanged.
        """
        files = list(files)
        dimensions = [probe_dimensions(f.data) for f in files]

        added: list[WorkItem] = []
        try:
            for upload, (width, height) in zip(files, dimensions):
                handle = self.previews.create(upload)
                added.append(WorkItem(
                    id=f"img_{next(self._ids):04d}",
                    file=upload,
                    width=width,
                    height=height,
                    preview_handle=handle,
                ))
        except ClearCutError:
            for item in added:
                self.previews.release(item.preview_handle)
            raise

        for item in added:
            self._items[item.id] = item
            logger.info("Added %s: %s (%dx%d, %d KB)",
                        item.id, item.name, item.width, item.height, item.size // 1024)
            self._notify("added", item)
        return added

    def remove_item(self, item_id: str) -> bool:
        """Remove an item and release its preview. Unknown ids are ignored."""
        item = self._items.pop(item_id, None)
        if item is None:
            logger.debug("remove_item: %s not in collection", item_id)
            return False
        self.previews.release(item.preview_handle)
        logger.info("Removed %s (%s)", item.id, item.name)
        self._notify("removed", item)
        return True

    def clear_all(self) -> None:
        items, self._items = self._items, {}
        for item in items.values():
            self.previews.release(item.preview_handle)
        logger.info("Cleared %d item(s)", len(items))
        self._notify("cleared", message=f"{len(items)} item(s) removed")

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_one(self, item_id: str) -> None:
        """Send one item to the remote service and record the outcome.

        Does nothing for unknown, processing or completed items. Failures
        never propagate; they become the item's `error` status.
        """
        item = self._items.get(item_id)
        if item is None or item.status in (WorkItemStatus.PROCESSING, WorkItemStatus.COMPLETED):
            logger.debug("process_one: skipping %s", item_id)
            return

        item = item.transition(WorkItemStatus.PROCESSING)
        self._items[item_id] = item
        logger.info("Processing %s (%s)", item.id, item.name)
        self._notify("status_changed", item)

        try:
            result = await self.client.remove_background_bytes(item.file.data, item.mime_type)
        except Exception as exc:
            message = str(exc) or _FALLBACK_ERROR_MESSAGE
            logger.warning("  [%s] %s — FAILED: %s", item.id, item.name, message)
            self._finish(item_id, WorkItemStatus.ERROR, error_message=message)
        else:
            logger.info("  [%s] %s — completed", item.id, item.name)
            self._finish(item_id, WorkItemStatus.COMPLETED, result=result)

    def _finish(self, item_id: str, status: WorkItemStatus, **fields) -> None:
        current = self._items.get(item_id)
        if current is None or current.status is not WorkItemStatus.PROCESSING:
            # removed (or cleared) while the request was in flight
            logger.debug("Dropping late %s result for %s", status.value, item_id)
            return
        updated = current.transition(status, **fields)
        self._items[item_id] = updated
        self._notify("status_changed", updated)

    async def process_batch(self) -> AggregateStats:
        """Process every idle or failed item in waves of `max_concurrency`.

        A wave starts only after every member of the previous one finished.
        Raises BatchInProgressError if a batch is already running.
        """
        if self._batch_running:
            raise BatchInProgressError()

        eligible = [item.id for item in self._items.values() if item.status.is_eligible]
        self._batch_running = True
        self._notify("batch_started", message=f"{len(eligible)} item(s) queued")
        try:
            for start in range(0, len(eligible), self.max_concurrency):
                wave = eligible[start:start + self.max_concurrency]
                logger.debug("Wave %d: %s", start // self.max_concurrency + 1, ", ".join(wave))
                await asyncio.gather(*(self.process_one(item_id) for item_id in wave))
        finally:
            self._batch_running = False

        stats = self.stats
        logger.info("Batch complete: %d completed, %d failed, %d total",
                    stats.completed, stats.failed, stats.total)
        self._notify("batch_finished")
        return stats

    # ------------------------------------------------------------------
    # Downloads
    # ------------------------------------------------------------------

    def download_one(self, item_id: str) -> Path:
        """Deliver the result of a completed item immediately; return its path.

        Raises ItemNotFoundError for unknown ids and ItemNotReadyError for
        items that are not completed. Nothing is written in either case.
        """
        filename, data = self._download_payload(item_id)
        path = self._require_downloads().deliver_now(filename, data)
        self._notify("downloaded", self._items[item_id], message=filename)
        return path

    async def download_all(self) -> list[Path]:
        """Deliver every completed item in collection order, one at a time."""
        scheduler = self._require_downloads()
        # payloads are built up front so a bad item fails before anything is written
        entries = [self._download_payload(item.id) for item in self._items.values()
                   if item.status is WorkItemStatus.COMPLETED]
        paths = await scheduler.drain(entries)
        logger.info("Downloaded %d file(s)", len(paths))
        self._notify("downloaded", message=f"{len(paths)} file(s)")
        return paths

    def _download_payload(self, item_id: str) -> tuple[str, bytes]:
        item = self._items.get(item_id)
        if item is None:
            raise ItemNotFoundError(f"No item with id {item_id}")
        if item.status is not WorkItemStatus.COMPLETED:
            raise ItemNotReadyError(f"{item.name} is {item.status.value}, not completed")
        _, data = parse_data_uri(item.result)
        return download_filename(item.name, self.download_prefix), data

    def _require_downloads(self) -> DownloadScheduler:
        if self.downloads is None:
            raise RuntimeError("No download scheduler configured")
        return self.downloads

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _notify(self, action: str, item: WorkItem | None = None, message: str = "") -> None:
        event = CollectionEvent(
            action=action,
            item_id=item.id if item else None,
            status=item.status if item else None,
            message=message,
            stats=self.stats,
        )
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Subscriber %r failed on %s event", callback, action)
