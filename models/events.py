from typing import Literal

from pydantic import BaseModel

from models.work_item import AggregateStats, WorkItemStatus


class CollectionEvent(BaseModel):
    """Emitted by the orchestrator after every change to the collection.

    The CLI logs these. A UI would re-read `orchestrator.items` on each one.
    """

    action: Literal[
        "added",
        "removed",
        "cleared",
        "status_changed",
        "batch_started",
        "batch_finished",
        "downloaded",
    ]
    item_id: str | None = None
    status: WorkItemStatus | None = None
    message: str = ""
    stats: AggregateStats
