from enum import Enum
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from models.uploads import UploadedFile


class WorkItemStatus(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkItemStatus.COMPLETED, WorkItemStatus.ERROR)

    @property
    def is_eligible(self) -> bool:
        """True if a batch run may pick the item up."""
        return self in (WorkItemStatus.IDLE, WorkItemStatus.ERROR)


class WorkItem(BaseModel):
    """One uploaded image and its processing state.

    Instances are immutable snapshots. The orchestrator replaces an item with
    an updated copy on every transition, so readers never observe a
    half-applied change.

    `result` holds the processed PNG as a data URI and is set if and only if
    the status is `completed`. `error_message` is only allowed on `error`.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    file: UploadedFile
    width: int
    height: int
    preview_handle: str | None = None
    status: WorkItemStatus = WorkItemStatus.IDLE
    result: str | None = Field(default=None, repr=False)
    error_message: str | None = None

    @field_validator("width", "height")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("width and height must be positive")
        return v

    @model_validator(mode="after")
    def result_matches_status(self) -> "WorkItem":
        if (self.result is not None) != (self.status is WorkItemStatus.COMPLETED):
            raise ValueError("result must be present exactly when status is 'completed'")
        if self.error_message is not None and self.status is not WorkItemStatus.ERROR:
            raise ValueError("error_message is only allowed when status is 'error'")
        return self

    @property
    def name(self) -> str:
        return self.file.name

    @property
    def size(self) -> int:
        return self.file.size

    @property
    def mime_type(self) -> str:
        return self.file.mime_type

    def transition(
        self,
        status: WorkItemStatus,
        *,
        result: str | None = None,
        error_message: str | None = None,
    ) -> "WorkItem":
        """Return a copy in `status`; result/error fields are reset unless given.

        Goes through validation so the result/status invariant is enforced.
        """
        if self.status is WorkItemStatus.COMPLETED:
            raise ValueError(f"{self.id} is completed and cannot change status")
        data = dict(self)
        data.update(status=status, result=result, error_message=error_message)
        return WorkItem(**data)


class AggregateStats(BaseModel):
    """Counts derived from the collection. Never stored, always recomputed."""

    total: int = 0
    completed: int = 0
    failed: int = 0
    processing: int = 0

    @computed_field  # type: ignore[misc]
    @property
    def idle(self) -> int:
        return self.total - self.completed - self.failed - self.processing

    @property
    def all_completed(self) -> bool:
        return self.total > 0 and self.completed == self.total

    @classmethod
    def from_items(cls, items: Iterable[WorkItem]) -> "AggregateStats":
        total = completed = failed = processing = 0
        for item in items:
            total += 1
            if item.status is WorkItemStatus.COMPLETED:
                completed += 1
            elif item.status is WorkItemStatus.ERROR:
                failed += 1
            elif item.status is WorkItemStatus.PROCESSING:
                processing += 1
        return cls(total=total, completed=completed, failed=failed, processing=processing)
