from pathlib import PurePath
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class UploadedFile(BaseModel):
    """An image handed over by the user, held fully in memory.

    `size` is the byte count of `data`; it is derived when not given.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    data: bytes = Field(repr=False)
    mime_type: str
    size: int = Field(ge=0)

    @model_validator(mode="before")
    @classmethod
    def derive_size(cls, values: Any) -> Any:
        if isinstance(values, dict) and values.get("size") is None:
            return {**values, "size": len(values.get("data") or b"")}
        return values

    @property
    def stem(self) -> str:
        """Display name without its final extension."""
        return PurePath(self.name).stem
