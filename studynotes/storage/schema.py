from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TaskStatus(str, Enum):
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    DONE = "DONE"
    ERROR = "ERROR"


def utc_now_iso() -> str:
    # Millisecond precision keeps createdAt lexicographically sortable.
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class TaskRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    topic: str
    status: TaskStatus = TaskStatus.QUEUED
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")
    research_md: str = Field(default="", alias="researchMd")
    error: Optional[str] = None

    def to_api(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TaskSummary(BaseModel):
    """Listing projection; never carries researchMd or error."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    topic: str
    status: TaskStatus
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")

    def to_api(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
