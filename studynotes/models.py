from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .storage.schema import TaskStatus

TASK_TYPE = "RESEARCH_SUMMARY_V1"

class CreatedTask(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    topic: str
    status: TaskStatus
    created_at: str = Field(alias="createdAt")

class TaskPage(BaseModel):
    items: List[Dict[str, Any]]
    cursor: Optional[str] = None

class WorkItem(BaseModel):
    """Message body enqueued for the worker."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    id: str = Field(min_length=1)
    topic: str = Field(min_length=1)
    requested_at: Optional[str] = Field(default=None, alias="requestedAt")
    task_type: str = Field(default=TASK_TYPE, alias="taskType")

@dataclass
class PublishResult:
    """Outcome of a fire-and-forget publish; callers may ignore it."""

    ok: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False

@dataclass
class Identity:
    id: str
    email: Optional[str] = None
    username: Optional[str] = None
    raw_claims: Dict[str, Any] = field(default_factory=dict)
