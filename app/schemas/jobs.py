from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Backoff(BaseModel):
    type: Literal["exponential", "fixed"] = "exponential"
    delay_seconds: int = Field(default=10, ge=0)


class Job(BaseModel):
    id: int
    queue: str
    payload: Any = None
    status: JobStatus = JobStatus.PENDING
    attempt_count: int = 0
    max_attempts: int = Field(default=10, ge=1)
    backoff: Backoff = Field(default_factory=Backoff)
    next_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
