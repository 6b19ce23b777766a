from __future__ import annotations

from pydantic import BaseModel, Field


class RunOut(BaseModel):
    id: int
    backup_dir: str
    state: str = Field(..., description="running|succeeded|failed")
    message: str
    started_at: str
    finished_at: str | None = None


class StepOut(BaseModel):
    id: int
    name: str
    component: str | None = None
    state: str = Field(..., description="running|done|failed")
    detail: str = ""
    revision: int | None = Field(None, description="Applied revision for redeploy steps")
    started_at: str
    finished_at: str | None = None
    duration_s: float | None = None


class RunDetailOut(RunOut):
    steps: list[StepOut] = Field(default_factory=list)


class EventOut(BaseModel):
    id: int
    ts: str
    level: str
    component: str | None = None
    run_id: int | None = None
    message: str
