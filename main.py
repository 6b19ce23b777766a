from __future__ import annotations

from dataclasses import asdict

from fastapi import FastAPI, HTTPException, Query

from cpr import db
from cpr.api_models import EventOut, RunDetailOut, RunOut, StepOut

app = FastAPI(title="Control-Plane Recovery")


@app.on_event("startup")
def startup() -> None:
    db.init_db()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "healthy"}


@app.get("/runs", response_model=list[RunOut])
def list_runs(limit: int = Query(50, ge=1, le=500)) -> list[RunOut]:
    return [RunOut(**asdict(r)) for r in db.list_runs(limit)]


@app.get("/runs/{run_id}", response_model=RunDetailOut)
def get_run(run_id: int) -> RunDetailOut:
    run = db.get_run(run_id)
    if not run:
        raise HTTPException(status_code=404, detail=f"Unknown run {run_id}")
    steps = [StepOut(**{k: v for k, v in asdict(s).items() if k != "run_id"}) for s in db.list_steps(run_id)]
    return RunDetailOut(**asdict(run), steps=steps)


@app.get("/events", response_model=list[EventOut])
def events(limit: int = Query(100, ge=1, le=1000), run_id: int | None = None) -> list[EventOut]:
    return [EventOut(**e) for e in db.latest_events(limit, run_id=run_id)]
