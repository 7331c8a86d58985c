import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List
from zoneinfo import ZoneInfo

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from database import db, ensure_indexes
from errors import EntryRunning, NotFound, ReferentialConflict, StoreError
from gateway import TimeEntryGateway
from logger import log
from reports import (
    Period,
    build_report,
    export_csv,
    filter_entries,
    format_clock,
    parse_clock,
    report_filename,
    summary_text,
)
from schemas import (
    Project,
    ProjectCreate,
    ProjectPatch,
    TimeEntry,
    TimeEntryPatch,
    TimeEntryWithProject,
    TimerStart,
    TrackerState,
)
from tracker import TimeTracker

TIMEZONE = os.getenv("TIMEZONE")


@asynccontextmanager
async def lifespan(app: FastAPI):
    tracker = getattr(app.state, "tracker", None)
    if tracker is None and db is not None:
        ensure_indexes(db)
        tracker = TimeTracker(TimeEntryGateway(db))
        app.state.tracker = tracker
    if tracker is not None:
        await tracker.refresh()
    else:
        log.warning("No database configured, tracker endpoints will answer 503")
    yield


app = FastAPI(title="Time Tracker API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -----------------------------
# Helpers
# -----------------------------

def get_tracker(request: Request) -> TimeTracker:
    tracker = getattr(request.app.state, "tracker", None)
    if tracker is None:
        raise HTTPException(status_code=503, detail="Database not configured")
    return tracker


def local_now() -> datetime:
    """Now on the reporting clock: the TIMEZONE zone when set, else naive system local time."""
    if TIMEZONE:
        return datetime.now(ZoneInfo(TIMEZONE))
    return datetime.now()


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ReferentialConflict)
async def conflict_handler(request: Request, exc: ReferentialConflict):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(EntryRunning)
async def entry_running_handler(request: Request, exc: EntryRunning):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    log.error(f"Store error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"detail": str(exc)})


# -----------------------------
# Health + schema endpoints
# -----------------------------

@app.get("/")
def read_root():
    return {"message": "Time Tracker API"}


@app.get("/schema")
def get_schema():
    return {
        "project": Project.model_json_schema(),
        "time_entry": TimeEntryWithProject.model_json_schema(),
    }


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }

    if db is None:
        return response

    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        log.warning(f"Database health check failed: {e}")
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"

    return response


# -----------------------------
# Tracker state + timer
# -----------------------------

@app.get("/state", response_model=TrackerState)
def get_state(tracker: TimeTracker = Depends(get_tracker)):
    elapsed = tracker.elapsed_seconds()
    return TrackerState(
        projects=tracker.projects,
        entries=tracker.entries,
        active_entry=tracker.active_entry,
        loading=tracker.loading,
        recent_task_names=tracker.recent_task_names,
        elapsed_seconds=elapsed,
        elapsed=format_clock(elapsed),
    )


@app.post("/refresh", response_model=TrackerState)
async def refresh(tracker: TimeTracker = Depends(get_tracker)):
    await tracker.refresh()
    return get_state(tracker)


@app.post("/timer/start", response_model=TimeEntry)
async def start_timer(payload: TimerStart, tracker: TimeTracker = Depends(get_tracker)):
    entry = await tracker.start(payload.task_name, payload.project_id)
    if entry is None:
        active = tracker.active_entry
        if active is not None:
            raise HTTPException(status_code=409, detail=f"Time entry '{active.id}' is already running")
        raise HTTPException(status_code=400, detail="Task name must not be blank")
    return entry


@app.post("/timer/stop", response_model=TimeEntry)
async def stop_timer(tracker: TimeTracker = Depends(get_tracker)):
    entry = await tracker.stop()
    if entry is None:
        raise HTTPException(status_code=400, detail="No running time entry")
    return entry


# -----------------------------
# Project endpoints
# -----------------------------

@app.get("/projects", response_model=List[Project])
def list_projects(tracker: TimeTracker = Depends(get_tracker)):
    return tracker.projects


@app.post("/projects", response_model=Project, status_code=201)
async def create_project(payload: ProjectCreate, tracker: TimeTracker = Depends(get_tracker)):
    project = await tracker.add_project(payload.name, payload.color)
    if project is None:
        raise HTTPException(status_code=400, detail="Project name must not be blank")
    return project


@app.patch("/projects/{project_id}", response_model=Project)
async def update_project(project_id: str, payload: ProjectPatch, tracker: TimeTracker = Depends(get_tracker)):
    project = await tracker.update_project(project_id, name=payload.name, color=payload.color)
    if project is None:
        raise HTTPException(status_code=404, detail=f"Project '{project_id}' not found")
    return project


@app.delete("/projects/{project_id}")
async def delete_project(project_id: str, tracker: TimeTracker = Depends(get_tracker)):
    message = await tracker.delete_project(project_id)
    if message is not None:
        raise HTTPException(status_code=409, detail=message)
    return {"success": True}


# -----------------------------
# Time entry endpoints
# -----------------------------

@app.get("/entries", response_model=List[TimeEntryWithProject])
def list_entries(tracker: TimeTracker = Depends(get_tracker)):
    return tracker.entries


@app.patch("/entries/{entry_id}", response_model=TimeEntry)
async def update_entry(entry_id: str, payload: TimeEntryPatch, tracker: TimeTracker = Depends(get_tracker)):
    changes = payload.model_dump(exclude_unset=True)
    duration = changes.pop("duration", None)
    if duration is not None:
        changes["duration_seconds"] = parse_clock(duration)
    return await tracker.update_entry(entry_id, **changes)


@app.delete("/entries/{entry_id}")
async def delete_entry(entry_id: str, tracker: TimeTracker = Depends(get_tracker)):
    await tracker.delete_entry(entry_id)
    return {"success": True}


# -----------------------------
# Reports
# -----------------------------

@app.get("/reports/{period}")
def get_report(period: Period, tracker: TimeTracker = Depends(get_tracker)):
    report = build_report(tracker.entries, period, local_now())
    return {
        "period": period.value,
        "groups": [g.model_dump() for g in report.groups],
        "grand_total": report.grand_total,
        "summary": summary_text(report, period),
    }


@app.get("/reports/{period}/csv")
def export_report(period: Period, tracker: TimeTracker = Depends(get_tracker)):
    now = local_now()
    content = export_csv(filter_entries(tracker.entries, period, now))
    filename = report_filename(period, now.date())
    return Response(
        content=content.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
