"""
Database Schemas

Pydantic models for the two MongoDB collections and the payloads exchanged
with the API.

- Project   -> "projects" collection
- TimeEntry -> "time_entries" collection

A time entry references its project by id only. The joined form
(TimeEntryWithProject) is built by the gateway at read time.
"""

from datetime import datetime
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_PROJECT_COLOR = "#5c7cfa"

# ---------------------------------------------------------------------
# Stored entities
# ---------------------------------------------------------------------

class Project(BaseModel):
    """
    Projects collection schema
    Collection name: "projects"
    """
    id: str = Field(..., description="Store id (string form of ObjectId)")
    name: str = Field(..., description="Display name, duplicates allowed")
    color: str = Field(..., description="Any color string, e.g. #ff0000")
    created_at: datetime = Field(..., description="Assigned by the store on insert")


class TimeEntry(BaseModel):
    """
    Time entries collection schema
    Collection name: "time_entries"
    """
    id: str = Field(..., description="Store id (string form of ObjectId)")
    task_name: str = Field("", description="Free text, may be empty")
    project_id: Optional[str] = Field(None, description="Related project id, None means unassigned")
    start_time: datetime = Field(..., description="Set when the entry is started, never changed")
    end_time: Optional[datetime] = Field(None, description="None while the entry is running")
    duration_seconds: Optional[int] = Field(None, description="Whole seconds, set on stop or by a manual edit")
    created_at: datetime = Field(..., description="Assigned by the store on insert")

    @property
    def is_running(self) -> bool:
        return self.end_time is None


class TimeEntryWithProject(TimeEntry):
    project: Optional[Project] = Field(None, description="Joined project, None when unassigned")


class Snapshot(BaseModel):
    """Everything the tracker last loaded from the store."""
    model_config = ConfigDict(frozen=True)

    projects: Tuple[Project, ...] = ()
    entries: Tuple[TimeEntryWithProject, ...] = ()

# ---------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------

class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1)
    color: str = DEFAULT_PROJECT_COLOR


class ProjectPatch(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    color: Optional[str] = None


class TimerStart(BaseModel):
    task_name: str
    project_id: Optional[str] = None


class TimeEntryPatch(BaseModel):
    """Fields a stopped entry may have rewritten by hand.

    `duration` is the HH:MM or HH:MM:SS text of the edit field and, when
    given, takes the place of `duration_seconds`.
    """
    task_name: Optional[str] = None
    project_id: Optional[str] = None
    duration_seconds: Optional[int] = Field(None, ge=0)
    duration: Optional[str] = Field(None, description="HH:MM or HH:MM:SS")

    @field_validator("task_name")
    @classmethod
    def task_name_not_null(cls, v):
        if v is None:
            raise ValueError("task_name cannot be null")
        return v

# ---------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------

class TrackerState(BaseModel):
    projects: List[Project]
    entries: List[TimeEntryWithProject]
    active_entry: Optional[TimeEntryWithProject] = None
    loading: bool
    recent_task_names: List[str]
    elapsed_seconds: int
    elapsed: str = Field(..., description="Running timer as HH:MM:SS")
