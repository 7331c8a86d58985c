"""
Persistence gateway for projects and time entries.

Each method is one request/response round trip against MongoDB and fails
fast: store errors surface as StoreError, missing ids as NotFound.
"""

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import PROJECTS, TIME_ENTRIES, load_timestamp, store_timestamp
from errors import NotFound, ReferentialConflict, StoreError
from logger import log
from schemas import Project, TimeEntry, TimeEntryWithProject

Clock = Callable[[], datetime]

_TIMESTAMP_FIELDS = ("start_time", "end_time", "created_at")
_NOT_NULL_FIELDS = ("task_name", "start_time", "created_at")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------------
# Helpers
# -----------------------------

def to_object_id(kind: str, id_str: str) -> ObjectId:
    if not ObjectId.is_valid(id_str):
        raise NotFound(kind, id_str)
    return ObjectId(id_str)


def serialize(doc: dict) -> dict:
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    for k in _TIMESTAMP_FIELDS:
        if k in doc:
            doc[k] = load_timestamp(doc[k])
    return doc


@contextmanager
def store_call(action: str):
    try:
        yield
    except PyMongoError as e:
        log.error(f"Store call '{action}' failed: {e}")
        raise StoreError(f"{action} failed: {e}") from e


class TimeEntryGateway:

    def __init__(self, database: Database, clock: Clock = utc_now):
        self.db = database
        self.clock = clock

    def now(self) -> datetime:
        # Round-trip through the stored precision so returned values match what is read back
        return load_timestamp(store_timestamp(self.clock()))

    @property
    def projects(self):
        return self.db[PROJECTS]

    @property
    def time_entries(self):
        return self.db[TIME_ENTRIES]

    # -----------------------------
    # Projects
    # -----------------------------

    def list_projects(self) -> List[Project]:
        with store_call("list projects"):
            docs = list(self.projects.find().sort("name", ASCENDING))
        return [Project(**serialize(d)) for d in docs]

    def create_project(self, name: str, color: str) -> Project:
        doc = {"name": name, "color": color, "created_at": store_timestamp(self.now())}
        with store_call("create project"):
            result = self.projects.insert_one(doc)
            created = self.projects.find_one({"_id": result.inserted_id})
        log.debug(f"Created project '{name}' ({result.inserted_id})")
        return Project(**serialize(created))

    def update_project(self, project_id: str, patch: Mapping[str, Any]) -> Project:
        oid = to_object_id("Project", project_id)
        changes = {k: v for k, v in patch.items() if k in ("name", "color")}
        with store_call("update project"):
            if changes:
                doc = self.projects.find_one_and_update(
                    {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
                )
            else:
                doc = self.projects.find_one({"_id": oid})
        if doc is None:
            raise NotFound("Project", project_id)
        log.debug(f"Updated project {project_id}: {sorted(changes)}")
        return Project(**serialize(doc))

    def delete_project(self, project_id: str) -> None:
        oid = to_object_id("Project", project_id)
        with store_call("delete project"):
            references = self.time_entries.count_documents({"project_id": project_id})
            if references:
                raise ReferentialConflict("Project", project_id, references)
            result = self.projects.delete_one({"_id": oid})
        if result.deleted_count == 0:
            raise NotFound("Project", project_id)
        log.debug(f"Deleted project {project_id}")

    # -----------------------------
    # Time entries
    # -----------------------------

    def list_time_entries(self) -> List[TimeEntryWithProject]:
        with store_call("list time entries"):
            docs = list(self.time_entries.find().sort("start_time", DESCENDING))
            project_ids = {d["project_id"] for d in docs if d.get("project_id")}
            oids = [ObjectId(p) for p in project_ids if ObjectId.is_valid(p)]
            projects = {}
            if oids:
                for p in self.projects.find({"_id": {"$in": oids}}):
                    project = Project(**serialize(p))
                    projects[project.id] = project

        return [
            TimeEntryWithProject(**serialize(d), project=projects.get(d.get("project_id")))
            for d in docs
        ]

    def get_time_entry(self, entry_id: str) -> TimeEntry:
        oid = to_object_id("Time entry", entry_id)
        with store_call("get time entry"):
            doc = self.time_entries.find_one({"_id": oid})
        if doc is None:
            raise NotFound("Time entry", entry_id)
        return TimeEntry(**serialize(doc))

    def ensure_project(self, project_id: Optional[str]) -> None:
        """Entries may only reference projects that exist; None is always fine."""
        if project_id is None:
            return
        oid = to_object_id("Project", project_id)
        with store_call("check project"):
            found = self.projects.count_documents({"_id": oid}, limit=1)
        if not found:
            raise NotFound("Project", project_id)

    def start_time_entry(self, task_name: str, project_id: Optional[str]) -> TimeEntry:
        self.ensure_project(project_id)
        now = store_timestamp(self.now())
        doc = {
            "task_name": task_name,
            "project_id": project_id,
            "start_time": now,
            "end_time": None,
            "duration_seconds": None,
            "created_at": now,
        }
        with store_call("start time entry"):
            result = self.time_entries.insert_one(doc)
            created = self.time_entries.find_one({"_id": result.inserted_id})
        log.debug(f"Started time entry {result.inserted_id} '{task_name}'")
        return TimeEntry(**serialize(created))

    def stop_time_entry(self, entry_id: str) -> TimeEntry:
        running = self.get_time_entry(entry_id)
        end_time = self.now()
        duration_seconds = (end_time - running.start_time) // timedelta(seconds=1)

        with store_call("stop time entry"):
            doc = self.time_entries.find_one_and_update(
                {"_id": ObjectId(running.id)},
                {"$set": {"end_time": store_timestamp(end_time), "duration_seconds": duration_seconds}},
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            raise NotFound("Time entry", entry_id)
        log.debug(f"Stopped time entry {entry_id} after {duration_seconds}s")
        return TimeEntry(**serialize(doc))

    def delete_time_entry(self, entry_id: str) -> None:
        oid = to_object_id("Time entry", entry_id)
        with store_call("delete time entry"):
            result = self.time_entries.delete_one({"_id": oid})
        if result.deleted_count == 0:
            raise NotFound("Time entry", entry_id)
        log.debug(f"Deleted time entry {entry_id}")

    def update_time_entry(self, entry_id: str, patch: Mapping[str, Any]) -> TimeEntry:
        oid = to_object_id("Time entry", entry_id)
        changes: Dict[str, Any] = dict(patch)
        changes.pop("_id", None)
        changes.pop("id", None)
        nulled = sorted(k for k in _NOT_NULL_FIELDS if k in changes and changes[k] is None)
        if nulled:
            raise StoreError(f"update time entry rejected: {', '.join(nulled)} cannot be null")
        if "project_id" in changes:
            self.ensure_project(changes["project_id"])
        for k in _TIMESTAMP_FIELDS:
            if changes.get(k) is not None:
                changes[k] = store_timestamp(changes[k])
        with store_call("update time entry"):
            if changes:
                doc = self.time_entries.find_one_and_update(
                    {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
                )
            else:
                doc = self.time_entries.find_one({"_id": oid})
        if doc is None:
            raise NotFound("Time entry", entry_id)
        log.debug(f"Updated time entry {entry_id}: {sorted(changes)}")
        return TimeEntry(**serialize(doc))
