import asyncio
from datetime import datetime
from typing import List, Optional

from fastapi.concurrency import run_in_threadpool

from errors import EntryRunning, NotFound, StoreError
from gateway import TimeEntryGateway
from logger import log
from schemas import Project, Snapshot, TimeEntry, TimeEntryWithProject

PROJECT_DELETE_FAILED = "Failed to delete project. It might have active entries."

_UNSET = object()


class TimeTracker:
    """Session state for one consumer, rebuilt from the store after every write.

    The snapshot is replaced wholesale on each successful refresh and never
    patched locally. ``start`` only refuses when the *loaded* snapshot already
    has a running entry, so two starts issued before a refresh completes can
    both go through and leave two running entries behind.
    """

    def __init__(self, gateway: TimeEntryGateway):
        self.gateway = gateway
        self.snapshot = Snapshot()
        self.loading = True

    # Derived state, recomputed from the current snapshot on every access
    @property
    def projects(self) -> List[Project]:
        return list(self.snapshot.projects)

    @property
    def entries(self) -> List[TimeEntryWithProject]:
        return list(self.snapshot.entries)

    @property
    def active_entry(self) -> Optional[TimeEntryWithProject]:
        return next((e for e in self.snapshot.entries if e.end_time is None), None)

    @property
    def recent_task_names(self) -> List[str]:
        return list(dict.fromkeys(e.task_name for e in self.snapshot.entries))

    def elapsed_seconds(self, now: Optional[datetime] = None) -> int:
        active = self.active_entry
        if active is None:
            return 0
        now = now or self.gateway.now()
        return max(0, int((now - active.start_time).total_seconds()))

    def find_entry(self, entry_id: str) -> Optional[TimeEntryWithProject]:
        return next((e for e in self.snapshot.entries if e.id == entry_id), None)

    async def refresh(self) -> None:
        try:
            projects, entries = await asyncio.gather(
                run_in_threadpool(self.gateway.list_projects),
                run_in_threadpool(self.gateway.list_time_entries),
            )
            self.snapshot = Snapshot(projects=tuple(projects), entries=tuple(entries))
        except Exception:
            log.exception("Failed to fetch data, keeping the previous snapshot")
        finally:
            self.loading = False

    # -----------------------------
    # Timer
    # -----------------------------

    async def start(self, task_name: str, project_id: Optional[str] = None) -> Optional[TimeEntry]:
        if self.active_entry is not None:
            log.debug(f"Start ignored, entry {self.active_entry.id} is already running")
            return None
        if not task_name.strip():
            log.debug("Start ignored, blank task name")
            return None
        entry = await run_in_threadpool(self.gateway.start_time_entry, task_name, project_id)
        await self.refresh()
        return entry

    async def stop(self) -> Optional[TimeEntry]:
        active = self.active_entry
        if active is None:
            return None
        entry = await run_in_threadpool(self.gateway.stop_time_entry, active.id)
        await self.refresh()
        return entry

    # -----------------------------
    # Projects
    # -----------------------------

    async def add_project(self, name: str, color: str) -> Optional[Project]:
        if not name.strip():
            return None
        project = await run_in_threadpool(self.gateway.create_project, name, color)
        await self.refresh()
        return project

    async def delete_project(self, project_id: str) -> Optional[str]:
        """Returns a message for the user when the store refuses the delete."""
        try:
            await run_in_threadpool(self.gateway.delete_project, project_id)
        except StoreError:
            log.exception(f"Failed to delete project {project_id}")
            return PROJECT_DELETE_FAILED
        await self.refresh()
        return None

    async def update_project(self, project_id: str, name: Optional[str] = None,
                             color: Optional[str] = None) -> Optional[Project]:
        patch = {}
        if name is not None:
            patch["name"] = name
        if color is not None:
            patch["color"] = color
        try:
            project = await run_in_threadpool(self.gateway.update_project, project_id, patch)
        except NotFound:
            log.warning(f"Failed to update project {project_id}, it no longer exists")
            return None
        except StoreError:
            log.exception(f"Failed to update project {project_id}")
            raise
        await self.refresh()
        return project

    # -----------------------------
    # Past entries
    # -----------------------------

    def _ensure_stopped(self, entry_id: str) -> None:
        entry = self.find_entry(entry_id)
        if entry is not None and entry.end_time is None:
            raise EntryRunning(entry_id)

    async def delete_entry(self, entry_id: str) -> None:
        self._ensure_stopped(entry_id)
        await run_in_threadpool(self.gateway.delete_time_entry, entry_id)
        await self.refresh()

    async def update_entry(self, entry_id: str, task_name=_UNSET, project_id=_UNSET,
                           duration_seconds=_UNSET) -> TimeEntry:
        self._ensure_stopped(entry_id)
        patch = {}
        if task_name is not _UNSET:
            patch["task_name"] = task_name
        if project_id is not _UNSET:
            patch["project_id"] = project_id
        if duration_seconds is not _UNSET:
            patch["duration_seconds"] = duration_seconds
        entry = await run_in_threadpool(self.gateway.update_time_entry, entry_id, patch)
        await self.refresh()
        return entry
