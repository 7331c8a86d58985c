"""
Error taxonomy shared by the gateway, the tracker and the HTTP layer.
"""


class StoreError(Exception):
    """Generic remote store failure (network, validation, server error)."""


class NotFound(StoreError):
    """The referenced id does not exist."""

    def __init__(self, kind: str, item_id: str):
        super().__init__(f"{kind} '{item_id}' not found")
        self.kind = kind
        self.item_id = item_id


class ReferentialConflict(StoreError):
    """A delete was blocked because other rows still reference the target."""

    def __init__(self, kind: str, item_id: str, references: int):
        super().__init__(f"{kind} '{item_id}' is referenced by {references} time entries")
        self.kind = kind
        self.item_id = item_id
        self.references = references


class EntryRunning(Exception):
    """Edit or delete refused because the entry is still running."""

    def __init__(self, entry_id: str):
        super().__init__(f"Time entry '{entry_id}' is still running, stop it first")
        self.entry_id = entry_id
