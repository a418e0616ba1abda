from importlib.metadata import version

from .document_store import list_documents, read_document, write_document
from .hooks import TRACKED_TOOLS, handle_activity, handle_finalize, run_hook
from .lifecycle import SUMMARY_FILENAME, LifecycleEngine, format_timestamp, transition_document
from .locking import acquire_lock, document_lock, lock_path_for, release_lock
from .models import (
    ACTIVITY_KINDS,
    ALL_KINDS,
    KIND_LAYOUTS,
    STATUS_TRANSITIONS,
    CycleStatus,
    DocumentKind,
    HookInput,
    HookResult,
    KindLayout,
    LifecycleEvent,
    RunStatus,
    SuspensionSummary,
    TrackedDocument,
)
from .root import find_project_root, resolve_state_root
from .settings import RuntimeSettings


def get_version() -> str:
    try:
        return version("blueprint-state")
    except Exception:
        return "0.0.0"


__all__ = [
    "ACTIVITY_KINDS",
    "ALL_KINDS",
    "CycleStatus",
    "DocumentKind",
    "HookInput",
    "HookResult",
    "KIND_LAYOUTS",
    "KindLayout",
    "LifecycleEngine",
    "LifecycleEvent",
    "RunStatus",
    "RuntimeSettings",
    "STATUS_TRANSITIONS",
    "SUMMARY_FILENAME",
    "SuspensionSummary",
    "TRACKED_TOOLS",
    "TrackedDocument",
    "acquire_lock",
    "document_lock",
    "find_project_root",
    "format_timestamp",
    "handle_activity",
    "handle_finalize",
    "list_documents",
    "lock_path_for",
    "read_document",
    "release_lock",
    "resolve_state_root",
    "run_hook",
    "transition_document",
    "write_document",
]
