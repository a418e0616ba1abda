from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from pydantic import ValidationError

from .document_store import list_documents, read_document, write_document
from .locking import document_lock
from .models import (
    ALL_KINDS,
    KIND_LAYOUTS,
    STATUS_TRANSITIONS,
    DocumentKind,
    LifecycleEvent,
    SuspensionSummary,
    TrackedDocument,
)
from .settings import RuntimeSettings

logger = logging.getLogger(__name__)

SUMMARY_FILENAME = ".last-suspension.json"


def format_timestamp(moment: datetime) -> str:
    """Render *moment* as UTC ISO-8601 with milliseconds and a ``Z`` suffix."""
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def transition_document(
    document: Mapping[str, Any],
    kind: DocumentKind,
    event: LifecycleEvent,
    now: str,
) -> dict[str, Any] | None:
    """Apply *event* to one document of *kind*.

    Args:
        document: Raw document as read from disk.
        kind: Kind of the document, which selects its status vocabulary.
        event: Lifecycle event to apply.
        now: Timestamp to stamp on the document.

    Returns:
        A new mapping with the changed fields and every other field kept as
        is, or ``None`` if the event does not apply to the document's status.

    Raises:
        pydantic.ValidationError: If a field the rules read has the wrong type.
    """
    view = TrackedDocument.model_validate(document)
    required, resulting = STATUS_TRANSITIONS[kind][event]
    if view.status != required:
        return None

    changes: dict[str, Any] = {"status": resulting, "updatedAt": now}
    if event is LifecycleEvent.ACTIVITY:
        changes["activityCount"] = (view.activity_count or 0) + 1
    elif event is LifecycleEvent.FINALIZE:
        changes["suspendedAt"] = now
    return {**document, **changes}


class LifecycleEngine:
    """Applies lifecycle events to the tracked documents under one state-root.

    Each document is handled in its own locked read-modify-write. A document
    that cannot be locked, read, validated or written is skipped and the
    remaining documents are still processed.
    """

    def __init__(
        self,
        state_root: Path,
        *,
        settings: RuntimeSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.state_root = Path(state_root)
        self.settings = settings or RuntimeSettings()
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def summary_path(self) -> Path:
        """Path to the diagnostic summary of the last finalize event."""
        return self.state_root / SUMMARY_FILENAME

    def documents(self, kind: DocumentKind) -> list[Path]:
        """Return the candidate document files for *kind*."""
        return list_documents(KIND_LAYOUTS[kind].directory(self.state_root))

    def record_activity(self, kinds: Iterable[DocumentKind] = ALL_KINDS) -> dict[DocumentKind, int]:
        """Touch every active document of *kinds*.

        Returns:
            Number of documents updated per kind.
        """
        counts = {kind: self._apply(kind, LifecycleEvent.ACTIVITY) for kind in kinds}
        logger.info(
            "Recorded activity on %d document(s) under %s", sum(counts.values()), self.state_root
        )
        return counts

    def finalize(self, kinds: Iterable[DocumentKind] = ALL_KINDS) -> SuspensionSummary:
        """Suspend every active document of *kinds* and overwrite the summary file.

        Returns:
            The summary that was written. Kinds not processed count as 0.
        """
        counts = {kind: self._apply(kind, LifecycleEvent.FINALIZE) for kind in kinds}
        summary = SuspensionSummary.from_counts(counts, timestamp=self._now())
        if not write_document(self.summary_path, summary.to_document()):
            logger.warning("Could not record suspension summary at %s", self.summary_path)
        logger.info("Suspended %d document(s) under %s", summary.total_suspended, self.state_root)
        return summary

    def _now(self) -> str:
        return format_timestamp(self._clock())

    def _apply(self, kind: DocumentKind, event: LifecycleEvent) -> int:
        return sum(1 for path in self.documents(kind) if self._apply_to_document(path, kind, event))

    def _apply_to_document(self, path: Path, kind: DocumentKind, event: LifecycleEvent) -> bool:
        with document_lock(
            path,
            timeout_ms=self.settings.lock_timeout_ms,
            stale_ms=self.settings.lock_stale_ms,
            poll_interval_ms=self.settings.lock_poll_interval_ms,
        ) as acquired:
            if not acquired:
                logger.warning("Skipping %s: lock not acquired within %dms", path, self.settings.lock_timeout_ms)
                return False

            document = read_document(path)
            if document is None:
                return False
            try:
                updated = transition_document(document, kind, event, self._now())
            except ValidationError as exc:
                logger.warning("Skipping %s: unexpected field types: %s", path, exc)
                return False
            if updated is None:
                logger.debug("%s event leaves %s unchanged (status %r)", event.value, path, document.get("status"))
                return False
            return write_document(path, updated)
