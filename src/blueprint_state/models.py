from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictInt, StrictStr


class DocumentKind(str, Enum):
    CYCLE = "cycle"
    PIPELINE_RUN = "pipeline_run"
    ANALYSIS = "analysis"


class CycleStatus(str, Enum):
    """Statuses shared by PDCA cycles and gap analyses."""

    ACTIVE = "active"
    SUSPENDED = "suspended"


class RunStatus(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"


class LifecycleEvent(str, Enum):
    ACTIVITY = "activity"
    FINALIZE = "finalize"


@dataclass(frozen=True)
class KindLayout:
    """Where documents of one kind live and which statuses they move between."""

    kind: DocumentKind
    subdir: tuple[str, ...]
    active_status: str
    suspended_status: str
    summary_key: str

    def directory(self, state_root: Path) -> Path:
        return state_root.joinpath(*self.subdir)


KIND_LAYOUTS: dict[DocumentKind, KindLayout] = {
    DocumentKind.CYCLE: KindLayout(
        kind=DocumentKind.CYCLE,
        subdir=("pdca", "cycles"),
        active_status=CycleStatus.ACTIVE.value,
        suspended_status=CycleStatus.SUSPENDED.value,
        summary_key="suspendedCycles",
    ),
    DocumentKind.PIPELINE_RUN: KindLayout(
        kind=DocumentKind.PIPELINE_RUN,
        subdir=("pipeline", "runs"),
        active_status=RunStatus.RUNNING.value,
        suspended_status=RunStatus.PAUSED.value,
        summary_key="suspendedRuns",
    ),
    DocumentKind.ANALYSIS: KindLayout(
        kind=DocumentKind.ANALYSIS,
        subdir=("gaps", "analyses"),
        active_status=CycleStatus.ACTIVE.value,
        suspended_status=CycleStatus.SUSPENDED.value,
        summary_key="suspendedGaps",
    ),
}

ALL_KINDS: tuple[DocumentKind, ...] = tuple(DocumentKind)

# The post-tool-use tracker only touches cycles and pipeline runs.
ACTIVITY_KINDS: tuple[DocumentKind, ...] = (DocumentKind.CYCLE, DocumentKind.PIPELINE_RUN)

# (required status, resulting status) per kind and event. Any other status is a no-op.
STATUS_TRANSITIONS: dict[DocumentKind, dict[LifecycleEvent, tuple[str, str]]] = {
    kind: {
        LifecycleEvent.ACTIVITY: (layout.active_status, layout.active_status),
        LifecycleEvent.FINALIZE: (layout.active_status, layout.suspended_status),
    }
    for kind, layout in KIND_LAYOUTS.items()
}


class TrackedDocument(BaseModel):
    """Typed view over the fields the lifecycle rules read.

    Documents are created by other tools, so unknown fields are allowed here
    and the raw mapping (not this model) is what gets written back. Values are
    never coerced: a counter stored as ``"3"`` or ``true`` fails validation.
    """

    model_config = ConfigDict(extra="allow")

    status: StrictStr | None = None
    activity_count: StrictInt | None = Field(default=None, validation_alias="activityCount")


class SuspensionSummary(BaseModel):
    """Diagnostic record of the most recent finalize event."""

    model_config = ConfigDict(populate_by_name=True)

    timestamp: str
    suspended_cycles: int = Field(default=0, alias="suspendedCycles")
    suspended_runs: int = Field(default=0, alias="suspendedRuns")
    suspended_gaps: int = Field(default=0, alias="suspendedGaps")
    total_suspended: int = Field(default=0, alias="totalSuspended")

    @classmethod
    def from_counts(cls, counts: Mapping[DocumentKind, int], *, timestamp: str) -> "SuspensionSummary":
        per_kind = {layout.summary_key: counts.get(kind, 0) for kind, layout in KIND_LAYOUTS.items()}
        return cls.model_validate(
            {"timestamp": timestamp, "totalSuspended": sum(per_kind.values()), **per_kind}
        )

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class HookInput(BaseModel):
    """The subset of the host's hook payload this package reads."""

    model_config = ConfigDict(extra="ignore")

    cwd: str | None = None
    directory: str | None = None
    tool_name: str | None = Field(default=None, validation_alias=AliasChoices("tool_name", "toolName"))

    def working_directory(self) -> Path:
        return Path(self.cwd or self.directory or os.getcwd())


class HookResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    continue_: bool = Field(default=True, alias="continue")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)
