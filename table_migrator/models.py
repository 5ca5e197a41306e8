from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MigrationMode(str, Enum):
    AUDIT_ONLY = "audit-only"
    DRY_RUN = "dry-run"
    COMMIT = "commit"


class RunState(str, Enum):
    PENDING = "pending"
    AUDITING = "auditing"
    PREVIEWING = "previewing"
    MIGRATING = "migrating"
    COMPLETED = "completed"
    COMPLETED_WITH_FAILURES = "completed-with-failures"
    ROLLED_BACK = "rolled-back"


class AuditCandidate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    size: int = 0
    last_modified: Optional[datetime] = Field(None, alias="lastModified")
    title: Optional[str] = None
    table_count: Optional[int] = Field(None, alias="tableCount")
    migration_required: Optional[bool] = Field(None, alias="migrationRequired")

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v: Any):
        return str(v) if v is not None else v


class AuditReport(BaseModel):
    marker: str
    candidates: list[AuditCandidate] = Field(default_factory=list)
    deep: bool = False
    total_tables: Optional[int] = None
    estimated_minutes: Optional[int] = None

    @property
    def candidate_ids(self) -> list[str]:
        return [c.id for c in self.candidates]

    @property
    def affected_ids(self) -> list[str]:
        """Candidates that still need migrating (all of them for a shallow audit)."""
        return [c.id for c in self.candidates if c.migration_required is not False]


class OutcomeError(BaseModel):
    error_class: str
    message: str


class MigrationOutcome(BaseModel):
    document_id: str
    migrated: bool = False
    original_snapshot: Any = None
    new_content: Any = None
    error: Optional[OutcomeError] = None
    tables_converted: int = 0
    backed_up: bool = False
    diff: Optional[str] = None
    elapsed_ms: float = 0.0

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def would_change(self) -> bool:
        """``True`` when the tree contained a deprecated table, whatever the mode."""
        return self.tables_converted > 0


class FailureRecord(BaseModel):
    document_id: str
    error_class: str
    message: str


class Progress(BaseModel):
    processed: int = 0
    migrated: int = 0
    failed: int = 0
    total: int = 0


class RunReport(BaseModel):
    """
    Result of one run.  ``batch_token`` is the rollback token.  In
    ``audit-only`` and ``dry-run`` mode ``migrated`` counts the documents
    that would be rewritten.
    """

    batch_token: str
    mode: MigrationMode
    state: RunState = RunState.PENDING
    total_candidates: int = 0
    processed: int = 0
    migrated: int = 0
    unchanged: int = 0
    failed: int = 0
    tables_converted: int = 0
    cancelled: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    failures: list[FailureRecord] = Field(default_factory=list)
    outcomes: list[MigrationOutcome] = Field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"outcomes"})


class RollbackReport(BaseModel):
    batch_token: str
    state: RunState = RunState.ROLLED_BACK
    restored: list[str] = Field(default_factory=list)
    failures: list[FailureRecord] = Field(default_factory=list)


class BasicTableData(BaseModel):
    """Shape check for the ``tableData`` of a canonical table."""

    model_config = ConfigDict(extra="forbid", strict=True)

    headers: list[str]
    rows: list[list[str]]
    id: str = Field(..., min_length=1)
