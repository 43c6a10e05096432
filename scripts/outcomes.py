"""Error kinds and result types shared by the pipeline stages and the upload engine."""
from dataclasses import dataclass, field
from enum import Enum


class LoaderError(Exception):
    """Base class for recall loader failures."""


class FetchError(LoaderError):
    def __init__(self, url: str, status: int | None = None, message: str = ""):
        self.url = url
        self.status = status
        super().__init__(message or f"HTTP {status} from {url}")


class TableMissing(LoaderError):
    def __init__(self, table: str):
        self.table = table
        super().__init__(f"Table '{table}' does not exist")


class MappingError(LoaderError):
    """A record (or one of its fields) cannot be expressed as DynamoDB attribute values."""

    def __init__(self, message: str, record_id=None, field_name: str | None = None):
        self.record_id = record_id
        self.field_name = field_name
        super().__init__(message)


class SubmissionError(LoaderError):
    """Transport or provider failure while talking to DynamoDB."""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}")

    @property
    def code(self):
        response = getattr(self.cause, "response", None) or {}
        return response.get("Error", {}).get("Code")


class Status(str, Enum):
    UPLOAD_COMPLETE = "upload_complete"
    DRY_RUN_COMPLETE = "dry_run_complete"
    CLEAR_COMPLETE = "clear_complete"
    TABLE_CREATION_PENDING = "table_creation_pending"
    ABORTED = "aborted"
    UPLOAD_FAILED = "upload_failed"
    RETRIES_EXHAUSTED = "retries_exhausted"
    CANCELLED = "cancelled"


@dataclass
class RunOutcome:
    status: Status
    results: list = field(default_factory=list)
    waves: int = 0
    submitted: int = 0
    unprocessed: list = field(default_factory=list)
    mapping_errors: list = field(default_factory=list)
    error: LoaderError | None = None
    debug_path: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in (Status.UPLOAD_COMPLETE, Status.DRY_RUN_COMPLETE, Status.CLEAR_COMPLETE)

    def summary(self) -> str:
        parts = [self.status.value, f"waves={self.waves}", f"submitted={self.submitted}"]
        if self.unprocessed:
            parts.append(f"unprocessed={len(self.unprocessed)}")
        if self.mapping_errors:
            parts.append(f"skipped={len(self.mapping_errors)}")
        if self.debug_path:
            parts.append(f"debug={self.debug_path}")
        if self.error is not None:
            parts.append(f"error={self.error}")
        return " ".join(parts)


@dataclass
class StageResult:
    category: int
    stage: str
    ok: bool
    count: int = 0
    error: Exception | None = None

    def summary(self) -> str:
        if self.ok:
            return f"[{self.stage}] category {self.category}: {self.count} records"
        return f"[{self.stage}] category {self.category}: FAILED ({self.error})"
