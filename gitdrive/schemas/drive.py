"""Drive-related schemas."""

from __future__ import annotations

import base64
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, field_validator

from gitdrive.filesystem.directory import resolve_file_type
from gitdrive.services.datetime_service import format_iso

if TYPE_CHECKING:
    from gitdrive.filesystem.entry import Entry
    from gitdrive.services.batch_service import BatchItemResult, BatchResult
    from gitdrive.services.mutation_service import MutationOutcome, MutationStep
    from gitdrive.services.tree_service import DirectoryStats, StorageUsage


class EntryResponse(BaseModel):
    """One visible entry of a directory listing."""

    path: str
    name: str
    kind: str
    content_id: str | None = None
    size: int = 0
    modified_at: str | None = None
    category: str | None = None
    download_url: str | None = None

    @classmethod
    def from_entry(cls, entry: Entry) -> EntryResponse:
        return cls(
            path=entry.path,
            name=entry.name,
            kind=str(entry.kind),
            content_id=entry.content_id,
            size=entry.size,
            modified_at=format_iso(entry.modified_at),
            category=str(resolve_file_type(entry.name)) if entry.is_file else None,
            download_url=entry.download_url,
        )


class DirectoryStatsResponse(BaseModel):
    folders: int
    files: int
    images: int
    pdfs: int
    total_size: int

    @classmethod
    def from_stats(cls, stats: DirectoryStats) -> DirectoryStatsResponse:
        return cls(
            folders=stats.folders,
            files=stats.files,
            images=stats.images,
            pdfs=stats.pdfs,
            total_size=stats.total_size,
        )


class StorageUsageResponse(BaseModel):
    used_bytes: int
    quota_bytes: int
    percent: float

    @classmethod
    def from_usage(cls, usage: StorageUsage) -> StorageUsageResponse:
        return cls(
            used_bytes=usage.used_bytes,
            quota_bytes=usage.quota_bytes,
            percent=round(usage.percent, 2),
        )


class Breadcrumb(BaseModel):
    label: str
    path: str


class ListingResponse(BaseModel):
    """Directory listing with its view projection applied."""

    path: str
    entries: list[EntryResponse]
    stats: DirectoryStatsResponse
    storage: StorageUsageResponse
    breadcrumbs: list[Breadcrumb]


class CreateFolderRequest(BaseModel):
    """Request to create an (empty) folder."""

    path: str = Field(min_length=1, max_length=1000, description="Folder path, e.g. photos/2024")

    @field_validator("path", mode="before")
    @classmethod
    def strip_path(cls, v: str) -> str:
        return v.strip() if isinstance(v, str) else v


class RenameRequest(BaseModel):
    """Request to rename a file within its folder."""

    path: str = Field(min_length=1, max_length=1000)
    content_id: str = Field(min_length=1, max_length=100)
    new_name: str = Field(min_length=1, max_length=255)


class MoveRequest(BaseModel):
    """Request to move a file to another path."""

    path: str = Field(min_length=1, max_length=1000)
    content_id: str = Field(min_length=1, max_length=100)
    new_path: str = Field(min_length=1, max_length=1000)


class MutationStepResponse(BaseModel):
    action: str
    path: str
    state: str
    error_kind: str | None = None
    error_message: str | None = None
    note: str | None = None

    @classmethod
    def from_step(cls, step: MutationStep) -> MutationStepResponse:
        return cls(
            action=str(step.action),
            path=step.path,
            state=str(step.state),
            error_kind=step.error.kind if step.error else None,
            error_message=str(step.error) if step.error else None,
            note=step.note,
        )


class MutationResponse(BaseModel):
    """Outcome of a mutation with the state of each backend step."""

    operation: str
    status: str
    path: str
    target: str | None = None
    steps: list[MutationStepResponse] = Field(default_factory=list)

    @classmethod
    def from_outcome(cls, outcome: MutationOutcome) -> MutationResponse:
        return cls(
            operation=outcome.operation,
            status=str(outcome.status),
            path=outcome.path,
            target=outcome.target,
            steps=[MutationStepResponse.from_step(step) for step in outcome.steps],
        )


class BatchRequest(BaseModel):
    """Batch selection inside one folder."""

    directory: str = Field(default="", max_length=1000)
    paths: list[str] = Field(min_length=1)


class BatchItemResponse(BaseModel):
    path: str
    ok: bool
    error_kind: str | None = None
    error_message: str | None = None
    content_base64: str | None = None

    @classmethod
    def from_item(cls, item: BatchItemResult) -> BatchItemResponse:
        return cls(
            path=item.path,
            ok=item.ok,
            error_kind=item.error_kind,
            error_message=item.error_message,
            content_base64=(
                base64.b64encode(item.content).decode("ascii")
                if item.content is not None
                else None
            ),
        )


class BatchResponse(BaseModel):
    """Per-item results plus aggregate counts of a batch operation."""

    operation: str
    succeeded: int
    failed: int
    items: list[BatchItemResponse]

    @classmethod
    def from_result(cls, result: BatchResult) -> BatchResponse:
        return cls(
            operation=result.operation,
            succeeded=result.succeeded,
            failed=result.failed,
            items=[BatchItemResponse.from_item(item) for item in result.items],
        )
