"""Drive API endpoints: listing, folders, files, rename/move and batches."""

from __future__ import annotations

import logging
import mimetypes
from typing import Annotated

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile, status

from gitdrive.api.deps import get_drive_session
from gitdrive.exceptions import NotFoundError, status_for_error
from gitdrive.filesystem.directory import create_directory, list_directory
from gitdrive.filesystem.entry import Entry, EntryKind, base_name, normalize_path
from gitdrive.schemas.drive import (
    BatchRequest,
    BatchResponse,
    Breadcrumb,
    CreateFolderRequest,
    DirectoryStatsResponse,
    EntryResponse,
    ListingResponse,
    MoveRequest,
    MutationResponse,
    RenameRequest,
    StorageUsageResponse,
)
from gitdrive.services.batch_service import (
    check_selection_size,
    delete_entries,
    download_entries,
    upload_entries,
)
from gitdrive.services.mutation_service import (
    MutationOutcome,
    MutationStatus,
    delete_directory,
    delete_file,
    download_file,
    move_file,
    rename_file,
    upload_file,
)
from gitdrive.services.tree_service import SortKey, TreeView, ViewFilter
from gitdrive.storage.session import DriveSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/drive", tags=["drive"])

SessionDep = Annotated[DriveSession, Depends(get_drive_session)]


def _mutation_response(outcome: MutationOutcome, response: Response) -> MutationResponse:
    """Partial outcomes answer 207 and failed ones the status of their first error."""
    if outcome.status is MutationStatus.PARTIAL:
        response.status_code = status.HTTP_207_MULTI_STATUS
    elif outcome.status is MutationStatus.FAILED and outcome.error is not None:
        response.status_code = status_for_error(outcome.error)
    return MutationResponse.from_outcome(outcome)


def _file_entry(path: str, content_id: str) -> Entry:
    normalized = normalize_path(path)
    return Entry(
        path=normalized,
        name=base_name(normalized),
        kind=EntryKind.FILE,
        content_id=content_id,
    )


@router.get("/list", response_model=ListingResponse)
async def list_folder(
    session: SessionDep,
    path: Annotated[str, Query(max_length=1000)] = "",
    view_filter: Annotated[ViewFilter, Query(alias="filter")] = ViewFilter.ALL,
    sort: SortKey = SortKey.NAME,
    search: Annotated[str, Query(max_length=255)] = "",
) -> ListingResponse:
    """List a folder with filter, sort and search applied."""
    view = TreeView(session)
    view.view_filter = view_filter
    view.sort_key = sort
    view.search = search
    entries = await view.navigate(path)
    return ListingResponse(
        path=view.path,
        entries=[EntryResponse.from_entry(entry) for entry in entries],
        stats=DirectoryStatsResponse.from_stats(view.stats()),
        storage=StorageUsageResponse.from_usage(view.storage_usage()),
        breadcrumbs=[Breadcrumb(label=label, path=p) for label, p in view.breadcrumbs()],
    )


@router.post("/folders", response_model=EntryResponse, status_code=201)
async def create_folder(body: CreateFolderRequest, session: SessionDep) -> EntryResponse:
    """Create an empty folder."""
    entry = await create_directory(session, body.path)
    return EntryResponse.from_entry(entry)


@router.delete("/folders/{folder_path:path}", response_model=MutationResponse)
async def delete_folder(
    folder_path: str, session: SessionDep, response: Response
) -> MutationResponse:
    """Delete the files directly inside a folder; subfolders are left in place."""
    directory = normalize_path(folder_path)
    entry = Entry(path=directory, name=base_name(directory), kind=EntryKind.DIRECTORY)
    outcome = await delete_directory(session, entry)
    return _mutation_response(outcome, response)


@router.post("/files", response_model=MutationResponse, status_code=201)
async def upload(
    session: SessionDep,
    file: Annotated[UploadFile, File()],
    directory: Annotated[str, Query(max_length=1000)] = "",
    overwrite: bool = False,
) -> MutationResponse:
    """Upload one file into a folder."""
    if not file.filename:
        raise ValueError("Uploaded file has no name")
    # One byte past the ceiling is enough to reject the upload.
    content = await file.read(session.settings.max_blob_bytes + 1)
    outcome = await upload_file(session, directory, file.filename, content, overwrite=overwrite)
    return MutationResponse.from_outcome(outcome)


@router.get("/files/{file_path:path}")
async def download(file_path: str, session: SessionDep) -> Response:
    """Download the whole content of one file."""
    path = normalize_path(file_path)
    if not path:
        raise NotFoundError(path)
    content = await download_file(session, path)
    media_type, _ = mimetypes.guess_type(path)
    name = base_name(path).replace('"', "")
    return Response(
        content=content,
        media_type=media_type or "application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{name}"'},
    )


@router.delete("/files/{file_path:path}", status_code=204)
async def delete(
    file_path: str,
    session: SessionDep,
    content_id: Annotated[str, Query(min_length=1, max_length=100)],
) -> Response:
    """Delete one file guarded by its content identifier."""
    await delete_file(session, _file_entry(file_path, content_id))
    return Response(status_code=204)


@router.post("/rename", response_model=MutationResponse)
async def rename(body: RenameRequest, session: SessionDep, response: Response) -> MutationResponse:
    """Rename a file; a failed cleanup of the old path answers 207."""
    outcome = await rename_file(session, _file_entry(body.path, body.content_id), body.new_name)
    return _mutation_response(outcome, response)


@router.post("/move", response_model=MutationResponse)
async def move(body: MoveRequest, session: SessionDep, response: Response) -> MutationResponse:
    """Move a file to another path; a failed cleanup of the old path answers 207."""
    outcome = await move_file(session, _file_entry(body.path, body.content_id), body.new_path)
    return _mutation_response(outcome, response)


async def _resolve_batch(
    session: DriveSession, body: BatchRequest
) -> tuple[str, list[Entry], list[str]]:
    directory = normalize_path(body.directory)
    check_selection_size(session, directory, len(body.paths))
    listing = {entry.path: entry for entry in await list_directory(session, directory)}
    entries: list[Entry] = []
    missing: list[str] = []
    for raw_path in body.paths:
        path = normalize_path(raw_path)
        entry = listing.get(path)
        if entry is None:
            missing.append(path)
        else:
            entries.append(entry)
    return directory, entries, missing


@router.post("/batch/delete", response_model=BatchResponse)
async def batch_delete(body: BatchRequest, session: SessionDep) -> BatchResponse:
    """Delete up to the selection limit of entries, one at a time."""
    directory, entries, missing = await _resolve_batch(session, body)
    result = await delete_entries(session, entries, missing=missing, directory=directory)
    return BatchResponse.from_result(result)


@router.post("/batch/download", response_model=BatchResponse)
async def batch_download(body: BatchRequest, session: SessionDep) -> BatchResponse:
    """Download up to the selection limit of files, one at a time."""
    directory, entries, missing = await _resolve_batch(session, body)
    result = await download_entries(session, entries, missing=missing, directory=directory)
    return BatchResponse.from_result(result)


@router.post("/batch/upload", response_model=BatchResponse)
async def batch_upload(
    session: SessionDep,
    files: Annotated[list[UploadFile], File()],
    directory: Annotated[str, Query(max_length=1000)] = "",
    overwrite: bool = False,
) -> BatchResponse:
    """Upload several files into one folder, one at a time."""
    limit = session.settings.max_blob_bytes
    payloads: list[tuple[str, bytes]] = []
    for file in files:
        if not file.filename:
            raise ValueError("Uploaded file has no name")
        payloads.append((file.filename, await file.read(limit + 1)))
    result = await upload_entries(session, payloads, directory=directory, overwrite=overwrite)
    return BatchResponse.from_result(result)
