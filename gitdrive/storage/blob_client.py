"""Blob store client: single-blob CRUD against the GitHub repository contents API."""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable
from urllib.parse import quote

import httpx

from gitdrive.exceptions import (
    AlreadyExistsError,
    AuthRequiredError,
    BackendUnavailableError,
    ConflictError,
    DriveError,
    NotFoundError,
    TooLargeError,
)
from gitdrive.filesystem.entry import Entry, EntryKind, base_name
from gitdrive.services.datetime_service import parse_timestamp

logger = logging.getLogger(__name__)

_RAW_MEDIA_TYPE = "application/vnd.github.raw+json"
_JSON_MEDIA_TYPE = "application/vnd.github+json"
_ENTRY_KINDS = {"file": EntryKind.FILE, "dir": EntryKind.DIRECTORY}


@dataclass(frozen=True)
class Blob:
    """Whole content of one file together with its current content identifier."""

    path: str
    content: bytes
    content_id: str
    size: int
    download_url: str | None = None


@runtime_checkable
class CredentialProvider(Protocol):
    """Supplies the bearer credential attached to every backend call."""

    def current_token(self) -> str:
        """Return the current token or raise ``AuthRequiredError``."""
        ...


class StaticCredential:
    """Credential provider holding a single, externally obtained token."""

    def __init__(self, token: str | None) -> None:
        self._token = token.strip() if token else None

    def current_token(self) -> str:
        if not self._token:
            raise AuthRequiredError("")
        return self._token


@runtime_checkable
class BlobStore(Protocol):
    """Backend contract: one blob at one path, each change an independent commit."""

    async def list(self, path: str) -> list[Entry]:
        """Return the immediate children of ``path`` or raise ``NotFoundError``."""
        ...

    async def get(self, path: str) -> Blob:
        """Return the blob at ``path`` or raise ``NotFoundError``."""
        ...

    async def put(
        self,
        path: str,
        content: bytes,
        message: str,
        expected_content_id: str | None = None,
    ) -> str:
        """Write ``content`` at ``path`` and return the new content identifier."""
        ...

    async def delete(self, path: str, expected_content_id: str, message: str) -> None:
        """Delete the blob at ``path`` guarded by its content identifier."""
        ...


def encode_content(content: bytes) -> str:
    """Encode a payload to the store's base64 transport encoding."""
    return base64.b64encode(content).decode("ascii")


def decode_content(encoded: str) -> bytes:
    """Decode a base64 transport payload; the API wraps lines with newlines."""
    try:
        return base64.b64decode("".join(encoded.split()), validate=True)
    except binascii.Error as exc:
        raise ValueError("Backend returned malformed base64 content") from exc


def entry_from_item(item: dict[str, Any]) -> Entry | None:
    """Build an Entry from one contents API listing item.

    Symlinks and submodules have no drive counterpart and yield None.
    """
    kind = _ENTRY_KINDS.get(str(item.get("type")))
    if kind is None:
        return None
    path = str(item["path"])
    return Entry(
        path=path,
        name=str(item.get("name") or base_name(path)),
        kind=kind,
        content_id=item.get("sha"),
        size=int(item.get("size") or 0) if kind is EntryKind.FILE else 0,
        modified_at=parse_timestamp(item.get("updated_at") or item.get("created_at")),
        download_url=item.get("download_url"),
    )


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict):
        return str(data.get("message", ""))
    return ""


class GitHubBlobStore:
    """Async client for ``/repos/{owner}/{repo}/contents/{path}``.

    Owns no global state: the HTTP client and the credential provider are
    injected so that several sessions can share one connection pool.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        credentials: CredentialProvider,
        owner: str,
        repo: str,
        *,
        branch: str | None = None,
        api_version: str = "2022-11-28",
        max_blob_bytes: int | None = None,
    ) -> None:
        self.client = client
        self.credentials = credentials
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.api_version = api_version
        self.max_blob_bytes = max_blob_bytes

    def _url(self, path: str) -> str:
        quoted = quote(path, safe="/")
        return f"/repos/{quote(self.owner)}/{quote(self.repo)}/contents/{quoted}"

    def _headers(self, path: str, accept: str = _JSON_MEDIA_TYPE) -> dict[str, str]:
        try:
            token = self.credentials.current_token()
        except AuthRequiredError as exc:
            raise AuthRequiredError(path) from exc
        return {
            "Authorization": f"Bearer {token}",
            "Accept": accept,
            "X-GitHub-Api-Version": self.api_version,
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        accept: str = _JSON_MEDIA_TYPE,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        headers = self._headers(path, accept)
        logger.debug("%s %s", method, path or "/")
        try:
            response = await self.client.request(
                method,
                self._url(path),
                headers=headers,
                json=json,
                params=params,
            )
        except httpx.TimeoutException as exc:
            raise BackendUnavailableError(path, f"Request timed out ({method})") from exc
        except httpx.TransportError as exc:
            raise BackendUnavailableError(path, f"Network error ({method}): {exc}") from exc
        return response

    def _raise_for_status(
        self,
        response: httpx.Response,
        path: str,
        *,
        expected_content_id: str | None = None,
    ) -> None:
        """Map a non-success response to the drive error taxonomy."""
        status_code = response.status_code
        if status_code < 400:
            return
        message = _error_message(response)
        rate_limited = response.headers.get("x-ratelimit-remaining") == "0"
        exc: DriveError
        if status_code in (401, 403) and not rate_limited:
            exc = AuthRequiredError(path, message or None)
        elif status_code == 404:
            exc = NotFoundError(path)
        elif status_code == 409:
            exc = ConflictError(path, message or None)
        elif status_code == 413:
            exc = TooLargeError(path, limit=self.max_blob_bytes)
        elif status_code == 422:
            if expected_content_id is None and "sha" in message:
                exc = AlreadyExistsError(path)
            elif "sha" in message or "match" in message:
                exc = ConflictError(path, message or None)
            else:
                exc = BackendUnavailableError(path, f"Rejected by backend: {message}")
        elif status_code in (403, 429) or status_code >= 500:
            exc = BackendUnavailableError(path, f"Backend returned {status_code}")
        else:
            exc = BackendUnavailableError(path, f"Unexpected backend status {status_code}")
        raise exc

    def _ref_params(self) -> dict[str, str] | None:
        return {"ref": self.branch} if self.branch else None

    async def list(self, path: str) -> list[Entry]:
        response = await self._request("GET", path, params=self._ref_params())
        self._raise_for_status(response, path)
        data = response.json()
        if not isinstance(data, list):
            raise NotADirectoryError(f"Not a directory: {path}")
        entries: list[Entry] = []
        for item in data:
            entry = entry_from_item(item)
            if entry is not None:
                entries.append(entry)
        return entries

    async def get(self, path: str) -> Blob:
        response = await self._request("GET", path, params=self._ref_params())
        self._raise_for_status(response, path)
        data = response.json()
        if not isinstance(data, dict) or data.get("type") != "file":
            raise IsADirectoryError(f"Not a file: {path}")

        size = int(data.get("size") or 0)
        encoded = data.get("content") or ""
        if data.get("encoding") == "base64" and (encoded or size == 0):
            content = decode_content(encoded)
        else:
            # Blobs above 1 MB come back without inline content.
            content = await self._get_raw(path)
        return Blob(
            path=path,
            content=content,
            content_id=str(data["sha"]),
            size=size,
            download_url=data.get("download_url"),
        )

    async def _get_raw(self, path: str) -> bytes:
        response = await self._request(
            "GET", path, accept=_RAW_MEDIA_TYPE, params=self._ref_params()
        )
        self._raise_for_status(response, path)
        return response.content

    async def put(
        self,
        path: str,
        content: bytes,
        message: str,
        expected_content_id: str | None = None,
    ) -> str:
        if self.max_blob_bytes is not None and len(content) > self.max_blob_bytes:
            raise TooLargeError(path, len(content), self.max_blob_bytes)
        body: dict[str, Any] = {"message": message, "content": encode_content(content)}
        if expected_content_id is not None:
            body["sha"] = expected_content_id
        if self.branch:
            body["branch"] = self.branch
        response = await self._request("PUT", path, json=body)
        self._raise_for_status(response, path, expected_content_id=expected_content_id)
        result: str = response.json()["content"]["sha"]
        return result

    async def delete(self, path: str, expected_content_id: str, message: str) -> None:
        body: dict[str, Any] = {"message": message, "sha": expected_content_id}
        if self.branch:
            body["branch"] = self.branch
        response = await self._request("DELETE", path, json=body)
        self._raise_for_status(response, path, expected_content_id=expected_content_id)
