"""Shared API dependencies: settings, credentials, drive session."""

from __future__ import annotations

from typing import Annotated

import httpx
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from gitdrive.config import Settings
from gitdrive.exceptions import AuthRequiredError
from gitdrive.storage.blob_client import GitHubBlobStore, StaticCredential
from gitdrive.storage.session import DriveSession, SessionRegistry

security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Get the shared backend HTTP client from app state."""
    client: httpx.AsyncClient = request.app.state.http_client
    return client


def get_token(
    settings: Annotated[Settings, Depends(get_settings)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
) -> str:
    """Return the caller's bearer token, falling back to the configured one.

    Raises AuthRequiredError (401) when neither is available.
    """
    if credentials is not None and credentials.credentials.strip():
        return credentials.credentials.strip()
    if settings.github_token:
        return settings.github_token
    raise AuthRequiredError("")


def get_drive_session(
    request: Request,
    token: Annotated[str, Depends(get_token)],
    settings: Annotated[Settings, Depends(get_settings)],
    client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
) -> DriveSession:
    """Get the drive session bound to the caller's credential."""
    registry: SessionRegistry = request.app.state.sessions

    def build() -> DriveSession:
        store = GitHubBlobStore(
            client,
            StaticCredential(token),
            settings.repo_owner,
            settings.repo_name,
            branch=settings.branch,
            api_version=settings.github_api_version,
            max_blob_bytes=settings.max_blob_bytes,
        )
        return DriveSession(store=store, settings=settings)

    return registry.get_or_create(token, build)
