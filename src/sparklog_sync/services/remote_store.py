"""Client for the authoritative remote store (GitHub contents API).

Every note is one markdown file under ``notes/``; the file's blob SHA is
its version token. Writes are conditional on that token, so a stale token
surfaces as ``VersionConflictError`` rather than silently overwriting.

Reads use per-URL cache validators (ETag / If-None-Match): a 304 reuses the
payload from the previous successful read.
"""
import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Union

import httpx

from sparklog_sync.config import SyncConfig, config as default_config
from sparklog_sync.exceptions import ConfigurationError, ErrorCode, RemoteStoreError
from sparklog_sync.models.schema import FileMeta
from sparklog_sync.observability import atraced
from sparklog_sync.services.http import (
    api_headers,
    create_async_client,
    error_from_response,
)
from sparklog_sync.storage.content_parser import NOTE_SUFFIX

logger = logging.getLogger(__name__)


@dataclass
class _Validated:
    """Payload of a previous read together with its cache validator."""

    etag: str
    payload: bytes


def _as_bytes(content: Union[str, bytes]) -> bytes:
    return content.encode("utf-8") if isinstance(content, str) else content


class RemoteStoreClient:
    """Create, update, delete and read note files in the remote repository."""

    def __init__(
        self,
        owner: Optional[str] = None,
        repo: Optional[str] = None,
        branch: Optional[str] = None,
        token: Optional[str] = None,
        api_url: Optional[str] = None,
        notes_dir: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
        batch_concurrency: Optional[int] = None,
        batch_delay_ms: Optional[int] = None,
        sync_config: Optional[SyncConfig] = None,
    ) -> None:
        cfg = sync_config or default_config
        owner = owner or cfg.repo_owner
        repo = repo or cfg.repo_name
        if not owner or not repo:
            raise ConfigurationError(
                "Remote repository is not configured",
                config_key="SPARKLOG_REPO_OWNER/SPARKLOG_REPO_NAME",
                code=ErrorCode.CONFIG_MISSING,
            )
        self._branch = branch or cfg.branch
        self._notes_dir = (notes_dir or cfg.notes_dir).strip("/")
        self._batch_concurrency = batch_concurrency or cfg.batch_concurrency
        self._batch_delay_ms = (
            batch_delay_ms if batch_delay_ms is not None else cfg.batch_delay_ms
        )
        self._client = create_async_client(
            cfg.get_repo_api_url(owner, repo, api_url),
            headers=api_headers(
                token if token is not None else cfg.token, user_agent=cfg.user_agent
            ),
            timeout=timeout or cfg.http_timeout,
            transport=transport,
        )
        self._validators: Dict[str, _Validated] = {}

    @property
    def notes_dir(self) -> str:
        return self._notes_dir

    async def aclose(self) -> None:
        await self._client.aclose()

    def _contents_url(self, path: str) -> str:
        return f"contents/{path.lstrip('/')}"

    async def _send(
        self,
        method: str,
        url: str,
        operation: str,
        path: Optional[str] = None,
        **kwargs,
    ) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteStoreError(
                f"Network error during {operation}: {e}",
                operation=operation,
                path=path,
                original_error=e,
            )

    @atraced("remote_list_files")
    async def list_files(self, directory: Optional[str] = None) -> List[FileMeta]:
        """List markdown files in ``directory``, newest filename first.

        A missing directory is an empty listing, not an error.
        """
        directory = (directory or self._notes_dir).strip("/")
        response = await self._send(
            "GET",
            self._contents_url(directory),
            "list_files",
            path=directory,
            params={"ref": self._branch},
        )
        if response.status_code == 404:
            logger.info(f"Directory '{directory}' does not exist yet")
            return []
        if not response.is_success:
            raise error_from_response(response, "list_files", path=directory)

        files = [
            FileMeta.model_validate(entry)
            for entry in response.json()
            if entry.get("type") == "file" and entry.get("name", "").endswith(NOTE_SUFFIX)
        ]
        # Filenames are timestamps, so lexical order is chronological
        files.sort(key=lambda f: f.name, reverse=True)
        return files

    async def get_content(self, file: Union[FileMeta, str]) -> bytes:
        """Fetch and decode one file, revalidating with its cached ETag."""
        if isinstance(file, FileMeta) and file.url:
            # Listing URLs are absolute and already pinned to a ref
            url, path, params = file.url, file.path, None
        else:
            path = file.path if isinstance(file, FileMeta) else file
            url, params = self._contents_url(path), {"ref": self._branch}

        headers = {}
        cached = self._validators.get(url)
        if cached is not None:
            headers["If-None-Match"] = cached.etag

        response = await self._send(
            "GET",
            url,
            "get_content",
            path=path,
            headers=headers,
            params=params,
        )
        if response.status_code == 304 and cached is not None:
            logger.debug(f"Not modified, reusing cached payload: {path}")
            return cached.payload
        if not response.is_success:
            raise error_from_response(response, "get_content", path=path)

        data = response.json()
        payload = base64.b64decode("".join(data.get("content", "").split()))
        etag = response.headers.get("ETag")
        if etag:
            self._validators[url] = _Validated(etag=etag, payload=payload)
        return payload

    @atraced("remote_batch_get_content")
    async def batch_get_content(
        self,
        files: Sequence[FileMeta],
        concurrency: Optional[int] = None,
        inter_batch_delay_ms: Optional[int] = None,
    ) -> Dict[str, bytes]:
        """Fetch many files in bounded concurrent batches.

        Batches of ``concurrency`` requests run together; the next batch
        starts ``inter_batch_delay_ms`` after the previous one finished.
        Items that fail are logged and left out of the result.

        Returns:
            Mapping of file path to decoded content.
        """
        size = max(1, concurrency or self._batch_concurrency)
        delay_ms = (
            inter_batch_delay_ms if inter_batch_delay_ms is not None else self._batch_delay_ms
        )
        results: Dict[str, bytes] = {}
        batches = [files[i : i + size] for i in range(0, len(files), size)]
        logger.debug(f"Fetching {len(files)} files in {len(batches)} batches of {size}")

        for batch_index, batch in enumerate(batches):
            outcomes = await asyncio.gather(
                *(self.get_content(file) for file in batch), return_exceptions=True
            )
            for file, outcome in zip(batch, outcomes):
                if isinstance(outcome, RemoteStoreError):
                    logger.error(f"Failed to fetch {file.path}: {outcome}")
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    results[file.path] = outcome
            if batch_index < len(batches) - 1 and delay_ms > 0:
                await asyncio.sleep(delay_ms / 1000)

        logger.info(f"Batch fetch complete: {len(results)}/{len(files)} files")
        return results

    async def _put(
        self,
        operation: str,
        path: str,
        content: Union[str, bytes],
        version_token: Optional[str],
        message: Optional[str],
    ) -> str:
        body = {
            "message": message or f"{operation.capitalize()} note: {path}",
            "content": base64.b64encode(_as_bytes(content)).decode("ascii"),
            "branch": self._branch,
        }
        if version_token:
            body["sha"] = version_token
        response = await self._send(
            "PUT", self._contents_url(path), operation, path=path, json=body
        )
        if not response.is_success:
            raise error_from_response(
                response, operation, path=path, version_token=version_token
            )
        new_token = (response.json().get("content") or {}).get("sha")
        if not new_token:
            raise RemoteStoreError(
                "Remote store response carried no version token",
                operation=operation,
                path=path,
                status_code=response.status_code,
            )
        return new_token

    @atraced("remote_create")
    async def create(
        self, path: str, content: Union[str, bytes], message: Optional[str] = None
    ) -> str:
        """Create a new file; returns its version token."""
        return await self._put("create", path, content, None, message)

    @atraced("remote_update")
    async def update(
        self,
        path: str,
        content: Union[str, bytes],
        version_token: str,
        message: Optional[str] = None,
    ) -> str:
        """Replace a file whose current token is ``version_token``; returns the new token."""
        return await self._put("update", path, content, version_token, message)

    @atraced("remote_delete")
    async def delete(
        self, path: str, version_token: str, message: Optional[str] = None
    ) -> None:
        """Delete a file whose current token is ``version_token``."""
        body = {
            "message": message or f"Delete note: {path}",
            "sha": version_token,
            "branch": self._branch,
        }
        response = await self._send(
            "DELETE", self._contents_url(path), "delete", path=path, json=body
        )
        if not response.is_success:
            raise error_from_response(
                response, "delete", path=path, version_token=version_token
            )
        for url in [u for u in self._validators if path in u]:
            del self._validators[url]
