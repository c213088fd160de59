"""Client for the external snapshot build pipeline (GitHub Actions workflow).

Both calls are best-effort: a failed trigger means the next push-triggered
build picks the change up, and a failed status read is reported as
"not running" so pollers simply try again on their next tick.
"""
import json
import logging
from typing import Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from sparklog_sync.config import SyncConfig, config as default_config
from sparklog_sync.exceptions import BuildPipelineError, ErrorCode
from sparklog_sync.models.schema import BuildRun, BuildStatus
from sparklog_sync.services.http import api_headers, create_async_client

logger = logging.getLogger(__name__)

_RUNNING_STATES = ("queued", "in_progress", "waiting", "requested", "pending")


class BuildPipelineClient:
    """Fire-and-forget trigger plus status polling for the snapshot build."""

    def __init__(
        self,
        owner: Optional[str] = None,
        repo: Optional[str] = None,
        workflow_file: Optional[str] = None,
        branch: Optional[str] = None,
        token: Optional[str] = None,
        api_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
        sync_config: Optional[SyncConfig] = None,
    ) -> None:
        cfg = sync_config or default_config
        self._workflow = workflow_file or cfg.workflow_file
        self._branch = branch or cfg.branch
        self._client = create_async_client(
            cfg.get_repo_api_url(owner, repo, api_url)
            + f"actions/workflows/{self._workflow}/",
            headers=api_headers(
                token if token is not None else cfg.token, user_agent=cfg.user_agent
            ),
            timeout=timeout or cfg.http_timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def trigger_build(self) -> bool:
        """Request a snapshot rebuild. Returns False on any failure."""
        try:
            response = await self._client.post(
                "dispatches",
                json={"ref": self._branch, "inputs": {"force_rebuild": "true"}},
            )
            if not response.is_success:
                raise BuildPipelineError(
                    f"Build trigger rejected: {response.status_code}",
                    status_code=response.status_code,
                    code=ErrorCode.BUILD_TRIGGER_FAILED,
                )
        except (httpx.HTTPError, BuildPipelineError) as e:
            logger.error(f"Failed to trigger build for {self._workflow}: {e}")
            return False
        logger.info(f"Triggered build workflow {self._workflow}")
        return True

    async def status(self) -> BuildStatus:
        """Latest run of the build workflow."""
        try:
            response = await self._client.get("runs", params={"per_page": 1})
            if not response.is_success:
                raise BuildPipelineError(
                    f"Build status unavailable: {response.status_code}",
                    status_code=response.status_code,
                    code=ErrorCode.BUILD_STATUS_FAILED,
                )
            runs = response.json().get("workflow_runs") or []
            if not runs:
                return BuildStatus(is_running=False)
            latest = runs[0]
            run = BuildRun.model_validate(latest)
        except (
            httpx.HTTPError,
            BuildPipelineError,
            json.JSONDecodeError,
            PydanticValidationError,
            AttributeError,
        ) as e:
            logger.warning(f"Failed to read build status: {e}")
            return BuildStatus(is_running=False)
        return BuildStatus(is_running=run.status in _RUNNING_STATES, last_run=run)
