"""Configuration module for the Sparklog sync engine."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from sparklog_sync import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the local state database
_USER_ENV = Path.home() / ".sparklog" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


class SyncConfig(BaseModel):
    """Configuration for the sync engine."""

    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("SPARKLOG_BASE_DIR", "."))
    )
    # Remote store (GitHub contents API)
    remote_api_url: str = Field(
        default_factory=lambda: os.getenv(
            "SPARKLOG_REMOTE_API_URL", "https://api.github.com"
        )
    )
    repo_owner: str = Field(default_factory=lambda: os.getenv("SPARKLOG_REPO_OWNER", ""))
    repo_name: str = Field(default_factory=lambda: os.getenv("SPARKLOG_REPO_NAME", ""))
    branch: str = Field(default_factory=lambda: os.getenv("SPARKLOG_BRANCH", "main"))
    notes_dir: str = Field(
        default_factory=lambda: os.getenv("SPARKLOG_NOTES_DIR", "notes")
    )
    token: Optional[str] = Field(
        default_factory=lambda: os.getenv("SPARKLOG_TOKEN") or None
    )
    # Snapshot read endpoint (static JSON produced by the build pipeline)
    snapshot_url: str = Field(
        default_factory=lambda: os.getenv(
            "SPARKLOG_SNAPSHOT_URL", "http://localhost:8788/static-notes"
        )
    )
    # Build pipeline workflow that rebuilds the snapshot
    workflow_file: str = Field(
        default_factory=lambda: os.getenv(
            "SPARKLOG_WORKFLOW_FILE", "build-static-content.yml"
        )
    )
    # Local durable state (drafts)
    state_db_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("SPARKLOG_STATE_DB", "data/sparklog-state.db")
        )
    )
    draft_key_prefix: str = Field(default="draft_")
    # Expiry and timeouts (seconds)
    draft_ttl_seconds: int = Field(
        default_factory=lambda: _env_int("SPARKLOG_DRAFT_TTL_SECONDS", 24 * 60 * 60)
    )
    cache_ttl_seconds: int = Field(
        default_factory=lambda: _env_int("SPARKLOG_CACHE_TTL_SECONDS", 24 * 60 * 60)
    )
    build_timeout_seconds: int = Field(
        default_factory=lambda: _env_int("SPARKLOG_BUILD_TIMEOUT_SECONDS", 10 * 60)
    )
    sweep_interval_seconds: int = Field(
        default_factory=lambda: _env_int("SPARKLOG_SWEEP_INTERVAL_SECONDS", 60)
    )
    # Catch-up probe backoff after failed snapshot reads
    catchup_backoff_base_seconds: float = Field(default=5.0)
    catchup_backoff_max_seconds: float = Field(default=300.0)
    # Remote batch fetch
    batch_concurrency: int = Field(
        default_factory=lambda: _env_int("SPARKLOG_BATCH_CONCURRENCY", 5)
    )
    batch_delay_ms: int = Field(
        default_factory=lambda: _env_int("SPARKLOG_BATCH_DELAY_MS", 100)
    )
    http_timeout: float = Field(
        default_factory=lambda: float(os.getenv("SPARKLOG_HTTP_TIMEOUT", "30"))
    )
    preview_length: int = Field(default=200)
    # Sent as the User-Agent on remote store and build pipeline calls
    client_name: str = Field(
        default_factory=lambda: os.getenv("SPARKLOG_CLIENT_NAME", "sparklog-sync")
    )
    client_version: str = Field(default_factory=lambda: __version__)

    @model_validator(mode="after")
    def _validate_limits(self) -> "SyncConfig":
        """Reject limits that would disable expiry or batching."""
        for name in (
            "draft_ttl_seconds",
            "cache_ttl_seconds",
            "build_timeout_seconds",
            "sweep_interval_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if self.batch_concurrency < 1:
            raise ValueError("batch_concurrency must be >= 1")
        if self.batch_delay_ms < 0:
            raise ValueError("batch_delay_ms must be >= 0")
        if self.build_timeout_seconds > self.cache_ttl_seconds:
            logger.warning(
                "build_timeout_seconds (%d) exceeds cache_ttl_seconds (%d); "
                "stuck builds will be purged by the cache TTL first",
                self.build_timeout_seconds,
                self.cache_ttl_seconds,
            )
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_state_db_url(self) -> str:
        """Get the SQLite URL for the local state database."""
        db_path = self.get_absolute_path(self.state_db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"

    def get_repo_api_url(
        self,
        owner: Optional[str] = None,
        repo: Optional[str] = None,
        api_url: Optional[str] = None,
    ) -> str:
        """Repository URL on the remote store API, with trailing slash.

        Arguments override the configured owner, repository and API root.
        """
        base = (api_url or self.remote_api_url).rstrip("/")
        return f"{base}/repos/{owner or self.repo_owner}/{repo or self.repo_name}/"

    @property
    def user_agent(self) -> str:
        return f"{self.client_name}/{self.client_version}"


# Create a global config instance
config = SyncConfig()
