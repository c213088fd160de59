"""Tests for the sparklog-sync command line."""
import pytest

from sparklog_sync import main as cli
from sparklog_sync.config import config
from sparklog_sync.models.db_models import init_db
from sparklog_sync.models.schema import BuildStatus, DraftOperation
from sparklog_sync.services.draft_log import DraftLog
from sparklog_sync.services.reconciler import BuildMonitor
from sparklog_sync.storage.kv_store import SqliteStore


@pytest.fixture
def state_db(tmp_path, monkeypatch):
    db_path = tmp_path / "state.db"
    monkeypatch.setattr(config, "state_db_path", db_path)
    monkeypatch.setattr(config, "repo_owner", "")
    monkeypatch.setattr(config, "repo_name", "")
    monkeypatch.setattr("sparklog_sync.main.configure_logging", lambda **kwargs: tmp_path)
    return db_path


def seed_draft(db_path, note_id, operation):
    engine = init_db(f"sqlite:///{db_path}")
    DraftLog(SqliteStore(engine)).save_draft(note_id, "body", operation, "sha")
    engine.dispose()


def run_cli(argv):
    with pytest.raises(SystemExit) as exc_info:
        cli.main(argv)
    return exc_info.value.code


def test_parse_args():
    args = cli.parse_args(["--state-db", "x.db", "list", "--private"])
    assert args.command == "list"
    assert args.private is True
    assert args.state_db == "x.db"


def test_drafts_command(state_db, capsys):
    seed_draft(state_db, "n1", DraftOperation.UPDATE)
    assert run_cli(["--state-db", str(state_db), "drafts"]) == 0
    out = capsys.readouterr().out
    assert "update" in out
    assert "n1" in out


def test_status_without_remote(state_db, capsys):
    seed_draft(state_db, "n1", DraftOperation.CREATE)
    seed_draft(state_db, "n2", DraftOperation.DELETE)
    assert run_cli(["--state-db", str(state_db), "status"]) == 0
    out = capsys.readouterr().out
    assert "drafts: 2 (create 1, update 0, delete 1)" in out
    assert "not configured" in out




class RecordingPipeline:
    """Stands in for BuildPipelineClient when a repository is configured."""

    instances = []

    def __init__(self):
        self.closed = False
        RecordingPipeline.instances.append(self)

    async def status(self):
        return BuildStatus()

    async def aclose(self):
        self.closed = True


class TestSweep:
    def test_single_round_without_remote(self, state_db, capsys):
        assert run_cli(["--state-db", str(state_db), "sweep"]) == 0
        out = capsys.readouterr().out
        assert "removed 0 expired drafts, settled 0 cached edits" in out

    def test_rounds_repeat_at_sweep_interval(self, state_db, monkeypatch, capsys):
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        monkeypatch.setattr(config, "sweep_interval_seconds", 42)
        monkeypatch.setattr("sparklog_sync.main.asyncio.sleep", fake_sleep)

        assert run_cli(["--state-db", str(state_db), "sweep", "--rounds", "3"]) == 0

        assert capsys.readouterr().out.count("removed 0 expired drafts") == 3
        assert sleeps == [42, 42]

    def test_configured_repo_runs_build_monitor(self, state_db, monkeypatch):
        monkeypatch.setattr(config, "repo_owner", "alice")
        monkeypatch.setattr(config, "repo_name", "notes")
        RecordingPipeline.instances.clear()
        monkeypatch.setattr("sparklog_sync.main.BuildPipelineClient", RecordingPipeline)
        swept = []
        original_sweep = BuildMonitor.sweep

        async def recording_sweep(monitor):
            swept.append(monitor)
            return await original_sweep(monitor)

        monkeypatch.setattr(BuildMonitor, "sweep", recording_sweep)

        assert run_cli(["--state-db", str(state_db), "sweep"]) == 0

        assert len(swept) == 1
        assert [p.closed for p in RecordingPipeline.instances] == [True]
