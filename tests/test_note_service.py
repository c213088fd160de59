"""Tests for NoteService write paths and the merged list."""
import pytest

from sparklog_sync.exceptions import (
    RemoteStoreError,
    ValidationError,
    VersionConflictError,
)
from sparklog_sync.models.schema import DraftOperation
from sparklog_sync.services.note_service import NoteService, new_note_id
from tests.fakes import START


@pytest.fixture
def service(remote, snapshot, draft_log, edit_cache, pipeline, clock, sync_config):
    return NoteService(
        remote,
        snapshot,
        draft_log,
        edit_cache,
        pipeline=pipeline,
        clock=clock,
        sync_config=sync_config,
    )


def test_new_note_id_format():
    assert new_note_id(START.replace(microsecond=123456)) == "2024-05-01-10-00-00-123"


class TestCreateNote:
    @pytest.mark.anyio
    async def test_create_writes_remote_and_registers_locally(
        self, service, remote, draft_log, edit_cache, pipeline
    ):
        note = await service.create_note("Hello", tags=["x", "y"])

        assert note.id == "2024-05-01-10-00-00-000"
        assert note.path in remote.files
        assert note.sha == remote.files[note.path][1]
        assert note.tags == ["x", "y"]
        assert draft_log.get_draft_operation(note.id) is DraftOperation.CREATE
        assert edit_cache.is_building(note.sha)
        assert pipeline.trigger_calls == 1

    @pytest.mark.anyio
    async def test_created_note_is_listed_before_snapshot_build(self, service):
        note = await service.create_note("Hello")
        listed = await service.list_notes()
        assert [n.id for n in listed] == [note.id]

    @pytest.mark.anyio
    async def test_remote_failure_propagates_and_draft_stays(
        self, service, remote, draft_log, edit_cache, pipeline
    ):
        remote.fail_writes = True
        with pytest.raises(RemoteStoreError):
            await service.create_note("Hello")

        drafts = draft_log.get_all_drafts()
        assert [d.operation for d in drafts] == [DraftOperation.CREATE]
        assert len(edit_cache) == 0
        assert pipeline.trigger_calls == 0


class TestUpdateNote:
    @pytest.mark.anyio
    async def test_update_uses_current_token(
        self, service, remote, draft_log, edit_cache, clock
    ):
        created = await service.create_note("v1", tags=["keep"])
        clock.advance(minutes=1)

        updated = await service.update_note(created, "v2")

        assert updated.sha != created.sha
        assert updated.tags == ["keep"]
        assert updated.created_at == created.created_at
        assert updated.updated_at == clock.now
        draft = draft_log.get_draft(created.id)
        assert draft.operation is DraftOperation.UPDATE
        assert draft.version_token == created.sha
        assert edit_cache.get(updated.sha).original == created

    @pytest.mark.anyio
    async def test_stale_token_conflicts(self, service, remote):
        created = await service.create_note("v1")
        await service.update_note(created, "v2")
        with pytest.raises(VersionConflictError):
            await service.update_note(created, "v3")

    @pytest.mark.anyio
    async def test_update_requires_token(self, service):
        created = await service.create_note("v1")
        with pytest.raises(ValidationError):
            await service.update_note(created.model_copy(update={"sha": None}), "v2")


class TestDeleteNote:
    @pytest.mark.anyio
    async def test_delete_hides_note(self, service, remote, draft_log, edit_cache, snapshot):
        created = await service.create_note("bye")
        snapshot.publish(created.id, "bye", compiled_at=START)

        await service.delete_note(created)

        assert created.path not in remote.files
        assert draft_log.get_draft_operation(created.id) is DraftOperation.DELETE
        assert not edit_cache.is_cached(created.sha)
        assert await service.list_notes() == []

    @pytest.mark.anyio
    async def test_delete_after_build_completed(self, service, edit_cache, pipeline):
        created = await service.create_note("built once")
        built = created.model_copy(update={"sha": "snapshot-sha", "content": "built once"})
        edit_cache.mark_build_completed(created.sha, built)

        await service.delete_note(created)

        assert len(edit_cache) == 0
        assert pipeline.trigger_calls == 2

    @pytest.mark.anyio
    async def test_failed_delete_records_nothing(self, service, remote, draft_log):
        created = await service.create_note("keep")
        remote.fail_writes = True
        with pytest.raises(RemoteStoreError):
            await service.delete_note(created)
        assert draft_log.get_draft_operation(created.id) is DraftOperation.CREATE


class TestListing:
    @pytest.mark.anyio
    async def test_falls_back_to_last_good_snapshot(self, service, snapshot):
        snapshot.publish("a", "alpha", compiled_at=START)
        first = await service.list_notes()
        snapshot.available = False
        assert await service.list_notes() == first

    @pytest.mark.anyio
    async def test_private_notes_excluded_by_default(self, service, snapshot):
        snapshot.publish("a", "alpha", compiled_at=START)
        snapshot.publish("p", "secret", compiled_at=START, is_private=True)
        assert [n.id for n in await service.snapshot_notes()] == ["a"]
        assert sorted(n.id for n in await service.snapshot_notes(include_private=True)) == [
            "a",
            "p",
        ]

    @pytest.mark.anyio
    async def test_fetch_remote_notes(self, service, remote, clock):
        first = await service.create_note("one", is_private=True)
        clock.advance(minutes=1)
        second = await service.create_note("two")

        notes = await service.fetch_remote_notes()

        assert [n.id for n in notes] == [second.id, first.id]
        assert notes[1].is_private is True
        assert notes[0].sha == second.sha
