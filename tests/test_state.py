"""Tests for the record store, the lifecycle FSM and the sync database layer."""

from __future__ import annotations

import importlib
import warnings
from pathlib import Path

import pytest

from conftest import UID
from streamingest.database import Database
from streamingest.models import VideoRecord, VideoStatus
from streamingest.upload import fsm as fsm_module
from streamingest.upload.fsm import VideoLifecycleSM, can_transition, create_fsm
from streamingest.upload.state import AsyncVideoStore

OTHER_UID = "fedcba9876543210fedcba9876543210"


def _record(uid: str = UID, **kwargs) -> VideoRecord:
    return VideoRecord(
        remote_resource_id=uid,
        view_url=f"https://watch.cloudflarestream.com/{uid}",
        collection_key="videos",
        filename="clip.mp4",
        **kwargs,
    )


# ======================================================================
# FSM
# ======================================================================


class TestLifecycleFSM:
    def test_initial_state_is_processing(self):
        assert VideoLifecycleSM().current_state.id == "processing"

    @pytest.mark.parametrize(
        ("current", "target", "allowed"),
        [
            ("processing", VideoStatus.READY, True),
            ("processing", VideoStatus.ERROR, True),
            ("ready", VideoStatus.ERROR, False),
            ("error", VideoStatus.READY, False),
            ("ready", VideoStatus.READY, False),
            ("processing", VideoStatus.PROCESSING, False),
        ],
    )
    def test_can_transition(self, current, target, allowed):
        assert can_transition(current, target) is allowed

    def test_create_fsm_at_status(self):
        assert create_fsm(VideoStatus.READY).current_state.id == "ready"

    def test_definition_is_warning_free(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            module = importlib.reload(fsm_module)
        assert module.VideoLifecycleSM().current_state.id == "processing"

    @pytest.mark.parametrize("status", [VideoStatus.READY, VideoStatus.ERROR])
    def test_terminal_states_are_final(self, status):
        assert create_fsm(status).current_state.final
        assert not create_fsm(VideoStatus.PROCESSING).current_state.final

    def test_create_fsm_rejects_unknown_status(self):
        with pytest.raises(ValueError):
            create_fsm("uploading")


# ======================================================================
# Async store
# ======================================================================


class TestAsyncVideoStore:
    async def test_create_record(self, store: AsyncVideoStore):
        record = await store.create_record(_record(size_bytes=100))

        assert record.id is not None
        assert record.status is VideoStatus.PROCESSING
        assert record.uploaded_at
        fetched = await store.get_record(record.id)
        assert fetched == record

    async def test_duplicate_remote_id_rejected(self, store):
        import sqlite3

        await store.create_record(_record())
        with pytest.raises(sqlite3.IntegrityError):
            await store.create_record(_record())

    async def test_merge_terminal_once(self, store):
        await store.create_record(_record(size_bytes=100))

        assert await store.merge_terminal(UID, VideoStatus.READY, {"duration_seconds": 9.5})
        assert not await store.merge_terminal(UID, VideoStatus.ERROR, {"duration_seconds": 1.0})

        record = await store.get_by_remote_id(UID)
        assert record.status is VideoStatus.READY
        assert record.duration_seconds == 9.5
        assert record.size_bytes == 100

    async def test_merge_ignores_unknown_and_empty_fields(self, store):
        await store.create_record(_record(size_bytes=100))

        await store.merge_terminal(
            UID, VideoStatus.READY, {"size_bytes": None, "title": "sneaky", "thumbnail_url": "t"}
        )

        row = await store.get_row((await store.get_by_remote_id(UID)).id)
        assert row["size_bytes"] == 100
        assert row["title"] is None
        assert row["thumbnail_url"] == "t"

    async def test_merge_for_missing_record(self, store):
        assert not await store.merge_terminal("missing", VideoStatus.READY)

    async def test_mark_failed(self, store):
        await store.create_record(_record())
        assert await store.mark_failed(UID)
        assert (await store.get_by_remote_id(UID)).status is VideoStatus.ERROR

    async def test_update_fields_only_editable_columns(self, store):
        record = await store.create_record(_record())

        assert await store.update_fields(record.id, {"title": "New", "filename": "renamed.mp4"})
        with pytest.raises(ValueError, match="status"):
            await store.update_fields(record.id, {"status": "ready"})
        with pytest.raises(ValueError, match="remote_resource_id"):
            await store.update_fields(record.id, {"remote_resource_id": OTHER_UID})

        row = await store.get_row(record.id)
        assert row["title"] == "New"
        assert row["filename"] == "renamed.mp4"
        assert row["remote_resource_id"] == UID
        assert row["status"] == "processing"

    async def test_update_with_no_fields(self, store):
        record = await store.create_record(_record())
        assert await store.update_fields(record.id, {}) is False

    async def test_list_processing(self, store):
        await store.create_record(_record())
        await store.create_record(_record(OTHER_UID))
        await store.mark_failed(UID)

        pending = await store.list_processing()
        assert [r.remote_resource_id for r in pending] == [OTHER_UID]

    async def test_delete_record(self, store):
        record = await store.create_record(_record())
        assert await store.delete_record(record.id)
        assert await store.get_record(record.id) is None
        assert not await store.delete_record(record.id)

    async def test_not_connected(self, tmp_path: Path):
        store = AsyncVideoStore(str(tmp_path / "x.db"))
        with pytest.raises(RuntimeError, match="Not connected"):
            await store.get_record(1)


# ======================================================================
# Sync database
# ======================================================================


class TestDatabase:
    async def test_counts_and_history(self, store, tmp_path: Path):
        await store.create_record(_record())
        await store.create_record(_record(OTHER_UID))
        await store.merge_terminal(UID, VideoStatus.READY)

        with Database(tmp_path / "videos.db") as db:
            assert db.get_status_counts() == {"processing": 1, "ready": 1}
            assert [r.remote_resource_id for r in db.list_records(VideoStatus.READY)] == [UID]
            assert len(db.list_records()) == 2
            assert db.get_status_history(UID) == [("processing", "ready")]

    def test_status_check_constraint(self, tmp_path: Path):
        import sqlite3

        with Database(tmp_path / "c.db") as db:
            with pytest.raises(sqlite3.IntegrityError):
                db.conn.execute(
                    "INSERT INTO videos (remote_resource_id, collection_key, filename, view_url, status)"
                    " VALUES ('u', 'c', 'f', 'v', 'uploading')"
                )

    def test_creates_parent_directory(self, tmp_path: Path):
        path = tmp_path / "nested" / "dir" / "v.db"
        with Database(path):
            pass
        assert path.exists()

    def test_record_to_dict(self):
        d = _record(size_bytes=5).to_dict()
        assert d["status"] == "processing"
        assert d["size_bytes"] == 5
