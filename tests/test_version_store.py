"""
Tests for the module version store.

Verifies:
- Checksums and version numbering
- Version comparison and compatibility scores
- Activation keeps a single active version per module
- Rollback, archival and deletion of archived versions
"""

import hashlib
import threading
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from layout_foundry.db.audit_service import AuditService
from layout_foundry.db.base import Base
from layout_foundry.errors import (
    ConcurrentActivationConflict,
    NotFoundError,
    StorageUnavailableError,
    VersionLineageError,
)
from layout_foundry.schemas.versions import (
    DeploymentInfo,
    VersionCreateMeta,
    VersionStatus,
)
from layout_foundry.versions.history import calculate_checksum, next_version_number
from layout_foundry.versions.store import ModuleVersionStore


def meta(**overrides) -> VersionCreateMeta:
    defaults = {
        "module_name": "Hero Banner",
        "description": "Landing page hero",
        "created_by": "builder",
        "change_summary": "Initial",
    }
    defaults.update(overrides)
    return VersionCreateMeta(**defaults)


@pytest.fixture
def store(db_session) -> ModuleVersionStore:
    return ModuleVersionStore(db_session)


class TestChecksum:
    def test_independent_of_insertion_order(self):
        a = {"a.html": "X", "b.css": "Y"}
        b = {"b.css": "Y", "a.html": "X"}
        assert calculate_checksum(a) == calculate_checksum(b)

    def test_matches_sorted_pair_format(self):
        files = {"b.css": "Y", "a.html": "X"}
        expected = hashlib.sha256(b"a.html:X|b.css:Y").hexdigest()
        assert calculate_checksum(files) == expected

    def test_changes_with_content_or_path(self):
        base = calculate_checksum({"a.html": "X"})
        assert calculate_checksum({"a.html": "x"}) != base
        assert calculate_checksum({"A.html": "X"}) != base

    def test_empty_manifest(self):
        assert calculate_checksum({}) == hashlib.sha256(b"").hexdigest()


class TestVersionNumbers:
    @pytest.mark.parametrize(
        "previous,expected",
        [(None, "1.0.0"), ("1.0.0", "1.0.1"), ("1.0.9", "1.0.10"), ("2.3.4", "2.3.5")],
    )
    def test_next_version_number(self, previous, expected):
        assert next_version_number(previous) == expected

    def test_malformed_number(self):
        with pytest.raises(ValueError):
            next_version_number("1.0")


class TestCreateVersion:
    def test_first_and_second_version(self, store):
        v1 = store.create_version("mod-1", "pkg-1", {"a.html": "X"}, meta())
        v2 = store.create_version("mod-1", "pkg-2", {"a.html": "Y"}, meta())

        assert v1.version_number == "1.0.0"
        assert v2.version_number == "1.0.1"
        assert v1.status == VersionStatus.PACKAGED.value
        assert v1.rollback_info == {
            "can_rollback": False,
            "previous_version_id": None,
            "backup_id": None,
        }
        assert v2.rollback_info["can_rollback"] is True
        assert v2.rollback_info["previous_version_id"] == v1.version_id

    def test_numbering_is_per_module(self, store):
        store.create_version("mod-1", "pkg-1", {}, meta())
        other = store.create_version("mod-2", "pkg-1", {}, meta())
        assert other.version_number == "1.0.0"

    def test_metadata(self, store):
        files = {"a.html": "héllo", "b.css": "body{}"}
        version = store.create_version("mod-1", "pkg-1", files, meta())
        document = version.to_dict()

        assert document["metadata"]["file_count"] == 2
        assert document["metadata"]["total_size_bytes"] == len("héllo".encode()) + 6
        assert document["metadata"]["checksum"] == calculate_checksum(files)
        assert document["files"] == files

    def test_index_has_no_file_content(self, store):
        v1 = store.create_version("mod-1", "pkg-1", {"a.html": "X"}, meta())
        v2 = store.create_version("mod-1", "pkg-2", {"a.html": "Y"}, meta())

        index = store.get_index("mod-1")
        assert [e["version_id"] for e in index] == [v1.version_id, v2.version_id]
        assert all("files" not in e for e in index)

    def test_creation_is_audited(self, store, db_session):
        version = store.create_version("mod-1", "pkg-1", {}, meta(created_by="alice"))
        entry = AuditService(db_session).get_entity_history("ModuleVersion", version.version_id)[0]
        assert entry.action == "created"
        assert entry.actor_id == "alice"

    def test_verify_checksum(self, store, db_session):
        version = store.create_version("mod-1", "pkg-1", {"a.html": "X"}, meta())
        assert store.verify_checksum(version.version_id)

        version.files = {"a.html": "tampered"}
        db_session.commit()
        assert not store.verify_checksum(version.version_id)


class TestCompareVersions:
    def test_added_and_modified(self, store):
        v1 = store.create_version("mod-1", "pkg-1", {"a.html": "X"}, meta())
        v2 = store.create_version("mod-1", "pkg-2", {"a.html": "Y", "b.css": "Z"}, meta())

        comparison = store.compare_versions(v1.version_id, v2.version_id)

        assert comparison.differences.files_added == ["b.css"]
        assert comparison.differences.files_modified == ["a.html"]
        assert comparison.differences.files_removed == []
        assert comparison.compatibility_score == 0
        assert comparison.migration_required is False

    def test_symmetry(self, store):
        v1 = store.create_version("mod-1", "pkg-1", {"a.html": "X", "c.js": "1"}, meta())
        v2 = store.create_version("mod-1", "pkg-2", {"a.html": "Y", "b.css": "Z"}, meta())

        forward = store.compare_versions(v1.version_id, v2.version_id).differences
        backward = store.compare_versions(v2.version_id, v1.version_id).differences

        assert forward.files_added == backward.files_removed
        assert forward.files_removed == backward.files_added
        assert forward.files_modified == backward.files_modified

    def test_removal_requires_migration(self, store):
        v1 = store.create_version("mod-1", "pkg-1", {"a.html": "X", "b.css": "Z"}, meta())
        v2 = store.create_version("mod-1", "pkg-2", {"a.html": "X"}, meta())

        comparison = store.compare_versions(v1.version_id, v2.version_id)
        assert comparison.differences.files_removed == ["b.css"]
        assert comparison.compatibility_score == 50
        assert comparison.migration_required is True

    def test_module_rename_requires_migration(self, store):
        v1 = store.create_version("mod-1", "pkg-1", {"a.html": "X"}, meta())
        v2 = store.create_version("mod-1", "pkg-2", {"a.html": "X"}, meta(module_name="Hero"))

        comparison = store.compare_versions(v1.version_id, v2.version_id)
        assert comparison.compatibility_score == 100
        assert comparison.differences.metadata_changes["module_name"].new == "Hero"
        assert comparison.migration_required is True

    def test_both_empty(self, store):
        v1 = store.create_version("mod-1", "pkg-1", {}, meta())
        v2 = store.create_version("mod-1", "pkg-2", {}, meta())
        assert store.compare_versions(v1.version_id, v2.version_id).compatibility_score == 100

    def test_missing_version(self, store):
        v1 = store.create_version("mod-1", "pkg-1", {}, meta())
        with pytest.raises(NotFoundError):
            store.compare_versions(v1.version_id, "v_missing")


class TestActivation:
    def test_activating_demotes_previous_active(self, store):
        v1 = store.create_version("mod-1", "pkg-1", {"a.html": "X"}, meta())
        v2 = store.create_version("mod-1", "pkg-2", {"a.html": "Y"}, meta())

        store.update_version_status(v1.version_id, VersionStatus.ACTIVE)
        store.update_version_status(v2.version_id, VersionStatus.ACTIVE)

        assert store.get_version(v1.version_id).status == "deployed"
        assert store.get_version(v2.version_id).status == "active"
        assert store.active_version_ids("mod-1") == [v2.version_id]

    def test_activation_is_scoped_to_module(self, store):
        a = store.create_version("mod-a", "pkg", {}, meta())
        b = store.create_version("mod-b", "pkg", {}, meta())
        store.update_version_status(a.version_id, "active")
        store.update_version_status(b.version_id, "active")
        assert store.get_version(a.version_id).status == "active"

    def test_deployment_info_recorded(self, store):
        v1 = store.create_version("mod-1", "pkg-1", {}, meta())
        info = DeploymentInfo(
            remote_module_id="remote-42",
            portal_id="portal-1",
            environment="sandbox",
            deployed_at=datetime(2026, 10, 1, tzinfo=timezone.utc),
        )
        updated = store.update_version_status(v1.version_id, "deployed", info)
        assert updated.deployment_id == "remote-42"
        assert updated.deployment_info["environment"] == "sandbox"

    def test_missing_version(self, store):
        with pytest.raises(NotFoundError):
            store.update_version_status("v_missing", "active")

    def test_stray_active_versions_are_demoted(self, store, db_session):
        v1 = store.create_version("mod-1", "pkg-1", {}, meta())
        v2 = store.create_version("mod-1", "pkg-2", {}, meta())
        v3 = store.create_version("mod-1", "pkg-3", {}, meta())
        # Simulate a writer that bypassed the store
        v1.status = "active"
        v2.status = "active"
        db_session.commit()

        store.update_version_status(v3.version_id, "active")
        assert store.active_version_ids("mod-1") == [v3.version_id]

    def test_conflict_raised_when_recount_finds_two(self, store, monkeypatch):
        v1 = store.create_version("mod-1", "pkg-1", {}, meta())
        v2 = store.create_version("mod-1", "pkg-2", {}, meta())
        stray = [v1.version_id, v2.version_id]
        monkeypatch.setattr(store, "active_version_ids", lambda module_id: stray)

        with pytest.raises(ConcurrentActivationConflict) as exc_info:
            store.update_version_status(v2.version_id, "active")
        assert exc_info.value.active_ids == stray

    def test_module_lock_shared_while_held_then_released(self):
        lock = ModuleVersionStore._lock_for("mod-lock")
        assert ModuleVersionStore._lock_for("mod-lock") is lock

        del lock
        assert "mod-lock" not in ModuleVersionStore._module_locks

    def test_threaded_activation_leaves_one_active(self, tmp_path):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'versions.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        Base.metadata.create_all(engine)
        factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

        setup = ModuleVersionStore(factory())
        ids = [
            setup.create_version("mod-1", f"pkg-{i}", {}, meta()).version_id
            for i in range(4)
        ]
        errors = []

        def activate(version_id):
            session = factory()
            try:
                ModuleVersionStore(session).update_version_status(version_id, "active")
            except Exception as e:
                errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=activate, args=(vid,)) for vid in ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        check = ModuleVersionStore(factory())
        assert len(check.active_version_ids("mod-1")) == 1
        engine.dispose()


class TestRollback:
    def test_rollback_creates_new_version_with_target_files(self, store):
        v1 = store.create_version("mod-1", "pkg-1", {"a.html": "X"}, meta())
        v2 = store.create_version("mod-1", "pkg-2", {"a.html": "Y", "b.css": "Z"}, meta())
        store.update_version_status(v2.version_id, "active")

        rollback = store.rollback_to_version(
            v2.version_id, v1.version_id, "broken layout", "alice"
        )

        assert rollback.version_id not in (v1.version_id, v2.version_id)
        assert rollback.version_number == "1.0.2"
        assert rollback.files == {"a.html": "X"}
        assert rollback.checksum == store.get_version(v1.version_id).checksum
        assert rollback.package_id == "rollback_pkg-1"
        assert rollback.description == "Rollback to version 1.0.0"
        assert rollback.change_summary == "Rollback: broken layout"
        assert rollback.change_log == [
            "Rolled back from version 1.0.1 to 1.0.0",
            "Reason: broken layout",
            "Performed by: alice",
        ]
        assert store.get_version(v2.version_id).status == "inactive"

    def test_history_is_preserved(self, store):
        v1 = store.create_version("mod-1", "pkg-1", {"a.html": "X"}, meta())
        v2 = store.create_version("mod-1", "pkg-2", {"a.html": "Y"}, meta())
        store.rollback_to_version(v2.version_id, v1.version_id, "why", "bob")

        assert store.get_version(v2.version_id).files == {"a.html": "Y"}
        assert len(store.get_index("mod-1")) == 3

    def test_inactive_current_left_alone(self, store):
        v1 = store.create_version("mod-1", "pkg-1", {}, meta())
        v2 = store.create_version("mod-1", "pkg-2", {}, meta())
        store.rollback_to_version(v2.version_id, v1.version_id, "why", "bob")
        assert store.get_version(v2.version_id).status == "packaged"

    def test_rollback_is_audited(self, store, db_session):
        v1 = store.create_version("mod-1", "pkg-1", {}, meta())
        v2 = store.create_version("mod-1", "pkg-2", {}, meta())
        rollback = store.rollback_to_version(v2.version_id, v1.version_id, "why", "bob")

        entry = AuditService(db_session).get_by_action("rolled_back")[0]
        assert entry.entity_id == "mod-1"
        assert entry.after == {"version_id": rollback.version_id, "restored_from": v1.version_id}

    def test_failed_commit_leaves_no_partial_rollback(self, store, db_session, monkeypatch):
        v1 = store.create_version("mod-1", "pkg-1", {"a.html": "X"}, meta())
        v2 = store.create_version("mod-1", "pkg-2", {"a.html": "Y"}, meta())
        store.update_version_status(v2.version_id, "active")

        def failing_commit():
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(db_session, "commit", failing_commit)
        with pytest.raises(StorageUnavailableError):
            store.rollback_to_version(v2.version_id, v1.version_id, "why", "bob")
        monkeypatch.undo()

        assert len(store.get_index("mod-1")) == 2
        assert store.get_version(v2.version_id).status == "active"

    def test_rollback_demotion_is_audited(self, store, db_session):
        v1 = store.create_version("mod-1", "pkg-1", {}, meta())
        v2 = store.create_version("mod-1", "pkg-2", {}, meta())
        store.update_version_status(v2.version_id, "active")
        store.rollback_to_version(v2.version_id, v1.version_id, "why", "bob")

        history = AuditService(db_session).get_entity_history("ModuleVersion", v2.version_id)
        changes = [(h.before, h.after) for h in history if h.action == "status_changed"]
        assert ({"status": "active"}, {"status": "inactive"}) in changes

    def test_cross_module_rollback_rejected(self, store):
        a = store.create_version("mod-a", "pkg", {}, meta())
        b = store.create_version("mod-b", "pkg", {}, meta())
        with pytest.raises(VersionLineageError):
            store.rollback_to_version(a.version_id, b.version_id, "why", "bob")


class TestArchive:
    def test_archive_beyond_keep_count(self, store):
        versions = [
            store.create_version("mod-1", f"pkg-{i}", {}, meta()) for i in range(5)
        ]
        store.update_version_status(versions[0].version_id, "deployed")

        archived = store.archive_old_versions("mod-1", keep_count=2)

        statuses = [store.get_version(v.version_id).status for v in versions]
        assert archived == 2
        assert statuses == ["deployed", "archived", "archived", "packaged", "packaged"]

    def test_archive_counts_only_new(self, store):
        for i in range(3):
            store.create_version("mod-1", f"pkg-{i}", {}, meta())
        assert store.archive_old_versions("mod-1", keep_count=1) == 2
        assert store.archive_old_versions("mod-1", keep_count=1) == 0

    def test_active_never_archived(self, store):
        v1 = store.create_version("mod-1", "pkg-1", {}, meta())
        store.create_version("mod-1", "pkg-2", {}, meta())
        store.update_version_status(v1.version_id, "active")
        assert store.archive_old_versions("mod-1", keep_count=0) == 1
        assert store.get_version(v1.version_id).status == "active"

    def test_negative_keep_count(self, store):
        with pytest.raises(ValueError):
            store.archive_old_versions("mod-1", keep_count=-1)

    def test_delete_archived(self, store):
        for i in range(4):
            store.create_version("mod-1", f"pkg-{i}", {}, meta())
        store.archive_old_versions("mod-1", keep_count=1)

        assert store.delete_archived_versions("mod-1") == 3
        assert len(store.get_index("mod-1")) == 1
        assert store.delete_archived_versions("mod-1") == 0

    def test_numbering_continues_after_delete(self, store):
        for i in range(3):
            store.create_version("mod-1", f"pkg-{i}", {}, meta())
        store.archive_old_versions("mod-1", keep_count=1)
        store.delete_archived_versions("mod-1")

        assert store.create_version("mod-1", "pkg-x", {}, meta()).version_number == "1.0.3"


class TestHistoryAndStatistics:
    def test_module_history(self, store):
        v1 = store.create_version("mod-1", "pkg-1", {"a.html": "X"}, meta())
        v2 = store.create_version("mod-1", "pkg-2", {"a.html": "Y"}, meta())
        info = {
            "remote_module_id": "r-1",
            "portal_id": "p-1",
            "environment": "production",
            "deployed_at": "2026-10-01T00:00:00+00:00",
        }
        store.update_version_status(v1.version_id, "active", info)
        store.update_version_status(v2.version_id, "active", info)
        store.rollback_to_version(v2.version_id, v1.version_id, "regression", "alice")

        history = store.get_module_history("mod-1")

        assert history.total_versions == 3
        assert [v.version_number for v in history.versions] == ["1.0.2", "1.0.1", "1.0.0"]
        assert history.latest_version.version_number == "1.0.2"
        assert history.active_version is None
        assert history.version_stats.total_deployments == 2
        assert history.version_stats.successful_deployments == 1
        assert history.version_stats.failed_deployments == 1
        assert history.version_stats.rollbacks == 1

    def test_empty_history(self, store):
        history = store.get_module_history("nothing")
        assert history.total_versions == 0
        assert history.latest_version is None

    def test_statistics(self, store):
        store.create_version("mod-1", "pkg-1", {"a.html": "1234"}, meta())
        v = store.create_version("mod-1", "pkg-2", {"a.html": "12"}, meta())
        store.create_version("mod-2", "pkg-1", {"a.html": "1"}, meta())
        store.update_version_status(v.version_id, "active")
        store.archive_old_versions("mod-1", keep_count=1)

        stats = store.get_statistics()
        assert stats.total_modules == 2
        assert stats.total_versions == 3
        assert stats.active_versions == 1
        assert stats.archived_versions == 1
        assert stats.storage_size_bytes == 7
