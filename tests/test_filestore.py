"""Tests for the JSON-file RecordStore."""

import json
from pathlib import Path

import pytest

from conftest import add
from rigstore.errors import AlreadyExistsError, MaxDepthExceededError, NotFoundError, RigError
from rigstore.filestore import FileStore, open_rig_store
from rigstore.models import (
    BLOCKS,
    PARENT_CHILD,
    STATUS_CLOSED,
    STATUS_IN_PROGRESS,
    CreateOpts,
    Dependency,
    Issue,
    ListFilter,
)
from rigstore.store import RecordStore


def _set(field: str, value):
    return lambda issue: setattr(issue, field, value)


class TestCreateAndGet:
    def test_conforms_to_protocol(self, store: FileStore):
        assert isinstance(store, RecordStore)

    def test_random_id(self, store: FileStore):
        issue_id = add(store, "Fix login")
        assert issue_id.startswith("bd-")
        assert len(issue_id) == len("bd-") + 3
        issue = store.get(issue_id)
        assert issue.title == "Fix login"
        assert issue.created_at
        assert (store.data_dir / "open" / f"{issue_id}.json").exists()

    def test_prefix_addition(self, store: FileStore):
        issue_id = store.create(Issue(title="molecule"), CreateOpts(prefix_addition="mol"))
        assert issue_id.startswith("bd-mol-")

    def test_explicit_id(self, store: FileStore):
        assert add(store, "x", id="bd-custom") == "bd-custom"
        assert store.get("bd-custom").title == "x"

    def test_duplicate_explicit_id(self, store: FileStore):
        add(store, "x", id="bd-dup")
        with pytest.raises(AlreadyExistsError):
            add(store, "y", id="bd-dup")

    def test_duplicate_of_closed_issue(self, store: FileStore):
        store.create(Issue(id="bd-gone", title="x", status=STATUS_CLOSED))
        with pytest.raises(AlreadyExistsError):
            add(store, "y", id="bd-gone")

    def test_explicit_child_id_depth_checked(self, tmp_path: Path):
        store = FileStore(tmp_path / "data", "bd-", max_hierarchy_depth=1)
        store.init()
        add(store, "ok", id="bd-a.1")
        with pytest.raises(MaxDepthExceededError):
            add(store, "too deep", id="bd-a.1.1")

    def test_retries_exhausted(self, store: FileStore, monkeypatch: pytest.MonkeyPatch):
        add(store, "x", id="bd-aaa")
        monkeypatch.setattr("rigstore.filestore.random_id", lambda prefix, length: "bd-aaa")
        with pytest.raises(RigError, match="retries exhausted"):
            add(store, "y")

    def test_collision_retried(self, store: FileStore, monkeypatch: pytest.MonkeyPatch):
        add(store, "x", id="bd-aaa")
        ids = iter(["bd-aaa", "bd-aaa", "bd-bbb"])
        monkeypatch.setattr("rigstore.filestore.random_id", lambda prefix, length: next(ids))
        assert add(store, "y") == "bd-bbb"

    def test_no_temp_files_left(self, store: FileStore):
        add(store, "x")
        leftovers = [p for p in store.data_dir.rglob("*") if ".tmp." in p.name]
        assert leftovers == []

    def test_get_missing(self, store: FileStore):
        with pytest.raises(NotFoundError) as exc_info:
            store.get("bd-nope")
        assert exc_info.value.key == "bd-nope"


class TestModify:
    def test_modify_persists(self, store: FileStore):
        issue_id = add(store, "x")
        store.modify(issue_id, _set("status", STATUS_IN_PROGRESS))
        assert store.get(issue_id).status == STATUS_IN_PROGRESS

    def test_close_moves_and_stamps(self, store: FileStore):
        issue_id = add(store, "x")
        store.modify(issue_id, _set("status", STATUS_CLOSED))
        assert not (store.data_dir / "open" / f"{issue_id}.json").exists()
        assert (store.data_dir / "closed" / f"{issue_id}.json").exists()
        assert store.get(issue_id).closed_at

    def test_reopen_clears_close_fields(self, store: FileStore):
        issue_id = add(store, "x")

        def close(issue: Issue) -> None:
            issue.status = STATUS_CLOSED
            issue.close_reason = "done"

        store.modify(issue_id, close)
        store.modify(issue_id, _set("status", "open"))
        issue = store.get(issue_id)
        assert issue.closed_at == ""
        assert issue.close_reason == ""
        assert (store.data_dir / "open" / f"{issue_id}.json").exists()

    def test_modify_missing(self, store: FileStore):
        with pytest.raises(NotFoundError):
            store.modify("bd-nope", _set("title", "x"))

    def test_mutator_error_leaves_record(self, store: FileStore):
        issue_id = add(store, "x")

        def boom(issue: Issue) -> None:
            issue.title = "changed"
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            store.modify(issue_id, boom)
        assert store.get(issue_id).title == "x"

    def test_delete(self, store: FileStore):
        issue_id = add(store, "x")
        store.delete(issue_id)
        with pytest.raises(NotFoundError):
            store.get(issue_id)
        with pytest.raises(NotFoundError):
            store.delete(issue_id)


class TestList:
    def test_open_only_by_default(self, store: FileStore):
        a = add(store, "a")
        b = add(store, "b")
        store.modify(b, _set("status", STATUS_CLOSED))
        assert [i.id for i in store.list()] == [a]
        assert [i.id for i in store.list(ListFilter(status=STATUS_CLOSED))] == [b]

    def test_sorted_by_created_at(self, store: FileStore):
        store.create(Issue(id="bd-late", title="late", created_at="2024-02-01T00:00:00+00:00"))
        store.create(Issue(id="bd-early", title="early", created_at="2024-01-01T00:00:00+00:00"))
        assert [i.id for i in store.list()] == ["bd-early", "bd-late"]

    def test_filters(self, store: FileStore):
        store.create(Issue(id="bd-p", title="parent"))
        store.create(Issue(id="bd-p.1", title="child", parent="bd-p", labels=["ui"], priority=0))
        assert [i.id for i in store.list(ListFilter(parent="bd-p"))] == ["bd-p.1"]
        assert [i.id for i in store.list(ListFilter(parent=""))] == ["bd-p"]
        assert [i.id for i in store.list(ListFilter(labels=["ui"]))] == ["bd-p.1"]
        assert [i.id for i in store.list(ListFilter(priority=0))] == ["bd-p.1"]


class TestNextChildID:
    def test_first_child(self, store: FileStore):
        parent = add(store, "p")
        assert store.get_next_child_id(parent) == f"{parent}.1"

    def test_after_existing_children(self, store: FileStore):
        add(store, "p", id="bd-p")
        add(store, "c1", id="bd-p.1")
        store.create(Issue(id="bd-p.4", title="c4", status=STATUS_CLOSED))
        add(store, "grandchild", id="bd-p.1.7")
        assert store.get_next_child_id("bd-p") == "bd-p.5"

    def test_missing_parent(self, store: FileStore):
        with pytest.raises(NotFoundError):
            store.get_next_child_id("bd-nope")

    def test_depth_limit(self, store: FileStore):
        add(store, "deep", id="bd-a.1.2.3")
        with pytest.raises(MaxDepthExceededError):
            store.get_next_child_id("bd-a.1.2.3")


class TestDoctor:
    def _write(self, store: FileStore, dir_name: str, data: dict) -> Path:
        path = store.data_dir / dir_name / f"{data['id']}.json"
        path.write_text(json.dumps(data))
        return path

    def test_clean_store(self, store: FileStore):
        add(store, "x")
        assert store.doctor() == []

    def test_orphaned_temp_file(self, store: FileStore):
        tmp = store.data_dir / "open" / "bd-x.json.tmp.deadbeef"
        tmp.write_text("{}")
        problems = store.doctor(fix=True)
        assert any("orphaned temp file" in p for p in problems)
        assert not tmp.exists()

    def test_malformed_json_reported(self, store: FileStore):
        (store.data_dir / "open" / "bd-bad.json").write_text("{not json")
        problems = store.doctor()
        assert any("malformed JSON" in p for p in problems)

    def test_status_mismatch_fixed(self, store: FileStore):
        self._write(store, "open", {"id": "bd-x", "title": "x", "status": "closed"})
        problems = store.doctor(fix=True)
        assert any("status mismatch" in p for p in problems)
        assert (store.data_dir / "closed" / "bd-x.json").exists()
        assert not (store.data_dir / "open" / "bd-x.json").exists()

    def test_duplicate_fixed(self, store: FileStore):
        self._write(store, "open", {"id": "bd-x", "title": "x", "status": "open"})
        self._write(store, "closed", {"id": "bd-x", "title": "x", "status": "open"})
        problems = store.doctor(fix=True)
        assert any("duplicate issue" in p for p in problems)
        assert (store.data_dir / "open" / "bd-x.json").exists()
        assert not (store.data_dir / "closed" / "bd-x.json").exists()

    def test_asymmetric_dependency_fixed(self, store: FileStore):
        store.create(Issue(id="bd-a", title="a", dependencies=[Dependency("bd-b", BLOCKS)]))
        store.create(Issue(id="bd-b", title="b"))
        problems = store.doctor(fix=True)
        assert any("asymmetric dependency" in p for p in problems)
        assert store.get("bd-b").has_dependent("bd-a")
        assert store.doctor() == []

    def test_asymmetric_dependent_fixed(self, store: FileStore):
        store.create(Issue(id="bd-a", title="a"))
        store.create(Issue(id="bd-b", title="b", dependents=[Dependency("bd-a", BLOCKS)]))
        store.doctor(fix=True)
        assert store.get("bd-a").has_dependency("bd-b")

    def test_broken_references_fixed(self, store: FileStore):
        store.create(
            Issue(
                id="bd-a",
                title="a",
                parent="bd-gone",
                dependencies=[Dependency("bd-gone", PARENT_CHILD), Dependency("bd-lost", BLOCKS)],
                dependents=[Dependency("bd-ghost", BLOCKS)],
            )
        )
        problems = store.doctor(fix=True)
        assert any("broken parent reference" in p for p in problems)
        assert any("broken dependency" in p for p in problems)
        assert any("broken dependent reference" in p for p in problems)
        issue = store.get("bd-a")
        assert issue.parent == ""
        assert issue.dependencies == []
        assert issue.dependents == []

    def test_unmirrored_parent_reported_once(self, store: FileStore):
        store.create(Issue(id="bd-p", title="p"))
        store.create(
            Issue(id="bd-p.1", title="c", parent="bd-p", dependencies=[Dependency("bd-p", PARENT_CHILD)])
        )
        problems = store.doctor()
        assert len(problems) == 1
        assert "asymmetric parent/child" in problems[0]

        store.doctor(fix=True)
        assert store.get("bd-p").children() == ["bd-p.1"]
        assert store.doctor() == []

    def test_missing_parent_reported_once(self, store: FileStore):
        store.create(
            Issue(id="bd-c", title="c", parent="bd-gone", dependencies=[Dependency("bd-gone", PARENT_CHILD)])
        )
        problems = store.doctor()
        assert problems == ["broken parent reference: bd-c references non-existent parent bd-gone"]

    def test_report_only_does_not_write(self, store: FileStore):
        store.create(Issue(id="bd-a", title="a", dependencies=[Dependency("bd-b", BLOCKS)]))
        store.create(Issue(id="bd-b", title="b"))
        store.doctor()
        assert not store.get("bd-b").has_dependent("bd-a")


class TestOpenRigStore:
    def test_uses_config(self, tmp_path: Path):
        from rigstore.config import init_config

        init_config(tmp_path, prefix="xy")
        store = open_rig_store(tmp_path / ".store")
        assert store.prefix == "xy-"
        assert store.data_dir == tmp_path / ".store" / "issues"

    def test_prefix_override(self, tmp_path: Path):
        from rigstore.config import init_config

        init_config(tmp_path, prefix="xy")
        assert open_rig_store(tmp_path / ".store", "bl-").prefix == "bl-"
