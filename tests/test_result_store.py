from __future__ import annotations

import json
from pathlib import Path

import pytest

from ci_fanout.orchestration.result_store import EVENT_LOG_NAME, ResultStore


def test_create_read_and_update_document(tmp_path: Path) -> None:
    store = ResultStore(tmp_path / "results")
    store.create("nginx", {"integration": "nginx", "status": "running", "checks": []})

    store.append_check("nginx", {"name": "exists", "status": "passed", "message": "ok"})
    store.set_fields("nginx", status="passed")

    document = store.read("nginx")
    assert document["status"] == "passed"
    assert document["checks"] == [{"name": "exists", "status": "passed", "message": "ok"}]
    assert json.loads(store.path_for("nginx").read_text()) == document


def test_writes_leave_no_temporary_files(tmp_path: Path) -> None:
    store = ResultStore(tmp_path)
    store.create("a", {"status": "running"})
    for index in range(5):
        store.set_fields("a", step=index)

    assert sorted(path.name for path in tmp_path.iterdir()) == ["a.json"]


def test_failed_mutation_keeps_previous_document(tmp_path: Path) -> None:
    store = ResultStore(tmp_path)
    store.create("a", {"status": "running"})

    def _explode(document: dict) -> dict:
        document["status"] = "passed"
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        store.update("a", _explode)
    assert store.read("a") == {"status": "running"}


def test_unserializable_document_does_not_clobber_existing(tmp_path: Path) -> None:
    store = ResultStore(tmp_path)
    store.create("a", {"status": "running"})

    with pytest.raises(TypeError):
        store.set_fields("a", bad=object())
    assert store.read("a") == {"status": "running"}
    assert [path.name for path in tmp_path.iterdir()] == ["a.json"]


def test_documents_are_independent_per_key(tmp_path: Path) -> None:
    store = ResultStore(tmp_path)
    store.create("b", {"integration": "b"})
    store.create("a", {"integration": "a"})
    store.set_fields("a", status="failed")

    assert store.read("b") == {"integration": "b"}
    assert [path.name for path in store.list_documents()] == ["a.json", "b.json"]


def test_event_log_is_append_only_and_excluded_from_documents(tmp_path: Path) -> None:
    store = ResultStore(tmp_path)
    store.create("a", {"checks": []})
    store.append_check("a", {"name": "exists", "status": "failed"})
    store.append_event("custom", {"key": "a"})

    events = store.list_events()
    assert [event["event_type"] for event in events] == ["check_appended", "custom"]
    assert store.list_events("custom")[0]["payload"] == {"key": "a"}
    assert (tmp_path / EVENT_LOG_NAME).exists()
    assert [path.name for path in store.list_documents()] == ["a.json"]


def test_list_events_empty_without_log(tmp_path: Path) -> None:
    assert ResultStore(tmp_path).list_events() == []
