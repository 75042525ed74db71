"""Behavior tests for the on-disk analysis history."""

from __future__ import annotations

from pathlib import Path

from data_ops.analysis_store import AnalysisStore


def _entry(analysis_id: str, timestamp: str) -> dict:
    return {"id": analysis_id, "timestamp": timestamp, "analysis": f"text {analysis_id}"}


def test_put_get_and_delete(tmp_path: Path) -> None:
    store = AnalysisStore(tmp_path / "history")
    assert store.put(_entry("analysis_1_abc", "2024-06-01T00:00:00+00:00"))
    assert (tmp_path / "history" / "analysis_1_abc.json").exists()
    assert store.get("analysis_1_abc")["analysis"] == "text analysis_1_abc"

    assert store.delete("analysis_1_abc") is True
    assert store.get("analysis_1_abc") is None
    assert store.delete("analysis_1_abc") is False


def test_list_recent_is_newest_first_and_limited(tmp_path: Path) -> None:
    store = AnalysisStore(tmp_path)
    store.put(_entry("a1", "2024-06-01T00:00:00+00:00"))
    store.put(_entry("a3", "2024-06-03T00:00:00+00:00"))
    store.put(_entry("a2", "2024-06-02T00:00:00+00:00"))
    assert [e["id"] for e in store.list_recent(2)] == ["a3", "a2"]


def test_list_recent_on_missing_directory_is_empty(tmp_path: Path) -> None:
    assert AnalysisStore(tmp_path / "nothing-here").list_recent() == []


def test_unreadable_files_are_skipped(tmp_path: Path) -> None:
    store = AnalysisStore(tmp_path)
    store.put(_entry("good", "2024-06-01T00:00:00+00:00"))
    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    assert [e["id"] for e in store.list_recent()] == ["good"]


def test_unsafe_ids_are_refused(tmp_path: Path) -> None:
    store = AnalysisStore(tmp_path)
    assert store.put({"id": "../escape", "timestamp": "x"}) is False
    assert store.get("../escape") is None
    assert store.delete("../escape") is False
    assert list(tmp_path.iterdir()) == []


def test_default_location_is_under_data_dir() -> None:
    import config

    store = AnalysisStore()
    assert store.directory == config.get_data_dir() / "analysis-history"
