"""Tests for job id generation and the job stores."""

import json

import pytest

from chakravarti.job_store import FileJobStore, InMemoryJobStore, generate_ulid
from chakravarti.schemas import Job, RunState


def _job(spec, job_id: str, state: RunState = RunState.PENDING) -> Job:
    job = Job(id=job_id, spec=spec)
    if state != RunState.PENDING:
        job.transition(RunState.PLANNING)
        job.transition(RunState.EXECUTING)
        job.transition(state, "done")
    return job


class TestUlid:
    def test_format(self):
        ulid = generate_ulid()
        assert len(ulid) == 26
        assert not set(ulid) & set("ILOU")

    def test_sortable_by_time(self, monkeypatch):
        import chakravarti.job_store as job_store

        monkeypatch.setattr(job_store.time, "time", lambda: 1_000.0)
        earlier = generate_ulid()
        monkeypatch.setattr(job_store.time, "time", lambda: 2_000.0)
        later = generate_ulid()
        assert earlier[:10] < later[:10]


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryJobStore()
    return FileJobStore(tmp_path / "store")


class TestJobStore:
    def test_save_and_get(self, store, spec):
        job = _job(spec, "01A")
        store.save_job(job)
        loaded = store.get_job("01A")
        assert loaded.id == "01A"
        assert loaded.spec == spec

    def test_get_missing(self, store):
        assert store.get_job("nope") is None

    def test_save_snapshots(self, store, spec):
        job = _job(spec, "01A")
        store.save_job(job)
        job.transition(RunState.PLANNING)
        assert store.get_job("01A").state == RunState.PENDING
        store.save_job(job)
        assert store.get_job("01A").state == RunState.PLANNING

    def test_list_sorted_and_filtered(self, store, spec):
        store.save_job(_job(spec, "01C", RunState.FAILED))
        store.save_job(_job(spec, "01A", RunState.SUCCEEDED))
        store.save_job(_job(spec, "01B", RunState.FAILED))
        assert [j.id for j in store.list_jobs()] == ["01A", "01B", "01C"]
        assert [j.id for j in store.list_jobs(RunState.FAILED)] == ["01B", "01C"]


class TestFileJobStore:
    def test_layout(self, tmp_path, spec):
        store = FileJobStore(tmp_path)
        store.save_job(_job(spec, "01A"))
        path = tmp_path / "jobs" / "01A.json"
        assert path.exists()
        assert json.loads(path.read_text())["kind"] == "chakravarti.job"
        assert not list((tmp_path / "jobs").glob("*.tmp"))

    def test_list_skips_unreadable_records(self, tmp_path, spec, caplog):
        store = FileJobStore(tmp_path)
        store.save_job(_job(spec, "01A"))
        (tmp_path / "jobs" / "01B.json").write_text("{not json")
        (tmp_path / "jobs" / "01C.json").write_text(json.dumps({"kind": "other"}))

        assert [j.id for j in store.list_jobs()] == ["01A"]
        assert "Skipping unreadable job record" in caplog.text
