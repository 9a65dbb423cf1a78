"""
Tests for the in-memory registry of parsed uploads.
"""

from datetime import datetime, timezone

import pytest

from app.domain.imports.errors import ImportJobNotFound
from app.domain.imports.jobs import ImportJobStore
from app.domain.imports.models import FileKind, ImportJob, RawRow


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def make_job(job_id):
    return ImportJob(
        id=job_id,
        filename="a.csv",
        file_size=10,
        file_kind=FileKind.CSV,
        detected_columns=("client_name",),
        total_rows=1,
        created_at=datetime.now(timezone.utc),
    )


def test_add_and_get():
    store = ImportJobStore(ttl_seconds=60)
    rows = [RawRow(1, {"client_name": "Ana"})]
    store.add(make_job("a"), rows)

    job, stored_rows = store.get("a")
    assert job.id == "a"
    assert stored_rows == tuple(rows)
    assert len(store) == 1


def test_unknown_job():
    with pytest.raises(ImportJobNotFound) as exc_info:
        ImportJobStore(ttl_seconds=60).get("missing")
    assert exc_info.value.import_id == "missing"


def test_jobs_expire_after_ttl():
    clock = FakeClock()
    store = ImportJobStore(ttl_seconds=60, clock=clock)
    store.add(make_job("old"), [])

    clock.now = 30
    store.add(make_job("new"), [])
    assert store.get("old")[0].id == "old"

    clock.now = 61
    with pytest.raises(ImportJobNotFound):
        store.get("old")
    assert store.get("new")[0].id == "new"
    assert len(store) == 1
