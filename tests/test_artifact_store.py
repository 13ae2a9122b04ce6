import json
import os
import re
from collections import Counter

import pytest

from medbill.artifact_store import ArtifactStore, new_artifact_id, sanitize_filename, validate_upload
from medbill.errors import NotFoundError, PayloadTooLarge, StorageError, ValidationError
from medbill.repository import PatientRepository
from medbill import usage_log
from medbill.usage_log import UsageLogger


def test_artifact_ids_are_unique_and_safe():
    ids = {new_artifact_id("bill") for _ in range(50)}
    assert len(ids) == 50
    assert all(re.match(r"^bill-\d{8}T\d{12}-[0-9a-f]{8}$", i) for i in ids)


def test_sanitize_filename():
    assert sanitize_filename("../../etc/passwd") == "passwd"
    assert sanitize_filename("C:\\scans\\my rx (1).pdf") == "my_rx_1_.pdf"
    assert sanitize_filename("...") == "upload"


def test_validate_upload_normalizes_jpg():
    name, mime = validate_upload("scan.jpg", "image/jpg", b"\xff\xd8\xff\xe0rest", 100)
    assert (name, mime) == ("scan.jpg", "image/jpeg")


def test_validate_upload_errors():
    with pytest.raises(ValidationError, match="Empty file"):
        validate_upload("a.txt", "text/plain", b"", 100)
    with pytest.raises(PayloadTooLarge):
        validate_upload("a.txt", "text/plain", b"x" * 101, 100)
    with pytest.raises(ValidationError, match="Invalid file type"):
        validate_upload("a.zip", "application/zip", b"PK", 100)
    with pytest.raises(ValidationError, match="does not match"):
        validate_upload("a.png", "image/png", b"GIF89a....", 100)


def test_write_once_refuses_overwrite(tmp_path):
    store = ArtifactStore(str(tmp_path / "bills"))
    path = store.write_once("bill-1.txt", b"first")
    with pytest.raises(StorageError):
        store.write_once("bill-1.txt", b"second")
    with open(path, "rb") as f:
        assert f.read() == b"first"


def test_write_once_rejects_unsafe_names(tmp_path):
    store = ArtifactStore(str(tmp_path))
    with pytest.raises(StorageError):
        store.write_once("../escape.txt", b"x")


def test_resolve(tmp_path):
    store = ArtifactStore(str(tmp_path))
    stored, _ = store.save_upload("rx.txt", b"hello")
    assert store.resolve(stored) == os.path.join(store.base_dir, stored)
    assert store.resolve("missing.txt") is None
    assert store.resolve("../" + stored) is None
    assert store.resolve("") is None


def test_patient_repository_notes_after_billing():
    repo = PatientRepository()
    patient = repo.create("Ann", "F", "Headache")
    repo.mark_billing_started(patient.id)
    updated = repo.update_notes(patient.id, "Headache, improving")
    assert updated.billing_started is True
    assert updated.clinical_notes == "Headache, improving"

    with pytest.raises(ValidationError):
        repo.update_notes(patient.id, "   ")
    with pytest.raises(NotFoundError):
        repo.update_notes("patient_nope", "x")
    assert repo.mark_billing_started("patient_nope") is None


def test_usage_logger_writes_jsonl(tmp_path):
    usage = UsageLogger(str(tmp_path / "usage_logs"))
    usage.log_event("bill_generated", meta={"format": "pdf"})
    usage.log_event("bill_generated", status=400)

    files = os.listdir(tmp_path / "usage_logs")
    assert len(files) == 1
    with open(tmp_path / "usage_logs" / files[0], encoding="utf-8") as f:
        entries = [json.loads(line) for line in f]
    assert [e["status"] for e in entries] == [200, 400]

    summary = usage.summarize_day()
    assert summary == {"events_bill_generated": 2, "errors_bill_generated": 1}


def test_usage_logger_counts_degraded_paths(tmp_path):
    usage = UsageLogger(str(tmp_path))
    usage.log_event("codes_suggested", meta={"source": "fallback", "count": 1})
    usage.log_event("codes_suggested", meta={"source": "model", "count": 3})
    usage.log_event("bill_generated", meta={"format": "txt", "degraded": True})
    summary = usage.summarize_day()
    assert summary["events_codes_suggested"] == 2
    assert summary["degraded_codes_suggested"] == 1
    assert summary["degraded_bill_generated"] == 1


def test_usage_logger_keeps_only_today_in_memory(tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x", encoding="utf-8")
    usage = UsageLogger(str(blocker))
    usage._pending["2000-01-01"] = Counter({"events_bill": 3})

    usage.log_event("bill", status=200, meta={"degraded": True})

    assert list(usage._pending) == [usage_log._today()]
    summary = usage.summarize_day()
    assert summary["events_bill"] == 1
    assert summary["degraded_bill"] == 1
    assert usage.summarize_day("2000-01-01") == {}
