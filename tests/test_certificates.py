import json
import threading
from datetime import datetime, timedelta, timezone

import pytest

from warranty_bot.certificates import (
    METADATA_FILE,
    CertificateTracker,
    CleanupScheduler,
    format_bytes,
)
from warranty_bot.models import RegistrationRequest

NOW = datetime(2025, 6, 10, 12, 0, tzinfo=timezone.utc)


def _iso(dt):
    return dt.isoformat().replace("+00:00", "Z")


@pytest.fixture
def tracker(tmp_path):
    return CertificateTracker(tmp_path, retention_hours=48)


def _put(tracker, name, *, created, delivered_at=None, size=10):
    path = tracker.download_dir / name
    path.write_bytes(b"x" * size)
    data = tracker.load()
    data[name] = {
        "createdAt": _iso(created),
        "webhookDelivered": delivered_at is not None,
        "webhookDeliveredAt": _iso(delivered_at) if delivered_at else None,
        "customerLabel": "JANE DOE",
        "productCount": 1,
        "filePath": str(path),
    }
    tracker.save(data)
    return path


def test_undelivered_past_retention_is_deleted(tracker):
    path = _put(tracker, "old.pdf", created=NOW - timedelta(hours=49), size=2048)

    results = tracker.cleanup(now=NOW)

    assert results["cleaned"] == 1
    assert results["total_size"] == 2048
    assert not path.exists()
    assert "old.pdf" not in tracker.load()


def test_recently_delivered_is_kept_even_if_created_long_ago(tracker):
    path = _put(tracker, "fresh.pdf", created=NOW - timedelta(hours=60), delivered_at=NOW - timedelta(hours=1))

    results = tracker.cleanup(now=NOW)

    assert results["cleaned"] == 0
    assert path.exists()
    assert "fresh.pdf" in tracker.load()


def test_delivered_past_retention_is_deleted(tracker):
    _put(tracker, "done.pdf", created=NOW - timedelta(hours=80), delivered_at=NOW - timedelta(hours=50))
    delete, reason = tracker.should_delete(tracker.load()["done.pdf"], NOW)
    assert delete
    assert "delivered" in reason


def test_orphaned_entries_dropped(tracker):
    path = _put(tracker, "gone.pdf", created=NOW)
    path.unlink()

    results = tracker.cleanup(now=NOW)

    assert results["orphaned"] == 1
    assert tracker.load() == {}


def test_record_and_mark_delivered(tracker):
    req = RegistrationRequest.from_payload({
        "products": [{"serial": "a1", "model": "m"}, {"serial": "b2", "model": "m"}],
        "installationDate": "1/1/2025",
    })
    entry = tracker.record("cert.pdf", req)
    assert entry["webhookDelivered"] is False
    assert entry["productCount"] == 2
    assert entry["customerLabel"] == "Products Only"

    assert tracker.mark_delivered("cert.pdf") is True
    stored = tracker.load()["cert.pdf"]
    assert stored["webhookDelivered"] is True
    assert stored["webhookDeliveredAt"].endswith("Z")

    assert tracker.mark_delivered("missing.pdf") is False


def test_side_file_written_atomically(tracker):
    tracker.record("a.pdf")
    leftovers = [p.name for p in tracker.download_dir.iterdir() if p.name.endswith(".tmp")]
    assert leftovers == []
    assert json.loads((tracker.download_dir / METADATA_FILE).read_text())["a.pdf"]


def test_concurrent_records_all_land(tracker):
    threads = [threading.Thread(target=tracker.record, args=(f"c{i}.pdf",)) for i in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(tracker.load()) == 20


def test_corrupt_side_file_treated_as_empty(tracker):
    (tracker.download_dir / METADATA_FILE).write_text("{not json")
    assert tracker.load() == {}


def test_disabled_tracker_is_noop(tmp_path):
    t = CertificateTracker(tmp_path, enabled=False)
    assert t.record("x.pdf") is None
    assert t.cleanup(now=NOW) == {"cleaned": 0, "errors": 0, "orphaned": 0, "total_size": 0}
    assert not (tmp_path / METADATA_FILE).exists()


def test_stats(tracker):
    _put(tracker, "old.pdf", created=NOW - timedelta(hours=49), size=1024)
    _put(tracker, "new.pdf", created=NOW - timedelta(hours=2), delivered_at=NOW - timedelta(hours=1), size=1024)

    s = tracker.stats(now=NOW)

    assert s["totalCertificates"] == 2
    assert s["webhookDelivered"] == 1
    assert s["pendingDelivery"] == 1
    assert s["eligibleForCleanup"] == 1
    assert s["totalSize"] == 2048
    assert s["totalSizeFormatted"] == "2 KB"


@pytest.mark.parametrize("n,expected", [(0, "0 Bytes"), (512, "512 Bytes"), (1536, "1.5 KB"), (5 * 1024 ** 2, "5 MB")])
def test_format_bytes(n, expected):
    assert format_bytes(n) == expected


def test_scheduler_runs_on_startup_and_stops(tracker):
    ran = threading.Event()
    tracker.cleanup = lambda now=None: ran.set() or {}

    sched = CleanupScheduler(tracker, interval_hours=1, run_on_startup=True)
    sched.start()
    assert ran.wait(2)
    sched.stop()
    assert not sched.running
