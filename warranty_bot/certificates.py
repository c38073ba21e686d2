import json
import math
import os
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

from .log import log_debug, log_err, log_info, log_warn

METADATA_FILE = ".certificate_metadata.json"

# One lock for the whole process: every webhook worker thread shares the side-file.
_METADATA_LOCK = threading.RLock()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_ts(s) -> datetime | None:
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(str(s).replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def format_bytes(n: int) -> str:
    if not n:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    i = min(int(math.floor(math.log(n, 1024))), len(units) - 1)
    return f"{round(n / 1024 ** i, 2):g} {units[i]}"


class CertificateTracker:
    """
    Bookkeeping for downloaded certificates so they can be deleted once the
    retention window has passed. State lives in a JSON side-file next to the
    PDFs, keyed by filename.
    """

    def __init__(self, download_dir, retention_hours: float = 48, enabled: bool = True):
        self.download_dir = Path(download_dir)
        self.retention = timedelta(hours=retention_hours)
        self.retention_hours = retention_hours
        self.enabled = enabled

    @property
    def metadata_path(self) -> Path:
        return self.download_dir / METADATA_FILE

    # ---------- side-file ----------

    def _read(self) -> dict:
        p = self.metadata_path
        if not p.exists():
            return {}
        try:
            data = json.loads(p.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as e:
            log_warn(f">>> Certificate metadata unreadable ({e}); starting fresh")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict):
        self.download_dir.mkdir(parents=True, exist_ok=True)
        tmp = self.metadata_path.with_name(f"{METADATA_FILE}.{os.getpid()}.{threading.get_ident()}.tmp")
        tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
        os.replace(tmp, self.metadata_path)

    def load(self) -> dict:
        with _METADATA_LOCK:
            return self._read()

    def save(self, data: dict):
        with _METADATA_LOCK:
            self._write(data)

    # ---------- bookkeeping ----------

    def record(self, filename: str, request=None, delivered: bool = False) -> dict | None:
        if not self.enabled:
            return None
        now = _iso(_utcnow())
        entry = {
            "createdAt": now,
            "webhookDelivered": bool(delivered),
            "webhookDeliveredAt": now if delivered else None,
            "customerLabel": request.customer_label if request is not None else "",
            "productCount": len(request.products) if request is not None else 0,
            "filePath": str(self.download_dir / filename),
        }
        with _METADATA_LOCK:
            data = self._read()
            data[filename] = entry
            self._write(data)
        log_debug(f">>> Recorded certificate {filename}")
        return entry

    def mark_delivered(self, filename: str) -> bool:
        if not self.enabled:
            return False
        with _METADATA_LOCK:
            data = self._read()
            entry = data.get(filename)
            if entry is None:
                log_warn(f">>> No metadata for {filename}; delivery not recorded")
                return False
            entry["webhookDelivered"] = True
            entry["webhookDeliveredAt"] = _iso(_utcnow())
            self._write(data)
        log_debug(f">>> Marked {filename} delivered")
        return True

    def should_delete(self, entry: dict, now: datetime | None = None) -> tuple[bool, str]:
        """
        Age runs from delivery when the certificate was handed back, otherwise
        from when it was saved.
        """
        now = now or _utcnow()
        delivered_at = _parse_ts(entry.get("webhookDeliveredAt")) if entry.get("webhookDelivered") else None
        anchor = delivered_at or _parse_ts(entry.get("createdAt"))
        if anchor is None:
            return False, "no usable timestamp, keeping"

        age_h = (now - anchor).total_seconds() / 3600
        label = "delivered" if delivered_at else "created"
        if now - anchor > self.retention:
            return True, f"{age_h:.0f}h since {label} ({_iso(anchor)})"
        return False, f"only {age_h:.0f}h since {label}, keeping"

    def cleanup(self, now: datetime | None = None) -> dict:
        results = {"cleaned": 0, "errors": 0, "orphaned": 0, "total_size": 0}
        if not self.enabled:
            log_info(">>> Certificate cleanup is disabled")
            return results

        now = now or _utcnow()
        with _METADATA_LOCK:
            data = self._read()
            for filename, entry in list(data.items()):
                path = Path(entry.get("filePath") or self.download_dir / filename)
                if not path.exists():
                    del data[filename]
                    results["orphaned"] += 1
                    continue
                delete, reason = self.should_delete(entry, now)
                if not delete:
                    log_debug(f">>> Keeping certificate {filename} ({reason})")
                    continue
                try:
                    size = path.stat().st_size
                    path.unlink()
                except OSError as e:
                    log_err(f">>> Could not delete {path}: {e}")
                    results["errors"] += 1
                    continue
                del data[filename]
                results["cleaned"] += 1
                results["total_size"] += size
                log_info(f">>> Deleted certificate {filename} ({reason})")
            self._write(data)

        if results["orphaned"]:
            log_info(f">>> Dropped {results['orphaned']} orphaned metadata entr{'y' if results['orphaned'] == 1 else 'ies'}")
        log_info(
            f">>> Cleanup completed: {results['cleaned']} file(s) deleted "
            f"({format_bytes(results['total_size'])}), {results['errors']} error(s)"
        )
        return results

    def stats(self, now: datetime | None = None) -> dict:
        now = now or _utcnow()
        data = self.load()
        out = {
            "totalCertificates": len(data),
            "webhookDelivered": 0,
            "pendingDelivery": 0,
            "eligibleForCleanup": 0,
            "totalSize": 0,
            "retentionHours": self.retention_hours,
            "enabled": self.enabled,
        }
        for filename, entry in data.items():
            path = Path(entry.get("filePath") or self.download_dir / filename)
            if path.exists():
                out["totalSize"] += path.stat().st_size
            if entry.get("webhookDelivered"):
                out["webhookDelivered"] += 1
            else:
                out["pendingDelivery"] += 1
            if self.should_delete(entry, now)[0]:
                out["eligibleForCleanup"] += 1
        out["totalSizeFormatted"] = format_bytes(out["totalSize"])
        return out


class CleanupScheduler:
    """Runs tracker.cleanup() every `interval_hours` on a daemon thread."""

    def __init__(self, tracker: CertificateTracker, interval_hours: float = 6, run_on_startup: bool = True):
        self.tracker = tracker
        self.interval_s = max(interval_hours * 3600, 1)
        self.run_on_startup = run_on_startup
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def _run_once(self):
        try:
            self.tracker.cleanup()
        except Exception as e:
            log_err(f">>> Scheduled cleanup failed: {e}")

    def _loop(self):
        if self.run_on_startup:
            self._run_once()
        while not self._stop.wait(self.interval_s):
            self._run_once()

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="certificate-cleanup", daemon=True)
        self._thread.start()
        log_info(f">>> Certificate cleanup scheduled every {self.interval_s / 3600:g}h "
                 f"(retention {self.tracker.retention_hours:g}h)")

    def stop(self, timeout: float | None = 5):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
