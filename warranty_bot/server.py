# server.py
import json
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from starlette.background import BackgroundTask
from starlette.concurrency import run_in_threadpool

from . import __version__
from .certificates import CertificateTracker, CleanupScheduler
from .config import load_settings
from .flow import run_registration
from .log import log_err, log_info, log_warn
from .models import RegistrationRequest, utc_now_iso, validate_payload

SETTINGS = load_settings()
TRACKER = CertificateTracker(
    SETTINGS.download_dir,
    retention_hours=SETTINGS.retention_hours,
    enabled=SETTINGS.cleanup_enabled,
)

SAMPLE_PAYLOAD = {
    "products": [{"serial": "E000187", "model": "DH9VSA361C"}],
    "installationDate": "6/3/2025",
}

_STATUS_BY_CODE = {
    "ALREADY_REGISTERED": 409,
    "INVALID_SERIAL": 400,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if SETTINGS.cleanup_enabled:
        scheduler = CleanupScheduler(
            TRACKER,
            interval_hours=SETTINGS.cleanup_interval_hours,
            run_on_startup=SETTINGS.cleanup_on_startup,
        )
        scheduler.start()
    log_info(f">>> Webhook listening on {SETTINGS.webhook_endpoint} (mode={SETTINGS.mode})")
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()


app = FastAPI(title="Warranty Registration Bot API", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], allow_credentials=True,
    allow_methods=["*"], allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    t0 = time.monotonic()
    log_info(f"{request.method} {request.url.path}")
    response = await call_next(request)
    log_info(f"{request.method} {request.url.path} -> {response.status_code} ({time.monotonic() - t0:.1f}s)")
    return response


def _within(parent: Path, child: Path) -> bool:
    try:
        parent = parent.resolve()
        child = child.resolve()
        return child == parent or parent in child.parents
    except OSError:
        return False


def _result_response(result, request: RegistrationRequest):
    cert = result.certificate
    if result.success and cert is not None and Path(cert.file_path).is_file():
        return FileResponse(
            cert.file_path,
            media_type="application/pdf",
            filename=cert.filename,
            headers={"X-Product-Count": str(len(request.products))},
            background=BackgroundTask(TRACKER.mark_delivered, cert.filename),
        )
    if result.success and cert is not None:
        log_warn(f">>> Certificate {cert.filename} is gone, answering with JSON instead")

    body = result.to_dict()
    if result.success:
        return JSONResponse(body)
    status = _STATUS_BY_CODE.get(result.error_code or "", 500)
    return JSONResponse(body, status_code=status)


async def _register(payload) -> JSONResponse | FileResponse:
    problems = validate_payload(payload)
    if problems:
        log_warn(f">>> Rejected payload: {problems}")
        return JSONResponse({"error": "Invalid payload", "details": problems}, status_code=400)

    req = RegistrationRequest.from_payload(payload)
    log_info(f">>> Registration for {req.customer_label}: {', '.join(req.serials)}")
    # sync Playwright gets its own worker thread per request
    result = await run_in_threadpool(run_registration, req, SETTINGS, tracker=TRACKER)
    return _result_response(result, req)


@app.get("/health")
def health():
    return {
        "status": "ok",
        "version": __version__,
        "mode": SETTINGS.mode,
        "endpoint": SETTINGS.webhook_endpoint,
        "timestamp": utc_now_iso(),
    }


@app.post(SETTINGS.webhook_endpoint)
async def warranty_webhook(request: Request):
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        return JSONResponse({"error": "Invalid payload", "details": [f"Body is not valid JSON: {e}"]}, status_code=400)
    return await _register(payload)


@app.post("/test")
async def test_run():
    """Products-only smoke run against the live form with a built-in sample."""
    return await _register(dict(SAMPLE_PAYLOAD))


@app.get("/downloads")
def list_downloads():
    if not SETTINGS.serve_downloads:
        raise HTTPException(status_code=404, detail="downloads not served")
    base = Path(SETTINGS.download_dir)
    if not base.exists():
        return JSONResponse({"files": []})
    files = []
    for f in sorted(base.glob("*.pdf"), key=lambda p: p.stat().st_mtime, reverse=True):
        st = f.stat()
        files.append({"filename": f.name, "size": st.st_size, "modified": int(st.st_mtime)})
    return JSONResponse({"files": files})


@app.get("/downloads/{fname}")
def download_certificate(fname: str):
    if not SETTINGS.serve_downloads:
        raise HTTPException(status_code=404, detail="downloads not served")
    base = Path(SETTINGS.download_dir)
    path = base / fname
    if not _within(base, path) or not path.is_file():
        raise HTTPException(status_code=404, detail="file not found")
    return FileResponse(str(path), media_type="application/pdf", filename=path.name)


@app.get("/cleanup/stats")
def cleanup_stats():
    return JSONResponse(TRACKER.stats())


@app.post("/cleanup/run")
async def cleanup_run():
    try:
        results = await run_in_threadpool(TRACKER.cleanup)
    except OSError as e:
        log_err(f">>> Manual cleanup failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return JSONResponse(results)
