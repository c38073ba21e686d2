import argparse
import json
import sys
import time
from pathlib import Path

import requests
import uvicorn

from .certificates import CertificateTracker
from .config import PROFILES, load_settings
from .flow import run_registration
from .log import humanize_error, log_err, log_info, log_ok, log_warn
from .models import Certificate, RegistrationRequest, RegistrationResult, validate_payload

NON_RETRYABLE = {"ALREADY_REGISTERED", "INVALID_SERIAL"}


def load_payload(path: str) -> dict:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Payload file not found: {p}")
    return json.loads(p.read_text(encoding="utf-8"))


def _post_to_webhook(url: str, payload: dict, out_dir: Path, timeout_s: float = 600) -> RegistrationResult:
    """Drive a running webhook instead of a local browser."""
    try:
        r = requests.post(url, json=payload, timeout=timeout_s)
    except requests.RequestException as e:
        return RegistrationResult(success=False, message=f"Webhook request failed: {e}", error_code="ERROR",
                                  error_kind="AutomationError")

    if r.ok and r.headers.get("content-type", "").startswith("application/pdf"):
        cd = r.headers.get("content-disposition", "")
        name = cd.split("filename=")[-1].strip('"; ') if "filename=" in cd else f"certificate_{int(time.time())}.pdf"
        out_dir.mkdir(parents=True, exist_ok=True)
        target = out_dir / name
        target.write_bytes(r.content)
        return RegistrationResult(success=True, message="Certificate received", certificate=Certificate(name, str(target)))

    try:
        body = r.json()
    except ValueError:
        body = {"message": r.text[:300]}
    return RegistrationResult(
        success=bool(r.ok and body.get("success", True)),
        message=body.get("message") or body.get("error") or f"HTTP {r.status_code}",
        error_code=None if r.ok else body.get("code", "ERROR"),
        error_kind=None if r.ok else body.get("errorKind"),
        details={k: v for k, v in body.items() if k not in ("success", "message", "code", "errorKind", "timestamp")},
    )


def run_with_retries(run_once, retries: int = 0, delay_s: float = 1.0) -> tuple[RegistrationResult, int]:
    """
    Call run_once() until it succeeds, fails with a business-rule error, or
    retries are used up. Returns (last result, attempts made).
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            result = run_once()
        except Exception as e:
            result = RegistrationResult(success=False, message=humanize_error(e), error_code="ERROR",
                                        error_kind="AutomationError")
        if result.success:
            return result, attempt
        if result.error_code in NON_RETRYABLE:
            log_warn(f">>> {result.error_code}: not retrying")
            return result, attempt
        if attempt > retries:
            return result, attempt
        log_warn(f">>> Attempt {attempt} failed ({result.message}); retrying in {delay_s:g}s")
        time.sleep(delay_s)


def cmd_run(args) -> int:
    payload = load_payload(args.payload)
    problems = validate_payload(payload)
    if problems:
        for p in problems:
            log_err(f">>> {p}")
        return 2

    settings = load_settings(args.mode)
    request = RegistrationRequest.from_payload(payload)
    tracker = CertificateTracker(settings.download_dir, settings.retention_hours, settings.cleanup_enabled)

    if args.webhook:
        def run_once():
            return _post_to_webhook(args.webhook, payload, Path(settings.download_dir))
    else:
        def run_once():
            return run_registration(request, settings, tracker=tracker)

    summary = []
    for i in range(1, args.repeat + 1):
        log_info(f"===== Run {i}/{args.repeat} ({'webhook' if args.webhook else settings.mode}) =====")
        t0 = time.monotonic()
        result, attempts = run_with_retries(run_once, args.retries, args.retry_delay)
        row = {
            "run": i,
            "attempts": attempts,
            "duration_s": round(time.monotonic() - t0, 1),
            **result.to_dict(),
        }
        summary.append(row)
        if result.success:
            log_ok(f">>> Run {i}: {result.message}"
                   + (f" → {result.certificate.filename}" if result.certificate else ""))
        else:
            log_err(f">>> Run {i}: {result.error_code or 'ERROR'} {result.message}")

    ok = sum(1 for r in summary if r["success"])
    log_info(f"===== {ok}/{len(summary)} run(s) succeeded =====")

    if args.out:
        out = Path(args.out)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(summary, indent=2), encoding="utf-8")
        log_info(f">>> Summary written to: {out}")

    return 0 if ok == len(summary) else 1


def cmd_serve(args) -> int:
    settings = load_settings()
    uvicorn.run("warranty_bot.server:app", host=args.host, port=args.port or settings.port)
    return 0


def cmd_cleanup(args) -> int:
    settings = load_settings()
    tracker = CertificateTracker(settings.download_dir, settings.retention_hours, enabled=True)
    if args.stats:
        print(json.dumps(tracker.stats(), indent=2))
        return 0
    results = tracker.cleanup()
    return 1 if results["errors"] else 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="warranty-bot", description="Warranty registration automation")
    sub = ap.add_subparsers(dest="command", required=True)

    r = sub.add_parser("run", help="Run one payload through the form (smoke test)")
    r.add_argument("--payload", required=True, help="JSON file shaped like the webhook body")
    r.add_argument("--mode", choices=sorted(PROFILES), default=None)
    r.add_argument("--repeat", type=int, default=1)
    r.add_argument("--retries", type=int, default=0, help="extra attempts per run on retryable failures")
    r.add_argument("--retry-delay", type=float, default=1.0, help="seconds between attempts")
    r.add_argument("--webhook", default=None, help="POST to this URL instead of driving a local browser")
    r.add_argument("--out", default=None, help="write a JSON summary here")
    r.set_defaults(func=cmd_run)

    s = sub.add_parser("serve", help="Start the webhook server")
    s.add_argument("--host", default="0.0.0.0")
    s.add_argument("--port", type=int, default=None)
    s.set_defaults(func=cmd_serve)

    c = sub.add_parser("cleanup", help="Delete certificates past their retention window")
    c.add_argument("--stats", action="store_true", help="only print retention stats")
    c.set_defaults(func=cmd_cleanup)
    return ap


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except (FileNotFoundError, json.JSONDecodeError) as e:
        log_err(f">>> {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
