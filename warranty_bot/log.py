import json
import os
import re
from contextlib import contextmanager
from datetime import datetime

# =========================
# --- Pretty logging + UI events ---
# =========================

EVT_PREFIX = "[[EVT]] "
UX_PREFIX = "[[UX]] "

_LEVELS = {"error": 0, "warn": 1, "info": 2, "debug": 3}


def _truthy(s: str | None) -> bool:
    return str(s or "").strip().lower() in ("1", "true", "yes", "on")


def _level() -> int:
    raw = (os.getenv("WR_LOG_LEVEL") or "info").strip().lower()
    return _LEVELS.get(raw, _LEVELS["info"])


def _now_hhmmss():
    return datetime.now().strftime("%H:%M:%S")


def _emit(level: str, msg):
    if _LEVELS[level] <= _level():
        print(f"[{_now_hhmmss()}] {msg}", flush=True)


def log_info(msg):  _emit("info", msg)
def log_ok(msg):    _emit("info", msg)
def log_warn(msg):  _emit("warn", msg)
def log_err(msg):   _emit("error", msg)
def log_debug(msg): _emit("debug", msg)


def emit_event(event_type: str, **kwargs):
    print(f'{EVT_PREFIX}{json.dumps({"type": event_type, **kwargs}, ensure_ascii=False)}', flush=True)


def emit_ux(stage: str, message: str, level: str = "info", *, serial: str = "", idx: int | None = None):
    """
    level: start | info | success | error
    """
    payload = {"stage": stage, "message": message, "level": level}
    if serial: payload["serial"] = serial
    if idx is not None: payload["idx"] = idx
    print(f"{UX_PREFIX}{json.dumps(payload, ensure_ascii=False)}", flush=True)


@contextmanager
def step(title: str, stage: str | None = None, serial: str = "", idx: int | None = None):
    log_info(f"{title}…")
    if stage:
        emit_ux(stage, title, "start", serial=serial, idx=idx)
    try:
        yield
        log_ok(f"{title} — done")
        if stage:
            emit_ux(stage, title, "success", serial=serial, idx=idx)
    except Exception as e:
        # Attach the step title so we can humanize later
        if getattr(e, "_wr_step", None) is None:
            e._wr_step = title  # type: ignore[attr-defined]
        log_err(f"{title} — failed")
        if stage:
            emit_ux(stage, humanize_error(e), "error", serial=serial, idx=idx)
        raise


def tidy_note(s) -> str:
    """Collapse whitespace runs (newlines included) into single spaces."""
    return " ".join(str(s).split()) if s is not None else ""


# what a timed-out locator was waiting on, as Playwright prints it
_ROLE_TARGET = re.compile(r'get_by_role\("([^"]+)",\s*name="?(.+?)"?\)')
_CSS_TARGET = re.compile(r'locator\("([^"]+)"\)')


_PAGE_NAMES = {
    "reg-layout": "Warranty registration form",
    "newregistration": "Warranty registration form",
    "warranty-lookup": "Warranty lookup page",
}


def humanize_error(e: Exception) -> str:
    """
    Convert low-level exceptions into concise, friendly notes for results and logs.
    """
    # Typed registration errors already carry a readable message
    if getattr(e, "kind", None) and getattr(e, "code", None):
        return tidy_note(str(e))

    detail = str(e)
    step_name = getattr(e, "_wr_step", None)
    where = f" during “{step_name}”" if step_name else ""

    # 0) Navigation timeout ("Page.goto: Timeout ... navigating to ... waiting until ...")
    m = re.search(
        r'Page\.goto:\s*Timeout\s+(\d+)ms.*?navigating to "([^"]+)",\s*waiting until "([^"]+)"',
        detail,
        re.S,
    )
    if m:
        secs = int(m.group(1)) // 1000
        url = m.group(2)
        phase = m.group(3)
        page_name = url
        for needle, label in _PAGE_NAMES.items():
            if needle in url:
                page_name = label
                break
        tip = "The warranty site may be slow. Try again in a minute."
        return f"Timed out loading {page_name} (waited for “{phase}”) after {secs}s{where}. Tip: {tip}"

    # A) Playwright locator timeout
    if "Timeout" in detail and ("get_by_role" in detail or "locator(" in detail):
        secs_m = re.search(r"Timeout\s+(\d+)ms", detail)
        secs = int(secs_m.group(1)) // 1000 if secs_m else 30
        role_m = _ROLE_TARGET.search(detail)
        css_m = _CSS_TARGET.search(detail)
        if role_m:
            name = role_m.group(2).replace('""', '"')
            nice = f"Couldn’t find the {role_m.group(1)} “{name}” within {secs}s"
        elif css_m:
            nice = f"Couldn’t find “{css_m.group(1)}” within {secs}s"
        else:
            nice = f"Timed out waiting for the page within {secs}s"
        tip = "The form may have changed screens or be rendering slowly. Retry the run."
        return f"{nice}{where}. Tip: {tip}"

    # B) Load-state waits (network idle never reached)
    if "wait_for_load_state" in detail and "Timeout" in detail:
        return f"The page never went quiet{where}. Tip: The warranty site may be busy; retry the run."

    # C) Network-ish
    if any(x in detail for x in ("net::ERR_", "SSL", "Navigation failed")):
        return f"Network issue{where}. Tip: Check internet/proxy and try again."

    # D) Browser torn down under us
    if "Target closed" in detail or "has been closed" in detail:
        return f"Browser closed before the run finished{where}."

    # E) Generic one-liner fallback
    base = step_name + ": " if step_name else ""
    lines = detail.strip().splitlines()
    brief = lines[0].strip() if lines else type(e).__name__
    return f"{base}{brief}"
