import os
from dataclasses import dataclass, replace
from pathlib import Path

from dotenv import load_dotenv

from .log import _truthy, log_debug
from .models import Dealer

# --- load .env early ---
# try a few likely locations; values already in the environment win
for _p in [Path.cwd() / ".env", Path(__file__).parent / ".env", Path(__file__).parent.parent / ".env"]:
    if _p.exists():
        load_dotenv(_p, override=False)
        log_debug(f">>> .env loaded from {_p}")
        break

DEFAULT_FORM_URL = "https://warranty.goodmanmfg.com/newregistration/#/reg-layout"

# dealer used when neither the request nor WR_DEALER_* names one
DEFAULT_DEALER = Dealer(
    zip="K2M 2G9",
    name="COMFORT HUB",
    address="430 LAPLAND PRIVATE",
    city="KANATA",
    state="ON",
    phone="6135811700",
)

# Browser posture per environment. timeout 0 means "no timeout" (debug only).
PROFILES = {
    "development": dict(headless=False, slow_mo=1000, timeout_ms=30000, screenshots=True, video=True, devtools=True),
    "debug":       dict(headless=False, slow_mo=0,    timeout_ms=0,     screenshots=True, video=True, devtools=True),
    "production":  dict(headless=True,  slow_mo=0,    timeout_ms=10000, screenshots=False, video=False, devtools=False),
    "vm":          dict(headless=True,  slow_mo=0,    timeout_ms=15000, screenshots=False, video=False, devtools=False),
    "test":        dict(headless=False, slow_mo=500,  timeout_ms=15000, screenshots=True, video=True, devtools=False),
}

LAUNCH_ARGS = (
    "--disable-dev-shm-usage",
    "--disable-setuid-sandbox",
    "--no-sandbox",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
)


@dataclass(frozen=True)
class Settings:
    mode: str = "production"

    # browser posture
    headless: bool = True
    slow_mo: int = 0
    timeout_ms: int = 10000
    screenshots: bool = False
    video: bool = False
    devtools: bool = False
    tracing: bool = False
    viewport: tuple[int, int] = (1920, 1080)
    launch_args: tuple[str, ...] = LAUNCH_ARGS

    # target + artifacts
    form_url: str = DEFAULT_FORM_URL
    out_dir: Path = Path("output")
    download_dir: Path = Path.home() / "Downloads"

    # flow timing
    probe_timeout_ms: int = 2000
    candidate_timeout_ms: int = 5000
    serial_check_ms: int = 2000
    autofill_wait_ms: int = 2000
    overlay_rounds: int = 3
    run_budget_s: float = 0

    # dealer used when a request carries a customer but no dealer
    default_dealer: Dealer | None = DEFAULT_DEALER

    # webhook + retention
    webhook_endpoint: str = "/webhook/warranty-registration"
    port: int = 3000
    serve_downloads: bool = False
    cleanup_enabled: bool = True
    retention_hours: float = 48
    cleanup_interval_hours: float = 6
    cleanup_on_startup: bool = True

    @property
    def screenshots_dir(self) -> Path:
        return self.out_dir / "screenshots"

    @property
    def videos_dir(self) -> Path:
        return self.out_dir / "videos"

    @property
    def traces_dir(self) -> Path:
        return self.out_dir / "traces"

    def with_overrides(self, **changes) -> "Settings":
        return replace(self, **changes)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return _truthy(raw)


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    return float(raw) if raw else default


def _dealer_from_env() -> Dealer:
    """Built-in dealer, field by field overridable through WR_DEALER_*."""
    values = {
        f: os.getenv(f"WR_DEALER_{f.upper()}") or getattr(DEFAULT_DEALER, f)
        for f in ("zip", "name", "address", "city", "state", "phone")
    }
    return Dealer(**values).normalized()


def load_settings(mode: str | None = None) -> Settings:
    """
    Build Settings from the WR_MODE profile, then apply WR_* overrides.
    Unknown modes fall back to production.
    """
    mode = (mode or os.getenv("WR_MODE") or "production").strip().lower()
    profile = PROFILES.get(mode, PROFILES["production"])

    out_dir = Path(os.getenv("WR_OUT_DIR", "output"))
    default_downloads = Path("/app/downloads") if mode == "vm" else Path.home() / "Downloads"
    download_dir = Path(os.getenv("WR_DOWNLOAD_DIR") or default_downloads)

    return Settings(
        mode=mode,
        headless=_env_bool("WR_HEADLESS", profile["headless"]),
        slow_mo=_env_int("WR_SLOW_MO", profile["slow_mo"]),
        timeout_ms=_env_int("WR_TIMEOUT_MS", profile["timeout_ms"]),
        screenshots=_env_bool("WR_SCREENSHOTS", profile["screenshots"]),
        video=_env_bool("WR_VIDEO", profile["video"]),
        devtools=_env_bool("WR_DEVTOOLS", profile["devtools"]) or bool(os.getenv("PWDEBUG")),
        tracing=_env_bool("WR_TRACING", False),
        form_url=os.getenv("WR_FORM_URL") or DEFAULT_FORM_URL,
        out_dir=out_dir,
        download_dir=download_dir,
        probe_timeout_ms=_env_int("WR_PROBE_TIMEOUT_MS", 2000),
        candidate_timeout_ms=_env_int("WR_CANDIDATE_TIMEOUT_MS", 5000),
        serial_check_ms=_env_int("WR_SERIAL_CHECK_MS", 2000),
        autofill_wait_ms=_env_int("WR_AUTOFILL_WAIT_MS", 2000),
        overlay_rounds=_env_int("WR_OVERLAY_ROUNDS", 3),
        run_budget_s=_env_float("WR_RUN_BUDGET_S", 0),
        default_dealer=_dealer_from_env(),
        webhook_endpoint=os.getenv("WR_WEBHOOK_ENDPOINT") or "/webhook/warranty-registration",
        port=_env_int("WR_PORT", 3000),
        serve_downloads=_env_bool("WR_SERVE_DOWNLOADS", mode == "vm"),
        cleanup_enabled=_env_bool("WR_CLEANUP_ENABLED", True),
        retention_hours=_env_float("WR_RETENTION_HOURS", 48),
        cleanup_interval_hours=_env_float("WR_CLEANUP_INTERVAL_HOURS", 6),
        cleanup_on_startup=_env_bool("WR_CLEANUP_ON_STARTUP", True),
    )
