import time
from pathlib import Path

from .config import Settings, load_settings
from .errors import (
    AlreadyRegistered,
    AutomationError,
    InvalidSerial,
    RegistrationError,
)
from .fields import FormFields
from .locator import ElementLocator
from .log import emit_event, emit_ux, humanize_error, log_err, log_info, log_ok, log_warn, step
from .models import Certificate, RegistrationRequest, RegistrationResult
from .overlays import OverlayResolver
from .session import BrowserSession

STATES = (
    "NavigateAndSelectType",
    "EnterProducts",
    "EnterInstallMetadata",
    "AdvancePage",
    "EnterCustomerDetails",
    "EnterDealerDetails",
    "CompleteRegistration",
)

# Without customer details the form is only walked up to here.
PRODUCTS_ONLY_LAST = "AdvancePage"

SUCCESS_MESSAGE = "Warranty registration completed successfully"

_SERIAL_POLL_MS = 200


def _unique_path(dirpath: Path, filename: str) -> Path:
    """<dir>/<name>.pdf, or <name>_1.pdf, <name>_2.pdf … if taken."""
    candidate = dirpath / filename
    stem, suffix = candidate.stem, candidate.suffix
    n = 1
    while candidate.exists():
        candidate = dirpath / f"{stem}_{n}{suffix}"
        n += 1
    return candidate


class RegistrationFlow:
    """
    Drives the registration form through its fixed sequence of screens for one
    request. Any failure aborts the run; nothing is retried here.
    """

    def __init__(self, session, request: RegistrationRequest, settings: Settings):
        self.session = session
        self.request = request
        self.settings = settings
        self.locator = ElementLocator(session, settings.candidate_timeout_ms)
        self.fields = FormFields(session, self.locator)
        self.overlays = OverlayResolver(session, self.locator, settings.probe_timeout_ms, settings.overlay_rounds)

        self.completed: list[str] = []
        self.current: str | None = None
        self.error_screenshot: str | None = None
        self._started: float | None = None

    @property
    def page(self):
        return self.session.page

    # ---------- driver ----------

    def states(self) -> tuple[str, ...]:
        if self.request.customer is None:
            return STATES[: STATES.index(PRODUCTS_ONLY_LAST) + 1]
        return STATES

    def run(self) -> Certificate | None:
        self._started = time.monotonic()
        certificate = None
        for state in self.states():
            self.current = state
            try:
                self._check_budget(state)
                with step(_TITLES[state], state):
                    out = getattr(self, f"_state_{state}")()
            except Exception as e:
                self._capture_failure(state, e)
                raise
            if state == "CompleteRegistration":
                certificate = out
            self.completed.append(state)
            self.session.screenshot(f"after_{state}")
        self.current = None
        return certificate

    def _check_budget(self, state: str):
        budget = self.settings.run_budget_s
        if not budget or self._started is None:
            return
        elapsed = time.monotonic() - self._started
        if elapsed > budget:
            raise AutomationError(
                f"Run exceeded its {budget:g}s budget before “{state}”",
                failed_step=state,
                elapsed_s=round(elapsed, 1),
            )

    def _capture_failure(self, state: str, e: Exception):
        shot = getattr(e, "screenshot", None)
        if not shot:
            shot = self.session.screenshot(f"error_{state}", error=True)
        self.error_screenshot = shot

    # ---------- states ----------

    def _state_NavigateAndSelectType(self):
        self.session.goto(self.settings.form_url)
        self.overlays.resolve_pending(kinds=("cookie_banner",))
        # the serial box stays disabled until a registration type is picked
        self.fields.click("registration_type", wait_settle=True)

    def _state_EnterProducts(self):
        products = self.request.products
        if not products:
            raise AutomationError("No products to register")
        log_info(f">>> Adding {len(products)} serial number(s)")
        for idx, product in enumerate(products, start=1):
            emit_ux("EnterProducts", f"Serial {idx}/{len(products)}", "info", serial=product.serial, idx=idx)
            self.fields.type("serial_number", product.serial, press="Enter", settle=False)
            self._check_serial(product.serial)
            log_ok(f">>> Serial {product.serial} accepted")

    def _check_serial(self, serial: str):
        deadline = time.monotonic() + self.settings.serial_check_ms / 1000
        while True:
            if self.locator.probe("already_registered"):
                raise AlreadyRegistered(serial)
            if self.locator.probe("invalid_serial"):
                raise InvalidSerial(serial)
            remaining_ms = (deadline - time.monotonic()) * 1000
            if remaining_ms <= 0:
                return
            self.session.wait(int(min(_SERIAL_POLL_MS, remaining_ms)) or 1)

    def _state_EnterInstallMetadata(self):
        self.fields.click("install_date", double=True)
        self.fields.type("install_date", self.request.installation_date, settle=False)
        self.fields.click("residential")

    def _state_AdvancePage(self):
        self.fields.click("next", wait_settle=True)
        self.fields.click("continue", wait_settle=True)

    def _state_EnterCustomerDetails(self):
        c = self.request.customer
        self.fields.type("first_name", c.first_name, verify=True, settle=False)
        self.fields.type("last_name", c.last_name, verify=True, settle=False)
        self.fields.type("phone", c.phone, settle=False)
        self.fields.type("email", c.email, verify=True, settle=False)
        self.fields.type("address1", c.address1, verify=True, settle=False)
        self.fields.type("zip_postal", c.zip_postal, settle=True)

        # the site fills city/state from the postal code; give it a moment
        self.session.wait(self.settings.autofill_wait_ms)
        if c.city:
            self.fields.fill_if_blank("city", c.city)
        if c.state_province:
            self.fields.fill_if_blank("state_province", c.state_province)

        self.fields.click("consent")
        self.fields.click("next", wait_settle=True)

    def _state_EnterDealerDetails(self):
        d = self.request.dealer or self.settings.default_dealer
        if d is None:
            raise AutomationError("No dealer details in the request and no default dealer configured")
        d = d.normalized()
        self.fields.type("dealer_zip", d.zip, press="Enter", settle=True)
        # the name box is an autocomplete; Enter would pick the first suggestion
        self.fields.type("dealer_name", d.name, settle=True)
        self.session.wait(self.settings.autofill_wait_ms)
        self.fields.blur()
        self.fields.type("dealer_address", d.address, settle=False)
        self.fields.type("dealer_city", d.city, settle=False)
        self.fields.type("dealer_state", d.state, settle=False)
        self.fields.type("dealer_phone", d.phone, settle=False)

    def _state_CompleteRegistration(self) -> Certificate:
        self.fields.click("register", wait_settle=True)
        self.overlays.resolve_pending(kinds=("address_confirmation",))

        self.fields.click("affirm", wait_settle=True)
        self.overlays.resolve_pending(kinds=("address_confirmation",))

        self.fields.click("confirm_yes", wait_settle=True)
        drained = self.overlays.drain(kinds=("cookie_banner", "installing_contractor", "acknowledgement"))
        if drained:
            log_info(f">>> Cleared {drained} dialog(s) before download")
        self.session.settle()
        self.session.pause("before certificate download")

        return self._download_certificate()

    def _download_certificate(self) -> Certificate:
        out_dir = Path(self.settings.download_dir)
        out_dir.mkdir(parents=True, exist_ok=True)

        with self.page.expect_download() as dl_info:
            self.fields.click("download_certificate")
        download = dl_info.value

        name = download.suggested_filename or "warranty_certificate.pdf"
        target = _unique_path(out_dir, name)
        download.save_as(str(target))
        log_ok(f">>> Certificate saved: {target}")
        return Certificate(filename=target.name, file_path=str(target))


_TITLES = {
    "NavigateAndSelectType": "Open registration form",
    "EnterProducts": "Enter serial numbers",
    "EnterInstallMetadata": "Enter installation details",
    "AdvancePage": "Advance to customer page",
    "EnterCustomerDetails": "Enter customer details",
    "EnterDealerDetails": "Enter dealer details",
    "CompleteRegistration": "Complete registration",
}


# =========================
# --- Run boundary ---
# =========================

def _failure_result(err: RegistrationError, flow: RegistrationFlow | None, request: RegistrationRequest) -> RegistrationResult:
    details = dict(err.details)
    details["product_count"] = len(request.products)
    if flow is not None:
        details["completed_steps"] = list(flow.completed)
        if flow.current:
            details.setdefault("failed_step", flow.current)
        if flow.error_screenshot:
            details.setdefault("screenshot", flow.error_screenshot)
    return RegistrationResult(
        success=False,
        message=err.message,
        error_kind=err.kind,
        error_code=err.code,
        details=details,
    )


def run_registration(request: RegistrationRequest, settings: Settings | None = None, *,
                     session_factory=None, tracker=None) -> RegistrationResult:
    """
    One complete run: open a browser, drive the form, close the browser.
    Always returns a result; errors are converted, never raised.
    """
    settings = settings or load_settings()
    factory = session_factory or BrowserSession.open
    emit_event("start", customer=request.customer_label, serials=request.serials,
               productCount=len(request.products))

    session = None
    flow = None
    try:
        session = factory(settings)
        flow = RegistrationFlow(session, request, settings)
        certificate = flow.run()
    except RegistrationError as e:
        log_err(f">>> {e.kind}: {e.message}")
        result = _failure_result(e, flow, request)
    except Exception as e:
        note = humanize_error(e)
        log_err(f">>> Automation failed: {note}")
        result = _failure_result(AutomationError(note, cause=type(e).__name__), flow, request)
    else:
        if certificate is not None and tracker is not None:
            try:
                tracker.record(certificate.filename, request)
            except OSError as e:
                log_warn(f">>> Could not record certificate metadata: {e}")
        result = RegistrationResult(
            success=True,
            message=SUCCESS_MESSAGE,
            certificate=certificate,
            details={
                "product_count": len(request.products),
                "installation_date": request.installation_date,
                "completed_steps": list(flow.completed),
            },
        )
    finally:
        if session is not None:
            session.close()

    emit_event("finish", success=result.success, code=result.error_code,
               certificate=result.certificate.filename if result.certificate else None)
    return result
