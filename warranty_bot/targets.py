"""
Selector strategy table for the registration form.

Every logical field/button the flow touches maps to an ordered list of
strategies: accessible role+name first, then structural CSS, then positional
fallbacks. The site's generated ids (#mat-input-NN, #mat-dialog-N) change
between deploys, so they only ever show up late in a list.
"""
import re
from dataclasses import dataclass


@dataclass(frozen=True)
class Strategy:
    kind: str                          # role | css | text | label | placeholder
    value: str | re.Pattern
    name: str | re.Pattern | None = None
    exact: bool = False
    nth: int = 0
    within: str | None = None          # CSS scope the lookup runs inside
    has_text: str | re.Pattern | None = None

    def describe(self) -> str:
        def show(v):
            return f"/{v.pattern}/" if isinstance(v, re.Pattern) else repr(v)

        if self.kind == "role":
            s = f"role={self.value}"
            if self.name is not None:
                s += f" name={show(self.name)}"
        else:
            s = f"{self.kind}={show(self.value)}"
        if self.exact:
            s += " exact"
        if self.has_text is not None:
            s += f" has_text={show(self.has_text)}"
        if self.within:
            s = f"{self.within} >> {s}"
        if self.nth:
            s += f" nth={self.nth}"
        return s

    def resolve(self, page):
        """Build the Playwright locator for this strategy. Nothing is awaited here."""
        root = page.locator(self.within) if self.within else page
        if self.kind == "role":
            kw = {}
            if self.name is not None:
                kw["name"] = self.name
                if self.exact:
                    kw["exact"] = True
            loc = root.get_by_role(self.value, **kw)
        elif self.kind == "css":
            loc = root.locator(self.value)
        elif self.kind == "text":
            loc = root.get_by_text(self.value, exact=self.exact)
        elif self.kind == "label":
            loc = root.get_by_label(self.value, exact=self.exact)
        elif self.kind == "placeholder":
            loc = root.get_by_placeholder(self.value, exact=self.exact)
        else:
            raise ValueError(f"Unknown strategy kind: {self.kind}")

        if self.has_text is not None:
            loc = loc.filter(has_text=self.has_text)
        return loc.nth(self.nth) if self.nth else loc.first


@dataclass(frozen=True)
class Target:
    name: str
    strategies: tuple[Strategy, ...]


def role(r, name=None, **kw):
    return Strategy("role", r, name=name, **kw)


def css(sel, **kw):
    return Strategy("css", sel, **kw)


def text(t, **kw):
    return Strategy("text", t, **kw)


def _textbox(label, *fallbacks):
    return (role("textbox", label), *fallbacks)


def _t(name, *strategies):
    return name, Target(name, tuple(strategies))


_DIALOG = "mat-dialog-container"

TARGETS: dict[str, Target] = dict([
    # --- step 1: registration type ---
    _t("registration_type",
       role("radio", "I am registering on behalf of"),
       css("#mat-radio-10", has_text="I am registering on behalf of"),
       text("I am registering on behalf of"),
       css("mat-radio-button", nth=1)),

    # --- step 2: products ---
    _t("serial_number", *_textbox(
        "Serial number",
        css("mat-form-field:has(input[placeholder*='Serial']) input"),
        css("form input[type='text']"))),
    _t("already_registered",
       text("Error This unit has already been registered"),
       text(re.compile(r"already been registered", re.I))),
    _t("invalid_serial",
       text(re.compile(r"The Serial # is invalid")),
       text(re.compile(r"serial\s*#?\s*is invalid", re.I))),

    # --- step 3: install metadata ---
    _t("install_date", *_textbox(
        "Install Date/Date of Closing",
        css("input[placeholder*='Install Date']"),
        css("mat-form-field:has(mat-datepicker-toggle) input"))),
    _t("residential",
       role("radio", re.compile(r"Residential\s*\(Owner Occupied")),
       text(re.compile(r"Residential\s*\(Owner Occupied")),
       css("mat-radio-button", has_text="Residential")),

    # --- step 4: advance ---
    _t("next",
       role("button", "Next", exact=True),
       css("button", has_text=re.compile(r"^\s*Next\s*$")),
       css("mat-card form button[type='submit']")),
    _t("continue",
       role("button", "Continue", exact=True),
       css("button.btn-black", has_text="Continue"),
       css("button", has_text="Continue")),

    # --- step 5: customer ---
    _t("first_name", *_textbox("First Name", css("#mat-input-26"))),
    _t("last_name", *_textbox("Last Name", css("#mat-input-27"))),
    _t("phone", *_textbox("Phone", css("#mat-input-15"))),
    _t("email", *_textbox("Email", css("input[type='email']"), css("#mat-input-16"))),
    _t("address1", *_textbox("Address1", css("#mat-input-17"))),
    _t("zip_postal", *_textbox("Zip/Postal Code", css("#mat-input-19"))),
    _t("city", *_textbox("City", css("#mat-input-20"))),
    _t("state_province", *_textbox("State/Province", css("#mat-input-21"))),
    _t("consent",
       role("checkbox", re.compile(r"By checking this box, you")),
       css("#mat-checkbox-4", has_text="By checking this box, you"),
       css("mat-checkbox", has_text="By checking this box")),

    # --- step 6: dealer ---
    _t("dealer_zip", *_textbox(
        "Dealer/Builder Zip code*",
        css("mat-form-field:has(input[placeholder*='Zip']) input"))),
    _t("dealer_name",
       role("combobox", "Dealer/Builder * (enter name"),
       css("mat-form-field:has(input[placeholder*='Dealer']) input")),
    _t("dealer_address", *_textbox(
        "Address",
        css("mat-form-field:has(input[placeholder*='Address']) input"))),
    _t("dealer_city", *_textbox(
        "City",
        css("mat-form-field:has(input[placeholder*='City']) input"))),
    _t("dealer_state", *_textbox(
        "State",
        css("mat-form-field:has(input[placeholder*='State']) input"))),
    _t("dealer_phone", *_textbox(
        "Dealer/Builder Phone*",
        css("mat-form-field:has(input[placeholder*='Phone']) input"))),

    # --- step 7: completion ---
    _t("register",
       role("button", "Register", exact=True),
       css("button.btn-black", has_text="Register"),
       css("button.mat-primary", has_text="Register")),
    _t("affirm",
       role("button", "Affirm", exact=True),
       css("mat-dialog-actions button.btn-black", has_text="Affirm"),
       css("button", has_text="Affirm", within=_DIALOG)),
    _t("address_confirm_text",
       text("Please confirm the name/address information is correct"),
       css("reg-dailog-content-confirmation")),
    _t("address_confirm_yes",
       role("button", "Yes", exact=True, within="reg-dailog-content-confirmation"),
       css("reg-dailog-content-confirmation mat-dialog-actions button.btn-black", has_text="Yes"),
       css("reg-dailog-content-confirmation mat-dialog-actions button:first-child")),
    _t("confirm_yes",
       role("button", "Yes", exact=True),
       css("mat-dialog-actions button.btn-black", has_text="Yes"),
       css("mat-dialog-actions button", has_text="Yes")),
    _t("contractor_button",
       role("button", "Installing Contractor"),
       css("reg-dailog-fit-survey-launch-confirmation mat-dialog-actions button.btn-danger"),
       css("mat-dialog-actions button", has_text="Installing Contractor")),
    _t("ok_button",
       role("button", "OK", exact=True),
       css("button.swal-button.swal-button--confirm"),
       css(".swal-overlay--show-modal .swal-footer button")),
    _t("download_certificate",
       role("button", "Download Certificate"),
       css("div.action-buttons button:first-child"),
       css("button", has_text="Download")),

    # --- ambient ---
    _t("cookie_close",
       role("button", re.compile(r"^(Close|Reject All|Accept All Cookies)$", re.I), within="#onetrust-banner-sdk"),
       css("#onetrust-close-btn-container > button"),
       css("#onetrust-reject-all-handler"),
       css("#onetrust-accept-btn-handler")),
])


def strategies_for(name: str) -> tuple[Strategy, ...]:
    try:
        return TARGETS[name].strategies
    except KeyError:
        raise KeyError(f"No selector strategies registered for “{name}”") from None
