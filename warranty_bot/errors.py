LOOKUP_URL = "https://www.goodmanmfg.com/warranty-lookup"


class RegistrationError(Exception):
    """Base for every failure a registration run reports back to its caller."""

    kind = "AutomationError"
    code = "ERROR"
    retryable = True

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = {k: v for k, v in details.items() if v not in (None, "")}

    def to_dict(self) -> dict:
        return {"kind": self.kind, "code": self.code, "message": self.message, **self.details}


class AlreadyRegistered(RegistrationError):
    """The remote form reports that this serial already has a warranty on file."""

    kind = "AlreadyRegistered"
    code = "ALREADY_REGISTERED"
    retryable = False

    def __init__(self, serial: str):
        super().__init__(
            "This unit has already been registered",
            serial=serial,
            lookup_url=LOOKUP_URL,
        )
        self.serial = serial


class InvalidSerial(RegistrationError):
    """The remote form rejected the serial number's format."""

    kind = "InvalidSerial"
    code = "INVALID_SERIAL"
    retryable = False

    def __init__(self, serial: str):
        super().__init__(
            "The serial number is invalid",
            serial=serial,
            tips=(
                "Your serial # is likely a numeric digit with no letters. "
                "If not, your serial # will be 7 digits and start with a letter."
            ),
        )
        self.serial = serial


class NotFound(RegistrationError):
    """Every selector strategy for a logical field or button came up empty."""

    kind = "NotFound"

    def __init__(self, name: str, strategies_tried: list[str] | tuple[str, ...] = (), screenshot: str | None = None):
        tried = list(strategies_tried)
        super().__init__(
            f"Could not find “{name}” after trying {len(tried)} selector strategies",
            target=name,
            strategies_tried=tried,
            screenshot=screenshot,
        )
        self.name = name
        self.strategies_tried = tried
        self.screenshot = screenshot


class AutomationError(RegistrationError):
    """Anything else that went wrong while driving the form."""


class ResourceTeardownError(RegistrationError):
    """Closing part of the browser session failed. Logged, never raised to callers."""

    kind = "ResourceTeardownError"

    def __init__(self, resource: str, cause: Exception):
        super().__init__(f"Failed to close {resource}: {cause}", resource=resource)
        self.resource = resource
        self.cause = cause
