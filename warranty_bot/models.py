from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone


def _up(v) -> str:
    return str(v or "").strip().upper()


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Product:
    serial: str
    model: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> "Product":
        return cls(serial=_up(d.get("serial")), model=_up(d.get("model")))


@dataclass(frozen=True)
class Customer:
    first_name: str
    last_name: str
    phone: str
    email: str
    address1: str
    zip_postal: str
    city: str = ""
    state_province: str = ""

    def normalized(self) -> "Customer":
        return replace(self, **{f.name: _up(getattr(self, f.name)) for f in fields(self)})

    @property
    def label(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_dict(cls, d: dict) -> "Customer":
        return cls(
            first_name=d.get("firstName", ""),
            last_name=d.get("lastName", ""),
            phone=d.get("phone", ""),
            email=d.get("email", ""),
            address1=d.get("address1", ""),
            zip_postal=d.get("zipPostal", ""),
            city=d.get("city", ""),
            state_province=d.get("stateProvince", ""),
        ).normalized()


@dataclass(frozen=True)
class Dealer:
    zip: str
    name: str
    address: str = ""
    city: str = ""
    state: str = ""
    phone: str = ""

    def normalized(self) -> "Dealer":
        return replace(self, **{f.name: _up(getattr(self, f.name)) for f in fields(self)})

    @classmethod
    def from_dict(cls, d: dict) -> "Dealer":
        return cls(
            zip=d.get("dealerZip", ""),
            name=d.get("dealerName", ""),
            address=d.get("dealerAddress", ""),
            city=d.get("dealerCity", ""),
            state=d.get("dealerState", ""),
            phone=d.get("dealerPhone", ""),
        ).normalized()


@dataclass(frozen=True)
class RegistrationRequest:
    """
    One webhook call's worth of work. Built from the camelCase JSON body;
    every customer/dealer string is upper-cased here, before the form sees it.
    """
    products: tuple[Product, ...]
    installation_date: str
    customer: Customer | None = None
    dealer: Dealer | None = None

    def __post_init__(self):
        object.__setattr__(self, "products", tuple(self.products))
        if self.customer is not None:
            object.__setattr__(self, "customer", self.customer.normalized())
        if self.dealer is not None:
            object.__setattr__(self, "dealer", self.dealer.normalized())

    @property
    def customer_label(self) -> str:
        return self.customer.label if self.customer else "Products Only"

    @property
    def serials(self) -> list[str]:
        return [p.serial for p in self.products]

    @classmethod
    def from_payload(cls, payload: dict) -> "RegistrationRequest":
        raw_products = payload.get("products") or []
        products = [
            Product.from_dict(p)
            for p in raw_products
            if isinstance(p, dict) and (_up(p.get("serial")) or _up(p.get("model")))
        ]
        customer = payload.get("customer")
        dealer = payload.get("dealer")
        return cls(
            products=tuple(products),
            installation_date=str(payload.get("installationDate") or "").strip(),
            customer=Customer.from_dict(customer) if isinstance(customer, dict) and customer else None,
            dealer=Dealer.from_dict(dealer) if isinstance(dealer, dict) and dealer else None,
        )


_REQUIRED_CUSTOMER = (
    ("firstName", "First name"),
    ("lastName", "Last name"),
    ("phone", "Phone"),
    ("email", "Email"),
    ("address1", "Address"),
    ("zipPostal", "Zip/Postal code"),
)


def validate_payload(payload) -> list[str]:
    """Human-readable problems with an inbound body. Empty list means OK."""
    if not isinstance(payload, dict):
        return ["Request body must be a JSON object"]

    errors = []
    products = payload.get("products")
    if not isinstance(products, list):
        errors.append("Products must be an array")
    else:
        kept = [
            p for p in products
            if isinstance(p, dict) and (str(p.get("serial") or "").strip() or str(p.get("model") or "").strip())
        ]
        for i, p in enumerate(kept, start=1):
            if not str(p.get("serial") or "").strip():
                errors.append(f"Product {i}: Serial number is required")
            if not str(p.get("model") or "").strip():
                errors.append(f"Product {i}: Model number is required")
        if not kept:
            errors.append("At least one product with serial and model number is required")

    if not str(payload.get("installationDate") or "").strip():
        errors.append("Installation date is required")

    customer = payload.get("customer")
    if customer:
        if not isinstance(customer, dict):
            errors.append("Customer must be an object")
        else:
            for key, label in _REQUIRED_CUSTOMER:
                if not str(customer.get(key) or "").strip():
                    errors.append(f"Customer {label} is required")

    return errors


@dataclass(frozen=True)
class Certificate:
    filename: str
    file_path: str


@dataclass
class RegistrationResult:
    success: bool
    message: str
    timestamp: str = field(default_factory=utc_now_iso)
    certificate: Certificate | None = None
    error_kind: str | None = None
    error_code: str | None = None
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        out = {
            "success": self.success,
            "message": self.message,
            "timestamp": self.timestamp,
        }
        if self.certificate:
            out["certificate"] = {"filename": self.certificate.filename, "filePath": self.certificate.file_path}
        if self.error_kind:
            out["errorKind"] = self.error_kind
        if self.error_code:
            out["code"] = self.error_code
        for k, v in self.details.items():
            out[_camel(k)] = v
        return out


def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(w.title() for w in rest)
