import pytest

from warranty_bot.config import Settings
from warranty_bot.models import RegistrationRequest
from warranty_bot.session import BrowserSession

from fakes import FakeSite


@pytest.fixture
def settings(tmp_path):
    return Settings(
        mode="test",
        out_dir=tmp_path / "out",
        download_dir=tmp_path / "downloads",
        probe_timeout_ms=200,
        candidate_timeout_ms=10,
        serial_check_ms=100,
        autofill_wait_ms=0,
        overlay_rounds=3,
    )


@pytest.fixture
def site():
    return FakeSite()


@pytest.fixture
def session(site, settings):
    return BrowserSession(site.page, settings)


@pytest.fixture
def full_payload():
    return {
        "products": [
            {"serial": "e000187", "model": "dh9vsa361c"},
            {"serial": "2101234567", "model": "GSXN403610"},
        ],
        "installationDate": "06/03/2025",
        "customer": {
            "firstName": "Jane",
            "lastName": "McDonald",
            "phone": "555-123-4567",
            "email": "jane.mcd@example.com",
            "address1": "12 Elm Street",
            "zipPostal": "77001",
            "city": "Houston",
            "stateProvince": "tx",
        },
        "dealer": {
            "dealerZip": "77002",
            "dealerName": "Cool Air Heating",
            "dealerAddress": "400 Main St",
            "dealerCity": "Houston",
            "dealerState": "Tx",
            "dealerPhone": "555-987-6543",
        },
    }


@pytest.fixture
def full_request(full_payload):
    return RegistrationRequest.from_payload(full_payload)
