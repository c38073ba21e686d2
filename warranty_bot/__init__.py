__version__ = "0.1.0"

from .flow import RegistrationFlow, run_registration
from .models import RegistrationRequest, RegistrationResult

__all__ = ["RegistrationFlow", "run_registration", "RegistrationRequest", "RegistrationResult"]
