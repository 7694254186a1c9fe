"""gridpilot - EV charger load balancing and OCPP 1.6J central system."""

__version__ = "0.1.0"

from .ems import EnergyManager, StatePublisher
from .handlers import OcppMessageRouter, OcppSessionManager
from .server import OCPPServer

__all__ = [
    "EnergyManager",
    "OCPPServer",
    "OcppMessageRouter",
    "OcppSessionManager",
    "StatePublisher",
    "__version__",
]
