"""Error taxonomy shared by the control loop and the OCPP central system."""

from ocpp.exceptions import InternalError, NotSupportedError


class GridPilotError(Exception):
    """Base class for errors raised by gridpilot itself."""


class DeviceCommunicationError(GridPilotError):
    """A register-protocol device could not be reached or answered with an error."""

    def __init__(self, host: str, message: str):
        super().__init__(f"{host}: {message}")
        self.host = host


class MeterUnavailableError(GridPilotError):
    """The grid meter HTTP endpoint failed or returned a non-success status."""


class ConfigurationError(GridPilotError):
    """Startup configuration is missing or invalid."""


class ProtocolDecodeError(InternalError):
    """An OCPP frame or payload could not be decoded.

    Reported to the charge point as a CALL_ERROR with code ``InternalError``.
    """

    default_description = "Unable to decode OCPP message"


class UnsupportedActionError(NotSupportedError):
    """The CALL action is not in the dispatch table.

    Reported to the charge point as a CALL_ERROR with code ``NotSupported``.
    """

    default_description = "Requested action is not supported"
