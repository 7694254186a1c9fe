"""OCPP-J framing and dispatch of charge point messages."""

import json
import logging
from typing import Any

from ocpp.exceptions import InternalError, OCPPError
from ocpp.messages import Call, CallError, CallResult, MessageType, validate_payload
from ocpp.v16 import call

from ..exceptions import ProtocolDecodeError, UnsupportedActionError
from ..logging_utils import log_error, log_ocpp_message
from ..metrics import GridPilotMetrics
from .messages import from_payload, to_payload
from .session_manager import OcppSessionManager

logger = logging.getLogger(__name__)

UNKNOWN_ID = "unknown"

# action -> (request dataclass, session manager handler)
ACTIONS: dict[str, tuple[type, str]] = {
    "BootNotification": (call.BootNotification, "handle_boot_notification"),
    "Heartbeat": (call.Heartbeat, "handle_heartbeat"),
    "Authorize": (call.Authorize, "handle_authorize"),
    "StartTransaction": (call.StartTransaction, "handle_start_transaction"),
    "StopTransaction": (call.StopTransaction, "handle_stop_transaction"),
    "StatusNotification": (call.StatusNotification, "handle_status_notification"),
    "MeterValues": (call.MeterValues, "handle_meter_values"),
    "DataTransfer": (call.DataTransfer, "handle_data_transfer"),
}


def recover_unique_id(raw: str) -> str:
    """Best-effort unique id of a message that could not be processed."""
    try:
        message = json.loads(raw)
    except ValueError:
        return UNKNOWN_ID
    if isinstance(message, list) and len(message) >= 2 and isinstance(message[1], (str, int)):
        return str(message[1])
    return UNKNOWN_ID


def parse_frame(raw: str) -> list:
    """Parse a raw frame into its JSON array, validating the envelope."""
    try:
        message = json.loads(raw)
    except ValueError as e:
        raise ProtocolDecodeError(f"Invalid JSON: {e}") from e
    if not isinstance(message, list) or len(message) < 3:
        raise ProtocolDecodeError("Invalid OCPP message format")
    if message[0] not in (MessageType.Call, MessageType.CallResult, MessageType.CallError):
        raise ProtocolDecodeError(f"Unknown message type: {message[0]}")
    if not isinstance(message[1], (str, int)):
        raise ProtocolDecodeError("Invalid unique id")
    return message


def validate_call(unique_id: str, action: str, payload: dict) -> None:
    """Check a CALL payload against the OCPP 1.6 JSON schema for its action."""
    try:
        validate_payload(Call(unique_id, action, payload), "1.6")
    except OCPPError as e:
        raise ProtocolDecodeError(f"Invalid {action} payload: {e.description}") from e


class OcppMessageRouter:
    """
    Turns one raw frame from a charge point into at most one reply frame.

    CALLs are dispatched to the session manager; CALL_RESULT and CALL_ERROR
    frames are replies to our own commands and produce no reply. Every
    failure is reported to the charge point as a CALL_ERROR rather than
    raised.
    """

    def __init__(self, session_manager: OcppSessionManager):
        self.session_manager = session_manager
        self._metrics = GridPilotMetrics()

    async def route_message(self, charge_point_id: str, raw: str) -> str | None:
        try:
            message = parse_frame(raw)
        except ProtocolDecodeError as e:
            unique_id = recover_unique_id(raw)
            log_error(
                logger,
                "decode_error",
                f"Malformed message from {charge_point_id}: {e.description}",
                cp_id=charge_point_id,
                raw=raw,
            )
            return self._call_error(charge_point_id, unique_id, e)

        message_type, unique_id = message[0], str(message[1])

        if message_type == MessageType.Call:
            return await self._handle_call(charge_point_id, unique_id, message)

        if message_type == MessageType.CallResult:
            payload = message[2]
            self._received(charge_point_id, "CALLRESULT", unique_id, payload=payload)
            self.session_manager.record_call_result(charge_point_id, unique_id, payload)
            return None

        error_code = message[2]
        description = message[3] if len(message) > 3 else ""
        details = message[4] if len(message) > 4 else {}
        self._received(
            charge_point_id,
            "CALLERROR",
            unique_id,
            error_code=error_code,
            error_description=description,
            error_details=details,
        )
        self.session_manager.record_call_error(
            charge_point_id, unique_id, error_code, description, details
        )
        return None

    async def _handle_call(self, charge_point_id: str, unique_id: str, message: list) -> str:
        action = message[2]
        payload = message[3] if len(message) > 3 else {}
        self._received(charge_point_id, "CALL", unique_id, action=action, payload=payload)

        try:
            if action not in ACTIONS:
                raise UnsupportedActionError(f"Action {action} is not supported")
            if not isinstance(payload, dict):
                raise ProtocolDecodeError(f"Payload of {action} must be an object")

            validate_call(unique_id, action, payload)
            request_cls, handler_name = ACTIONS[action]
            request = from_payload(request_cls, payload)
            response = await getattr(self.session_manager, handler_name)(charge_point_id, request)
        except OCPPError as e:
            if isinstance(e, UnsupportedActionError):
                logger.warning(f"Unsupported action {action!r} from {charge_point_id}")
            else:
                log_error(
                    logger,
                    "handler_error",
                    f"Error handling {action} from {charge_point_id}: {e.description}",
                    cp_id=charge_point_id,
                    action=action,
                )
            return self._call_error(charge_point_id, unique_id, e)
        except Exception as e:
            log_error(
                logger,
                "handler_error",
                f"Error handling {action} from {charge_point_id}: {e}",
                cp_id=charge_point_id,
                action=action,
                exc_info=e,
            )
            return self._call_error(charge_point_id, unique_id, InternalError(str(e)))

        response_payload = to_payload(response)
        self._sent(charge_point_id, "CALLRESULT", unique_id, action=action, payload=response_payload)
        return CallResult(unique_id, response_payload).to_json()

    def _call_error(self, charge_point_id: str, unique_id: str, error: OCPPError) -> str:
        self._sent(
            charge_point_id,
            "CALLERROR",
            unique_id,
            error_code=error.code,
            error_description=error.description,
        )
        return CallError(unique_id, error.code, error.description, {}).to_json()

    def _received(self, charge_point_id: str, message_type: str, unique_id: str, **kwargs: Any):
        self._metrics.message(charge_point_id, "received", message_type)
        log_ocpp_message(
            logger,
            direction="received",
            cp_id=charge_point_id,
            message_type=message_type,
            message_id=unique_id,
            **kwargs,
        )

    def _sent(self, charge_point_id: str, message_type: str, unique_id: str, **kwargs: Any):
        self._metrics.message(charge_point_id, "sent", message_type)
        log_ocpp_message(
            logger,
            direction="sent",
            cp_id=charge_point_id,
            message_type=message_type,
            message_id=unique_id,
            **kwargs,
        )
