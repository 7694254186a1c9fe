"""OCPP session registry and per-charge-point state machine."""

import asyncio
import itertools
import logging
import uuid
from dataclasses import replace
from typing import Any, Optional

from ocpp.messages import Call
from ocpp.v16 import call, call_result
from ocpp.v16.datatypes import IdTagInfo
from ocpp.v16.enums import (
    AuthorizationStatus,
    ChargePointErrorCode,
    ChargePointStatus,
    DataTransferStatus,
    RegistrationStatus,
    RemoteStartStopStatus,
    ResetStatus,
    ResetType,
)

from ..logging_utils import log_error, log_ocpp_message
from ..metrics import GridPilotMetrics
from ..models import ChargePointSession, MeterValue, Transaction
from ..models.domain import utc_now
from ..repositories.store import DiscardingStore, TransactionStore
from .messages import parse_timestamp, to_payload

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL = 300


def _server_time() -> str:
    return utc_now().isoformat()


def _id_tag_info(status: str) -> IdTagInfo:
    return IdTagInfo(status=AuthorizationStatus(status))


class OcppSessionManager:
    """
    Tracks every connected charge point and answers its requests.

    Handlers never fail because a charge point is unknown: they return the
    normal response and simply skip the session update.
    """

    def __init__(
        self,
        store: Optional[TransactionStore] = None,
        heartbeat_interval: int = DEFAULT_HEARTBEAT_INTERVAL,
    ):
        self.store = store or DiscardingStore()
        self.heartbeat_interval = heartbeat_interval
        self._sessions: dict[str, ChargePointSession] = {}
        self._lock = asyncio.Lock()
        self._transaction_ids = itertools.count(1)
        self._metrics = GridPilotMetrics()

    # Session registry

    async def register_session(self, charge_point_id: str, connection: Any) -> ChargePointSession:
        """Register a connection, replacing any previous session for the same id."""
        async with self._lock:
            session = ChargePointSession(charge_point_id, connection)
            self._sessions[charge_point_id] = session
        self._metrics.charge_point_connected(charge_point_id, True)
        logger.info(f"Registered charge point: {charge_point_id}")
        return session

    async def unregister_session(
        self, charge_point_id: str, session: Optional[ChargePointSession] = None
    ) -> None:
        """
        Remove a charge point's session.

        If ``session`` is given, only that exact session is removed, so a late
        disconnect of an old connection leaves a newer one in place.
        """
        async with self._lock:
            current = self._sessions.get(charge_point_id)
            if current is None or (session is not None and current is not session):
                return
            del self._sessions[charge_point_id]
        self._metrics.charge_point_connected(charge_point_id, False)
        logger.info(f"Unregistered charge point: {charge_point_id}")

    def get_session(self, charge_point_id: str) -> Optional[ChargePointSession]:
        return self._sessions.get(charge_point_id)

    def get_all_sessions(self) -> list[ChargePointSession]:
        return list(self._sessions.values())

    def generate_transaction_id(self) -> int:
        return next(self._transaction_ids)

    # Handlers for charge point initiated messages

    async def handle_boot_notification(
        self, charge_point_id: str, request: call.BootNotification
    ) -> call_result.BootNotification:
        logger.info(
            f"BootNotification from {charge_point_id}: vendor={request.charge_point_vendor}, "
            f"model={request.charge_point_model}, serial={request.charge_point_serial_number}"
        )
        status = RegistrationStatus("Accepted")
        session = self.get_session(charge_point_id)
        if session:
            session.boot_notification_received = True
            session.registration_status = status

        return call_result.BootNotification(
            current_time=_server_time(),
            interval=self.heartbeat_interval,
            status=status,
        )

    async def handle_heartbeat(
        self, charge_point_id: str, request: call.Heartbeat
    ) -> call_result.Heartbeat:
        session = self.get_session(charge_point_id)
        if session:
            session.last_heartbeat = utc_now()
        logger.debug(f"Heartbeat from {charge_point_id}")
        return call_result.Heartbeat(current_time=_server_time())

    async def handle_authorize(
        self, charge_point_id: str, request: call.Authorize
    ) -> call_result.Authorize:
        # Any non-blank tag is accepted
        status = "Accepted" if request.id_tag and request.id_tag.strip() else "Invalid"
        logger.info(f"Authorize from {charge_point_id} for idTag {request.id_tag!r}: {status}")
        return call_result.Authorize(id_tag_info=_id_tag_info(status))

    async def handle_start_transaction(
        self, charge_point_id: str, request: call.StartTransaction
    ) -> call_result.StartTransaction:
        transaction_id = self.generate_transaction_id()
        logger.info(
            f"StartTransaction from {charge_point_id}: connector={request.connector_id}, "
            f"idTag={request.id_tag}, transactionId={transaction_id}"
        )

        session = self.get_session(charge_point_id)
        if session:
            session.transactions[transaction_id] = Transaction(
                transaction_id=transaction_id,
                connector_id=request.connector_id,
                id_tag=request.id_tag,
                start_time=utc_now(),
                meter_start=request.meter_start,
            )
            connector = session.connector(request.connector_id)
            connector.current_transaction_id = transaction_id
            connector.status = ChargePointStatus("Charging")
            self._metrics.transaction_started(charge_point_id, request.connector_id)
            self._metrics.connector_status(
                charge_point_id, request.connector_id, connector.status.value
            )

        return call_result.StartTransaction(
            transaction_id=transaction_id,
            id_tag_info=_id_tag_info("Accepted"),
        )

    async def handle_stop_transaction(
        self, charge_point_id: str, request: call.StopTransaction
    ) -> call_result.StopTransaction:
        logger.info(
            f"StopTransaction from {charge_point_id}: transactionId={request.transaction_id}, "
            f"meterStop={request.meter_stop}, reason={request.reason}"
        )

        session = self.get_session(charge_point_id)
        transaction = session.transactions.get(request.transaction_id) if session else None
        if transaction is not None:
            completed = replace(
                transaction,
                meter_stop=request.meter_stop,
                stop_time=utc_now(),
                stop_reason=request.reason,
            )
            # Session state changes only after the store has the record
            await self.store.persist_transaction(charge_point_id, completed)

            connector = session.connectors.get(completed.connector_id)
            if connector and connector.current_transaction_id == completed.transaction_id:
                connector.current_transaction_id = None
                connector.status = ChargePointStatus("Available")
                self._metrics.connector_status(
                    charge_point_id, connector.connector_id, connector.status.value
                )
            del session.transactions[request.transaction_id]
            self._metrics.transaction_stopped(charge_point_id, completed.connector_id)
            logger.info(
                f"Transaction {completed.transaction_id} on {charge_point_id} delivered "
                f"{completed.energy_delivered} Wh"
            )

            if request.transaction_data:
                await self._persist_meter_values(
                    charge_point_id,
                    completed.connector_id,
                    completed.transaction_id,
                    request.transaction_data,
                )

        return call_result.StopTransaction(id_tag_info=_id_tag_info("Accepted"))

    async def handle_status_notification(
        self, charge_point_id: str, request: call.StatusNotification
    ) -> call_result.StatusNotification:
        logger.info(
            f"StatusNotification from {charge_point_id}: connector={request.connector_id}, "
            f"status={request.status}, errorCode={request.error_code}"
        )
        status = ChargePointStatus(request.status)
        error_code = ChargePointErrorCode(request.error_code)

        session = self.get_session(charge_point_id)
        if session:
            connector = session.connector(request.connector_id)
            connector.status = status
            connector.error_code = error_code
            connector.last_status_update = utc_now()
            self._metrics.connector_status(charge_point_id, request.connector_id, status.value)

        return call_result.StatusNotification()

    async def handle_meter_values(
        self, charge_point_id: str, request: call.MeterValues
    ) -> call_result.MeterValues:
        logger.debug(
            f"MeterValues from {charge_point_id}: connector={request.connector_id}, "
            f"transactionId={request.transaction_id}, values={len(request.meter_value)}"
        )
        await self._persist_meter_values(
            charge_point_id, request.connector_id, request.transaction_id, request.meter_value
        )
        return call_result.MeterValues()

    async def _persist_meter_values(
        self,
        charge_point_id: str,
        connector_id: int,
        transaction_id: Optional[int],
        samples: list[dict],
    ) -> None:
        """Hand samples to the store; a failure is logged and never reaches the charge point."""
        try:
            await self.store.persist_meter_values(
                charge_point_id,
                connector_id,
                transaction_id,
                parse_meter_values(charge_point_id, connector_id, samples, transaction_id),
            )
        except Exception as e:
            log_error(
                logger,
                "store_error",
                f"Storing meter values from {charge_point_id} failed: {e}",
                cp_id=charge_point_id,
                connector_id=connector_id,
                transaction_id=transaction_id,
                exc_info=e,
            )

    async def handle_data_transfer(
        self, charge_point_id: str, request: call.DataTransfer
    ) -> call_result.DataTransfer:
        logger.info(
            f"DataTransfer from {charge_point_id}: vendorId={request.vendor_id}, "
            f"messageId={request.message_id}"
        )
        return call_result.DataTransfer(status=DataTransferStatus("Accepted"))

    # Outbound commands

    async def send_remote_start_transaction(
        self, charge_point_id: str, request: call.RemoteStartTransaction
    ) -> Optional[call_result.RemoteStartTransaction]:
        if await self._send_call(charge_point_id, "RemoteStartTransaction", request):
            return call_result.RemoteStartTransaction(status=RemoteStartStopStatus("Accepted"))
        return None

    async def send_remote_stop_transaction(
        self, charge_point_id: str, request: call.RemoteStopTransaction
    ) -> Optional[call_result.RemoteStopTransaction]:
        if await self._send_call(charge_point_id, "RemoteStopTransaction", request):
            return call_result.RemoteStopTransaction(status=RemoteStartStopStatus("Accepted"))
        return None

    async def send_reset(
        self, charge_point_id: str, request: Optional[call.Reset] = None
    ) -> Optional[call_result.Reset]:
        request = request or call.Reset(type=ResetType("Soft"))
        if await self._send_call(charge_point_id, "Reset", request):
            return call_result.Reset(status=ResetStatus("Accepted"))
        return None

    async def _send_call(self, charge_point_id: str, action: str, request: Any) -> bool:
        """
        Send a CALL without waiting for the reply.

        Returns True once the frame has been handed to the connection.
        """
        session = self.get_session(charge_point_id)
        if session is None:
            logger.warning(f"Cannot send {action}: {charge_point_id} is not connected")
            return False

        unique_id = str(uuid.uuid4())
        payload = to_payload(request)
        message = Call(unique_id, action, payload).to_json()
        session.pending_calls[unique_id] = action
        try:
            await session.connection.send(message)
        except Exception as e:
            session.pending_calls.pop(unique_id, None)
            log_error(
                logger,
                "send_error",
                f"Failed to send {action} to {charge_point_id}: {e}",
                cp_id=charge_point_id,
                action=action,
            )
            return False

        self._metrics.message(charge_point_id, "sent", "CALL")
        log_ocpp_message(
            logger,
            direction="sent",
            cp_id=charge_point_id,
            message_type="CALL",
            message_id=unique_id,
            action=action,
            payload=payload,
        )
        return True

    # Replies to outbound commands

    def record_call_result(self, charge_point_id: str, unique_id: str, payload: Any) -> None:
        action = self._pop_pending(charge_point_id, unique_id)
        if action is None:
            logger.warning(f"Unexpected CallResult {unique_id} from {charge_point_id}")
            return
        logger.info(f"{action} answered by {charge_point_id}: {payload}")

    def record_call_error(
        self,
        charge_point_id: str,
        unique_id: str,
        error_code: str,
        description: str,
        details: Any = None,
    ) -> None:
        action = self._pop_pending(charge_point_id, unique_id)
        if action is None:
            logger.warning(
                f"Unexpected CallError {unique_id} from {charge_point_id}: {error_code} {description}"
            )
            return
        log_error(
            logger,
            "call_error",
            f"{action} rejected by {charge_point_id}: {error_code} {description}",
            cp_id=charge_point_id,
            action=action,
            error_code=error_code,
            details=details,
        )

    def _pop_pending(self, charge_point_id: str, unique_id: str) -> Optional[str]:
        session = self.get_session(charge_point_id)
        if session is None:
            return None
        return session.pending_calls.pop(unique_id, None)


def parse_meter_values(
    charge_point_id: str,
    connector_id: int,
    samples: list[dict],
    transaction_id: Optional[int] = None,
) -> list[MeterValue]:
    """Flatten MeterValues samples (snake_case keys) into MeterValue records."""
    values = []
    for sample in samples:
        timestamp = parse_timestamp(sample["timestamp"]) if sample.get("timestamp") else None
        for sampled in sample.get("sampled_value", []):
            values.append(
                MeterValue(
                    cp_id=charge_point_id,
                    connector_id=connector_id,
                    timestamp=timestamp,
                    value=str(sampled["value"]),
                    transaction_id=transaction_id,
                    measurand=sampled.get("measurand", "Energy.Active.Import.Register"),
                    unit=sampled.get("unit", "Wh"),
                    context=sampled.get("context", "Sample.Periodic"),
                    location=sampled.get("location", "Outlet"),
                    phase=sampled.get("phase", ""),
                    format=sampled.get("format", "Raw"),
                )
            )
    return values
