"""Tests for OCPP-J framing and dispatch."""

import json
from unittest.mock import AsyncMock, patch

import pytest
from prometheus_client import REGISTRY

from gridpilot.handlers.router import ACTIONS, recover_unique_id


async def route(router, cp_id, message):
    raw = message if isinstance(message, str) else json.dumps(message)
    response = await router.route_message(cp_id, raw)
    return json.loads(response) if response is not None else None


@pytest.mark.unit
class TestCalls:
    async def test_boot_notification_round_trip(
        self, router, session_manager, mock_connection, sample_boot_notification
    ):
        session = await session_manager.register_session("CP1", mock_connection)

        response = await route(router, "CP1", [2, "1", "BootNotification", sample_boot_notification])

        assert response[0] == 3
        assert response[1] == "1"
        assert response[2]["status"] == "Accepted"
        assert response[2]["interval"] == 300
        assert "currentTime" in response[2]
        assert session.boot_notification_received
        assert session.registration_status == "Accepted"

    async def test_heartbeat(self, router):
        response = await route(router, "CP1", [2, "hb", "Heartbeat", {}])

        assert response[:2] == [3, "hb"]
        assert set(response[2]) == {"currentTime"}

    async def test_call_without_payload_element(self, router):
        response = await route(router, "CP1", [2, "hb", "Heartbeat"])
        assert response[0] == 3

    async def test_authorize(self, router):
        accepted = await route(router, "CP1", [2, "a1", "Authorize", {"idTag": "RFID-1"}])
        blank = await route(router, "CP1", [2, "a2", "Authorize", {"idTag": "  "}])

        assert accepted[2] == {"idTagInfo": {"status": "Accepted"}}
        assert blank[2] == {"idTagInfo": {"status": "Invalid"}}

    async def test_start_transaction_returns_id(self, router, session_manager, mock_connection):
        await session_manager.register_session("CP1", mock_connection)
        payload = {
            "connectorId": 1,
            "idTag": "RFID-1",
            "meterStart": 1000,
            "timestamp": "2025-01-01T10:00:00Z",
        }

        response = await route(router, "CP1", [2, "s1", "StartTransaction", payload])

        assert response[2] == {"transactionId": 1, "idTagInfo": {"status": "Accepted"}}

    async def test_status_notification_has_empty_response(self, router):
        payload = {"connectorId": 1, "errorCode": "NoError", "status": "Preparing"}
        response = await route(router, "CP1", [2, "sn", "StatusNotification", payload])
        assert response == [3, "sn", {}]

    async def test_data_transfer(self, router):
        payload = {"vendorId": "acme", "messageId": "x", "data": "opaque"}
        response = await route(router, "CP1", [2, "dt", "DataTransfer", payload])
        assert response == [3, "dt", {"status": "Accepted"}]

    async def test_signed_meter_values_are_acknowledged(self, router):
        payload = {
            "connectorId": 1,
            "meterValue": [
                {
                    "timestamp": "2025-01-01T10:00:00Z",
                    "sampledValue": [{"value": "AB12CD==", "format": "SignedData"}],
                }
            ],
        }

        response = await route(router, "CP1", [2, "m1", "MeterValues", payload])

        assert response == [3, "m1", {}]

    async def test_stop_with_signed_transaction_data(self, router, session_manager, mock_connection):
        session = await session_manager.register_session("CP1", mock_connection)
        start = {
            "connectorId": 1,
            "idTag": "RFID-1",
            "meterStart": 0,
            "timestamp": "2025-01-01T10:00:00Z",
        }
        started = await route(router, "CP1", [2, "s", "StartTransaction", start])
        stop = {
            "meterStop": 1000,
            "timestamp": "2025-01-01T11:00:00Z",
            "transactionId": started[2]["transactionId"],
            "transactionData": [
                {
                    "timestamp": "2025-01-01T11:00:00Z",
                    "sampledValue": [{"value": "XYZ", "format": "SignedData"}],
                }
            ],
        }

        response = await route(router, "CP1", [2, "t", "StopTransaction", stop])

        assert response == [3, "t", {"idTagInfo": {"status": "Accepted"}}]
        assert session.transactions == {}
        assert session.connectors[1].status == "Available"

    async def test_action_table(self):
        assert set(ACTIONS) == {
            "BootNotification",
            "Heartbeat",
            "Authorize",
            "StartTransaction",
            "StopTransaction",
            "StatusNotification",
            "MeterValues",
            "DataTransfer",
        }

    async def test_messages_are_counted(self, router):
        labels = {"cp_id": "CP-METRICS", "direction": "received", "message_type": "CALL"}
        before = REGISTRY.get_sample_value("ocpp_messages_total", labels) or 0

        await route(router, "CP-METRICS", [2, "1", "Heartbeat", {}])

        assert REGISTRY.get_sample_value("ocpp_messages_total", labels) == before + 1


@pytest.mark.unit
class TestErrors:
    async def test_unknown_action(self, router):
        response = await route(router, "CP1", [2, "9", "NotAnAction", {}])

        assert response[:3] == [4, "9", "NotSupported"]
        assert response[4] == {}

    async def test_invalid_json(self, router):
        response = await route(router, "CP1", "this is not json")
        assert response[:3] == [4, "unknown", "InternalError"]
        assert response[4] == {}

    async def test_not_an_array(self, router):
        response = await route(router, "CP1", {"messageTypeId": 2})
        assert response[:3] == [4, "unknown", "InternalError"]

    async def test_too_few_elements_recovers_id(self, router):
        response = await route(router, "CP1", [2, "42"])
        assert response[:3] == [4, "42", "InternalError"]

    async def test_unknown_message_type(self, router):
        response = await route(router, "CP1", [7, "8", "Heartbeat", {}])
        assert response[:3] == [4, "8", "InternalError"]

    async def test_payload_not_an_object(self, router):
        response = await route(router, "CP1", [2, "3", "Heartbeat", []])
        assert response[:3] == [4, "3", "InternalError"]

    async def test_payload_that_does_not_decode(self, router):
        response = await route(router, "CP1", [2, "4", "BootNotification", {"vendor": "x"}])
        assert response[:3] == [4, "4", "InternalError"]

    async def test_ill_typed_payload_is_rejected(self, router, session_manager, mock_connection):
        session = await session_manager.register_session("CP1", mock_connection)
        payload = {"connectorId": "one", "idTag": "RFID-1", "meterStart": "x", "timestamp": "nope"}

        response = await route(router, "CP1", [2, "s", "StartTransaction", payload])

        assert response[:3] == [4, "s", "InternalError"]
        assert response[4] == {}
        assert session.connectors == {}
        assert session.transactions == {}

    async def test_missing_required_field_is_rejected(self, router):
        payload = {"connectorId": 1, "status": "Available"}
        response = await route(router, "CP1", [2, "7", "StatusNotification", payload])
        assert response[:3] == [4, "7", "InternalError"]

    async def test_invalid_enum_value(self, router):
        payload = {"connectorId": 1, "errorCode": "NoError", "status": "Dancing"}
        response = await route(router, "CP1", [2, "5", "StatusNotification", payload])
        assert response[:3] == [4, "5", "InternalError"]

    async def test_handler_exception_becomes_internal_error(self, router, session_manager):
        with patch.object(
            session_manager, "handle_heartbeat", AsyncMock(side_effect=RuntimeError("boom"))
        ):
            response = await route(router, "CP1", [2, "6", "Heartbeat", {}])

        assert response == [4, "6", "InternalError", "boom", {}]

    def test_recover_unique_id(self):
        assert recover_unique_id('[2, "abc", "Heartbeat"') == "unknown"
        assert recover_unique_id('[2, "abc"]') == "abc"
        assert recover_unique_id("[2]") == "unknown"
        assert recover_unique_id('[2, {"id": 1}]') == "unknown"


@pytest.mark.unit
class TestReplies:
    async def test_call_result_is_recorded_without_reply(
        self, router, session_manager, mock_connection
    ):
        session = await session_manager.register_session("CP1", mock_connection)
        session.pending_calls["abc"] = "Reset"

        response = await router.route_message("CP1", json.dumps([3, "abc", {"status": "Accepted"}]))

        assert response is None
        assert session.pending_calls == {}

    async def test_call_error_is_recorded_without_reply(
        self, router, session_manager, mock_connection
    ):
        session = await session_manager.register_session("CP1", mock_connection)
        session.pending_calls["def"] = "RemoteStartTransaction"

        raw = json.dumps([4, "def", "NotSupported", "nope", {}])
        response = await router.route_message("CP1", raw)

        assert response is None
        assert session.pending_calls == {}

    async def test_reply_to_unknown_call_is_ignored(self, router):
        assert await router.route_message("CP1", json.dumps([3, "zzz", {}])) is None
        assert await router.route_message("CP1", json.dumps([4, "zzz", "GenericError"])) is None
