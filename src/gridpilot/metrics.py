"""Prometheus metrics for the control loop and the OCPP central system."""

from prometheus_client import Counter, Gauge

from .models import CombinedState, Current, Mode

# OCPP 1.6 ChargePointStatus -> numeric code
STATUS_CODES = {
    "Available": 0,
    "Preparing": 1,
    "Charging": 2,
    "SuspendedEVSE": 3,
    "SuspendedEV": 4,
    "Finishing": 5,
    "Reserved": 6,
    "Unavailable": 7,
    "Faulted": 8,
}


class GridPilotMetrics:
    """
    Exposes Prometheus metrics for the energy manager and OCPP sessions.

    Metrics are class-level so every instance shares the same collectors in
    the default ``prometheus_client`` registry. Use
    ``prometheus_client.start_http_server()`` to expose ``/metrics``.
    """

    # Control loop
    ems_cycles_total = Counter(
        "ems_cycles_total",
        "Total number of completed control cycles",
    )

    ems_setpoint_amps = Gauge(
        "ems_setpoint_amps",
        "Charging current most recently commanded to the charger (A)",
    )

    ems_manual_mode = Gauge(
        "ems_manual_mode",
        "1 if the energy manager is in MANUAL mode, 0 in AUTO",
    )

    ems_reading = Gauge(
        "ems_reading",
        "Latest device reading; NaN when the poll failed",
        labelnames=["quantity"],
    )

    device_errors_total = Counter(
        "device_errors_total",
        "Total number of failed device polls or writes",
        labelnames=["device", "operation"],
    )

    register_reconnects_total = Counter(
        "register_reconnects_total",
        "Total number of discarded and re-established register connections",
        labelnames=["host"],
    )

    # OCPP
    ocpp_cp_connected = Gauge(
        "ocpp_cp_connected",
        "1 if WebSocket is open, 0 otherwise",
        labelnames=["cp_id"],
    )

    ocpp_messages_total = Counter(
        "ocpp_messages_total",
        "Total number of OCPP messages by direction and type",
        labelnames=["cp_id", "direction", "message_type"],
    )

    ocpp_connector_status = Gauge(
        "ocpp_connector_status",
        "Numeric status code of a connector",
        labelnames=["cp_id", "connector_id"],
    )

    ocpp_tx_active = Gauge(
        "ocpp_tx_active",
        "1 if transaction is active on connector, 0 otherwise",
        labelnames=["cp_id", "connector_id"],
    )

    ocpp_tx_total = Counter(
        "ocpp_tx_total",
        "Total transaction count",
        labelnames=["cp_id"],
    )

    # Control loop

    def cycle_completed(self, state: CombinedState, setpoint: Current, mode: Mode):
        """Record the outcome of one control cycle."""
        self.ems_cycles_total.inc()
        self.ems_setpoint_amps.set(setpoint.amps)
        self.ems_manual_mode.set(1 if mode is Mode.MANUAL else 0)
        for quantity, value in state.to_dict().items():
            self.ems_reading.labels(quantity=quantity).set(
                float("nan") if value is None else value
            )

    def device_error(self, device: str, operation: str):
        self.device_errors_total.labels(device=device, operation=operation).inc()

    def register_reconnect(self, host: str):
        self.register_reconnects_total.labels(host=host).inc()

    # OCPP

    def charge_point_connected(self, cp_id: str, connected: bool):
        self.ocpp_cp_connected.labels(cp_id=cp_id).set(1 if connected else 0)

    def message(self, cp_id: str, direction: str, message_type: str):
        self.ocpp_messages_total.labels(
            cp_id=cp_id, direction=direction, message_type=message_type
        ).inc()

    def connector_status(self, cp_id: str, connector_id: int, status: str):
        self.ocpp_connector_status.labels(cp_id=cp_id, connector_id=str(connector_id)).set(
            STATUS_CODES.get(status, -1)
        )

    def transaction_started(self, cp_id: str, connector_id: int):
        self.ocpp_tx_active.labels(cp_id=cp_id, connector_id=str(connector_id)).set(1)
        self.ocpp_tx_total.labels(cp_id=cp_id).inc()

    def transaction_stopped(self, cp_id: str, connector_id: int):
        self.ocpp_tx_active.labels(cp_id=cp_id, connector_id=str(connector_id)).set(0)
