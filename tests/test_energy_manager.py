"""Tests for the energy manager control loop."""

import asyncio

import pytest
from fakes import StubCharger, StubDevice
from prometheus_client import REGISTRY

from gridpilot.config import EnergyManagerSettings
from gridpilot.devices import BatteryState, ChargerState, GridState, HeatPumpState, SolarState
from gridpilot.ems import EnergyManager, StatePublisher, compute_setpoint, round_half_up
from gridpilot.exceptions import DeviceCommunicationError
from gridpilot.models import CombinedState, Current, Energy, Mode, Power, Voltage

MIN = Current(6)
MAX = Current(32)


def grid(power, volts=230):
    return GridState(Power(power), Voltage(volts))


def build_manager(
    grid_reading=None,
    charger_power=None,
    heat_pump_power=0,
    settings=None,
    **kwargs,
):
    grid_meter = StubDevice("grid", grid_reading)
    charger = StubCharger(
        ChargerState(Power(charger_power)) if charger_power is not None else None
    )
    heat_pump = StubDevice(
        "heat_pump", HeatPumpState(Power(heat_pump_power)) if heat_pump_power is not None else None
    )
    manager = EnergyManager(
        settings or EnergyManagerSettings(),
        grid=grid_meter,
        charger=charger,
        heat_pump=heat_pump,
        **kwargs,
    )
    return manager, grid_meter, charger, heat_pump


@pytest.mark.unit
class TestComputeSetpoint:
    def state(self, grid_power, voltage, charger_power):
        return CombinedState(
            grid_power=Power(grid_power) if grid_power is not None else None,
            grid_voltage=Voltage(voltage) if voltage is not None else None,
            charger_power=Power(charger_power) if charger_power is not None else None,
        )

    def test_surplus_is_converted_to_amps(self):
        # (1500 - (-1000)) / 230 = 10.87
        assert compute_setpoint(self.state(-1000, 230, 1500), MIN, MAX) == Current(11)

    def test_small_surplus_is_raised_to_minimum(self):
        # 100 / 230 = 0.43
        assert compute_setpoint(self.state(-100, 230, 0), MIN, MAX) == Current(6)

    def test_no_surplus_gives_minimum(self):
        assert compute_setpoint(self.state(500, 230, 300), MIN, MAX) == Current(6)
        assert compute_setpoint(self.state(300, 230, 300), MIN, MAX) == Current(6)

    def test_large_surplus_is_capped(self):
        assert compute_setpoint(self.state(-10000, 230, 0), MIN, MAX) == Current(32)

    def test_halves_round_up(self):
        # 2415 / 230 = 10.5
        assert compute_setpoint(self.state(-2415, 230, 0), MIN, MAX) == Current(11)
        assert round_half_up(12.5) == 13
        assert round_half_up(12.49) == 12

    @pytest.mark.parametrize(
        "grid_power,voltage,charger_power",
        [(None, 230, 1000), (-500, None, 1000), (-500, 230, None), (-500, 0, 1000)],
    )
    def test_missing_reading_is_fail_safe(self, grid_power, voltage, charger_power):
        assert compute_setpoint(self.state(grid_power, voltage, charger_power), MIN, MAX) == Current(0)

    @pytest.mark.parametrize(
        "grid_power,charger_power,expected",
        [(500, 3000, Current(11)), (0, 10000, Current(32))],
    )
    def test_worked_examples(self, grid_power, charger_power, expected):
        assert compute_setpoint(self.state(grid_power, 230, charger_power), MIN, MAX) == expected

    def test_configured_limits_apply(self):
        state = self.state(-10000, 230, 0)
        assert compute_setpoint(state, Current(8), Current(16)) == Current(16)


@pytest.mark.unit
class TestRunCycle:
    async def test_auto_cycle_writes_setpoint_and_publishes(self):
        manager, _, charger, _ = build_manager(grid(-1000), charger_power=1500, heat_pump_power=800)

        state = await manager.run_cycle()

        assert charger.setpoints == [Current(11)]
        assert manager.current_max_amps == Current(11)
        assert state.grid_power == Power(-1000)
        assert state.heat_pump_power == Power(800)
        assert manager.publisher.value is state

    async def test_grid_meter_outage_gives_zero(self):
        manager, _, charger, _ = build_manager(None, charger_power=1500)

        state = await manager.run_cycle()

        assert state.grid_power is None
        assert state.grid_voltage is None
        assert charger.setpoints == [Current(0)]

    async def test_charger_poll_failure_gives_zero_but_still_writes(self):
        manager, _, charger, _ = build_manager(grid(-3000), charger_power=0)
        charger.error = DeviceCommunicationError("charger.local", "timed out")

        state = await manager.run_cycle()

        assert state.charger_power is None
        assert charger.setpoints == [Current(0)]

    async def test_heat_pump_failure_does_not_affect_setpoint(self):
        manager, _, charger, heat_pump = build_manager(grid(-1000), charger_power=1500)
        heat_pump.error = DeviceCommunicationError("heat_pump.local", "refused")

        state = await manager.run_cycle()

        assert state.heat_pump_power is None
        assert charger.setpoints == [Current(11)]

    async def test_unexpected_exception_is_contained(self):
        manager, grid_meter, charger, _ = build_manager(grid(-1000), charger_power=1500)
        grid_meter.error = RuntimeError("boom")

        await manager.run_cycle()

        assert charger.setpoints == [Current(0)]

    async def test_failure_in_one_cycle_does_not_leak_into_next(self):
        manager, _, charger, heat_pump = build_manager(grid(-1000), charger_power=1500)
        heat_pump.error = DeviceCommunicationError("heat_pump.local", "refused")
        first = await manager.run_cycle()

        heat_pump.error = None
        second = await manager.run_cycle()

        assert first.heat_pump_power is None
        assert second.heat_pump_power == Power(0)

    async def test_charger_write_failure_is_logged_and_cycle_completes(self):
        manager, _, charger, _ = build_manager(grid(-1000), charger_power=1500)
        charger.write_error = DeviceCommunicationError("charger.local", "refused")

        state = await manager.run_cycle()

        assert manager.publisher.value is state
        assert manager.current_max_amps == Current(11)

    async def test_optional_devices_are_reported(self):
        solar = StubDevice("solar", SolarState(Power(3500)))
        battery = StubDevice(
            "battery",
            BatteryState(
                state_of_charge=64,
                charge_power=Power(900),
                discharge_power=Power(0),
                lifetime_charge=Energy(120000),
            ),
        )
        manager, _, _, _ = build_manager(
            grid(-200), charger_power=0, solar=solar, battery=battery
        )

        state = await manager.run_cycle()

        assert state.solar_power == Power(3500)
        assert state.battery_power == Power(900)
        assert state.battery_charge == 64

    async def test_cycle_updates_metrics(self):
        manager, _, _, _ = build_manager(grid(-1000), charger_power=1500)
        cycles_before = REGISTRY.get_sample_value("ems_cycles_total") or 0

        await manager.run_cycle()

        assert REGISTRY.get_sample_value("ems_cycles_total") == cycles_before + 1
        assert REGISTRY.get_sample_value("ems_setpoint_amps") == 11
        assert REGISTRY.get_sample_value("ems_reading", {"quantity": "grid_power_w"}) == -1000


@pytest.mark.unit
class TestModes:
    async def test_manual_mode_holds_current(self):
        manager, grid_meter, charger, _ = build_manager(grid(-1000), charger_power=1500)
        manager.set_manual(Current(16))

        await manager.run_cycle()
        grid_meter.next_reading = grid(5000)
        await manager.run_cycle()

        assert manager.mode is Mode.MANUAL
        assert charger.setpoints == [Current(16), Current(16)]
        assert manager.current_max_amps == Current(16)

    @pytest.mark.parametrize("held", [Current(0), Current(6), Current(16), Current(32)])
    @pytest.mark.parametrize(
        "failure",
        ["grid_error", "charger_error", "all_error", "no_readings"],
    )
    async def test_manual_mode_holds_current_while_devices_fail(self, held, failure):
        manager, grid_meter, charger, heat_pump = build_manager(grid(-1000), charger_power=1500)
        manager.set_manual(held)
        error = DeviceCommunicationError("device.local", "timed out")
        if failure in ("grid_error", "all_error"):
            grid_meter.error = error
        if failure in ("charger_error", "all_error"):
            charger.error = error
            heat_pump.error = error
        if failure == "no_readings":
            grid_meter.next_reading = None
            charger.next_reading = None

        cycles = 5
        for _ in range(cycles):
            await manager.run_cycle()

        assert charger.setpoints == [held] * cycles
        assert manager.current_max_amps == held
        assert manager.mode is Mode.MANUAL

    async def test_manual_zero_is_allowed(self):
        manager, _, charger, _ = build_manager(grid(-1000), charger_power=1500)
        manager.set_manual(Current(0))

        await manager.run_cycle()

        assert charger.setpoints == [Current(0)]

    def test_manual_current_out_of_range_is_rejected(self):
        manager, _, _, _ = build_manager()

        with pytest.raises(ValueError):
            manager.set_manual(Current(40))
        with pytest.raises(ValueError):
            manager.set_manual(Current(3))
        assert manager.mode is Mode.AUTO

    async def test_back_to_auto(self):
        manager, _, charger, _ = build_manager(grid(-1000), charger_power=1500)
        manager.set_manual(Current(20))
        await manager.run_cycle()

        manager.set_auto()
        await manager.run_cycle()

        assert charger.setpoints == [Current(20), Current(11)]

    def test_initial_manual_mode_from_settings(self):
        settings = EnergyManagerSettings(mode=Mode.MANUAL, manual_current=Current(10))
        manager, _, _, _ = build_manager(settings=settings)

        assert manager.mode is Mode.MANUAL
        assert manager.current_max_amps == Current(10)

    def test_initial_setpoint_is_zero(self):
        manager, _, _, _ = build_manager()
        assert manager.current_max_amps == Current(0)


@pytest.mark.unit
class TestRunLoop:
    async def test_run_cycles_until_cancelled(self):
        settings = EnergyManagerSettings(interval=0.01)
        publisher = StatePublisher(CombinedState())
        manager, _, charger, _ = build_manager(
            grid(-1000), charger_power=1500, settings=settings, publisher=publisher
        )

        task = asyncio.create_task(manager.run())
        await asyncio.sleep(0.1)
        assert charger.keep_alive_running

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(charger.setpoints) >= 2
        assert not charger.keep_alive_running
        assert publisher.value.grid_power == Power(-1000)

    async def test_close_closes_all_devices(self):
        solar = StubDevice("solar", SolarState(Power(0)))
        manager, grid_meter, charger, heat_pump = build_manager(solar=solar)

        await manager.close()

        assert grid_meter.closed and charger.closed and heat_pump.closed and solar.closed
