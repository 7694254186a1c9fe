from .manager import EnergyManager, compute_setpoint, round_half_up
from .publisher import StatePublisher

__all__ = ["EnergyManager", "StatePublisher", "compute_setpoint", "round_half_up"]
