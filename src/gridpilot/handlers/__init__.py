from .router import ACTIONS, OcppMessageRouter
from .session_manager import OcppSessionManager

__all__ = ["ACTIONS", "OcppMessageRouter", "OcppSessionManager"]
