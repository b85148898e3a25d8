"""
Domain helpers for the Gateway (request gatekeeping).
"""

from .gatekeeper import GateDecision, Gatekeeper, GatekeeperMiddleware, GatekeeperRateLimitError

__all__ = [
    "GateDecision",
    "Gatekeeper",
    "GatekeeperMiddleware",
    "GatekeeperRateLimitError",
]
