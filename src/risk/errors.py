"""Error taxonomy for the risk controller.

Only ConfigurationError is fatal. Everything else degrades to
"skip this action, try again next cycle".
"""

from __future__ import annotations


class RiskControllerError(Exception):
    """Base class for all controller errors."""


class ConfigurationError(RiskControllerError):
    """Invalid risk bounds. Raised at construction; the host must not start."""


class SizingError(RiskControllerError):
    """Lot sizing could not be computed from the instrument metadata."""


class NoPointValue(SizingError):
    """Money-per-point is non-positive (unusable tick size / tick value)."""


class GatewayError(RiskControllerError):
    """Request rejected by the execution layer or transport failed."""

    def __init__(self, reason: str, position_id: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.position_id = position_id


class DataUnavailable(RiskControllerError):
    """Indicator value or tick snapshot could not be obtained."""
