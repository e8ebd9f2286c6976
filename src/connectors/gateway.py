"""Execution gateway contract: the broker's book of record and its request/response API.

The controller never mutates positions itself; it reads them fresh each cycle
via list_open_positions() and asks the gateway for every change.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from src.risk.errors import GatewayError
from src.risk.models import Direction, Position


@dataclass(frozen=True)
class GatewayResult:
    """Outcome of one gateway request."""

    success: bool
    reason: str = ""  # human-readable, set on failure
    position_id: str | None = None  # set by submit_order on success

    @classmethod
    def ok(cls, position_id: str | None = None) -> GatewayResult:
        return cls(True, "", position_id)

    @classmethod
    def rejected(cls, reason: str, position_id: str | None = None) -> GatewayResult:
        return cls(False, reason, position_id)

    def raise_for_status(self) -> None:
        if not self.success:
            raise GatewayError(self.reason or "rejected", self.position_id)


class ExecutionGateway(Protocol):
    def list_open_positions(self, symbol: str) -> list[Position]: ...

    def submit_order(
        self,
        symbol: str,
        direction: Direction,
        volume: float,
        stop_price: float,
        take_profit: float,
    ) -> GatewayResult: ...

    def submit_modification(
        self,
        position_id: str,
        new_stop: float,
        new_take_profit: float,
    ) -> GatewayResult: ...

    def submit_partial_close(self, position_id: str, volume: float) -> GatewayResult: ...

    def submit_close(self, position_id: str) -> GatewayResult: ...


def call_gateway(request, *args) -> GatewayResult:
    """Invoke a gateway request; transport exceptions become a failed result."""
    try:
        result = request(*args)
    except GatewayError as e:
        return GatewayResult.rejected(e.reason, e.position_id)
    except Exception as e:
        return GatewayResult.rejected(f"{type(e).__name__}: {e}")
    if result is None:
        return GatewayResult.rejected("gateway returned no result")
    return result
