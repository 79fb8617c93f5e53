from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


NO_FILL_PRICE = -1.0


@dataclass(frozen=True)
class Instrument:
    symbol: str
    unit: int = 1
    feed: Optional[str] = None

    def __post_init__(self):
        if not self.symbol:
            raise ValueError("Instrument symbol must be non-empty")
        if int(self.unit) < 1:
            raise ValueError(f"{self.symbol}: tradable unit must be >= 1")


@dataclass(frozen=True)
class Bar:
    symbol: str
    open: float
    high: float
    low: float
    close: float
    end_time: datetime
    volume: float = 0.0


class OrderStatus(Enum):
    FILLED = "filled"
    PARTIALLY_FILLED = "partially_filled"
    CANCELED = "canceled"
    INVALID = "invalid"


class IntentReason(Enum):
    ENTRY = "entry"
    ADD = "add"
    EXIT = "exit"
    FORCE_QUIT = "force-quit"

    @property
    def liquidates(self) -> bool:
        return self in (IntentReason.EXIT, IntentReason.FORCE_QUIT)


@dataclass(frozen=True)
class OrderIntent:
    """An order the evaluator wants placed; ``limit_price`` is None for liquidations."""

    symbol: str
    signed_quantity: int
    limit_price: Optional[float]
    reason: IntentReason

    @property
    def tag(self) -> str:
        if self.limit_price is None:
            return f"{self.reason.value}"
        return f"{self.reason.value} @ {self.limit_price}"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "signed_quantity": self.signed_quantity,
            "limit_price": self.limit_price,
            "reason": self.reason.value,
        }


@dataclass(frozen=True)
class FillEvent:
    symbol: str
    order_id: int
    status: OrderStatus
    fill_price: float = 0.0
    fill_quantity: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "order_id": self.order_id,
            "status": self.status.value,
            "fill_price": self.fill_price,
            "fill_quantity": self.fill_quantity,
        }


@dataclass
class OrderTicket:
    """Venue-side view of a submitted order."""

    order_id: int
    symbol: str
    quantity: int
    type: str
    limit_price: Optional[float] = None
    tag: str = ""
    status: str = "open"
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_open(self) -> bool:
        return self.status == "open"
