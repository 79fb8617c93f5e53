import logging
import math
from typing import Optional

from config.settings import AccountSettings


logger = logging.getLogger(__name__)


class PositionSizer:
    """Volatility-scaled share caps.

    ``position_cap = floor(total_cash * risk_fraction / N)`` bounds how many
    shares a single instrument may accumulate; ``hard_limit`` additionally
    caps the notional at ``notional_cap`` at the current bar's high.
    """

    def __init__(self, account: Optional[AccountSettings] = None):
        account = account or AccountSettings()
        self.total_cash = account.total_cash
        self.risk_fraction = account.risk_fraction
        self.notional_cap = account.notional_cap

    def position_cap(self, n: Optional[float]) -> int:
        if n is None or n <= 0:
            return 0
        return int(math.floor(self.total_cash * self.risk_fraction / n))

    def hard_limit(self, current_high: float) -> int:
        if current_high is None or current_high <= 0:
            return 0
        return int(math.floor(self.notional_cap / current_high))

    def tradable_units(self, position_cap: int, current_high: float, position_units: int) -> int:
        limit = min(position_cap, self.hard_limit(current_high))
        remaining = limit - position_units
        if remaining < 0:
            logger.debug(
                "Position %s above cap %s; clamping tradable size to zero",
                position_units,
                limit,
            )
        return max(0, remaining)
