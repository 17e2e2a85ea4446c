from __future__ import annotations

# spend is kept rounded so that e.g. three 0.04 edits fit a 0.12 budget exactly
_PRECISION = 9


class CostTracker:
    """Budget gate for paid image edits.

    A reservation is committed as soon as it is accepted; there is no
    rollback, the money is considered spent even if the edit then fails.
    """

    def __init__(self, max_cost: float) -> None:
        if max_cost < 0:
            raise ValueError("max_cost must be >= 0")
        self.max_cost = float(max_cost)
        self._spent = 0.0

    def try_reserve(self, unit_cost: float) -> bool:
        if unit_cost < 0:
            raise ValueError("unit_cost must be >= 0")
        total = round(self._spent + unit_cost, _PRECISION)
        if total > self.max_cost:
            return False
        self._spent = total
        return True

    @property
    def spent(self) -> float:
        return self._spent

    @property
    def remaining(self) -> float:
        return max(0.0, self.max_cost - self._spent)
