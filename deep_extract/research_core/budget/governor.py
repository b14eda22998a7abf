from __future__ import annotations


class BudgetGovernor:
    """Run-scoped USD spend tracker shared by every paid call in one run.

    ``can_spend`` and ``spend`` are separate steps: callers check, make the
    external call, then commit. Providers run one after another in declared
    order, so no lock guards the pair.
    """

    def __init__(self, total_budget_usd: float | None):
        self.total_budget_usd = float(total_budget_usd or 0)
        self.spent_usd = 0.0

    @property
    def remaining_usd(self) -> float:
        return max(0.0, self.total_budget_usd - self.spent_usd)

    def can_spend(self, amount_usd: float | None = 0) -> bool:
        return self.spent_usd + float(amount_usd or 0) <= self.total_budget_usd

    def spend(self, amount_usd: float | None = 0) -> None:
        self.spent_usd += float(amount_usd or 0)
