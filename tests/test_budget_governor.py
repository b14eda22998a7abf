from __future__ import annotations

from deep_extract.research_core.budget.governor import BudgetGovernor


def test_budget_governor_tracks_spend_and_remaining():
    budget = BudgetGovernor(1.0)
    assert budget.can_spend(0.25)
    budget.spend(0.25)
    budget.spend(0.25)
    assert budget.spent_usd == 0.5
    assert budget.remaining_usd == 0.5


def test_budget_governor_refuses_overdraw_but_allows_exact_fit():
    budget = BudgetGovernor(0.5)
    budget.spend(0.25)
    assert budget.can_spend(0.25)
    assert not budget.can_spend(0.26)


def test_budget_governor_remaining_never_negative():
    budget = BudgetGovernor(0.1)
    budget.spend(0.3)
    assert budget.remaining_usd == 0.0
    assert not budget.can_spend(0.01)


def test_budget_governor_treats_missing_values_as_zero():
    budget = BudgetGovernor(None)
    assert budget.total_budget_usd == 0.0
    assert budget.can_spend(None)
    budget.spend(None)
    assert budget.spent_usd == 0.0
