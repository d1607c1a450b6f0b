import threading

from docflow.budget.clock import Clock
from docflow.budget.provider_budget import BudgetLimits, ProviderBudget
from docflow.logging.logger import Log


class BudgetRegistry:
    """Owns exactly one ProviderBudget per provider id.

    Every job targeting the same provider receives the same instance, so
    independent jobs still serialize through one pacing gate.
    """

    def __init__(
        self,
        default_limits: BudgetLimits,
        clock: Clock,
        overrides: dict[str, BudgetLimits] | None = None,
    ) -> None:
        self._default_limits = default_limits
        self._clock = clock
        self._overrides = dict(overrides or {})
        self._budgets: dict[str, ProviderBudget] = {}
        self._lock = threading.Lock()

    def get(self, provider_id: str) -> ProviderBudget:
        """Return the shared budget for ``provider_id``, creating it on first use."""
        key = provider_id.lower()
        with self._lock:
            budget = self._budgets.get(key)
            if budget is None:
                limits = self._overrides.get(key, self._default_limits)
                budget = ProviderBudget(key, limits, self._clock)
                self._budgets[key] = budget
                Log.info(
                    f"Created budget for provider '{key}': "
                    f"{limits.requests_per_window} requests / {limits.window_seconds:g}s, "
                    f"spacing {limits.min_spacing_seconds:g}s"
                )
            return budget
