from docflow.providers.exceptions import ProviderTransientError


class OrchestrationError(Exception):
    """Base exception for job orchestration errors."""


class JobNotFoundError(OrchestrationError):
    """Raised when a job id is unknown to the pipeline."""


class JobNotFinishedError(OrchestrationError):
    """Raised when a result is requested before the job reached a terminal state."""


class BudgetExhaustedError(ProviderTransientError):
    """Raised when the provider budget asks for a longer wait than allowed."""

    def __init__(self, provider_id: str, wait_seconds: float, max_wait_seconds: float) -> None:
        super().__init__(
            f"Budget for {provider_id} needs {wait_seconds:.1f}s, "
            f"more than the {max_wait_seconds:.1f}s allowed"
        )
        self.provider_id = provider_id
        self.wait_seconds = wait_seconds
