from abc import ABC, abstractmethod

from docflow.providers.models import ModelParameters


class BaseProvider(ABC):
    """Contract for all generative-text provider adapters."""

    @abstractmethod
    def transform(
        self,
        chunk_text: str,
        instructions: str,
        model_parameters: ModelParameters,
    ) -> str:
        """Transform one chunk of text.

        Args:
            chunk_text: Source text of a single chunk.
            instructions: Caller-supplied transformation instructions.
            model_parameters: Model name, sampling and timeout settings.
                Implementations must bound the call by
                ``model_parameters.timeout_seconds``.

        Returns:
            The provider's output text.

        Raises:
            ProviderTransientError: on timeouts, throttling and server errors.
            ProviderFatalError: on authentication, request or content errors.
        """
