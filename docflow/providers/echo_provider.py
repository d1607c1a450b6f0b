"""Example provider adapter.

Use this module as a reference when implementing new provider adapters.
Implement BaseProvider and register the provider in ProviderFactory.
"""

from docflow.providers.base import BaseProvider
from docflow.providers.models import ModelParameters


class EchoProvider(BaseProvider):
    """Returns every chunk unchanged.

    No network calls. Useful for local development, tests, and as a template
    for building real provider adapters.
    """

    def transform(
        self,
        chunk_text: str,
        instructions: str,
        model_parameters: ModelParameters,
    ) -> str:
        _ = instructions, model_parameters
        return chunk_text
