from docflow.providers.base import BaseProvider
from docflow.providers.exceptions import (
    ProviderError,
    ProviderFatalError,
    ProviderTransientError,
)
from docflow.providers.factory import ProviderFactory
from docflow.providers.models import ModelParameters

__all__ = [
    "BaseProvider",
    "ModelParameters",
    "ProviderError",
    "ProviderFactory",
    "ProviderFatalError",
    "ProviderTransientError",
]
