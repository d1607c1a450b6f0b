from typing import ClassVar

from docflow.config.settings import Settings
from docflow.providers.base import BaseProvider
from docflow.providers.echo_provider import EchoProvider
from docflow.providers.models import ModelParameters
from docflow.providers.openai_adapter import OpenAIProviderAdapter


class ProviderFactory:
    """Creates the adapter and model parameters for a provider id."""

    SUPPORTED_PROVIDERS: ClassVar[tuple[str, ...]] = (
        "example",
        "openai",
        "deepseek",
        "openai_compatible",
    )

    @classmethod
    def create(cls, provider_id: str, settings: Settings) -> BaseProvider:
        """Create a configured provider adapter from application settings."""
        provider = cls._normalize(provider_id)
        if provider == "example":
            return EchoProvider()
        return OpenAIProviderAdapter(
            provider_id=provider,
            api_key=cls._resolve_api_key(provider, settings),
            timeout_seconds=settings.provider_timeout_seconds,
            base_url=cls._resolve_base_url(provider, settings),
        )

    @classmethod
    def model_parameters(cls, provider_id: str, settings: Settings) -> ModelParameters:
        """Default generation parameters configured for ``provider_id``."""
        provider = cls._normalize(provider_id)
        timeout = float(settings.provider_timeout_seconds)
        if provider == "example":
            return ModelParameters(model="example", timeout_seconds=timeout)
        if provider == "openai":
            return ModelParameters(
                model=settings.openai_model_name,
                temperature=settings.openai_temperature,
                max_tokens=settings.openai_max_tokens,
                timeout_seconds=timeout,
            )
        if provider == "deepseek":
            return ModelParameters(
                model=settings.deepseek_model_name,
                temperature=settings.deepseek_temperature,
                max_tokens=settings.deepseek_max_tokens,
                timeout_seconds=timeout,
            )
        return ModelParameters(
            model=settings.openai_compatible_model_name,
            temperature=settings.openai_compatible_temperature,
            max_tokens=settings.openai_compatible_max_tokens,
            timeout_seconds=timeout,
        )

    @classmethod
    def _normalize(cls, provider_id: str) -> str:
        provider = provider_id.strip().lower()
        if provider not in cls.SUPPORTED_PROVIDERS:
            raise ValueError(
                f"Unknown provider '{provider_id}'. Choose from: {list(cls.SUPPORTED_PROVIDERS)}"
            )
        return provider

    @classmethod
    def _resolve_base_url(cls, provider: str, settings: Settings) -> str | None:
        if provider == "openai":
            return None
        if provider == "deepseek":
            return settings.deepseek_base_url
        url = settings.openai_compatible_base_url.strip()
        if not url:
            raise ValueError(
                "openai_compatible_base_url is required for provider openai_compatible"
            )
        return url

    @classmethod
    def _resolve_api_key(cls, provider: str, settings: Settings) -> str:
        key_map = {
            "openai": settings.openai_api_key,
            "deepseek": settings.deepseek_api_key,
            "openai_compatible": settings.openai_compatible_api_key,
        }
        return key_map.get(provider, "")
