import httpx
import openai

from docflow.providers.base import BaseProvider
from docflow.providers.exceptions import ProviderFatalError, ProviderTransientError
from docflow.providers.models import ModelParameters

_TRANSIENT_STATUS_CODES = frozenset({408, 409, 429})


class OpenAIProviderAdapter(BaseProvider):
    """Provider adapter built on the OpenAI-compatible chat completions API.

    Serves OpenAI itself, DeepSeek and any other compatible endpoint through
    ``base_url``. The SDK's own retries are disabled: every retry has to pass
    through the provider budget.
    """

    def __init__(
        self,
        *,
        provider_id: str,
        api_key: str,
        timeout_seconds: float,
        base_url: str | None = None,
    ) -> None:
        self._provider_id = provider_id
        self._client = openai.OpenAI(
            api_key=api_key,
            timeout=timeout_seconds,
            base_url=base_url,
            max_retries=0,
        )

    def transform(
        self,
        chunk_text: str,
        instructions: str,
        model_parameters: ModelParameters,
    ) -> str:
        messages = []
        if instructions:
            messages.append({"role": "system", "content": instructions})
        messages.append({"role": "user", "content": chunk_text})

        try:
            response = self._client.chat.completions.create(
                model=model_parameters.model,
                temperature=model_parameters.temperature,
                max_tokens=model_parameters.max_tokens,
                messages=messages,
                timeout=model_parameters.timeout_seconds,
            )
        except (openai.APITimeoutError, httpx.TimeoutException) as exc:
            raise ProviderTransientError(
                f"{self._provider_id} request timed out: {exc}"
            ) from exc
        except (openai.APIConnectionError, httpx.ConnectError) as exc:
            raise ProviderTransientError(
                f"{self._provider_id} network error: {exc}"
            ) from exc
        except openai.APIStatusError as exc:
            raise self._classify_status_error(exc) from exc
        except openai.APIError as exc:
            raise ProviderTransientError(
                f"{self._provider_id} API error: {exc}"
            ) from exc

        if not response.choices:
            raise ProviderTransientError(f"{self._provider_id} returned no choices")
        choice = response.choices[0]
        if choice.finish_reason == "content_filter":
            raise ProviderFatalError(f"{self._provider_id} rejected the content")
        content = choice.message.content
        if not content:
            raise ProviderTransientError(f"{self._provider_id} returned an empty response")
        return content

    def _classify_status_error(self, exc: openai.APIStatusError) -> Exception:
        status = exc.status_code
        if status == 401:
            return ProviderFatalError(
                f"{self._provider_id} authentication failed - check the API key"
            )
        if status in _TRANSIENT_STATUS_CODES or status >= 500:
            return ProviderTransientError(
                f"{self._provider_id} API error {status}: {exc.message}",
                retry_after=self._retry_after(exc),
            )
        return ProviderFatalError(f"{self._provider_id} API error {status}: {exc.message}")

    @staticmethod
    def _retry_after(exc: openai.APIStatusError) -> float | None:
        raw = exc.response.headers.get("retry-after")
        if raw is None:
            return None
        try:
            return max(0.0, float(raw))
        except ValueError:
            return None
